# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
DRE (income statement) calculator.

A DRE is computed for one month, consolidated or for a single branch, from
the REALIZED ledger entries whose accrual date (competência) falls in the
month:

1. Receivables are revenue. Receivables booked on an account whose DRE
   group mentions "financ" are financial revenue (net amount); the others
   are operating revenue: gross revenue is the sum of their gross amounts
   and deductions the sum of their discounts.
2. Payables are expenses (net amount), classified by their account:
   - COST when the account has a CMA/CMV classification, is of type COST,
     or its DRE group mentions cost ("custo"),
   - FINANCIAL when the DRE group mentions "financ",
   - OPERATING EXPENSE otherwise.
   Transfers and adjustments do not enter the DRE.
3. The summary cascades:

       net revenue   = gross revenue - deductions
       gross margin  = net revenue - cost
       EBITDA        = gross margin - operating expense
       net income    = EBITDA + financial revenue - financial expense

   Percentages are taken over net revenue and are 0 when it is 0.

An entry whose account cannot be resolved is still counted, as operating
revenue (RECEITA_BRUTA / NAO_CLASSIFICADO) or operating expense
(DESPESAS_OPERACIONAIS / NAO_CLASSIFICADO), and its code is listed in
``unresolved_accounts``; every ``calculate_dre`` call that returns such a
statement issues a ``ReferenceIntegrityWarning``.
Statements are cached for a short time, keyed by period and branch.
"""

from __future__ import annotations

import logging
import warnings
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .benchmarks import (
    EBITDA_THRESHOLDS,
    GROSS_MARGIN_THRESHOLDS,
    NET_MARGIN_THRESHOLDS,
    BenchmarkRange,
    KPIMetric,
    classify_by_thresholds,
)
from .cache import NS_DRE, Cache
from .errors import ReferenceIntegrityWarning
from .models import Account, AccountType, EntryStatus, EntryType, LedgerEntry
from .money import calculate_percentage, round_money
from .periods import Period
from .reference import ReferenceDataResolver
from .stores import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DRE groups
# ---------------------------------------------------------------------------

GROUP_GROSS_REVENUE = "RECEITA_BRUTA"
GROUP_DEDUCTIONS = "DEDUCOES"
GROUP_COSTS = "CUSTOS"
GROUP_OPERATING_EXPENSES = "DESPESAS_OPERACIONAIS"
GROUP_FINANCIAL_RESULT = "RESULTADO_FINANCEIRO"

SUBGROUP_DISCOUNTS = "DESCONTOS"
SUBGROUP_UNCLASSIFIED = "NAO_CLASSIFICADO"


class ExpenseClass(str, Enum):
    COST = "COST"
    FINANCIAL = "FINANCIAL"
    OPERATING = "OPERATING"


def _mentions(text: Optional[str], *needles: str) -> bool:
    lowered = (text or "").lower()
    return any(needle in lowered for needle in needles)


def is_financial_account(account: Optional[Account]) -> bool:
    return account is not None and _mentions(account.dre_group, "financ")


def classify_expense(account: Optional[Account]) -> ExpenseClass:
    """Cost / financial / operating classification of a payable's account."""
    if account is None:
        return ExpenseClass.OPERATING
    if (
        account.cost_classification is not None
        or account.type is AccountType.COST
        or _mentions(account.dre_group, "custo", "cost")
    ):
        return ExpenseClass.COST
    if is_financial_account(account):
        return ExpenseClass.FINANCIAL
    return ExpenseClass.OPERATING


# ---------------------------------------------------------------------------
# Statement records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DRELine:
    group: str
    subgroup: Optional[str]
    value: float


@dataclass(frozen=True)
class DRESummary:
    gross_revenue: float = 0.0
    deductions: float = 0.0
    net_revenue: float = 0.0
    cost: float = 0.0
    gross_margin: float = 0.0
    gross_margin_pct: float = 0.0
    operating_expense: float = 0.0
    ebitda: float = 0.0
    ebitda_pct: float = 0.0
    financial_revenue: float = 0.0
    financial_expense: float = 0.0
    financial_result: float = 0.0
    net_income: float = 0.0
    net_margin: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class DREStatement:
    period: Period
    branch_id: Optional[str]
    lines: tuple[DRELine, ...]
    summary: DRESummary
    tiers: dict[str, BenchmarkRange] = field(default_factory=dict)
    unresolved_accounts: tuple[str, ...] = ()
    entry_count: int = 0


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


def dre_tiers(summary: DRESummary) -> dict[str, BenchmarkRange]:
    return {
        KPIMetric.MARGEM_BRUTA.value: classify_by_thresholds(
            summary.gross_margin_pct, GROSS_MARGIN_THRESHOLDS
        ),
        KPIMetric.EBITDA_PCT.value: classify_by_thresholds(
            summary.ebitda_pct, EBITDA_THRESHOLDS
        ),
        KPIMetric.MARGEM_LIQUIDA.value: classify_by_thresholds(
            summary.net_margin, NET_MARGIN_THRESHOLDS
        ),
    }


class DRECalculator:
    """Computes monthly DRE statements from the ledger."""

    def __init__(
        self,
        ledger: LedgerStore,
        resolver: ReferenceDataResolver,
        cache: Cache,
        ttl: float = 120,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.cache = cache
        self.ttl = ttl

    def realized_entries(
        self, period: Period, branch_id: Optional[str] = None
    ) -> list[LedgerEntry]:
        """REALIZED entries accrued in ``period``, ordered by id."""
        entries = self.ledger.list_entries(
            LedgerFilter(
                period_start=period.start,
                period_end=period.end,
                branch_id=branch_id,
                status=EntryStatus.REALIZED,
            )
        )
        return sorted(entries, key=lambda e: e.id)

    def calculate_dre(self, period: Period, branch_id: Optional[str] = None) -> DREStatement:
        key = f"{period.label}:{branch_id or '*'}"
        statement = self.cache.get_or_load(
            NS_DRE, key, lambda: self._compute(period, branch_id), self.ttl
        )
        # Warned on every call, cached or not.
        if statement.unresolved_accounts:
            warnings.warn(
                f"Contas gerenciais não encontradas: {', '.join(statement.unresolved_accounts)}",
                ReferenceIntegrityWarning,
                stacklevel=2,
            )
        return statement

    def calculate_multi_branch_dre(
        self, period: Period, include_consolidated: bool = True
    ) -> list[DREStatement]:
        """Consolidated statement (optional) followed by one per active branch."""
        statements: list[DREStatement] = []
        if include_consolidated:
            statements.append(self.calculate_dre(period))
        for branch in self.resolver.active_branches():
            statements.append(self.calculate_dre(period, branch.id))
        return statements

    def validate_against_ledger(self, statement: DREStatement) -> bool:
        """
        Check the statement totals against the raw ledger of its scope.

        Expenses must add up to the net amount of the realized payables and
        revenue (gross + financial) to the revenue entries.
        """
        entries = self.realized_entries(statement.period, statement.branch_id)
        payables = round_money(sum(e.net_amount for e in entries if e.is_expense))
        revenue = 0.0
        for entry in entries:
            if not entry.is_revenue:
                continue
            account = self.resolver.resolve_account(entry.management_account)
            revenue += entry.net_amount if is_financial_account(account) else entry.gross_amount
        revenue = round_money(revenue)

        summary = statement.summary
        expenses = round_money(
            summary.cost + summary.operating_expense + summary.financial_expense
        )
        statement_revenue = round_money(summary.gross_revenue + summary.financial_revenue)
        consistent = expenses == payables and statement_revenue == revenue
        if not consistent:
            logger.warning(
                "DRE %s/%s does not match the ledger: expenses %.2f vs %.2f, "
                "revenue %.2f vs %.2f",
                statement.period.label,
                statement.branch_id or "*",
                expenses,
                payables,
                statement_revenue,
                revenue,
            )
        return consistent

    # -- internals ----------------------------------------------------------

    def _compute(self, period: Period, branch_id: Optional[str]) -> DREStatement:
        return self.build_statement(period, branch_id, self.realized_entries(period, branch_id))

    def build_statement(
        self,
        period: Period,
        branch_id: Optional[str],
        entries: list[LedgerEntry],
    ) -> DREStatement:
        """Compute a statement over an explicit entry selection (not cached)."""
        entries = sorted(entries, key=lambda e: e.id)
        gross_revenue = deductions = 0.0
        financial_revenue = financial_expense = 0.0
        cost = operating_expense = 0.0
        groups: dict[tuple[str, Optional[str]], float] = defaultdict(float)
        unresolved: set[str] = set()

        for entry in entries:
            if entry.type not in (EntryType.RECEIVABLE, EntryType.PAYABLE):
                continue
            account = self.resolver.resolve_account(entry.management_account)
            if account is None:
                unresolved.add(entry.management_account)

            if entry.is_revenue:
                if is_financial_account(account):
                    financial_revenue += entry.net_amount
                    groups[(account.dre_group, account.dre_subgroup)] += entry.net_amount
                    continue
                gross_revenue += entry.gross_amount
                deductions += entry.discount
                group = account.dre_group if account else GROUP_GROSS_REVENUE
                subgroup = account.dre_subgroup if account else SUBGROUP_UNCLASSIFIED
                groups[(group, subgroup)] += entry.gross_amount
                if entry.discount:
                    groups[(GROUP_DEDUCTIONS, SUBGROUP_DISCOUNTS)] += entry.discount
                continue

            expense_class = classify_expense(account)
            if expense_class is ExpenseClass.COST:
                cost += entry.net_amount
            elif expense_class is ExpenseClass.FINANCIAL:
                financial_expense += entry.net_amount
            else:
                operating_expense += entry.net_amount

            if account is None:
                groups[(GROUP_OPERATING_EXPENSES, SUBGROUP_UNCLASSIFIED)] += entry.net_amount
            else:
                groups[(account.dre_group, account.dre_subgroup)] += entry.net_amount

        if unresolved:
            logger.warning(
                "DRE %s/%s: %d unresolved account(s) counted as operating: %s",
                period.label,
                branch_id or "*",
                len(unresolved),
                ", ".join(sorted(unresolved)),
            )

        summary = summarize(
            gross_revenue=gross_revenue,
            deductions=deductions,
            cost=cost,
            operating_expense=operating_expense,
            financial_revenue=financial_revenue,
            financial_expense=financial_expense,
        )
        lines = tuple(
            DRELine(group=group, subgroup=subgroup, value=round_money(value))
            for (group, subgroup), value in sorted(
                groups.items(), key=lambda item: (item[0][0], item[0][1] or "")
            )
        )
        return DREStatement(
            period=period,
            branch_id=branch_id,
            lines=lines,
            summary=summary,
            tiers=dre_tiers(summary),
            unresolved_accounts=tuple(sorted(unresolved)),
            entry_count=len(entries),
        )


def summarize(
    *,
    gross_revenue: float,
    deductions: float,
    cost: float,
    operating_expense: float,
    financial_revenue: float = 0.0,
    financial_expense: float = 0.0,
) -> DRESummary:
    """Apply the DRE cascade to already classified totals."""
    gross_revenue = round_money(gross_revenue)
    deductions = round_money(deductions)
    cost = round_money(cost)
    operating_expense = round_money(operating_expense)
    financial_revenue = round_money(financial_revenue)
    financial_expense = round_money(financial_expense)

    net_revenue = round_money(gross_revenue - deductions)
    gross_margin = round_money(net_revenue - cost)
    ebitda = round_money(gross_margin - operating_expense)
    financial_result = round_money(financial_revenue - financial_expense)
    net_income = round_money(ebitda + financial_result)

    return DRESummary(
        gross_revenue=gross_revenue,
        deductions=deductions,
        net_revenue=net_revenue,
        cost=cost,
        gross_margin=gross_margin,
        gross_margin_pct=calculate_percentage(gross_margin, net_revenue),
        operating_expense=operating_expense,
        ebitda=ebitda,
        ebitda_pct=calculate_percentage(ebitda, net_revenue),
        financial_revenue=financial_revenue,
        financial_expense=financial_expense,
        financial_result=financial_result,
        net_income=net_income,
        net_margin=calculate_percentage(net_income, net_revenue),
    )
