# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Cash-flow (DFC) calculator.

Two views of cash are derived from the ledger:

- realized cash flow: REALIZED entries, dated by their payment date,
- forecast cash flow: FORECAST entries, dated by their due date, over a
  horizon of whole months.

Direction follows the entry type (receivables are inflows, everything else
an outflow) and the category comes from the account's cash-flow group,
OPERATING when the account has none or is unknown. Realized lines of
reconciled entries carry the bank account of their statement line.

The module also builds the monthly DFC report (opening balance, inflows
and outflows per category, closing balance) and a running balance
projection as a pandas DataFrame.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

import pandas as pd

from .cache import NS_DFC, Cache
from .models import (
    CashflowCategory,
    CashflowDirection,
    CashflowLine,
    EntryStatus,
    EntryType,
    LedgerEntry,
)
from .money import round_money
from .periods import Period, add_days
from .reference import ReferenceDataResolver
from .stores import BankStatementStore, LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastOptions:
    """
    horizon_months:
        Number of months projected, starting at the start period.
    include_forecast:
        When False no FORECAST entry is projected.
    opening_balance:
        Cash available at the start of the horizon.
    """

    horizon_months: int = 3
    include_forecast: bool = True
    opening_balance: float = 0.0


@dataclass(frozen=True)
class CategoryFlows:
    inflow: float = 0.0
    outflow: float = 0.0

    @property
    def net(self) -> float:
        return round_money(self.inflow - self.outflow)


@dataclass(frozen=True)
class DFCReport:
    period: Period
    opening_balance: float
    flows: dict[CashflowCategory, CategoryFlows] = field(default_factory=dict)
    closing_balance: float = 0.0

    @property
    def variation(self) -> float:
        return round_money(sum(f.net for f in self.flows.values()))

    def flow(self, category: CashflowCategory) -> CategoryFlows:
        return self.flows.get(category, CategoryFlows())


def entry_direction(entry: LedgerEntry) -> CashflowDirection:
    return CashflowDirection.IN if entry.type is EntryType.RECEIVABLE else CashflowDirection.OUT


def signed_cash(entry: LedgerEntry) -> float:
    return entry.net_amount if entry_direction(entry) is CashflowDirection.IN else -entry.net_amount


class CashflowCalculator:
    """Realized and forecast cash flow over the ledger."""

    def __init__(
        self,
        ledger: LedgerStore,
        resolver: ReferenceDataResolver,
        cache: Cache,
        statements: Optional[BankStatementStore] = None,
        ttl: float = 120,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.cache = cache
        self.statements = statements
        self.ttl = ttl

    # -- helpers ------------------------------------------------------------

    def _category(self, entry: LedgerEntry) -> CashflowCategory:
        account = self.resolver.resolve_account(entry.management_account)
        if account is None or account.cashflow_category is None:
            return CashflowCategory.OPERATING
        return account.cashflow_category

    def _bank_accounts(self) -> dict[str, str]:
        """Bank account of every reconciled statement line, by line id."""
        if self.statements is None:
            return {}
        return {
            line.id: line.bank_account
            for line in self.statements.list_statements(reconciled=True)
        }

    def _line(
        self,
        entry: LedgerEntry,
        when: date,
        projected: bool,
        bank_account: Optional[str] = None,
    ) -> CashflowLine:
        return CashflowLine(
            date=when,
            direction=entry_direction(entry),
            category=self._category(entry),
            description=entry.description,
            value=round_money(entry.net_amount),
            projected=projected,
            bank_account=bank_account,
            entry_id=entry.id,
        )

    def _entries(self, status: EntryStatus) -> list[LedgerEntry]:
        return self.ledger.list_entries(LedgerFilter(status=status))

    # -- realized -----------------------------------------------------------

    def calculate_realized_cashflow(self, period: Period) -> list[CashflowLine]:
        """Lines of the REALIZED entries paid during ``period``."""
        return list(
            self.cache.get_or_load(
                NS_DFC,
                f"realized:{period.label}",
                lambda: tuple(self._realized(period)),
                self.ttl,
            )
        )

    def _realized(self, period: Period) -> list[CashflowLine]:
        bank_accounts = self._bank_accounts()
        lines = [
            self._line(
                entry,
                entry.payment_date,
                projected=False,
                bank_account=bank_accounts.get(entry.bank_statement_id or ""),
            )
            for entry in self._entries(EntryStatus.REALIZED)
            if period.contains(entry.payment_date)
        ]
        return sorted(lines, key=lambda line: (line.date, line.entry_id or ""))

    # -- forecast -----------------------------------------------------------

    def calculate_forecast_cashflow(
        self, start_period: Period, options: ForecastOptions = ForecastOptions()
    ) -> list[CashflowLine]:
        """Lines of the FORECAST entries due within the horizon."""
        if not options.include_forecast:
            return []
        periods = Period.horizon(start_period, options.horizon_months)
        key = f"forecast:{start_period.label}:{options.horizon_months}"
        return list(
            self.cache.get_or_load(
                NS_DFC, key, lambda: tuple(self._forecast(periods)), self.ttl
            )
        )

    def _forecast(self, periods: list[Period]) -> list[CashflowLine]:
        start, end = periods[0].start, periods[-1].end
        lines = [
            self._line(entry, entry.due_date, projected=True)
            for entry in self._entries(EntryStatus.FORECAST)
            if entry.due_date is not None and start <= entry.due_date <= end
        ]
        return sorted(lines, key=lambda line: (line.date, line.entry_id or ""))

    def calculate_projected_balance(self, opening_balance: float, period: Period) -> float:
        """Opening balance plus the forecast flows of ``period``."""
        lines = self.calculate_forecast_cashflow(period, ForecastOptions(horizon_months=1))
        return round_money(opening_balance + sum(line.signed_value for line in lines))

    def project_monthly_balances(
        self, start_period: Period, options: ForecastOptions = ForecastOptions()
    ) -> pd.DataFrame:
        """
        Month-by-month running balance over the forecast horizon.

        Columns: period, inflow, outflow, net, closing_balance.
        """
        periods = Period.horizon(start_period, options.horizon_months)
        lines = self.calculate_forecast_cashflow(start_period, options)

        inflow: dict[str, float] = defaultdict(float)
        outflow: dict[str, float] = defaultdict(float)
        for line in lines:
            label = Period.from_date(line.date).label
            if line.direction is CashflowDirection.IN:
                inflow[label] += line.value
            else:
                outflow[label] += line.value

        df = pd.DataFrame(
            {
                "period": [p.label for p in periods],
                "inflow": [round_money(inflow[p.label]) for p in periods],
                "outflow": [round_money(outflow[p.label]) for p in periods],
            }
        )
        df["net"] = (df["inflow"] - df["outflow"]).round(2)
        df["closing_balance"] = (options.opening_balance + df["net"].cumsum()).round(2)
        return df

    def get_future_accounts_timeline(
        self, horizon_days: int = 90, today: Optional[date] = None
    ) -> list[LedgerEntry]:
        """FORECAST entries due between today and today + horizon, by due date."""
        start = today or datetime.today().date()
        end = add_days(start, horizon_days)
        entries = [
            entry
            for entry in self._entries(EntryStatus.FORECAST)
            if entry.due_date is not None and start <= entry.due_date <= end
        ]
        return sorted(entries, key=lambda e: (e.due_date, e.id))

    # -- DFC report ---------------------------------------------------------

    def calculate_opening_balance(self, period: Period) -> float:
        """Net cash of every REALIZED entry paid before the period starts."""
        total = sum(
            signed_cash(entry)
            for entry in self._entries(EntryStatus.REALIZED)
            if entry.payment_date is not None and entry.payment_date < period.start
        )
        return round_money(total)

    def generate_dfc_report(self, period: Period) -> DFCReport:
        opening = self.calculate_opening_balance(period)
        inflows: dict[CashflowCategory, float] = defaultdict(float)
        outflows: dict[CashflowCategory, float] = defaultdict(float)
        for line in self.calculate_realized_cashflow(period):
            if line.direction is CashflowDirection.IN:
                inflows[line.category] += line.value
            else:
                outflows[line.category] += line.value

        flows = {
            category: CategoryFlows(
                inflow=round_money(inflows[category]),
                outflow=round_money(outflows[category]),
            )
            for category in CashflowCategory
        }
        variation = sum(f.inflow - f.outflow for f in flows.values())
        report = DFCReport(
            period=period,
            opening_balance=opening,
            flows=flows,
            closing_balance=round_money(opening + variation),
        )
        logger.debug(
            "DFC %s: opening %.2f closing %.2f",
            period.label,
            report.opening_balance,
            report.closing_balance,
        )
        return report
