# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
KPI aggregation engine.

This module turns the ledger and the DRE into indicators:

1. Benchmarked KPIs (`calculate_kpis`)
   ------------------------------------
   Average discount, CMA / CMV, gross / EBITDA / net margins, fixed and
   variable expense shares, cash balance and days of cash. Each value is
   classified into a benchmark tier when a benchmark is configured for its
   metric (see benchmarks.py).

2. Monthly management indicators (`get_kpis_mensal`)
   --------------------------------------------------
   ROI, current liquidity, cash balance, burn rate and runway, revenue
   growth, average ticket, delinquency, days-to-collect / days-to-pay,
   customer acquisition cost, operating-expense ratio and break-even
   point.

   Day counts are signed: a negative days-to-collect means customers paid
   before the due date on average. A zero burn rate gives an infinite
   runway.

3. Dashboard and trends (`get_dashboard_data`, `get_kpi_trend`).

Every figure is computed over REALIZED entries accrued in the period,
optionally restricted to a branch and a sales channel, except the cash
figures which follow payment dates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

import pandas as pd

from .benchmarks import (
    BenchmarkConfig,
    BenchmarkRange,
    KPIMetric,
    MetricUnit,
    get_benchmark_range,
)
from .cache import NS_KPI, Cache
from .cashflow import entry_direction, signed_cash
from .config import KPISettings
from .dre import DRECalculator, DREStatement
from .models import (
    CashflowDirection,
    CostClassification,
    EntryStatus,
    EntryType,
    ExpenseNature,
    LedgerEntry,
)
from .money import calculate_percentage, round_money, safe_ratio
from .periods import Period, diff_days
from .reference import ReferenceDataResolver
from .stores import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalculatedKPI:
    metric: KPIMetric
    value: float
    range: Optional[BenchmarkRange]
    unit: MetricUnit


@dataclass(frozen=True)
class MonthlyKPIs:
    """Management indicators of one month (and optional branch / channel)."""

    period: Period
    branch_id: Optional[str]
    channel_id: Optional[str]
    gross_revenue: float
    net_revenue: float
    net_income: float
    roi: float
    current_liquidity: float
    cash_balance: float
    burn_rate: float
    runway_months: float
    revenue_growth_pct: float
    average_ticket: float
    delinquency_rate: float
    avg_days_to_collect: float
    avg_days_to_pay: float
    cac: float
    opex_ratio: float
    break_even: float

    @property
    def runway_is_infinite(self) -> bool:
        return math.isinf(self.runway_months)


@dataclass(frozen=True)
class DashboardData:
    period: Period
    branch_id: Optional[str]
    gross_revenue: float
    net_revenue: float
    ebitda: float
    ebitda_pct: float
    cash_balance: float
    kpis: tuple[CalculatedKPI, ...] = ()
    top_expenses: tuple[tuple[str, float], ...] = field(default_factory=tuple)


def _average_days(pairs: list[tuple[date, date]]) -> float:
    """Mean signed day count from due date to payment date."""
    if not pairs:
        return 0.0
    return round_money(sum(diff_days(due, paid) for due, paid in pairs) / len(pairs))


class KPIEngine:
    def __init__(
        self,
        ledger: LedgerStore,
        dre: DRECalculator,
        resolver: ReferenceDataResolver,
        cache: Cache,
        benchmarks: Optional[dict[str, BenchmarkConfig]] = None,
        settings: KPISettings = KPISettings(),
        ttl: float = 120,
    ):
        self.ledger = ledger
        self.dre = dre
        self.resolver = resolver
        self.cache = cache
        self.benchmarks = benchmarks or {}
        self.settings = settings
        self.ttl = ttl

    # -- selection helpers --------------------------------------------------

    def _entries(
        self,
        *,
        branch_id: Optional[str],
        channel_id: Optional[str],
        status: Optional[EntryStatus] = None,
        period: Optional[Period] = None,
    ) -> list[LedgerEntry]:
        entries = self.ledger.list_entries(
            LedgerFilter(
                period_start=period.start if period else None,
                period_end=period.end if period else None,
                branch_id=branch_id,
                channel_id=channel_id,
                status=status,
            )
        )
        return sorted(entries, key=lambda e: e.id)

    def _statement(
        self, period: Period, branch_id: Optional[str], channel_id: Optional[str]
    ) -> DREStatement:
        if channel_id is None:
            return self.dre.calculate_dre(period, branch_id)
        entries = self._entries(
            branch_id=branch_id,
            channel_id=channel_id,
            status=EntryStatus.REALIZED,
            period=period,
        )
        return self.dre.build_statement(period, branch_id, entries)

    def _kpi(self, metric: KPIMetric, value: float, unit: MetricUnit) -> CalculatedKPI:
        benchmark = self.benchmarks.get(metric.value)
        tier = get_benchmark_range(value, benchmark) if benchmark else None
        return CalculatedKPI(metric=metric, value=value, range=tier, unit=unit)

    def _cash_balance(
        self, until: date, branch_id: Optional[str], channel_id: Optional[str]
    ) -> float:
        realized = self._entries(
            branch_id=branch_id, channel_id=channel_id, status=EntryStatus.REALIZED
        )
        return round_money(
            sum(
                signed_cash(e)
                for e in realized
                if e.payment_date is not None and e.payment_date <= until
            )
        )

    def _monthly_outflows(
        self, periods: list[Period], branch_id: Optional[str], channel_id: Optional[str]
    ) -> dict[str, float]:
        realized = self._entries(
            branch_id=branch_id, channel_id=channel_id, status=EntryStatus.REALIZED
        )
        outflows = {p.label: 0.0 for p in periods}
        for entry in realized:
            if entry.payment_date is None or entry_direction(entry) is not CashflowDirection.OUT:
                continue
            label = Period.from_date(entry.payment_date).label
            if label in outflows:
                outflows[label] += entry.net_amount
        return outflows

    # -- benchmarked KPIs ---------------------------------------------------

    def calculate_kpis(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> list[CalculatedKPI]:
        key = f"kpis:{period.label}:{branch_id or '*'}:{channel_id or '*'}"
        return list(
            self.cache.get_or_load(
                NS_KPI,
                key,
                lambda: tuple(self._calculate_kpis(period, branch_id, channel_id)),
                self.ttl,
            )
        )

    def _calculate_kpis(
        self, period: Period, branch_id: Optional[str], channel_id: Optional[str]
    ) -> list[CalculatedKPI]:
        entries = self._entries(
            branch_id=branch_id,
            channel_id=channel_id,
            status=EntryStatus.REALIZED,
            period=period,
        )
        summary = self._statement(period, branch_id, channel_id).summary

        total_gross = sum(e.gross_amount for e in entries)
        total_discount = sum(e.discount for e in entries)

        cma = cmv = fixed = variable = 0.0
        for entry in entries:
            if not entry.is_expense:
                continue
            account = self.resolver.resolve_account(entry.management_account)
            if account is None:
                continue
            if account.cost_classification is CostClassification.CMA:
                cma += entry.net_amount
            elif account.cost_classification is CostClassification.CMV:
                cmv += entry.net_amount
            if account.fixed_variable is ExpenseNature.FIXED:
                fixed += entry.net_amount
            elif account.fixed_variable is ExpenseNature.VARIABLE:
                variable += entry.net_amount

        cash = self._cash_balance(period.end, branch_id, channel_id)
        outflow = self._monthly_outflows([period], branch_id, channel_id)[period.label]
        daily_outflow = outflow / period.end.day
        days_of_cash = round_money(max(cash, 0.0) / daily_outflow) if daily_outflow else 0.0

        return [
            self._kpi(
                KPIMetric.DESCONTO_MEDIO,
                calculate_percentage(total_discount, total_gross),
                MetricUnit.PERCENT,
            ),
            self._kpi(KPIMetric.CMA, round_money(cma), MetricUnit.CURRENCY_PER_UNIT),
            self._kpi(KPIMetric.CMV, round_money(cmv), MetricUnit.CURRENCY_PER_UNIT),
            self._kpi(KPIMetric.MARGEM_BRUTA, summary.gross_margin_pct, MetricUnit.PERCENT),
            self._kpi(KPIMetric.MARGEM_LIQUIDA, summary.net_margin, MetricUnit.PERCENT),
            self._kpi(KPIMetric.EBITDA_PCT, summary.ebitda_pct, MetricUnit.PERCENT),
            self._kpi(
                KPIMetric.DESPESAS_FIXAS_PCT,
                calculate_percentage(fixed, summary.net_revenue),
                MetricUnit.PERCENT,
            ),
            self._kpi(
                KPIMetric.DESPESAS_VAR_PCT,
                calculate_percentage(variable, summary.net_revenue),
                MetricUnit.PERCENT,
            ),
            self._kpi(KPIMetric.SALDO_CAIXA, cash, MetricUnit.CURRENCY),
            self._kpi(KPIMetric.DIAS_CAIXA, days_of_cash, MetricUnit.DAYS),
        ]

    # -- monthly management indicators --------------------------------------

    def get_kpis_mensal(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> MonthlyKPIs:
        """
        Monthly indicators for ``period``.

        ``as_of`` is the date used to decide which receivables are overdue;
        it defaults to the earlier of today and the period end.
        """
        today = datetime.today().date()
        reference_date = as_of or min(today, period.end)

        statement = self._statement(period, branch_id, channel_id)
        summary = statement.summary
        previous = self._statement(period.previous(), branch_id, channel_id).summary

        realized = self._entries(
            branch_id=branch_id,
            channel_id=channel_id,
            status=EntryStatus.REALIZED,
            period=period,
        )
        receivables = [e for e in realized if e.type is EntryType.RECEIVABLE]
        payables = [e for e in realized if e.type is EntryType.PAYABLE]

        # Cash and burn
        cash_balance = self._cash_balance(period.end, branch_id, channel_id)
        months = Period.range(period.shift(1 - self.settings.burn_rate_months), period)
        outflows = [v for v in self._monthly_outflows(months, branch_id, channel_id).values() if v > 0]
        burn_rate = round_money(sum(outflows) / len(outflows)) if outflows else 0.0
        if burn_rate > 0:
            runway = round_money(max(cash_balance, 0.0) / burn_rate)
        else:
            runway = math.inf

        # Open items
        open_items = self._entries(
            branch_id=branch_id, channel_id=channel_id, status=EntryStatus.FORECAST
        )
        open_receivables = sum(e.net_amount for e in open_items if e.type is EntryType.RECEIVABLE)
        open_payables = sum(e.net_amount for e in open_items if e.type is EntryType.PAYABLE)
        current_liquidity = round_money(
            safe_ratio(cash_balance + open_receivables, open_payables)
        )

        # Delinquency over receivables due in the period
        due_receivables = [
            e
            for e in self._entries(branch_id=branch_id, channel_id=channel_id)
            if e.type is EntryType.RECEIVABLE
            and e.status is not EntryStatus.CANCELED
            and period.contains(e.due_date)
        ]
        overdue = sum(
            e.net_amount
            for e in due_receivables
            if e.status is EntryStatus.FORECAST and e.due_date < reference_date
        )
        delinquency_rate = calculate_percentage(
            overdue, sum(e.net_amount for e in due_receivables)
        )

        # Marketing spend per customer
        marketing = 0.0
        for entry in payables:
            account = self.resolver.resolve_account(entry.management_account)
            if account is not None and account.dre_subgroup == self.settings.marketing_subgroup:
                marketing += entry.net_amount
        cac = round_money(safe_ratio(marketing, len(receivables)))

        total_expenses = summary.cost + summary.operating_expense + summary.financial_expense
        margin_ratio = safe_ratio(summary.gross_margin, summary.net_revenue)
        break_even = round_money(safe_ratio(summary.operating_expense, margin_ratio))

        return MonthlyKPIs(
            period=period,
            branch_id=branch_id,
            channel_id=channel_id,
            gross_revenue=summary.gross_revenue,
            net_revenue=summary.net_revenue,
            net_income=summary.net_income,
            roi=calculate_percentage(summary.net_income, total_expenses),
            current_liquidity=current_liquidity,
            cash_balance=cash_balance,
            burn_rate=burn_rate,
            runway_months=runway,
            revenue_growth_pct=calculate_percentage(
                summary.gross_revenue - previous.gross_revenue, previous.gross_revenue
            ),
            average_ticket=round_money(safe_ratio(summary.gross_revenue, len(receivables))),
            delinquency_rate=delinquency_rate,
            avg_days_to_collect=_average_days(
                [(e.due_date, e.payment_date) for e in receivables if e.due_date]
            ),
            avg_days_to_pay=_average_days(
                [(e.due_date, e.payment_date) for e in payables if e.due_date]
            ),
            cac=cac,
            opex_ratio=calculate_percentage(summary.operating_expense, summary.net_revenue),
            break_even=break_even,
        )

    # -- dashboard ----------------------------------------------------------

    def top_expenses(
        self, period: Period, branch_id: Optional[str] = None, limit: Optional[int] = None
    ) -> list[tuple[str, float]]:
        """Largest realized expenses of the period grouped by description."""
        payables = [
            e
            for e in self._entries(
                branch_id=branch_id,
                channel_id=None,
                status=EntryStatus.REALIZED,
                period=period,
            )
            if e.is_expense
        ]
        if not payables:
            return []
        df = pd.DataFrame(
            {
                "description": [e.description for e in payables],
                "value": [e.net_amount for e in payables],
            }
        )
        grouped = (
            df.groupby("description", as_index=False)["value"]
            .sum()
            .sort_values(["value", "description"], ascending=[False, True])
            .head(limit or self.settings.top_expenses)
        )
        return [(str(row.description), round_money(row.value)) for row in grouped.itertuples()]

    def get_dashboard_data(self, period: Period, branch_id: Optional[str] = None) -> DashboardData:
        summary = self.dre.calculate_dre(period, branch_id).summary
        return DashboardData(
            period=period,
            branch_id=branch_id,
            gross_revenue=summary.gross_revenue,
            net_revenue=summary.net_revenue,
            ebitda=summary.ebitda,
            ebitda_pct=summary.ebitda_pct,
            cash_balance=self._cash_balance(period.end, branch_id, None),
            kpis=tuple(self.calculate_kpis(period, branch_id)),
            top_expenses=tuple(self.top_expenses(period, branch_id)),
        )

    def get_kpi_trend(
        self,
        metric: KPIMetric,
        periods: list[Period],
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> list[tuple[Period, float]]:
        trend: list[tuple[Period, float]] = []
        for period in periods:
            for kpi in self.calculate_kpis(period, branch_id, channel_id):
                if kpi.metric is metric:
                    trend.append((period, kpi.value))
                    break
        return trend
