# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Report tables, persistence and multi-period views.

This module turns the outputs of the calculators into pandas DataFrames
and persists them in the ``rpt_*`` tables of the database.

Overview
--------
1. Tables
   ``dre_to_dataframe``, ``dre_summary_to_dataframe``,
   ``cashflow_to_dataframe``, ``dfc_report_to_dataframe`` and
   ``kpis_to_dataframe`` produce one DataFrame per report with stable
   column names. They are used by the CLI, by CSV exports and by
   `ReportWriter`.

2. Persistence
   `ReportWriter` writes one (period, branch, channel) key of a report
   table at a time. Each write deletes the previous rows of the key and
   inserts the new ones in one transaction, so running the monthly closing
   twice leaves a single copy of each report.

3. Business reports
   `ReportBuilder` assembles the revenue report (gross revenue total, per
   branch, per channel, variation against the previous month) and the
   committee report (revenue, consolidated and per-branch DRE, DFC and
   KPIs of one period).

4. Multi-period view
   ``ReportBuilder.compute_multi_period`` computes the DRE summary and the
   KPIs of several periods and concatenates them into long-format
   DataFrames carrying a ``period_label`` column, ready for time-series
   display.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from . import db
from .cashflow import CashflowCalculator, DFCReport
from .db import DatabaseConfig
from .dre import DRECalculator, DREStatement, is_financial_account
from .kpi import CalculatedKPI, KPIEngine
from .models import CashflowLine, EntryStatus, EntryType
from .money import calculate_percentage, round_money
from .periods import Period
from .stores import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)

DRE_COLUMNS = ["dre_group", "dre_subgroup", "value"]
SUMMARY_COLUMNS = ["metric", "value"]
CASHFLOW_COLUMNS = [
    "date",
    "direction",
    "category",
    "description",
    "value",
    "bank_account",
    "entry_id",
]
DFC_COLUMNS = ["category", "inflow", "outflow", "net"]
KPI_COLUMNS = ["metric", "value", "tier", "unit"]


# ---------------------------------------------------------------------------
# DataFrames
# ---------------------------------------------------------------------------


def dre_to_dataframe(statement: DREStatement) -> pd.DataFrame:
    """One row per DRE group / subgroup."""
    rows = [
        {"dre_group": line.group, "dre_subgroup": line.subgroup or "", "value": line.value}
        for line in statement.lines
    ]
    return pd.DataFrame(rows, columns=DRE_COLUMNS)


def dre_summary_to_dataframe(statement: DREStatement) -> pd.DataFrame:
    rows = [{"metric": name, "value": value} for name, value in statement.summary.as_dict().items()]
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def cashflow_to_dataframe(lines: Iterable[CashflowLine]) -> pd.DataFrame:
    rows = [
        {
            "date": line.date.isoformat(),
            "direction": line.direction.value,
            "category": line.category.value,
            "description": line.description,
            "value": line.value,
            "bank_account": line.bank_account or "",
            "entry_id": line.entry_id or "",
        }
        for line in lines
    ]
    return pd.DataFrame(rows, columns=CASHFLOW_COLUMNS)


def dfc_report_to_dataframe(report: DFCReport) -> pd.DataFrame:
    """
    DFC by category, framed by the opening and closing balances.

    The first row carries the opening balance in ``net``, the last one the
    closing balance.
    """
    rows = [
        {"category": "SALDO_INICIAL", "inflow": 0.0, "outflow": 0.0, "net": report.opening_balance}
    ]
    for category, flows in report.flows.items():
        rows.append(
            {
                "category": category.value,
                "inflow": flows.inflow,
                "outflow": flows.outflow,
                "net": flows.net,
            }
        )
    rows.append(
        {"category": "SALDO_FINAL", "inflow": 0.0, "outflow": 0.0, "net": report.closing_balance}
    )
    return pd.DataFrame(rows, columns=DFC_COLUMNS)


def kpis_to_dataframe(kpis: Iterable[CalculatedKPI]) -> pd.DataFrame:
    rows = [
        {
            "metric": kpi.metric.value,
            "value": kpi.value,
            "tier": kpi.range.value if kpi.range else "",
            "unit": kpi.unit.value,
        }
        for kpi in kpis
    ]
    return pd.DataFrame(rows, columns=KPI_COLUMNS)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class ReportWriter:
    """Idempotent writer of the ``rpt_*`` tables."""

    def __init__(self, cfg: DatabaseConfig):
        self.cfg = cfg

    def _write(
        self,
        table: str,
        period: Period,
        df: pd.DataFrame,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> int:
        count = db.replace_report_rows(
            self.cfg,
            table,
            period=period.label,
            branch=branch_id,
            channel=channel_id,
            rows=df.to_dict(orient="records"),
        )
        logger.debug(
            "%s %s/%s/%s: %d row(s)",
            table,
            period.label,
            branch_id or "*",
            channel_id or "*",
            count,
        )
        return count

    def write_dre(self, statement: DREStatement) -> int:
        """Persist the DRE lines and the summary of a statement."""
        count = self._write(
            "rpt_dre_monthly", statement.period, dre_to_dataframe(statement), statement.branch_id
        )
        count += self._write(
            "rpt_dre_summary",
            statement.period,
            dre_summary_to_dataframe(statement),
            statement.branch_id,
        )
        return count

    def write_realized_cashflow(
        self, period: Period, lines: Iterable[CashflowLine], branch_id: Optional[str] = None
    ) -> int:
        return self._write(
            "rpt_cashflow_realized", period, cashflow_to_dataframe(lines), branch_id
        )

    def write_forecast_cashflow(
        self, period: Period, lines: Iterable[CashflowLine], branch_id: Optional[str] = None
    ) -> int:
        df = cashflow_to_dataframe(lines).drop(columns=["bank_account"])
        return self._write("rpt_cashflow_forecast", period, df, branch_id)

    def write_kpis(
        self,
        period: Period,
        kpis: Iterable[CalculatedKPI],
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> int:
        return self._write(
            "rpt_kpi_summary", period, kpis_to_dataframe(kpis), branch_id, channel_id
        )

    def read(
        self,
        table: str,
        period: Optional[Period] = None,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> pd.DataFrame:
        return db.load_report_rows(
            self.cfg,
            table,
            period=period.label if period else None,
            branch=branch_id,
            channel=channel_id,
        )


# ---------------------------------------------------------------------------
# Business reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RevenueReport:
    """Gross revenue of a period with its breakdown and monthly variation."""

    period: Period
    gross_revenue: float
    by_branch: dict[str, float] = field(default_factory=dict)
    by_channel: dict[str, float] = field(default_factory=dict)
    previous_gross_revenue: float = 0.0
    variation: float = 0.0
    variation_pct: float = 0.0


@dataclass(frozen=True)
class CommitteeReport:
    period: Period
    revenue: RevenueReport
    dre: tuple[DREStatement, ...]
    dfc: DFCReport
    kpis: tuple[CalculatedKPI, ...]


@dataclass(frozen=True)
class MultiPeriodReport:
    """
    Long-format results over several periods.

    dre_summary:
        Columns period_label, metric, value.
    kpis:
        Columns period_label, metric, value, tier, unit.
    cashflow:
        Columns period_label, category, inflow, outflow, net (DFC by
        category including opening and closing balances).
    """

    dre_summary: pd.DataFrame
    kpis: pd.DataFrame
    cashflow: pd.DataFrame


class ReportBuilder:
    def __init__(
        self,
        ledger: LedgerStore,
        dre: DRECalculator,
        cashflow: CashflowCalculator,
        kpi: KPIEngine,
    ):
        self.ledger = ledger
        self.dre = dre
        self.cashflow = cashflow
        self.kpi = kpi

    def _gross_revenue_entries(self, period: Period):
        receivables = self.ledger.list_entries(
            LedgerFilter(
                period_start=period.start,
                period_end=period.end,
                type=EntryType.RECEIVABLE,
                status=EntryStatus.REALIZED,
            )
        )
        # Financial revenue is not sales revenue.
        return [
            e
            for e in receivables
            if not is_financial_account(self.dre.resolver.resolve_account(e.management_account))
        ]

    def generate_revenue_report(self, period: Period) -> RevenueReport:
        """
        Gross revenue of the REALIZED operating receivables accrued in ``period``.

        Entries without a channel only count in the branch breakdown.
        """
        by_branch: dict[str, float] = defaultdict(float)
        by_channel: dict[str, float] = defaultdict(float)
        total = 0.0
        for entry in self._gross_revenue_entries(period):
            total += entry.gross_amount
            by_branch[entry.branch_id] += entry.gross_amount
            if entry.channel_id:
                by_channel[entry.channel_id] += entry.gross_amount

        previous = round_money(
            sum(e.gross_amount for e in self._gross_revenue_entries(period.previous()))
        )
        total = round_money(total)
        variation = round_money(total - previous)
        return RevenueReport(
            period=period,
            gross_revenue=total,
            by_branch={k: round_money(v) for k, v in sorted(by_branch.items())},
            by_channel={k: round_money(v) for k, v in sorted(by_channel.items())},
            previous_gross_revenue=previous,
            variation=variation,
            variation_pct=calculate_percentage(variation, previous),
        )

    def generate_committee_report(self, period: Period) -> CommitteeReport:
        return CommitteeReport(
            period=period,
            revenue=self.generate_revenue_report(period),
            dre=tuple(self.dre.calculate_multi_branch_dre(period)),
            dfc=self.cashflow.generate_dfc_report(period),
            kpis=tuple(self.kpi.calculate_kpis(period)),
        )

    def compute_multi_period(
        self, periods: list[Period], branch_id: Optional[str] = None
    ) -> MultiPeriodReport:
        """Compute the DRE summary, KPIs and DFC of each period in one pass."""
        summaries: list[pd.DataFrame] = []
        kpi_frames: list[pd.DataFrame] = []
        dfc_frames: list[pd.DataFrame] = []

        for period in periods:
            statement = self.dre.calculate_dre(period, branch_id)
            summary_df = dre_summary_to_dataframe(statement)
            summary_df.insert(0, "period_label", period.label)
            summaries.append(summary_df)

            kpi_df = kpis_to_dataframe(self.kpi.calculate_kpis(period, branch_id))
            kpi_df.insert(0, "period_label", period.label)
            kpi_frames.append(kpi_df)

            dfc_df = dfc_report_to_dataframe(self.cashflow.generate_dfc_report(period))
            dfc_df.insert(0, "period_label", period.label)
            dfc_frames.append(dfc_df)

        def concat(frames: list[pd.DataFrame], columns: list[str]) -> pd.DataFrame:
            if not frames:
                return pd.DataFrame(columns=["period_label", *columns])
            return pd.concat(frames, ignore_index=True)

        return MultiPeriodReport(
            dre_summary=concat(summaries, SUMMARY_COLUMNS),
            kpis=concat(kpi_frames, KPI_COLUMNS),
            cashflow=concat(dfc_frames, DFC_COLUMNS),
        )
