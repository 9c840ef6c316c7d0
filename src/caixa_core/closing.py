# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Batch jobs: monthly closing and daily maintenance.

The monthly closing computes and persists the reports of one period:

    [1/4] DRE (consolidated and per active branch)
    [2/4] DFC (realized cash flow, plus the forecast when enabled)
    [3/4] KPIs
    [4/4] committee report

The daily job reloads the caches and, when the feature is enabled, runs
the automatic reconciliation with the configured confidence threshold.

Both jobs check an `ExecutionBudget` after every step and stop with
`BudgetExceededError` once the wall-clock budget is spent. Completed steps
are not rolled back; each of them is idempotent, so the job can simply be
run again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from .budget import ExecutionBudget
from .cache import Cache
from .cashflow import CashflowCalculator, ForecastOptions
from .config import FeatureFlags
from .dre import DRECalculator
from .errors import BatchResult
from .kpi import KPIEngine
from .periods import Period
from .reconciliation import ReconciliationMatcher
from .reference import ReferenceDataResolver
from .reports import CommitteeReport, ReportBuilder, ReportWriter

logger = logging.getLogger(__name__)


@dataclass
class ClosingResult:
    period: Period
    steps: list[str] = field(default_factory=list)
    rows_written: int = 0
    committee: Optional[CommitteeReport] = None


@dataclass
class DailyJobResult:
    steps: list[str] = field(default_factory=list)
    reconciliation: Optional[BatchResult] = None


def closing_period(today: date) -> Period:
    """The period processed by a closing run on ``today``: the previous month."""
    return Period.from_date(today).previous()


class BatchJobs:
    def __init__(
        self,
        resolver: ReferenceDataResolver,
        cache: Cache,
        dre: DRECalculator,
        cashflow: CashflowCalculator,
        kpi: KPIEngine,
        reports: ReportBuilder,
        writer: ReportWriter,
        matcher: ReconciliationMatcher,
        features: FeatureFlags = FeatureFlags(),
        max_execution_seconds: float = 330.0,
    ):
        self.resolver = resolver
        self.cache = cache
        self.dre = dre
        self.cashflow = cashflow
        self.kpi = kpi
        self.reports = reports
        self.writer = writer
        self.matcher = matcher
        self.features = features
        self.max_execution_seconds = max_execution_seconds

    def _budget(self, budget: Optional[ExecutionBudget]) -> ExecutionBudget:
        return budget or ExecutionBudget(self.max_execution_seconds)

    def monthly_closing(
        self, period: Period, budget: Optional[ExecutionBudget] = None
    ) -> ClosingResult:
        """
        Compute and persist every report of ``period``.

        Raises
        ------
        BudgetExceededError
            When the budget is spent; ``last_completed_step`` names the
            last step that finished.
        """
        budget = self._budget(budget)
        result = ClosingResult(period=period)
        logger.info("=== Monthly closing %s ===", period.label)

        logger.info("[1/4] Computing DRE...")
        statements = self.dre.calculate_multi_branch_dre(period)
        for statement in statements:
            result.rows_written += self.writer.write_dre(statement)
        logger.info("  -> EBITDA = R$ %.2f", statements[0].summary.ebitda)
        result.steps.append("DRE")
        budget.check("DRE")

        logger.info("[2/4] Computing DFC...")
        realized = self.cashflow.calculate_realized_cashflow(period)
        result.rows_written += self.writer.write_realized_cashflow(period, realized)
        if self.features.dfc_projection:
            forecast = self.cashflow.calculate_forecast_cashflow(
                period.next(), ForecastOptions(horizon_months=3)
            )
            result.rows_written += self.writer.write_forecast_cashflow(period, forecast)
        logger.info("  -> %d cash movement(s)", len(realized))
        result.steps.append("DFC")
        budget.check("DFC")

        logger.info("[3/4] Computing KPIs...")
        kpis = self.kpi.calculate_kpis(period)
        result.rows_written += self.writer.write_kpis(period, kpis)
        for branch in self.resolver.active_branches():
            result.rows_written += self.writer.write_kpis(
                period, self.kpi.calculate_kpis(period, branch.id), branch.id
            )
        logger.info("  -> %d KPI(s)", len(kpis))
        result.steps.append("KPIs")
        budget.check("KPIs")

        logger.info("[4/4] Building committee report...")
        result.committee = self.reports.generate_committee_report(period)
        result.steps.append("Relatórios")
        budget.check("Relatórios")

        logger.info(
            "=== Monthly closing %s done in %.1fs (%d rows) ===",
            period.label,
            budget.elapsed,
            result.rows_written,
        )
        return result

    def daily_job(self, budget: Optional[ExecutionBudget] = None) -> DailyJobResult:
        budget = self._budget(budget)
        result = DailyJobResult()
        logger.info("=== Daily job ===")

        logger.info("[1/2] Reloading caches...")
        self.resolver.invalidate()
        self.cache.invalidate_reports()
        self.resolver.accounts()
        self.resolver.branches()
        result.steps.append("cache")
        budget.check("cache")

        if self.features.auto_reconciliation:
            logger.info("[2/2] Running automatic reconciliation...")
            result.reconciliation = self.matcher.auto_reconcile(budget=budget)
            logger.info("  -> %d reconciliation(s)", result.reconciliation.succeeded)
            result.steps.append("conciliação")
            budget.check("conciliação")
        else:
            logger.info("[2/2] Automatic reconciliation disabled")

        logger.info("=== Daily job done in %.1fs ===", budget.elapsed)
        return result
