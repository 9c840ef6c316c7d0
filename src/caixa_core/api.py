# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
API boundary of Caixa Core.

`FinanceAPI` wires the stores, caches, calculators and services from an
`AppConfig` and exposes them to user-facing layers (CLI, a future web UI):

- mutations (ledger writes, imports, reconciliation, batch jobs) never
  raise; they return an `OperationResult` with a Portuguese message. The
  exception behind a failure is logged, never shown to the user,
- computations (DRE, DFC, KPIs, reports, suggestions) return their result
  or raise `ComputationError` with the original error chained.

Every call takes an optional `RequestContext`; its correlation id tags
the log lines of the call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional, TypeVar

import pandas as pd

from . import db
from .benchmarks import KPIMetric, load_benchmarks
from .cache import Cache, TTLCache
from .cashflow import CashflowCalculator, DFCReport, ForecastOptions
from .closing import BatchJobs
from .config import AppConfig
from .context import RequestContext
from .dre import DRECalculator, DREStatement
from .errors import CaixaError, ComputationError, OperationResult
from .io import read_bank_statements, read_ledger_entries
from .kpi import CalculatedKPI, DashboardData, KPIEngine, MonthlyKPIs
from .ledger import LedgerService
from .locking import LockProvider, ThreadLockProvider
from .models import (
    Account,
    Branch,
    CashflowLine,
    Channel,
    CostCenter,
    LedgerEntry,
    MatchSuggestion,
)
from .periods import Period
from .reconciliation import ReconciliationMatcher, ReconciliationSummary
from .reference import ReferenceDataResolver
from .reports import (
    CommitteeReport,
    MultiPeriodReport,
    ReportBuilder,
    ReportWriter,
    RevenueReport,
)
from .stores import SqliteBankStatementStore, SqliteLedgerStore, SqliteReferenceStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FinanceAPI:
    config: AppConfig
    cache: Cache
    lock: LockProvider
    resolver: ReferenceDataResolver
    ledger: LedgerService
    dre: DRECalculator
    cashflow: CashflowCalculator
    kpi: KPIEngine
    matcher: ReconciliationMatcher
    reports: ReportBuilder
    writer: ReportWriter
    jobs: BatchJobs

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        cache: Optional[Cache] = None,
        lock: Optional[LockProvider] = None,
    ) -> FinanceAPI:
        """Build every component over the SQLite database of ``config``."""
        cache = cache or TTLCache(default_ttl=config.cache.report_ttl)
        lock = lock or ThreadLockProvider(config.lock_timeout_seconds)
        report_ttl = config.cache.report_ttl

        ledger_store = SqliteLedgerStore(config.database)
        statement_store = SqliteBankStatementStore(config.database)
        reference_store = SqliteReferenceStore(config.database)

        resolver = ReferenceDataResolver(reference_store, cache, config.cache.reference_ttl)
        ledger = LedgerService(
            ledger_store,
            resolver,
            cache,
            lock,
            reference_store=reference_store,
            lock_timeout=config.lock_timeout_seconds,
        )
        dre = DRECalculator(ledger_store, resolver, cache, ttl=report_ttl)
        cashflow = CashflowCalculator(
            ledger_store, resolver, cache, statements=statement_store, ttl=report_ttl
        )
        kpi = KPIEngine(
            ledger_store,
            dre,
            resolver,
            cache,
            benchmarks=load_benchmarks(config.benchmarks_file),
            settings=config.kpi,
            ttl=report_ttl,
        )
        matcher = ReconciliationMatcher(
            ledger_store,
            statement_store,
            lock,
            cache,
            settings=config.reconciliation,
            lock_timeout=config.lock_timeout_seconds,
        )
        reports = ReportBuilder(ledger_store, dre, cashflow, kpi)
        writer = ReportWriter(config.database)
        jobs = BatchJobs(
            resolver,
            cache,
            dre,
            cashflow,
            kpi,
            reports,
            writer,
            matcher,
            features=config.features,
            max_execution_seconds=config.max_execution_seconds,
        )
        return cls(
            config=config,
            cache=cache,
            lock=lock,
            resolver=resolver,
            ledger=ledger,
            dre=dre,
            cashflow=cashflow,
            kpi=kpi,
            matcher=matcher,
            reports=reports,
            writer=writer,
            jobs=jobs,
        )

    # -- boundary helpers ---------------------------------------------------

    @staticmethod
    def _mutate(
        ctx: Optional[RequestContext],
        action: str,
        fn: Callable[[RequestContext], Any],
        success: Callable[[Any], str],
    ) -> OperationResult:
        ctx = ctx or RequestContext()
        try:
            data = fn(ctx)
        except (CaixaError, ValueError, FileNotFoundError) as exc:
            logger.warning("[%s] %s failed: %s", ctx.correlation_id, action, exc)
            return OperationResult.fail(str(exc))
        except Exception:  # noqa: BLE001
            logger.exception("[%s] %s failed", ctx.correlation_id, action)
            return OperationResult.fail(f"Erro inesperado ao {action}. Tente novamente.")
        logger.info("[%s] %s by %s", ctx.correlation_id, action, ctx.user)
        return OperationResult.ok(success(data), data)

    @staticmethod
    def _compute(ctx: Optional[RequestContext], what: str, fn: Callable[[], T]) -> T:
        ctx = ctx or RequestContext()
        try:
            return fn()
        except ComputationError:
            raise
        except Exception as exc:
            logger.exception("[%s] Failed to compute %s", ctx.correlation_id, what)
            raise ComputationError(what) from exc

    # -- ledger mutations ---------------------------------------------------

    def create_entry(
        self, entry: LedgerEntry, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "criar lançamento",
            lambda c: self.ledger.create_entry(entry, today=c.business_date()),
            lambda created: f"Lançamento {created.id} criado com sucesso",
        )

    def update_entry(
        self,
        entry_id: str,
        changes: Mapping[str, Any],
        ctx: Optional[RequestContext] = None,
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "atualizar lançamento",
            lambda c: self.ledger.update_entry(entry_id, changes, today=c.business_date()),
            lambda _: f"Lançamento {entry_id} atualizado com sucesso",
        )

    def cancel_entry(
        self, entry_id: str, reason: Optional[str] = None, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "cancelar lançamento",
            lambda c: self.ledger.cancel_entry(entry_id, reason),
            lambda _: f"Lançamento {entry_id} cancelado",
        )

    def mark_as_paid(
        self, entry_id: str, payment_date: date, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "registrar pagamento",
            lambda c: self.ledger.mark_as_paid(entry_id, payment_date, today=c.business_date()),
            lambda _: f"Pagamento do lançamento {entry_id} registrado",
        )

    def mark_as_received(
        self, entry_id: str, payment_date: date, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "registrar recebimento",
            lambda c: self.ledger.mark_as_received(
                entry_id, payment_date, today=c.business_date()
            ),
            lambda _: f"Recebimento do lançamento {entry_id} registrado",
        )

    def pay_entries(
        self,
        entry_ids: Iterable[str],
        payment_date: date,
        ctx: Optional[RequestContext] = None,
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "registrar pagamentos",
            lambda c: self.ledger.pay_entries(entry_ids, payment_date, today=c.business_date()),
            lambda r: f"{r.succeeded} de {r.processed} lançamento(s) pago(s)",
        )

    def import_entries(
        self, path: Path, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "importar lançamentos",
            lambda c: self.ledger.create_entries(
                read_ledger_entries(path), today=c.business_date()
            ),
            lambda r: f"{r.succeeded} de {r.processed} lançamento(s) importado(s)",
        )

    def lock_period(self, period: Period, ctx: Optional[RequestContext] = None) -> OperationResult:
        return self._mutate(
            ctx,
            "fechar período",
            lambda c: self.ledger.lock_period(period),
            lambda _: f"Período {period.label} fechado",
        )

    def unlock_period(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "reabrir período",
            lambda c: self.ledger.unlock_period(period),
            lambda _: f"Período {period.label} reaberto",
        )

    # -- master data --------------------------------------------------------

    def save_reference_data(
        self,
        *,
        accounts: Optional[Iterable[Account]] = None,
        branches: Optional[Iterable[Branch]] = None,
        channels: Optional[Iterable[Channel]] = None,
        cost_centers: Optional[Iterable[CostCenter]] = None,
        ctx: Optional[RequestContext] = None,
    ) -> OperationResult:
        """Replace the given master data tables and drop the reference cache."""

        def save(_: RequestContext) -> None:
            cfg = self.config.database
            if accounts is not None:
                db.save_accounts(cfg, accounts)
            if branches is not None:
                db.save_branches(cfg, branches)
            if channels is not None:
                db.save_channels(cfg, channels)
            if cost_centers is not None:
                db.save_cost_centers(cfg, cost_centers)
            self.resolver.invalidate()
            self.cache.invalidate_reports()

        return self._mutate(
            ctx, "salvar dados de referência", save, lambda _: "Dados de referência salvos"
        )

    # -- reconciliation -----------------------------------------------------

    def import_statements(
        self, path: Path, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "importar extrato",
            lambda c: self.matcher.import_statements(read_bank_statements(path)),
            lambda count: f"{count} linha(s) de extrato importada(s)",
        )

    def reconcile(
        self, bank_line_id: str, ledger_entry_id: str, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "conciliar",
            lambda c: self.matcher.reconcile(bank_line_id, ledger_entry_id),
            lambda _: f"Extrato {bank_line_id} conciliado com {ledger_entry_id}",
        )

    def unreconcile(
        self, bank_line_id: str, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "desfazer conciliação",
            lambda c: self.matcher.unreconcile(bank_line_id),
            lambda _: f"Conciliação do extrato {bank_line_id} desfeita",
        )

    def auto_reconcile(
        self, min_confidence: Optional[int] = None, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "conciliar automaticamente",
            lambda c: self.matcher.auto_reconcile(min_confidence),
            lambda r: f"{r.succeeded} conciliação(ões) realizada(s)",
        )

    def bulk_reconcile(
        self, window_days: Optional[int] = None, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "conciliar em lote",
            lambda c: self.matcher.bulk_reconcile(window_days),
            lambda r: f"{r.succeeded} conciliação(ões) realizada(s)",
        )

    def suggest_matches(
        self, bank_line_id: str, ctx: Optional[RequestContext] = None
    ) -> list[MatchSuggestion]:
        return self._compute(
            ctx, "sugestões de conciliação", lambda: self.matcher.suggest_matches(bank_line_id)
        )

    def pending_summary(self, ctx: Optional[RequestContext] = None) -> ReconciliationSummary:
        return self._compute(ctx, "resumo de conciliação", self.matcher.pending_summary)

    # -- batch jobs ---------------------------------------------------------

    def monthly_closing(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> OperationResult:
        return self._mutate(
            ctx,
            "executar fechamento mensal",
            lambda c: self.jobs.monthly_closing(period),
            lambda r: f"Fechamento de {period.label} concluído ({r.rows_written} linhas)",
        )

    def daily_job(self, ctx: Optional[RequestContext] = None) -> OperationResult:
        return self._mutate(
            ctx,
            "executar rotina diária",
            lambda c: self.jobs.daily_job(),
            lambda r: "Rotina diária concluída",
        )

    # -- computations -------------------------------------------------------

    def get_dre(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> DREStatement:
        return self._compute(ctx, "DRE", lambda: self.dre.calculate_dre(period, branch_id))

    def get_multi_branch_dre(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> list[DREStatement]:
        return self._compute(
            ctx, "DRE por filial", lambda: self.dre.calculate_multi_branch_dre(period)
        )

    def get_realized_cashflow(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> list[CashflowLine]:
        return self._compute(
            ctx, "fluxo de caixa", lambda: self.cashflow.calculate_realized_cashflow(period)
        )

    def get_forecast_cashflow(
        self,
        start_period: Period,
        horizon_months: int = 3,
        ctx: Optional[RequestContext] = None,
    ) -> list[CashflowLine]:
        options = ForecastOptions(
            horizon_months=horizon_months,
            include_forecast=self.config.features.dfc_projection,
        )
        return self._compute(
            ctx,
            "fluxo de caixa projetado",
            lambda: self.cashflow.calculate_forecast_cashflow(start_period, options),
        )

    def project_balances(
        self,
        start_period: Period,
        horizon_months: int = 3,
        ctx: Optional[RequestContext] = None,
    ) -> pd.DataFrame:
        def project() -> pd.DataFrame:
            options = ForecastOptions(
                horizon_months=horizon_months,
                include_forecast=self.config.features.dfc_projection,
                opening_balance=self.cashflow.calculate_opening_balance(start_period),
            )
            return self.cashflow.project_monthly_balances(start_period, options)

        return self._compute(ctx, "projeção de saldo", project)

    def get_future_timeline(
        self, horizon_days: int = 90, ctx: Optional[RequestContext] = None
    ) -> list[LedgerEntry]:
        ctx = ctx or RequestContext()
        return self._compute(
            ctx,
            "agenda de vencimentos",
            lambda: self.cashflow.get_future_accounts_timeline(
                horizon_days, today=ctx.business_date()
            ),
        )

    def get_dfc_report(self, period: Period, ctx: Optional[RequestContext] = None) -> DFCReport:
        return self._compute(ctx, "DFC", lambda: self.cashflow.generate_dfc_report(period))

    def get_kpis(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> list[CalculatedKPI]:
        return self._compute(
            ctx, "KPIs", lambda: self.kpi.calculate_kpis(period, branch_id, channel_id)
        )

    def get_kpis_mensal(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> MonthlyKPIs:
        ctx = ctx or RequestContext()
        return self._compute(
            ctx,
            "indicadores mensais",
            lambda: self.kpi.get_kpis_mensal(period, branch_id, channel_id, as_of=ctx.today),
        )

    def get_dashboard(
        self,
        period: Period,
        branch_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> DashboardData:
        return self._compute(
            ctx, "dashboard", lambda: self.kpi.get_dashboard_data(period, branch_id)
        )

    def get_kpi_trend(
        self,
        metric: KPIMetric,
        periods: list[Period],
        branch_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> list[tuple[Period, float]]:
        return self._compute(
            ctx,
            f"tendência de {metric.value}",
            lambda: self.kpi.get_kpi_trend(metric, periods, branch_id),
        )

    def get_revenue_report(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> RevenueReport:
        return self._compute(
            ctx, "relatório de faturamento", lambda: self.reports.generate_revenue_report(period)
        )

    def get_committee_report(
        self, period: Period, ctx: Optional[RequestContext] = None
    ) -> CommitteeReport:
        return self._compute(
            ctx, "relatório do comitê", lambda: self.reports.generate_committee_report(period)
        )

    def get_multi_period(
        self,
        periods: list[Period],
        branch_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> MultiPeriodReport:
        return self._compute(
            ctx,
            "relatório multi-período",
            lambda: self.reports.compute_multi_period(periods, branch_id),
        )
