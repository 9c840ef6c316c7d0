# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for Caixa Core.

The CLI is intentionally thin: it does not implement any financial logic.
It loads the TOML configuration, builds a `FinanceAPI` over the configured
SQLite database and renders the results as console tables.

Commands
--------

    init-db                          create the database schema
    import-entries CSV               import ledger entries
    import-statements CSV            import bank statement lines
    pay ENTRY_ID... --date D         register payments / receipts
    dre                              DRE of a period (optionally per branch)
    dfc                              DFC of a period
    forecast                         projected cash flow and balances
    kpis                             benchmarked KPIs (or --monthly indicators)
    dashboard                        dashboard figures and top expenses
    revenue                          revenue report
    reconcile suggest LINE_ID        ranked match suggestions
    reconcile auto                   automatic reconciliation
    reconcile bulk                   greedy bulk reconciliation
    reconcile link LINE_ID ENTRY_ID  manual reconciliation
    reconcile unlink LINE_ID         undo a reconciliation
    reconcile status                 pending statement lines
    close-month                      monthly closing (previous month by default)
    daily-job                        cache reload + automatic reconciliation
    lock-period / unlock-period      close or reopen a period

Common options
--------------

    --config PATH       main TOML configuration (default: caixa_config.toml)
    --log-level LEVEL   DEBUG, INFO, WARNING or ERROR (default: WARNING)
    --period YYYY-MM    period of the report (default: current month)
    --branch ID         restrict a report to one branch

Exit codes: 0 on success, 1 when an operation fails, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .api import FinanceAPI
from .closing import closing_period
from .config import load_app_config
from .db import init_database
from .errors import CaixaError, OperationResult
from .periods import Period
from .views import (
    cashflow_view,
    dashboard_view,
    dfc_view,
    dre_view,
    format_brl,
    kpis_view,
    monthly_kpis_view,
    revenue_view,
    suggestions_view,
)

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


def _period_arg(value: str) -> Period:
    try:
        return Period.parse(value)
    except (ValueError, CaixaError) as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (YYYY-MM-DD): {value!r}") from exc


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="caixa",
        description=(
            "Caixa Core - Financial computation & reconciliation engine for SMBs. "
            "Computes DRE, DFC and KPIs from the ledger and reconciles bank "
            "statements."
        ),
    )
    ap.add_argument(
        "--version", action="version", version=f"caixa_core version {__version__}"
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. "
            "If omitted, 'caixa_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING).",
    )

    scoped = argparse.ArgumentParser(add_help=False)
    scoped.add_argument(
        "--period",
        type=_period_arg,
        help="Reporting period as YYYY-MM (default: current month).",
    )
    scoped.add_argument("--branch", help="Restrict the report to one branch id.")

    sub = ap.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("init-db", help="Create the database schema if needed.")

    p = sub.add_parser("import-entries", help="Import ledger entries from a CSV file.")
    p.add_argument("csv_path", type=Path)

    p = sub.add_parser("import-statements", help="Import bank statement lines from a CSV file.")
    p.add_argument("csv_path", type=Path)

    p = sub.add_parser("pay", help="Register the payment or receipt of ledger entries.")
    p.add_argument("entry_ids", nargs="+")
    p.add_argument("--date", dest="payment_date", type=_date_arg, required=True)

    p = sub.add_parser("dre", parents=[scoped], help="Show the DRE of a period.")
    p.add_argument(
        "--all-branches",
        action="store_true",
        help="Show the consolidated DRE followed by one per active branch.",
    )
    p.add_argument("--output", type=Path, help="Also write the DRE lines to this CSV file.")

    sub.add_parser("dfc", parents=[scoped], help="Show the DFC of a period.")

    p = sub.add_parser("forecast", parents=[scoped], help="Show the projected cash flow.")
    p.add_argument("--months", type=int, default=3, help="Horizon in months (default: 3).")

    p = sub.add_parser("kpis", parents=[scoped], help="Show the KPIs of a period.")
    p.add_argument("--channel", help="Restrict the KPIs to one sales channel.")
    p.add_argument(
        "--monthly", action="store_true", help="Show the monthly management indicators."
    )

    sub.add_parser("dashboard", parents=[scoped], help="Show the dashboard figures.")
    sub.add_parser("revenue", parents=[scoped], help="Show the revenue report.")

    rec = sub.add_parser("reconcile", help="Bank reconciliation commands.")
    rec_sub = rec.add_subparsers(dest="reconcile_command", metavar="ACTION")
    rec_sub.required = True
    p = rec_sub.add_parser("suggest", help="Suggest ledger entries for a statement line.")
    p.add_argument("line_id")
    p = rec_sub.add_parser("auto", help="Reconcile the best suggestions automatically.")
    p.add_argument("--min-confidence", type=int, default=None)
    p = rec_sub.add_parser("bulk", help="Greedy reconciliation by amount and date.")
    p.add_argument("--window-days", type=int, default=None)
    p = rec_sub.add_parser("link", help="Link a statement line to a ledger entry.")
    p.add_argument("line_id")
    p.add_argument("entry_id")
    p = rec_sub.add_parser("unlink", help="Undo the reconciliation of a statement line.")
    p.add_argument("line_id")
    rec_sub.add_parser("status", help="Show the pending statement lines.")

    p = sub.add_parser("close-month", help="Compute and persist the reports of a period.")
    p.add_argument(
        "--period",
        type=_period_arg,
        help="Period to close as YYYY-MM (default: previous month).",
    )

    sub.add_parser("daily-job", help="Reload caches and run the automatic reconciliation.")

    p = sub.add_parser("lock-period", help="Close a period for changes.")
    p.add_argument("period", type=_period_arg)
    p = sub.add_parser("unlock-period", help="Reopen a closed period.")
    p.add_argument("period", type=_period_arg)

    return ap


def _print_table(df: pd.DataFrame, empty_message: str) -> None:
    if df.empty:
        print(empty_message)
        return
    print(df.to_string(index=False))


def _report_result(result: OperationResult) -> int:
    print(result.message)
    data = result.data
    failures = getattr(data, "failures", None)
    if failures:
        for item_id, reason in failures:
            print(f"  - {item_id}: {reason}")
    return 0 if result.success else 1


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _handle_dre(args: argparse.Namespace, api: FinanceAPI, period: Period) -> int:
    if args.all_branches:
        statements = api.get_multi_branch_dre(period)
    else:
        statements = [api.get_dre(period, args.branch)]

    for statement in statements:
        print(f"DRE {period.label} - filial: {statement.branch_id or 'consolidado'}")
        _print_table(dre_view(statement), "Sem lançamentos.")
        if statement.unresolved_accounts:
            print(
                "Contas não encontradas: " + ", ".join(statement.unresolved_accounts)
            )
        print()

    if args.output:
        from .reports import dre_to_dataframe

        dre_to_dataframe(statements[0]).to_csv(args.output, index=False)
        print(f"DRE lines written to {args.output}")
    return 0


def _handle_forecast(args: argparse.Namespace, api: FinanceAPI, period: Period) -> int:
    lines = api.get_forecast_cashflow(period, args.months)
    print(f"Fluxo projetado a partir de {period.label} ({args.months} meses)")
    _print_table(cashflow_view(lines), "Nenhum lançamento previsto.")
    print()
    balances = api.project_balances(period, args.months).copy()
    for column in ("inflow", "outflow", "net", "closing_balance"):
        balances[column] = balances[column].map(format_brl)
    _print_table(balances, "Sem projeção.")
    return 0


def _handle_kpis(args: argparse.Namespace, api: FinanceAPI, period: Period) -> int:
    if args.monthly:
        _print_table(
            monthly_kpis_view(api.get_kpis_mensal(period, args.branch, args.channel)),
            "Sem indicadores.",
        )
    else:
        _print_table(
            kpis_view(api.get_kpis(period, args.branch, args.channel)), "Sem indicadores."
        )
    return 0


def _handle_reconcile(args: argparse.Namespace, api: FinanceAPI) -> int:
    action = args.reconcile_command
    if action == "suggest":
        _print_table(
            suggestions_view(api.suggest_matches(args.line_id)), "Nenhuma sugestão encontrada."
        )
        return 0
    if action == "auto":
        return _report_result(api.auto_reconcile(args.min_confidence))
    if action == "bulk":
        return _report_result(api.bulk_reconcile(args.window_days))
    if action == "link":
        return _report_result(api.reconcile(args.line_id, args.entry_id))
    if action == "unlink":
        return _report_result(api.unreconcile(args.line_id))

    summary = api.pending_summary()
    print(
        f"Linhas de extrato: {summary.total_lines} | conciliadas: {summary.reconciled} | "
        f"pendentes: {summary.pending} ({format_brl(summary.pending_amount)})"
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the Caixa Core CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    # 1) Load application configuration
    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    # 2) Initialize the database (create file and schema if needed)
    init_database(config.database)
    if args.command == "init-db":
        print(f"Database ready at {config.database.path}")
        return 0

    api = FinanceAPI.from_config(config)
    period: Period = getattr(args, "period", None) or Period.current()

    try:
        if args.command == "import-entries":
            return _report_result(api.import_entries(args.csv_path))
        if args.command == "import-statements":
            return _report_result(api.import_statements(args.csv_path))
        if args.command == "pay":
            return _report_result(api.pay_entries(args.entry_ids, args.payment_date))
        if args.command == "dre":
            return _handle_dre(args, api, period)
        if args.command == "dfc":
            report = api.get_dfc_report(period)
            print(f"DFC {period.label}")
            _print_table(dfc_view(report), "Sem movimentações.")
            return 0
        if args.command == "forecast":
            return _handle_forecast(args, api, period)
        if args.command == "kpis":
            return _handle_kpis(args, api, period)
        if args.command == "dashboard":
            _print_table(dashboard_view(api.get_dashboard(period, args.branch)), "Sem dados.")
            return 0
        if args.command == "revenue":
            _print_table(revenue_view(api.get_revenue_report(period)), "Sem faturamento.")
            return 0
        if args.command == "reconcile":
            return _handle_reconcile(args, api)
        if args.command == "close-month":
            target = args.period or closing_period(date.today())
            return _report_result(api.monthly_closing(target))
        if args.command == "daily-job":
            return _report_result(api.daily_job())
        if args.command == "lock-period":
            return _report_result(api.lock_period(args.period))
        if args.command == "unlock-period":
            return _report_result(api.unlock_period(args.period))
    except CaixaError as exc:
        print(f"Erro: {exc}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
