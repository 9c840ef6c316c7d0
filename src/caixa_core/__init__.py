# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Caixa Core
----------

Financial computation and reconciliation engine for Brazilian small
businesses. The package works on a ledger of accounts payable and
receivable and a set of imported bank statement lines, and derives from
them the management reports a small business owner needs.

Main capabilities:
- DRE (Demonstração do Resultado do Exercício) income statements, per
  month and per branch, with benchmark tiers for the main margins,
- realized and projected cash-flow statements (DFC),
- KPI aggregation (margins, discounts, burn rate, runway, delinquency,
  days-to-collect, CAC, break-even) and dashboard data,
- bank reconciliation suggestions, automatic and bulk matching, manual
  link / unlink,
- ledger mutations (payments, receipts, cancellations) guarded by an
  advisory lock and followed by cache invalidation,
- idempotent persistence of monthly reports and a time-budgeted monthly
  closing job,
- a SQLite store behind typed store ports, CSV imports via pandas.

Usage:
    python -m caixa_core.cli --help
"""

__all__ = ["dre", "cashflow", "kpi", "reconciliation", "ledger", "reports", "views", "io", "api"]

__version__ = "0.3.0"
