# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Business validation of ledger entries.

`LedgerEntry` itself enforces the structural invariants (net amount,
payment date of realized entries). The rules here need context: the
business date, the known reference identifiers and the closed periods.
Reference checks are strict on creation; the read path (DRE, KPI) only
warns about unknown accounts.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from .errors import PeriodLockedError, ValidationError
from .models import EntryStatus, LedgerEntry, ReferenceSets
from .money import DEFAULT_TOLERANCE, compute_net_amount, money_equals
from .periods import Period


def validate_ledger_entry(
    entry: LedgerEntry,
    *,
    today: date,
    references: Optional[ReferenceSets] = None,
) -> list[str]:
    """
    Return the list of rule violations of ``entry`` (empty when valid).

    Reference sets that are empty are not checked, so a fresh database
    without master data still accepts entries.
    """
    errors: list[str] = []

    if entry.accrual_date is None:
        errors.append("Data de competência é obrigatória")
    if entry.payment_date is not None and entry.payment_date > today:
        errors.append("Data de pagamento não pode ser futura")
    if entry.status is EntryStatus.REALIZED and entry.payment_date is None:
        errors.append("Lançamento realizado deve ter data de pagamento")
    if entry.gross_amount <= 0:
        errors.append("Valor bruto deve ser maior que zero")
    for name, label in (("discount", "Desconto"), ("interest", "Juros"), ("penalty", "Multa")):
        if getattr(entry, name) < 0:
            errors.append(f"{label} não pode ser negativo")

    expected = compute_net_amount(
        entry.gross_amount, entry.discount, entry.interest, entry.penalty
    )
    if not money_equals(expected, entry.net_amount, DEFAULT_TOLERANCE):
        errors.append(
            "Valor líquido inconsistente. "
            f"Esperado: {expected:.2f}, informado: {entry.net_amount:.2f}"
        )

    if not (entry.branch_id or "").strip():
        errors.append("Filial é obrigatória")
    if not (entry.management_account or "").strip():
        errors.append("Conta gerencial é obrigatória")
    if not (entry.description or "").strip():
        errors.append("Descrição é obrigatória")

    if references is not None:
        errors.extend(_reference_errors(entry, references))

    return errors


def _reference_errors(entry: LedgerEntry, refs: ReferenceSets) -> list[str]:
    errors: list[str] = []
    if refs.branches and entry.branch_id and entry.branch_id not in refs.branches:
        errors.append(f"Filial inexistente: {entry.branch_id}")
    if refs.channels and entry.channel_id and entry.channel_id not in refs.channels:
        errors.append(f"Canal inexistente: {entry.channel_id}")
    if (
        refs.cost_centers
        and entry.cost_center_id
        and entry.cost_center_id not in refs.cost_centers
    ):
        errors.append(f"Centro de custo inexistente: {entry.cost_center_id}")
    if (
        refs.accounts
        and entry.management_account
        and entry.management_account not in refs.accounts
    ):
        errors.append(f"Conta gerencial inexistente: {entry.management_account}")
    return errors


def ensure_valid(
    entry: LedgerEntry,
    *,
    today: date,
    references: Optional[ReferenceSets] = None,
) -> None:
    """Raise `ValidationError` listing every violation of ``entry``."""
    errors = validate_ledger_entry(entry, today=today, references=references)
    if errors:
        raise ValidationError(errors)


def ensure_period_open(accrual_date: date, locked_periods: frozenset[str] | set[str]) -> None:
    """Raise `PeriodLockedError` when ``accrual_date`` is in a closed period."""
    label = Period.from_date(accrual_date).label
    if label in locked_periods:
        raise PeriodLockedError(f"Período {label} está fechado para alterações")
