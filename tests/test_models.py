from datetime import date

import pytest

from caixa_core.errors import ValidationError
from caixa_core.models import (
    BankStatementLine,
    CashflowCategory,
    CashflowDirection,
    CashflowLine,
    EntryStatus,
    EntryType,
    LedgerEntry,
)


def _fields(**overrides):
    base = dict(
        id="L2025-000001",
        accrual_date=date(2025, 1, 5),
        type=EntryType.PAYABLE,
        branch_id="F01",
        management_account="5.01",
        description="Aluguel",
        gross_amount=500.0,
        net_amount=515.0,
        interest=10.0,
        penalty=5.0,
    )
    base.update(overrides)
    return base


def test_build_computes_net_amount() -> None:
    e = LedgerEntry.build(**{k: v for k, v in _fields().items() if k != "net_amount"})
    assert e.net_amount == 515.0
    assert e.expected_net_amount() == 515.0


def test_inconsistent_net_amount_names_both_values() -> None:
    with pytest.raises(ValidationError, match=r"Esperado: 515\.00, informado: 500\.00"):
        LedgerEntry(**_fields(net_amount=500.0))


def test_net_amount_within_one_centavo_is_accepted() -> None:
    e = LedgerEntry(**_fields(net_amount=515.01))
    assert e.net_amount == 515.01


def test_realized_entry_requires_payment_date() -> None:
    with pytest.raises(ValidationError):
        LedgerEntry(**_fields(status=EntryStatus.REALIZED))

    paid = LedgerEntry(**_fields(status=EntryStatus.REALIZED, payment_date=date(2025, 1, 6)))
    assert paid.status is EntryStatus.REALIZED


def test_non_finite_amounts_are_rejected() -> None:
    with pytest.raises(ValidationError):
        LedgerEntry(**_fields(gross_amount=float("inf")))
    with pytest.raises(ValidationError):
        LedgerEntry(**_fields(discount="10"))


def test_with_changes_recomputes_net_amount() -> None:
    e = LedgerEntry(**_fields())
    changed = e.with_changes(discount=15.0)
    assert changed.net_amount == 500.0
    assert e.net_amount == 515.0

    renamed = e.with_changes(description="Aluguel março")
    assert renamed.net_amount == 515.0


def test_entry_type_helpers() -> None:
    e = LedgerEntry(**_fields())
    assert e.is_expense and not e.is_revenue
    assert not e.is_reconciled
    assert LedgerEntry(**_fields(bank_statement_id="EB2025-000001")).is_reconciled


def test_enum_values_are_stored_literals() -> None:
    assert EntryType.PAYABLE.value == "PAGAR"
    assert EntryType("RECEBER") is EntryType.RECEIVABLE
    assert EntryStatus("CANCELADO") is EntryStatus.CANCELED


def test_bank_line_reconciled_flag_follows_link() -> None:
    with pytest.raises(ValidationError):
        BankStatementLine(
            id="EB1",
            movement_date=date(2025, 1, 10),
            bank_account="ITAU",
            memo="PIX",
            amount=200.0,
            reconciled=True,
        )
    with pytest.raises(ValidationError):
        BankStatementLine(
            id="EB1",
            movement_date=date(2025, 1, 10),
            bank_account="ITAU",
            memo="PIX",
            amount=200.0,
            ledger_entry_id="L1",
        )

    linked = BankStatementLine(
        id="EB1",
        movement_date=date(2025, 1, 10),
        bank_account="ITAU",
        memo="PIX",
        amount=200.0,
        reconciled=True,
        ledger_entry_id="L1",
    )
    assert linked.reconciled


def test_cashflow_line_signed_value() -> None:
    out = CashflowLine(
        date=date(2025, 1, 1),
        direction=CashflowDirection.OUT,
        category=CashflowCategory.OPERATING,
        description="Aluguel",
        value=300.0,
    )
    assert out.signed_value == -300.0
