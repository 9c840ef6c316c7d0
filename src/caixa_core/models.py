# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Typed records shared across Caixa Core.

Enumerations are ``str`` enums whose values are the literals stored in the
database and exchanged with CSV files. Records are dataclasses; reference
data records are frozen because they never change during a reporting run.

`LedgerEntry` and `BankStatementLine` enforce their structural invariants
at construction time:

- the net amount of an entry equals gross - discount + interest + penalty
  (within one centavo),
- a REALIZED entry always has a payment date,
- a bank line is reconciled if and only if it points at a ledger entry.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional

from .errors import ValidationError
from .money import DEFAULT_TOLERANCE, compute_net_amount, money_equals


class EntryType(str, Enum):
    PAYABLE = "PAGAR"
    RECEIVABLE = "RECEBER"
    TRANSFER = "TRANSFERENCIA"
    ADJUSTMENT = "AJUSTE"


class EntryStatus(str, Enum):
    FORECAST = "PREVISTO"
    REALIZED = "REALIZADO"
    CANCELED = "CANCELADO"


class EntryOrigin(str, Enum):
    MANUAL = "MANUAL"
    IMPORTED = "IMPORTADO"


class RevenueGroup(str, Enum):
    SERVICES = "SERVICOS"
    RESALE = "REVENDA"


class AccountType(str, Enum):
    REVENUE = "RECEITA"
    EXPENSE = "DESPESA"
    COST = "CUSTO"


class CashflowCategory(str, Enum):
    OPERATING = "OPERACIONAL"
    INVESTING = "INVESTIMENTO"
    FINANCING = "FINANCIAMENTO"


class CashflowDirection(str, Enum):
    IN = "ENTRADA"
    OUT = "SAIDA"


class ExpenseNature(str, Enum):
    FIXED = "FIXO"
    VARIABLE = "VARIAVEL"


class CostClassification(str, Enum):
    CMA = "CMA"
    CMV = "CMV"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Account:
    """An entry of the management chart of accounts."""

    code: str
    description: str
    type: AccountType
    dre_group: str
    dre_subgroup: Optional[str] = None
    cashflow_category: Optional[CashflowCategory] = None
    fixed_variable: Optional[ExpenseNature] = None
    cost_classification: Optional[CostClassification] = None


@dataclass(frozen=True)
class Branch:
    id: str
    name: str
    active: bool = True


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    revenue_group: Optional[RevenueGroup] = None


@dataclass(frozen=True)
class CostCenter:
    id: str
    name: str


# ---------------------------------------------------------------------------
# Ledger and bank statements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """
    A single account payable / receivable.

    Use `LedgerEntry.build` to have the net amount computed from its
    components. Direct construction checks the net amount against them and
    raises `ValidationError` when they disagree.
    """

    id: str
    accrual_date: date
    type: EntryType
    branch_id: str
    management_account: str
    description: str
    gross_amount: float
    net_amount: float
    status: EntryStatus = EntryStatus.FORECAST
    discount: float = 0.0
    interest: float = 0.0
    penalty: float = 0.0
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    cost_center_id: Optional[str] = None
    accounting_account: Optional[str] = None
    revenue_group: Optional[RevenueGroup] = None
    channel_id: Optional[str] = None
    bank_statement_id: Optional[str] = None
    origin: EntryOrigin = EntryOrigin.MANUAL
    notes: str = ""

    def __post_init__(self) -> None:
        errors: list[str] = []
        for name in ("gross_amount", "net_amount", "discount", "interest", "penalty"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"Valor não numérico em {name}: {value!r}")
            elif not math.isfinite(value):
                errors.append(f"Valor inválido em {name}: {value!r}")
        if errors:
            raise ValidationError(errors)

        expected = self.expected_net_amount()
        if not money_equals(expected, self.net_amount, DEFAULT_TOLERANCE):
            raise ValidationError(
                "Valor líquido inconsistente. "
                f"Esperado: {expected:.2f}, informado: {self.net_amount:.2f}"
            )
        if self.status is EntryStatus.REALIZED and self.payment_date is None:
            raise ValidationError("Lançamento realizado deve ter data de pagamento")

    @classmethod
    def build(
        cls,
        *,
        gross_amount: float,
        discount: float = 0.0,
        interest: float = 0.0,
        penalty: float = 0.0,
        **fields,
    ) -> LedgerEntry:
        """Create an entry whose net amount is derived from its components."""
        return cls(
            gross_amount=gross_amount,
            discount=discount,
            interest=interest,
            penalty=penalty,
            net_amount=compute_net_amount(gross_amount, discount, interest, penalty),
            **fields,
        )

    def expected_net_amount(self) -> float:
        return compute_net_amount(
            self.gross_amount, self.discount, self.interest, self.penalty
        )

    def with_changes(self, **changes) -> LedgerEntry:
        """
        Return a copy with ``changes`` applied.

        When a component of the net amount changes and ``net_amount`` is not
        given explicitly, the net amount is recomputed.
        """
        components = {"gross_amount", "discount", "interest", "penalty"}
        if components.intersection(changes) and "net_amount" not in changes:
            merged = {name: changes.get(name, getattr(self, name)) for name in components}
            changes["net_amount"] = compute_net_amount(
                merged["gross_amount"],
                merged["discount"],
                merged["interest"],
                merged["penalty"],
            )
        return replace(self, **changes)

    @property
    def is_reconciled(self) -> bool:
        return self.bank_statement_id is not None

    @property
    def is_revenue(self) -> bool:
        return self.type is EntryType.RECEIVABLE

    @property
    def is_expense(self) -> bool:
        return self.type is EntryType.PAYABLE


@dataclass(frozen=True)
class BankStatementLine:
    """One movement of an imported bank statement."""

    id: str
    movement_date: date
    bank_account: str
    memo: str
    amount: float
    document_ref: Optional[str] = None
    balance_after: Optional[float] = None
    reconciled: bool = False
    ledger_entry_id: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, (int, float)):
            raise ValidationError(f"Valor não numérico no extrato: {self.amount!r}")
        if not math.isfinite(self.amount):
            raise ValidationError(f"Valor inválido no extrato: {self.amount!r}")
        if self.reconciled != (self.ledger_entry_id is not None):
            raise ValidationError(
                f"Linha de extrato {self.id}: 'conciliado' deve acompanhar o "
                "lançamento vinculado"
            )


# ---------------------------------------------------------------------------
# Derived records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CashflowLine:
    date: date
    direction: CashflowDirection
    category: CashflowCategory
    description: str
    value: float
    projected: bool = False
    bank_account: Optional[str] = None
    entry_id: Optional[str] = None

    @property
    def signed_value(self) -> float:
        return self.value if self.direction is CashflowDirection.IN else -self.value


@dataclass(frozen=True)
class MatchSuggestion:
    """A candidate ledger entry for a bank statement line."""

    bank_line_id: str
    ledger_entry_id: str
    confidence: int
    reason: str
    day_difference: Optional[int] = None


@dataclass(frozen=True)
class ReferenceSets:
    """Known identifiers used by strict validation on entry creation."""

    branches: frozenset[str] = field(default_factory=frozenset)
    channels: frozenset[str] = field(default_factory=frozenset)
    cost_centers: frozenset[str] = field(default_factory=frozenset)
    accounts: frozenset[str] = field(default_factory=frozenset)
