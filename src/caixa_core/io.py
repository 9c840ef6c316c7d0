# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
CSV import of ledger entries and bank statements.

Both readers load the file with pandas, normalize the column names and
turn every row into a typed record. Column names are case-insensitive and
accept their Portuguese aliases.

Ledger entries
--------------
Required columns:

    accrual_date (competencia), type (tipo), branch_id (filial),
    management_account (conta_gerencial), description (descricao),
    gross_amount (valor_bruto)

Optional columns:

    due_date (vencimento), payment_date (pagamento), status,
    discount (desconto), interest (juros), penalty (multa),
    cost_center_id (centro_custo), accounting_account (conta_contabil),
    revenue_group (grupo_receita), channel_id (canal),
    notes (observacoes)

The net amount is always computed from the components. Imported entries
get the IMPORTED origin and an empty id; ids are assigned when the entries
are created through the ledger service.

Bank statements
---------------
Required columns:

    movement_date (data), bank_account (conta), memo (historico),
    amount (valor)

Optional columns: document_ref (documento), balance_after (saldo).

Amounts accept the Brazilian notation (``"R$ 1.234,56"``) and dates either
ISO (``2025-01-31``) or ``31/01/2025``.

Any row that cannot be parsed makes the reader raise a ValueError listing
every bad row with its line number in the file.
"""

import os
from datetime import date, datetime
from typing import Optional, Union

import pandas as pd

from .errors import ValidationError
from .models import (
    BankStatementLine,
    EntryOrigin,
    EntryStatus,
    EntryType,
    LedgerEntry,
    RevenueGroup,
)
from .money import parse_money

PathLike = Union[str, "os.PathLike[str]"]

LEDGER_ALIASES = {
    "competencia": "accrual_date",
    "vencimento": "due_date",
    "pagamento": "payment_date",
    "tipo": "type",
    "filial": "branch_id",
    "centro_custo": "cost_center_id",
    "conta_gerencial": "management_account",
    "conta_contabil": "accounting_account",
    "grupo_receita": "revenue_group",
    "canal": "channel_id",
    "descricao": "description",
    "valor_bruto": "gross_amount",
    "desconto": "discount",
    "juros": "interest",
    "multa": "penalty",
    "observacoes": "notes",
}

STATEMENT_ALIASES = {
    "data": "movement_date",
    "conta": "bank_account",
    "historico": "memo",
    "descricao": "memo",
    "valor": "amount",
    "documento": "document_ref",
    "saldo": "balance_after",
}

LEDGER_REQUIRED = {
    "accrual_date",
    "type",
    "branch_id",
    "management_account",
    "description",
    "gross_amount",
}
STATEMENT_REQUIRED = {"movement_date", "bank_account", "memo", "amount"}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")


def parse_date(value: object) -> Optional[date]:
    """Parse an ISO or dd/mm/yyyy date; empty values give None."""
    text = str(value or "").strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {text!r}")


def _read_csv(path: PathLike, aliases: dict[str, str], required: set[str]) -> pd.DataFrame:
    # Everything as text: amounts and dates are parsed row by row.
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.lower().strip() for c in df.columns]
    renames: dict[str, str] = {}
    for alias, column in aliases.items():
        if alias in df.columns and column not in df.columns and column not in renames.values():
            renames[alias] = column
    df = df.rename(columns=renames)

    missing = sorted(required - set(df.columns))
    if missing:
        raise ValueError(
            "Invalid CSV structure, missing column(s): " + ", ".join(missing)
        )
    return df


def _text(row: pd.Series, column: str) -> Optional[str]:
    value = str(row.get(column, "") or "").strip()
    return value or None


def _row_to_entry(row: pd.Series) -> LedgerEntry:
    status = EntryStatus(_text(row, "status") or EntryStatus.FORECAST.value)
    group = _text(row, "revenue_group")
    return LedgerEntry.build(
        id="",
        accrual_date=parse_date(row["accrual_date"]),
        due_date=parse_date(row.get("due_date")),
        payment_date=parse_date(row.get("payment_date")),
        type=EntryType(_text(row, "type")),
        status=status,
        branch_id=_text(row, "branch_id") or "",
        cost_center_id=_text(row, "cost_center_id"),
        management_account=_text(row, "management_account") or "",
        accounting_account=_text(row, "accounting_account"),
        revenue_group=RevenueGroup(group) if group else None,
        channel_id=_text(row, "channel_id"),
        description=_text(row, "description") or "",
        gross_amount=parse_money(row["gross_amount"]),
        discount=parse_money(row.get("discount")),
        interest=parse_money(row.get("interest")),
        penalty=parse_money(row.get("penalty")),
        origin=EntryOrigin.IMPORTED,
        notes=_text(row, "notes") or "",
    )


def _row_to_statement(row: pd.Series) -> BankStatementLine:
    balance = _text(row, "balance_after")
    return BankStatementLine(
        id="",
        movement_date=parse_date(row["movement_date"]),
        bank_account=_text(row, "bank_account") or "",
        memo=_text(row, "memo") or "",
        amount=parse_money(row["amount"]),
        document_ref=_text(row, "document_ref"),
        balance_after=None if balance is None else parse_money(balance),
    )


def _convert(df: pd.DataFrame, convert) -> list:
    records = []
    errors: list[str] = []
    for position, (_, row) in enumerate(df.iterrows()):
        line_number = position + 2  # header is line 1
        try:
            records.append(convert(row))
        except (ValueError, ValidationError) as exc:
            errors.append(f"Linha {line_number}: {exc}")
    if errors:
        raise ValueError("Invalid CSV rows:\n" + "\n".join(errors))
    return records


def read_ledger_entries(path: PathLike) -> list[LedgerEntry]:
    """
    Read ledger entries from a CSV file.

    Raises
    ------
    ValueError
        If a required column is missing or a row cannot be parsed.
    """
    df = _read_csv(path, LEDGER_ALIASES, LEDGER_REQUIRED)
    return _convert(df, _row_to_entry)


def read_bank_statements(path: PathLike) -> list[BankStatementLine]:
    """
    Read bank statement lines from a CSV file.

    Raises
    ------
    ValueError
        If a required column is missing or a row cannot be parsed.
    """
    df = _read_csv(path, STATEMENT_ALIASES, STATEMENT_REQUIRED)
    return _convert(df, _row_to_statement)
