# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for Caixa Core.

This module provides all low-level accessors for the SQLite database used
by the application. It is responsible for:

- Initializing the database schema.
- Converting between typed records (models.py) and table rows.
- CRUD operations on ledger entries and bank statement lines.
- Storing reference data (accounts, branches, channels, cost centers) and
  the list of closed accounting periods.
- Writing and reading the persisted report tables.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) ledger_entries
   One row per account payable / receivable.

   - id                 TEXT PRIMARY KEY        -- "L2025-000123"
   - accrual_date       TEXT NOT NULL           -- competência, ISO date
   - due_date           TEXT                    -- vencimento
   - payment_date       TEXT                    -- pagamento
   - type               TEXT NOT NULL           -- PAGAR | RECEBER | ...
   - branch_id          TEXT NOT NULL
   - cost_center_id     TEXT
   - management_account TEXT NOT NULL
   - accounting_account TEXT
   - revenue_group      TEXT
   - channel_id         TEXT
   - description        TEXT NOT NULL
   - gross_cents, discount_cents, interest_cents, penalty_cents, net_cents
                        INTEGER NOT NULL        -- amounts in centavos
   - status             TEXT NOT NULL           -- PREVISTO | REALIZADO | CANCELADO
   - bank_statement_id  TEXT
   - origin             TEXT NOT NULL           -- MANUAL | IMPORTADO
   - notes              TEXT
   - created_at, updated_at TEXT                -- UTC timestamps

2) bank_statements
   One row per imported bank movement.

   - id, movement_date, bank_account, memo, document_ref,
     amount_cents, balance_cents, reconciled (0/1), ledger_entry_id

3) accounts, branches, channels, cost_centers
   Reference data. Accounts carry their DRE group/subgroup, cash-flow
   category, fixed/variable nature and CMA/CMV classification.

4) locked_periods
   "YYYY-MM" keys of closed periods. Entries whose accrual date falls in a
   closed period cannot be created or modified.

5) Report tables (rpt_*)
   Monthly outputs keyed by (period, branch, channel). An empty string
   stands for "all branches" / "all channels". Writing a key deletes and
   re-inserts its rows inside one transaction, so re-running a period
   leaves exactly one copy of its output.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Amounts are stored as integer cents; percentages in the summary tables
  are stored as REAL.
- Foreign key enforcement is explicitly enabled.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .models import (
    Account,
    AccountType,
    BankStatementLine,
    Branch,
    CashflowCategory,
    Channel,
    CostCenter,
    CostClassification,
    EntryOrigin,
    EntryStatus,
    EntryType,
    ExpenseNature,
    LedgerEntry,
    RevenueGroup,
)
from .money import from_cents, to_cents

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for Caixa Core.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class LedgerFilter:
    """
    Filters used to list ledger entries.

    The filters can be combined. Accrual-date bounds are inclusive.

    Attributes
    ----------
    period_start, period_end:
        Inclusive bounds on the accrual date (competência).
    branch_id, channel_id, cost_center_id:
        Exact matches on the reference columns.
    type, status:
        Entry type / status.
    management_account:
        Exact account code match.
    """

    period_start: Optional[date] = None
    period_end: Optional[date] = None
    branch_id: Optional[str] = None
    channel_id: Optional[str] = None
    cost_center_id: Optional[str] = None
    type: Optional[EntryType] = None
    status: Optional[EntryStatus] = None
    management_account: Optional[str] = None


# Column layout of the report tables, in insertion order (key columns first).
REPORT_KEY_COLUMNS = ("period", "branch", "channel")

REPORT_TABLES: dict[str, tuple[str, ...]] = {
    "rpt_dre_monthly": ("dre_group", "dre_subgroup", "value"),
    "rpt_dre_summary": ("metric", "value"),
    "rpt_cashflow_realized": (
        "date",
        "direction",
        "category",
        "description",
        "value",
        "bank_account",
        "entry_id",
    ),
    "rpt_cashflow_forecast": (
        "date",
        "direction",
        "category",
        "description",
        "value",
        "entry_id",
    ),
    "rpt_kpi_summary": ("metric", "value", "tier", "unit"),
}

_LEDGER_COLUMNS = (
    "id",
    "accrual_date",
    "due_date",
    "payment_date",
    "type",
    "branch_id",
    "cost_center_id",
    "management_account",
    "accounting_account",
    "revenue_group",
    "channel_id",
    "description",
    "gross_cents",
    "discount_cents",
    "interest_cents",
    "penalty_cents",
    "net_cents",
    "status",
    "bank_statement_id",
    "origin",
    "notes",
)

_AMOUNT_FIELDS = {
    "gross_amount": "gross_cents",
    "discount": "discount_cents",
    "interest": "interest_cents",
    "penalty": "penalty_cents",
    "net_amount": "net_cents",
}

_STATEMENT_COLUMNS = (
    "id",
    "movement_date",
    "bank_account",
    "memo",
    "document_ref",
    "amount_cents",
    "balance_cents",
    "reconciled",
    "ledger_entry_id",
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled and named rows.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ledger_entries (
            id                 TEXT PRIMARY KEY,
            accrual_date       TEXT    NOT NULL,
            due_date           TEXT,
            payment_date       TEXT,
            type               TEXT    NOT NULL,
            branch_id          TEXT    NOT NULL,
            cost_center_id     TEXT,
            management_account TEXT    NOT NULL,
            accounting_account TEXT,
            revenue_group      TEXT,
            channel_id         TEXT,
            description        TEXT    NOT NULL,
            gross_cents        INTEGER NOT NULL,
            discount_cents     INTEGER NOT NULL DEFAULT 0,
            interest_cents     INTEGER NOT NULL DEFAULT 0,
            penalty_cents      INTEGER NOT NULL DEFAULT 0,
            net_cents          INTEGER NOT NULL,
            status             TEXT    NOT NULL,
            bank_statement_id  TEXT,
            origin             TEXT    NOT NULL DEFAULT 'MANUAL',
            notes              TEXT,
            created_at         TEXT    NOT NULL,
            updated_at         TEXT
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bank_statements (
            id              TEXT PRIMARY KEY,
            movement_date   TEXT    NOT NULL,
            bank_account    TEXT    NOT NULL,
            memo            TEXT    NOT NULL,
            document_ref    TEXT,
            amount_cents    INTEGER NOT NULL,
            balance_cents   INTEGER,
            reconciled      INTEGER NOT NULL DEFAULT 0,
            ledger_entry_id TEXT,
            imported_at     TEXT    NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS accounts (
            code                TEXT PRIMARY KEY,
            description         TEXT NOT NULL,
            type                TEXT NOT NULL,
            dre_group           TEXT NOT NULL,
            dre_subgroup        TEXT,
            cashflow_category   TEXT,
            fixed_variable      TEXT,
            cost_classification TEXT
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS branches (
            id     TEXT PRIMARY KEY,
            name   TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS channels (
            id            TEXT PRIMARY KEY,
            name          TEXT NOT NULL,
            revenue_group TEXT
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cost_centers (
            id   TEXT PRIMARY KEY,
            name TEXT NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS locked_periods (
            period    TEXT PRIMARY KEY,  -- 'YYYY-MM'
            locked_at TEXT NOT NULL
        );
        """
    )

    for table, columns in REPORT_TABLES.items():
        value_columns = ",\n            ".join(f"{col} {_report_column_type(col)}" for col in columns)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                period       TEXT NOT NULL,
                branch       TEXT NOT NULL DEFAULT '',
                channel      TEXT NOT NULL DEFAULT '',
                {value_columns},
                generated_at TEXT NOT NULL
            );
            """
        )
        conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_key
                ON {table}(period, branch, channel);
            """
        )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_ledger_entries_accrual
            ON ledger_entries(accrual_date);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_bank_statements_reconciled
            ON bank_statements(reconciled);
        """
    )

    conn.commit()


def _report_column_type(column: str) -> str:
    return "REAL" if column == "value" else "TEXT"


def _to_iso_date(value) -> Optional[str]:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string (None stays None)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)[:10]).isoformat()


def _from_iso_date(value: Optional[str]) -> Optional[date]:
    if value is None or value == "":
        return None
    return date.fromisoformat(str(value)[:10])


def _enum_or_none(enum_cls: type[Enum], value: Optional[str]):
    if value is None or value == "":
        return None
    return enum_cls(value)


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (date, datetime)):
        return _to_iso_date(value)
    return value


# ---------------------------------------------------------------------------
# Row <-> record conversion
# ---------------------------------------------------------------------------


def entry_to_row(entry: LedgerEntry) -> dict[str, Any]:
    """Flatten a LedgerEntry into the column layout of `ledger_entries`."""
    return {
        "id": entry.id,
        "accrual_date": _to_iso_date(entry.accrual_date),
        "due_date": _to_iso_date(entry.due_date),
        "payment_date": _to_iso_date(entry.payment_date),
        "type": entry.type.value,
        "branch_id": entry.branch_id,
        "cost_center_id": entry.cost_center_id,
        "management_account": entry.management_account,
        "accounting_account": entry.accounting_account,
        "revenue_group": entry.revenue_group.value if entry.revenue_group else None,
        "channel_id": entry.channel_id,
        "description": entry.description,
        "gross_cents": to_cents(entry.gross_amount),
        "discount_cents": to_cents(entry.discount),
        "interest_cents": to_cents(entry.interest),
        "penalty_cents": to_cents(entry.penalty),
        "net_cents": to_cents(entry.net_amount),
        "status": entry.status.value,
        "bank_statement_id": entry.bank_statement_id,
        "origin": entry.origin.value,
        "notes": entry.notes or "",
    }


def row_to_entry(row: Mapping[str, Any]) -> LedgerEntry:
    """
    Materialize a LedgerEntry from a `ledger_entries` row.

    Dates round-trip to the day and amounts to the centavo.
    """
    return LedgerEntry(
        id=row["id"],
        accrual_date=_from_iso_date(row["accrual_date"]),
        due_date=_from_iso_date(row["due_date"]),
        payment_date=_from_iso_date(row["payment_date"]),
        type=EntryType(row["type"]),
        branch_id=row["branch_id"],
        cost_center_id=row["cost_center_id"],
        management_account=row["management_account"],
        accounting_account=row["accounting_account"],
        revenue_group=_enum_or_none(RevenueGroup, row["revenue_group"]),
        channel_id=row["channel_id"],
        description=row["description"],
        gross_amount=from_cents(row["gross_cents"]),
        discount=from_cents(row["discount_cents"]),
        interest=from_cents(row["interest_cents"]),
        penalty=from_cents(row["penalty_cents"]),
        net_amount=from_cents(row["net_cents"]),
        status=EntryStatus(row["status"]),
        bank_statement_id=row["bank_statement_id"],
        origin=EntryOrigin(row["origin"]),
        notes=row["notes"] or "",
    )


def statement_to_row(line: BankStatementLine) -> dict[str, Any]:
    return {
        "id": line.id,
        "movement_date": _to_iso_date(line.movement_date),
        "bank_account": line.bank_account,
        "memo": line.memo,
        "document_ref": line.document_ref,
        "amount_cents": to_cents(line.amount),
        "balance_cents": None if line.balance_after is None else to_cents(line.balance_after),
        "reconciled": int(line.reconciled),
        "ledger_entry_id": line.ledger_entry_id,
    }


def row_to_statement(row: Mapping[str, Any]) -> BankStatementLine:
    balance = row["balance_cents"]
    return BankStatementLine(
        id=row["id"],
        movement_date=_from_iso_date(row["movement_date"]),
        bank_account=row["bank_account"],
        memo=row["memo"],
        document_ref=row["document_ref"],
        amount=from_cents(row["amount_cents"]),
        balance_after=None if balance is None else from_cents(balance),
        reconciled=bool(row["reconciled"]),
        ledger_entry_id=row["ledger_entry_id"],
    )


# ---------------------------------------------------------------------------
# Public API: schema
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file if it does not exist.
    - Creates tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Public API: ledger entries
# ---------------------------------------------------------------------------


def insert_entry(cfg: DatabaseConfig, entry: LedgerEntry) -> LedgerEntry:
    """
    Insert a new ledger entry.

    Raises
    ------
    sqlite3.IntegrityError
        If an entry with the same id already exists.
    """
    row = entry_to_row(entry)
    row["created_at"] = _now_utc_iso()
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)

    conn = _connect(cfg)
    try:
        conn.execute(
            f"INSERT INTO ledger_entries ({columns}) VALUES ({placeholders});",
            list(row.values()),
        )
        conn.commit()
    finally:
        conn.close()
    return entry


def entry_exists(cfg: DatabaseConfig, entry_id: str) -> bool:
    conn = _connect(cfg)
    try:
        cur = conn.execute("SELECT 1 FROM ledger_entries WHERE id = ?;", (entry_id,))
        return cur.fetchone() is not None
    finally:
        conn.close()


def get_entry_by_id(cfg: DatabaseConfig, entry_id: str) -> Optional[LedgerEntry]:
    """Load a single ledger entry, or None when the id is unknown."""
    conn = _connect(cfg)
    try:
        cur = conn.execute(
            f"SELECT {', '.join(_LEDGER_COLUMNS)} FROM ledger_entries WHERE id = ?;",
            (entry_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()
    return None if row is None else row_to_entry(row)


def update_entry(cfg: DatabaseConfig, entry_id: str, changes: Mapping[str, Any]) -> None:
    """
    Apply a partial update to an existing ledger entry.

    Parameters
    ----------
    changes:
        Mapping of LedgerEntry field names to new values. Amount fields are
        converted to cents, dates to ISO strings and enums to their values.

    Raises
    ------
    ValueError
        If no fields are given or a field name is unknown.
    """
    if not changes:
        raise ValueError("No fields to update for ledger entry.")

    entry_fields = {f.name for f in fields(LedgerEntry)}
    assignments: list[str] = []
    params: list[object] = []
    for name, value in changes.items():
        if name not in entry_fields or name == "id":
            raise ValueError(f"Unknown or read-only ledger field: {name!r}")
        if name in _AMOUNT_FIELDS:
            assignments.append(f"{_AMOUNT_FIELDS[name]} = ?")
            params.append(to_cents(value))
        else:
            assignments.append(f"{name} = ?")
            params.append(_db_value(value))

    assignments.append("updated_at = ?")
    params.append(_now_utc_iso())
    params.append(entry_id)

    conn = _connect(cfg)
    try:
        conn.execute(
            f"""
            UPDATE ledger_entries
               SET {", ".join(assignments)}
             WHERE id = ?;
            """,
            params,
        )
        conn.commit()
    finally:
        conn.close()


def search_entries(cfg: DatabaseConfig, filters: LedgerFilter) -> list[LedgerEntry]:
    """
    List ledger entries matching ``filters``, ordered by accrual date and id.
    """
    where_clauses: list[str] = ["1 = 1"]
    params: list[object] = []

    if filters.period_start is not None:
        where_clauses.append("accrual_date >= ?")
        params.append(filters.period_start.isoformat())
    if filters.period_end is not None:
        where_clauses.append("accrual_date <= ?")
        params.append(filters.period_end.isoformat())

    for column, value in (
        ("branch_id", filters.branch_id),
        ("channel_id", filters.channel_id),
        ("cost_center_id", filters.cost_center_id),
        ("management_account", filters.management_account),
    ):
        if value is not None:
            where_clauses.append(f"{column} = ?")
            params.append(value)

    if filters.type is not None:
        where_clauses.append("type = ?")
        params.append(filters.type.value)
    if filters.status is not None:
        where_clauses.append("status = ?")
        params.append(filters.status.value)

    sql = f"""
        SELECT {", ".join(_LEDGER_COLUMNS)}
          FROM ledger_entries
         WHERE {" AND ".join(where_clauses)}
         ORDER BY accrual_date ASC, id ASC;
    """

    conn = _connect(cfg)
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [row_to_entry(row) for row in rows]


def count_entries_with_prefix(cfg: DatabaseConfig, prefix: str) -> int:
    """Number of ledger entries whose id starts with ``prefix``."""
    conn = _connect(cfg)
    try:
        cur = conn.execute(
            "SELECT COUNT(*) FROM ledger_entries WHERE id LIKE ?;", (prefix + "%",)
        )
        return int(cur.fetchone()[0])
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Public API: bank statements
# ---------------------------------------------------------------------------


def insert_statements(cfg: DatabaseConfig, lines: Iterable[BankStatementLine]) -> int:
    """Insert bank statement lines in one transaction. Returns the row count."""
    imported_at = _now_utc_iso()
    rows = []
    for line in lines:
        row = statement_to_row(line)
        row["imported_at"] = imported_at
        rows.append(row)
    if not rows:
        return 0

    columns = list(rows[0])
    placeholders = ", ".join("?" for _ in columns)

    conn = _connect(cfg)
    try:
        conn.executemany(
            f"INSERT INTO bank_statements ({', '.join(columns)}) VALUES ({placeholders});",
            [[row[col] for col in columns] for row in rows],
        )
        conn.commit()
    finally:
        conn.close()
    return len(rows)


def get_statement_by_id(cfg: DatabaseConfig, line_id: str) -> Optional[BankStatementLine]:
    conn = _connect(cfg)
    try:
        cur = conn.execute(
            f"SELECT {', '.join(_STATEMENT_COLUMNS)} FROM bank_statements WHERE id = ?;",
            (line_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()
    return None if row is None else row_to_statement(row)


def list_statements(
    cfg: DatabaseConfig, reconciled: Optional[bool] = None
) -> list[BankStatementLine]:
    """List bank statement lines ordered by movement date and id."""
    sql = f"SELECT {', '.join(_STATEMENT_COLUMNS)} FROM bank_statements"
    params: list[object] = []
    if reconciled is not None:
        sql += " WHERE reconciled = ?"
        params.append(int(reconciled))
    sql += " ORDER BY movement_date ASC, id ASC;"

    conn = _connect(cfg)
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [row_to_statement(row) for row in rows]


def update_statement(cfg: DatabaseConfig, line_id: str, changes: Mapping[str, Any]) -> None:
    """Apply a partial update to a bank statement line."""
    if not changes:
        raise ValueError("No fields to update for bank statement line.")

    allowed = {f.name for f in fields(BankStatementLine)} - {"id"}
    assignments: list[str] = []
    params: list[object] = []
    for name, value in changes.items():
        if name not in allowed:
            raise ValueError(f"Unknown or read-only statement field: {name!r}")
        if name == "amount":
            assignments.append("amount_cents = ?")
            params.append(to_cents(value))
        elif name == "balance_after":
            assignments.append("balance_cents = ?")
            params.append(None if value is None else to_cents(value))
        else:
            assignments.append(f"{name} = ?")
            params.append(_db_value(value))
    params.append(line_id)

    conn = _connect(cfg)
    try:
        conn.execute(
            f"UPDATE bank_statements SET {', '.join(assignments)} WHERE id = ?;",
            params,
        )
        conn.commit()
    finally:
        conn.close()


def count_statements_with_prefix(cfg: DatabaseConfig, prefix: str) -> int:
    conn = _connect(cfg)
    try:
        cur = conn.execute(
            "SELECT COUNT(*) FROM bank_statements WHERE id LIKE ?;", (prefix + "%",)
        )
        return int(cur.fetchone()[0])
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Public API: reference data
# ---------------------------------------------------------------------------


def _replace_all(conn: sqlite3.Connection, table: str, rows: list[dict[str, Any]]) -> None:
    conn.execute(f"DELETE FROM {table};")
    if rows:
        columns = list(rows[0])
        conn.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)});",
            [[_db_value(row[col]) for col in columns] for row in rows],
        )


def _save_reference(cfg: DatabaseConfig, table: str, rows: list[dict[str, Any]]) -> None:
    conn = _connect(cfg)
    try:
        with conn:
            _replace_all(conn, table, rows)
    finally:
        conn.close()


def _load_reference(cfg: DatabaseConfig, table: str, order_by: str) -> list[sqlite3.Row]:
    conn = _connect(cfg)
    try:
        return conn.execute(f"SELECT * FROM {table} ORDER BY {order_by};").fetchall()
    finally:
        conn.close()


def save_accounts(cfg: DatabaseConfig, accounts: Iterable[Account]) -> None:
    """Replace the chart of accounts."""
    _save_reference(
        cfg,
        "accounts",
        [
            {
                "code": acc.code,
                "description": acc.description,
                "type": acc.type,
                "dre_group": acc.dre_group,
                "dre_subgroup": acc.dre_subgroup,
                "cashflow_category": acc.cashflow_category,
                "fixed_variable": acc.fixed_variable,
                "cost_classification": acc.cost_classification,
            }
            for acc in accounts
        ],
    )


def load_accounts(cfg: DatabaseConfig) -> list[Account]:
    return [
        Account(
            code=row["code"],
            description=row["description"],
            type=AccountType(row["type"]),
            dre_group=row["dre_group"],
            dre_subgroup=row["dre_subgroup"],
            cashflow_category=_enum_or_none(CashflowCategory, row["cashflow_category"]),
            fixed_variable=_enum_or_none(ExpenseNature, row["fixed_variable"]),
            cost_classification=_enum_or_none(
                CostClassification, row["cost_classification"]
            ),
        )
        for row in _load_reference(cfg, "accounts", "code")
    ]


def save_branches(cfg: DatabaseConfig, branches: Iterable[Branch]) -> None:
    _save_reference(
        cfg,
        "branches",
        [{"id": b.id, "name": b.name, "active": b.active} for b in branches],
    )


def load_branches(cfg: DatabaseConfig) -> list[Branch]:
    return [
        Branch(id=row["id"], name=row["name"], active=bool(row["active"]))
        for row in _load_reference(cfg, "branches", "id")
    ]


def save_channels(cfg: DatabaseConfig, channels: Iterable[Channel]) -> None:
    _save_reference(
        cfg,
        "channels",
        [{"id": c.id, "name": c.name, "revenue_group": c.revenue_group} for c in channels],
    )


def load_channels(cfg: DatabaseConfig) -> list[Channel]:
    return [
        Channel(
            id=row["id"],
            name=row["name"],
            revenue_group=_enum_or_none(RevenueGroup, row["revenue_group"]),
        )
        for row in _load_reference(cfg, "channels", "id")
    ]


def save_cost_centers(cfg: DatabaseConfig, cost_centers: Iterable[CostCenter]) -> None:
    _save_reference(
        cfg, "cost_centers", [{"id": c.id, "name": c.name} for c in cost_centers]
    )


def load_cost_centers(cfg: DatabaseConfig) -> list[CostCenter]:
    return [
        CostCenter(id=row["id"], name=row["name"])
        for row in _load_reference(cfg, "cost_centers", "id")
    ]


def lock_period(cfg: DatabaseConfig, period_label: str) -> None:
    """Mark a 'YYYY-MM' period as closed. Locking twice is a no-op."""
    conn = _connect(cfg)
    try:
        conn.execute(
            "INSERT OR IGNORE INTO locked_periods (period, locked_at) VALUES (?, ?);",
            (period_label, _now_utc_iso()),
        )
        conn.commit()
    finally:
        conn.close()


def unlock_period(cfg: DatabaseConfig, period_label: str) -> None:
    conn = _connect(cfg)
    try:
        conn.execute("DELETE FROM locked_periods WHERE period = ?;", (period_label,))
        conn.commit()
    finally:
        conn.close()


def load_locked_periods(cfg: DatabaseConfig) -> set[str]:
    return {row["period"] for row in _load_reference(cfg, "locked_periods", "period")}


# ---------------------------------------------------------------------------
# Public API: report tables
# ---------------------------------------------------------------------------


def replace_report_rows(
    cfg: DatabaseConfig,
    table: str,
    *,
    period: str,
    branch: Optional[str],
    channel: Optional[str],
    rows: Iterable[Mapping[str, Any]],
) -> int:
    """
    Replace the rows of one (period, branch, channel) key of a report table.

    The delete and the inserts run in a single transaction: either the new
    rows fully replace the previous ones or nothing changes.

    Returns
    -------
    int
        Number of rows written.
    """
    if table not in REPORT_TABLES:
        raise ValueError(f"Unknown report table: {table!r}")
    value_columns = REPORT_TABLES[table]
    key = (period, branch or "", channel or "")
    generated_at = _now_utc_iso()

    payload = []
    for row in rows:
        missing = [col for col in value_columns if col not in row]
        if missing:
            raise ValueError(f"Report row for {table} is missing column(s): {missing}")
        payload.append(
            [*key, *(_db_value(row[col]) for col in value_columns), generated_at]
        )

    all_columns = (*REPORT_KEY_COLUMNS, *value_columns, "generated_at")
    conn = _connect(cfg)
    try:
        with conn:
            conn.execute(
                f"DELETE FROM {table} WHERE period = ? AND branch = ? AND channel = ?;",
                key,
            )
            if payload:
                conn.executemany(
                    f"INSERT INTO {table} ({', '.join(all_columns)}) "
                    f"VALUES ({', '.join('?' for _ in all_columns)});",
                    payload,
                )
    finally:
        conn.close()
    return len(payload)


def load_report_rows(
    cfg: DatabaseConfig,
    table: str,
    *,
    period: Optional[str] = None,
    branch: Optional[str] = None,
    channel: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read a report table into a DataFrame (without the generated_at column).

    ``branch``/``channel`` left as None return every key of the period; pass
    an empty string to select the consolidated rows only.
    """
    if table not in REPORT_TABLES:
        raise ValueError(f"Unknown report table: {table!r}")
    columns = (*REPORT_KEY_COLUMNS, *REPORT_TABLES[table])

    where_clauses: list[str] = ["1 = 1"]
    params: list[object] = []
    for column, value in (("period", period), ("branch", branch), ("channel", channel)):
        if value is not None:
            where_clauses.append(f"{column} = ?")
            params.append(value)

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"SELECT {', '.join(columns)} FROM {table} "
            f"WHERE {' AND '.join(where_clauses)} ORDER BY rowid;",
            params,
        ).fetchall()
    finally:
        conn.close()
    return pd.DataFrame([tuple(row) for row in rows], columns=list(columns))
