# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Store ports and their SQLite adapters.

Calculators and services depend only on the abstract ports defined here.
The SQLite adapters delegate to db.py and make sure the schema exists
before the first access.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from . import db
from .db import DatabaseConfig, LedgerFilter
from .models import (
    Account,
    BankStatementLine,
    Branch,
    Channel,
    CostCenter,
    LedgerEntry,
)

__all__ = [
    "LedgerFilter",
    "LedgerStore",
    "BankStatementStore",
    "ReferenceStore",
    "SqliteLedgerStore",
    "SqliteBankStatementStore",
    "SqliteReferenceStore",
]


class LedgerStore(ABC):
    """Port for reading and mutating ledger entries."""

    @abstractmethod
    def list_entries(self, filters: LedgerFilter = LedgerFilter()) -> list[LedgerEntry]:
        """Return entries matching ``filters`` ordered by accrual date and id."""
        raise NotImplementedError

    @abstractmethod
    def get_entry_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        raise NotImplementedError

    @abstractmethod
    def create_entry(self, entry: LedgerEntry) -> LedgerEntry:
        raise NotImplementedError

    @abstractmethod
    def update_entry(self, entry_id: str, changes: Mapping[str, Any]) -> None:
        """Apply a partial update given as LedgerEntry field names."""
        raise NotImplementedError

    @abstractmethod
    def next_entry_id(self, year: int) -> str:
        """Return an unused ledger id of the form ``L<year>-<6 digits>``."""
        raise NotImplementedError


class BankStatementStore(ABC):
    """Port for imported bank statement lines."""

    @abstractmethod
    def list_statements(self, reconciled: Optional[bool] = None) -> list[BankStatementLine]:
        raise NotImplementedError

    @abstractmethod
    def get_statement_by_id(self, line_id: str) -> Optional[BankStatementLine]:
        raise NotImplementedError

    @abstractmethod
    def import_statements(self, lines: Iterable[BankStatementLine]) -> int:
        raise NotImplementedError

    @abstractmethod
    def update_statement(self, line_id: str, changes: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def next_statement_ids(self, year: int, count: int) -> list[str]:
        """Return ``count`` unused ids of the form ``EB<year>-<6 digits>``."""
        raise NotImplementedError


class ReferenceStore(ABC):
    """Port for master data (chart of accounts, branches, ...)."""

    @abstractmethod
    def load_accounts(self) -> list[Account]:
        raise NotImplementedError

    @abstractmethod
    def load_branches(self) -> list[Branch]:
        raise NotImplementedError

    @abstractmethod
    def load_channels(self) -> list[Channel]:
        raise NotImplementedError

    @abstractmethod
    def load_cost_centers(self) -> list[CostCenter]:
        raise NotImplementedError

    @abstractmethod
    def load_locked_periods(self) -> set[str]:
        """Return the ``YYYY-MM`` labels of closed periods."""
        raise NotImplementedError

    @abstractmethod
    def lock_period(self, period_label: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def unlock_period(self, period_label: str) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# SQLite adapters
# ---------------------------------------------------------------------------


class _SqliteAdapter:
    def __init__(self, cfg: DatabaseConfig):
        self.cfg = cfg
        db.init_database(cfg)


class SqliteLedgerStore(_SqliteAdapter, LedgerStore):
    def list_entries(self, filters: LedgerFilter = LedgerFilter()) -> list[LedgerEntry]:
        return db.search_entries(self.cfg, filters)

    def get_entry_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        return db.get_entry_by_id(self.cfg, entry_id)

    def create_entry(self, entry: LedgerEntry) -> LedgerEntry:
        return db.insert_entry(self.cfg, entry)

    def update_entry(self, entry_id: str, changes: Mapping[str, Any]) -> None:
        db.update_entry(self.cfg, entry_id, changes)

    def next_entry_id(self, year: int) -> str:
        prefix = f"L{year}-"
        seq = db.count_entries_with_prefix(self.cfg, prefix) + 1
        while db.entry_exists(self.cfg, f"{prefix}{seq:06d}"):
            seq += 1
        return f"{prefix}{seq:06d}"


class SqliteBankStatementStore(_SqliteAdapter, BankStatementStore):
    def list_statements(self, reconciled: Optional[bool] = None) -> list[BankStatementLine]:
        return db.list_statements(self.cfg, reconciled)

    def get_statement_by_id(self, line_id: str) -> Optional[BankStatementLine]:
        return db.get_statement_by_id(self.cfg, line_id)

    def import_statements(self, lines: Iterable[BankStatementLine]) -> int:
        return db.insert_statements(self.cfg, lines)

    def update_statement(self, line_id: str, changes: Mapping[str, Any]) -> None:
        db.update_statement(self.cfg, line_id, changes)

    def next_statement_ids(self, year: int, count: int) -> list[str]:
        prefix = f"EB{year}-"
        seq = db.count_statements_with_prefix(self.cfg, prefix) + 1
        ids: list[str] = []
        while len(ids) < count:
            candidate = f"{prefix}{seq:06d}"
            if db.get_statement_by_id(self.cfg, candidate) is None:
                ids.append(candidate)
            seq += 1
        return ids


class SqliteReferenceStore(_SqliteAdapter, ReferenceStore):
    def load_accounts(self) -> list[Account]:
        return db.load_accounts(self.cfg)

    def load_branches(self) -> list[Branch]:
        return db.load_branches(self.cfg)

    def load_channels(self) -> list[Channel]:
        return db.load_channels(self.cfg)

    def load_cost_centers(self) -> list[CostCenter]:
        return db.load_cost_centers(self.cfg)

    def load_locked_periods(self) -> set[str]:
        return db.load_locked_periods(self.cfg)

    def lock_period(self, period_label: str) -> None:
        db.lock_period(self.cfg, period_label)

    def unlock_period(self, period_label: str) -> None:
        db.unlock_period(self.cfg, period_label)
