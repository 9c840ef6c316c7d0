# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Ledger mutation service.

This module sits between the ledger store and the user-facing layers
(API boundary, CLI, CSV import). It owns every write to ledger entries:

1) Creation
   - Validate the entry (amounts, dates, required fields).
   - Check its references (branch, channel, cost center, account) against
     the master data; unknown references are rejected.
   - Refuse entries accrued in a closed period.
   - Assign the next ``L<year>-<seq>`` id.

2) Updates
   - Partial updates merged into the current entry and validated again.
     The net amount is recomputed when one of its components changes.
   - Cancellation (soft delete through the CANCELED status).
   - Payment / receipt: FORECAST -> REALIZED with a payment date, one by
     one or in bulk.

3) Closed periods
   - Locking and unlocking accounting periods.

Every mutation runs under the document lock and drops the cached reports
before returning.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import fields, replace
from datetime import date, datetime
from typing import Any, Optional

from .cache import Cache
from .errors import BatchResult, CaixaError, NotFoundError, ValidationError
from .locking import DOCUMENT_SCOPE, LockProvider
from .models import EntryStatus, EntryType, LedgerEntry
from .periods import Period
from .reference import ReferenceDataResolver
from .stores import LedgerStore, ReferenceStore
from .validation import ensure_period_open, ensure_valid

logger = logging.getLogger(__name__)

_READ_ONLY_FIELDS = {"id", "bank_statement_id"}


def changed_fields(before: LedgerEntry, after: LedgerEntry) -> dict[str, Any]:
    """Field names whose value differs between two versions of an entry."""
    return {
        f.name: getattr(after, f.name)
        for f in fields(LedgerEntry)
        if getattr(before, f.name) != getattr(after, f.name)
    }


class LedgerService:
    def __init__(
        self,
        store: LedgerStore,
        resolver: ReferenceDataResolver,
        cache: Cache,
        lock: LockProvider,
        reference_store: Optional[ReferenceStore] = None,
        lock_timeout: Optional[float] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.cache = cache
        self.lock = lock
        self.reference_store = reference_store
        self.lock_timeout = lock_timeout

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _today(today: Optional[date]) -> date:
        return today or datetime.today().date()

    def _require(self, entry_id: str) -> LedgerEntry:
        entry = self.store.get_entry_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Lançamento", entry_id)
        return entry

    def _save_changes(self, before: LedgerEntry, after: LedgerEntry) -> LedgerEntry:
        changes = changed_fields(before, after)
        if changes:
            self.store.update_entry(before.id, changes)
        return after

    # -- creation -----------------------------------------------------------

    def create_entry(self, entry: LedgerEntry, *, today: Optional[date] = None) -> LedgerEntry:
        """
        Validate and store a new entry. The id of ``entry`` is ignored.

        Raises
        ------
        ValidationError
            If a rule or a reference check fails.
        PeriodLockedError
            If the accrual period is closed.
        """
        ensure_valid(
            entry,
            today=self._today(today),
            references=self.resolver.reference_sets(),
        )
        ensure_period_open(entry.accrual_date, self.resolver.locked_periods())

        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            new_id = self.store.next_entry_id(entry.accrual_date.year)
            created = self.store.create_entry(replace(entry, id=new_id, bank_statement_id=None))
        self.cache.invalidate_reports()
        logger.info(
            "Created ledger entry %s (%s %.2f)",
            created.id,
            created.type.value,
            created.net_amount,
        )
        return created

    def create_entries(
        self, entries: Iterable[LedgerEntry], *, today: Optional[date] = None
    ) -> BatchResult:
        """Create several entries; invalid ones are reported, not raised."""
        result = BatchResult()
        for index, entry in enumerate(entries, start=1):
            try:
                self.create_entry(entry, today=today)
            except CaixaError as exc:
                logger.error("Entry #%d rejected: %s", index, exc)
                result.record_failure(f"#{index}", str(exc))
            else:
                result.record_success()
        return result

    # -- updates ------------------------------------------------------------

    def update_entry(
        self,
        entry_id: str,
        changes: Mapping[str, Any],
        *,
        today: Optional[date] = None,
    ) -> LedgerEntry:
        """
        Merge ``changes`` (LedgerEntry field names) into an entry.

        The id and the bank link cannot be changed here; reconciliation
        owns the link.
        """
        forbidden = _READ_ONLY_FIELDS.intersection(changes)
        if forbidden:
            raise ValidationError(
                [f"Campo não editável: {name}" for name in sorted(forbidden)]
            )

        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            current = self._require(entry_id)
            locked = self.resolver.locked_periods()
            ensure_period_open(current.accrual_date, locked)

            updated = current.with_changes(**dict(changes))
            ensure_period_open(updated.accrual_date, locked)
            ensure_valid(
                updated,
                today=self._today(today),
                references=self.resolver.reference_sets(),
            )
            self._save_changes(current, updated)

        self.cache.invalidate_reports()
        logger.info("Updated ledger entry %s (%s)", entry_id, ", ".join(sorted(changes)))
        return updated

    def cancel_entry(self, entry_id: str, reason: Optional[str] = None) -> LedgerEntry:
        """
        Soft-delete an entry. A reconciled entry must be unreconciled first.
        """
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            current = self._require(entry_id)
            ensure_period_open(current.accrual_date, self.resolver.locked_periods())
            if current.is_reconciled:
                raise ValidationError(
                    f"Lançamento {entry_id} está conciliado e não pode ser cancelado"
                )
            notes = reason if reason else current.notes
            updated = replace(current, status=EntryStatus.CANCELED, notes=notes)
            self._save_changes(current, updated)

        self.cache.invalidate_reports()
        logger.info("Canceled ledger entry %s", entry_id)
        return updated

    # -- payments -----------------------------------------------------------

    def _realize(
        self,
        entry_id: str,
        payment_date: date,
        today: date,
        expected_type: Optional[EntryType] = None,
    ) -> LedgerEntry:
        current = self._require(entry_id)
        if expected_type is not None and current.type is not expected_type:
            raise ValidationError(
                f"Lançamento {entry_id} é do tipo {current.type.value}, "
                f"esperado {expected_type.value}"
            )
        if current.status is EntryStatus.CANCELED:
            raise ValidationError(f"Lançamento {entry_id} está cancelado")
        ensure_period_open(current.accrual_date, self.resolver.locked_periods())

        updated = replace(current, status=EntryStatus.REALIZED, payment_date=payment_date)
        ensure_valid(updated, today=today)
        return self._save_changes(current, updated)

    def mark_as_realized(
        self, entry_id: str, payment_date: date, *, today: Optional[date] = None
    ) -> LedgerEntry:
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            updated = self._realize(entry_id, payment_date, self._today(today))
        self.cache.invalidate_reports()
        logger.info("Ledger entry %s realized on %s", entry_id, payment_date.isoformat())
        return updated

    def mark_as_paid(
        self, entry_id: str, payment_date: date, *, today: Optional[date] = None
    ) -> LedgerEntry:
        """Register the payment of an account payable."""
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            updated = self._realize(
                entry_id, payment_date, self._today(today), EntryType.PAYABLE
            )
        self.cache.invalidate_reports()
        logger.info("Ledger entry %s paid on %s", entry_id, payment_date.isoformat())
        return updated

    def mark_as_received(
        self, entry_id: str, payment_date: date, *, today: Optional[date] = None
    ) -> LedgerEntry:
        """Register the receipt of an account receivable."""
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            updated = self._realize(
                entry_id, payment_date, self._today(today), EntryType.RECEIVABLE
            )
        self.cache.invalidate_reports()
        logger.info("Ledger entry %s received on %s", entry_id, payment_date.isoformat())
        return updated

    def pay_entries(
        self,
        entry_ids: Iterable[str],
        payment_date: date,
        *,
        today: Optional[date] = None,
    ) -> BatchResult:
        """
        Realize several entries at ``payment_date`` under a single lock.

        Failures (unknown id, canceled entry, closed period, ...) are
        recorded per entry and never stop the batch.
        """
        result = BatchResult()
        business_date = self._today(today)
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            for entry_id in entry_ids:
                try:
                    self._realize(entry_id, payment_date, business_date)
                except CaixaError as exc:
                    logger.error("Failed to pay %s: %s", entry_id, exc)
                    result.record_failure(entry_id, str(exc))
                else:
                    result.record_success()
        if result.succeeded:
            self.cache.invalidate_reports()
        logger.info("Bulk payment: %d paid, %d failed", result.succeeded, result.failed)
        return result

    # -- closed periods -----------------------------------------------------

    def _reference_store(self) -> ReferenceStore:
        if self.reference_store is None:
            raise CaixaError("Nenhum repositório de dados de referência configurado")
        return self.reference_store

    def lock_period(self, period: Period) -> None:
        self._reference_store().lock_period(period.label)
        self.resolver.invalidate()
        logger.info("Period %s locked", period.label)

    def unlock_period(self, period: Period) -> None:
        self._reference_store().unlock_period(period.label)
        self.resolver.invalidate()
        logger.info("Period %s unlocked", period.label)
