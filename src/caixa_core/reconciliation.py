# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Bank reconciliation matcher.

Links imported bank statement lines to ledger entries. A line is PENDING
until it is linked; linking sets the line's ``ledger_entry_id`` and the
entry's ``bank_statement_id`` together under the document lock, unlinking
clears both.

Matching algorithm
------------------
Candidates for a line are the ledger entries that are not linked to any
line and not CANCELED, whose net amount equals the line amount (in
magnitude, debits may come negative) within the configured tolerance.
Credits only settle receivables; debits settle every other entry type.

Confidence starts at 50 and grows with the proximity of the entry's
payment date to the movement date:

    same day      +40
    up to 3 days  +30
    up to 7 days  +10
    beyond        not a candidate

A REALIZED entry adds 10 more. Entries without a payment date keep the
base score.

Three ways to commit matches:
- ``auto_reconcile``: best suggestion per pending line at or above a
  confidence threshold,
- ``bulk_reconcile``: greedy pass over the pending lines, grouping
  candidates by amount and taking the closest date within a window,
- ``reconcile`` / ``unreconcile``: manual link and unlink.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Optional

from .cache import Cache
from .budget import ExecutionBudget
from .config import ReconciliationSettings
from .errors import BatchResult, NotFoundError
from .locking import DOCUMENT_SCOPE, LockProvider
from .models import (
    BankStatementLine,
    EntryStatus,
    EntryType,
    LedgerEntry,
    MatchSuggestion,
)
from .money import money_equals, round_money
from .periods import diff_days
from .stores import BankStatementStore, LedgerStore

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 50
REALIZED_BONUS = 10
MAX_DAY_DISTANCE = 7


def date_bonus(days: int) -> Optional[int]:
    """Confidence bonus for a day distance, None when too far apart."""
    distance = abs(days)
    if distance == 0:
        return 40
    if distance <= 3:
        return 30
    if distance <= MAX_DAY_DISTANCE:
        return 10
    return None


def amount_key(value: float) -> str:
    return f"{abs(round_money(value)):.2f}"


def matches_direction(line: BankStatementLine, entry: LedgerEntry) -> bool:
    """True when the movement's sign agrees with the entry's cash direction."""
    if line.amount < 0:
        return entry.type is not EntryType.RECEIVABLE
    return entry.type is EntryType.RECEIVABLE


@dataclass(frozen=True)
class ReconciliationSummary:
    total_lines: int
    reconciled: int
    pending: int
    pending_amount: float


class ReconciliationMatcher:
    def __init__(
        self,
        ledger: LedgerStore,
        statements: BankStatementStore,
        lock: LockProvider,
        cache: Cache,
        settings: ReconciliationSettings = ReconciliationSettings(),
        lock_timeout: Optional[float] = None,
    ):
        self.ledger = ledger
        self.statements = statements
        self.lock = lock
        self.cache = cache
        self.settings = settings
        self.lock_timeout = lock_timeout

    # -- lookups ------------------------------------------------------------

    def _require_line(self, line_id: str) -> BankStatementLine:
        line = self.statements.get_statement_by_id(line_id)
        if line is None:
            raise NotFoundError("Extrato", line_id)
        return line

    def _require_entry(self, entry_id: str) -> LedgerEntry:
        entry = self.ledger.get_entry_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Lançamento", entry_id)
        return entry

    def _open_entries(self) -> list[LedgerEntry]:
        return [
            entry
            for entry in self.ledger.list_entries()
            if entry.bank_statement_id is None and entry.status is not EntryStatus.CANCELED
        ]

    # -- suggestions --------------------------------------------------------

    def suggest_matches(self, bank_line_id: str) -> list[MatchSuggestion]:
        """
        Ranked candidate entries for a bank line, best first.

        Raises
        ------
        NotFoundError
            If the bank line does not exist.
        """
        line = self._require_line(bank_line_id)
        return self._suggestions_for(line, self._open_entries())

    def _suggestions_for(
        self, line: BankStatementLine, candidates: Iterable[LedgerEntry]
    ) -> list[MatchSuggestion]:
        suggestions: list[MatchSuggestion] = []
        for entry in candidates:
            if not matches_direction(line, entry):
                continue
            if not money_equals(abs(line.amount), entry.net_amount, self.settings.amount_tolerance):
                continue

            confidence = BASE_CONFIDENCE
            days: Optional[int] = None
            if entry.payment_date is not None:
                days = diff_days(line.movement_date, entry.payment_date)
                bonus = date_bonus(days)
                if bonus is None:
                    continue
                confidence += bonus
            if entry.status is EntryStatus.REALIZED:
                confidence += REALIZED_BONUS

            suggestions.append(
                MatchSuggestion(
                    bank_line_id=line.id,
                    ledger_entry_id=entry.id,
                    confidence=confidence,
                    reason=f"Valor igual, diferença de {'?' if days is None else days} dias",
                    day_difference=days,
                )
            )
        suggestions.sort(key=lambda s: (-s.confidence, s.ledger_entry_id))
        return suggestions

    # -- manual link / unlink -----------------------------------------------

    def reconcile(self, bank_line_id: str, ledger_entry_id: str) -> None:
        """
        Link a bank line and a ledger entry.

        The link is set unconditionally (no amount or date check) and the
        entry takes the movement date as its payment date. A previous
        partner of either side is released first.
        """
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            self._link(bank_line_id, ledger_entry_id)
        self.cache.invalidate_reports()

    def unreconcile(self, bank_line_id: str) -> None:
        """Clear the link of a bank line. A pending line is left untouched."""
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            line = self._require_line(bank_line_id)
            if not line.reconciled:
                return
            with self._undo_on_error() as undo:
                self._unlink(line, undo)
        self.cache.invalidate_reports()

    @contextmanager
    def _undo_on_error(self) -> Iterator[list[Callable[[], None]]]:
        """
        Collect compensating writes and replay them, newest first, when the
        block fails. The original error is re-raised.
        """
        undo: list[Callable[[], None]] = []
        try:
            yield undo
        except Exception:
            for action in reversed(undo):
                try:
                    action()
                except Exception:  # noqa: BLE001
                    logger.exception("Could not restore a reconciliation write")
            raise

    def _write_line(
        self,
        line: BankStatementLine,
        changes: dict[str, Any],
        undo: list[Callable[[], None]],
    ) -> None:
        before = {name: getattr(line, name) for name in changes}
        self.statements.update_statement(line.id, changes)
        undo.append(lambda: self.statements.update_statement(line.id, before))

    def _write_entry(
        self,
        entry: LedgerEntry,
        changes: dict[str, Any],
        undo: list[Callable[[], None]],
    ) -> None:
        before = {name: getattr(entry, name) for name in changes}
        self.ledger.update_entry(entry.id, changes)
        undo.append(lambda: self.ledger.update_entry(entry.id, before))

    def _link(self, bank_line_id: str, ledger_entry_id: str) -> None:
        line = self._require_line(bank_line_id)
        entry = self._require_entry(ledger_entry_id)

        # Both sides are written together or not at all.
        with self._undo_on_error() as undo:
            if line.reconciled and line.ledger_entry_id != entry.id:
                self._unlink(line, undo)
            if entry.bank_statement_id and entry.bank_statement_id != line.id:
                previous = self.statements.get_statement_by_id(entry.bank_statement_id)
                if previous is not None and previous.ledger_entry_id == entry.id:
                    self._write_line(
                        previous, {"reconciled": False, "ledger_entry_id": None}, undo
                    )

            self._write_line(line, {"reconciled": True, "ledger_entry_id": entry.id}, undo)
            self._write_entry(
                entry,
                {"bank_statement_id": line.id, "payment_date": line.movement_date},
                undo,
            )
        logger.info("Reconciled %s <-> %s", line.id, entry.id)

    def _unlink(self, line: BankStatementLine, undo: list[Callable[[], None]]) -> None:
        if line.ledger_entry_id:
            entry = self.ledger.get_entry_by_id(line.ledger_entry_id)
            if entry is not None and entry.bank_statement_id == line.id:
                self._write_entry(entry, {"bank_statement_id": None}, undo)
        self._write_line(line, {"reconciled": False, "ledger_entry_id": None}, undo)
        logger.info("Unreconciled %s", line.id)

    # -- batch matching -----------------------------------------------------

    def _commit(self, line_id: str, entry_id: str, result: BatchResult) -> bool:
        """Link one pair inside a batch; a failure is recorded, not raised."""
        try:
            self._link(line_id, entry_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to reconcile %s with %s: %s", line_id, entry_id, exc)
            result.record_failure(line_id, str(exc))
            return False
        result.record_success()
        return True

    def auto_reconcile(
        self,
        min_confidence: Optional[int] = None,
        budget: Optional[ExecutionBudget] = None,
    ) -> BatchResult:
        """
        Commit the best suggestion of every pending line scoring at least
        ``min_confidence``. An entry is matched to at most one line per run.

        Links committed before an exceeded ``budget`` are kept.
        """
        threshold = self.settings.min_confidence if min_confidence is None else min_confidence
        result = BatchResult()
        consumed: set[str] = set()

        try:
            with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
                for line in self.statements.list_statements(reconciled=False):
                    candidates = [e for e in self._open_entries() if e.id not in consumed]
                    suggestions = self._suggestions_for(line, candidates)
                    if suggestions and suggestions[0].confidence >= threshold:
                        best = suggestions[0].ledger_entry_id
                        if self._commit(line.id, best, result):
                            consumed.add(best)
                    if budget is not None:
                        budget.check(f"conciliação {line.id}")
        finally:
            if result.succeeded:
                self.cache.invalidate_reports()

        logger.info(
            "Auto reconciliation: %d matched, %d failed", result.succeeded, result.failed
        )
        return result

    def bulk_reconcile(
        self,
        window_days: Optional[int] = None,
        budget: Optional[ExecutionBudget] = None,
    ) -> BatchResult:
        """
        Greedy matching of every pending line.

        Candidates are grouped by amount; credits look at receivables and
        debits at every other type. Each line takes the candidate with the closest
        date (payment, then due, then accrual date) inside the window; a
        taken entry leaves the pool.
        """
        window = self.settings.date_window_days if window_days is None else window_days
        result = BatchResult()

        try:
            with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
                pool: dict[str, list[LedgerEntry]] = defaultdict(list)
                for entry in self._open_entries():
                    pool[amount_key(entry.net_amount)].append(entry)

                for line in self.statements.list_statements(reconciled=False):
                    candidates = pool.get(amount_key(line.amount), [])
                    best = self._closest_candidate(line, candidates, window)
                    if best is not None and self._commit(line.id, best.id, result):
                        candidates.remove(best)
                    if budget is not None:
                        budget.check(f"conciliação {line.id}")
        finally:
            if result.succeeded:
                self.cache.invalidate_reports()

        logger.info("Bulk reconciliation: %d matched, %d failed", result.succeeded, result.failed)
        return result

    @staticmethod
    def _closest_candidate(
        line: BankStatementLine, candidates: list[LedgerEntry], window: int
    ) -> Optional[LedgerEntry]:
        best: Optional[LedgerEntry] = None
        best_distance: Optional[int] = None
        for entry in candidates:
            if not matches_direction(line, entry):
                continue
            reference: date = entry.payment_date or entry.due_date or entry.accrual_date
            distance = abs(diff_days(line.movement_date, reference))
            if distance > window:
                continue
            if best_distance is None or (distance, entry.id) < (best_distance, best.id):
                best, best_distance = entry, distance
        return best

    # -- statements ---------------------------------------------------------

    def import_statements(self, lines: Iterable[BankStatementLine]) -> int:
        """
        Store new statement lines as PENDING with fresh ``EB<year>-`` ids.

        Ids and link fields of the given lines are ignored.
        """
        lines = list(lines)
        if not lines:
            return 0
        with self.lock.acquire(DOCUMENT_SCOPE, self.lock_timeout):
            by_year: dict[int, list[int]] = defaultdict(list)
            for index, line in enumerate(lines):
                by_year[line.movement_date.year].append(index)
            fresh: list[Optional[BankStatementLine]] = [None] * len(lines)
            for year, indexes in by_year.items():
                ids = self.statements.next_statement_ids(year, len(indexes))
                for index, new_id in zip(indexes, ids):
                    fresh[index] = replace(
                        lines[index], id=new_id, reconciled=False, ledger_entry_id=None
                    )
            count = self.statements.import_statements(fresh)
        self.cache.invalidate_reports()
        logger.info("Imported %d bank statement line(s)", count)
        return count

    def pending_summary(self) -> ReconciliationSummary:
        lines = self.statements.list_statements()
        pending = [line for line in lines if not line.reconciled]
        return ReconciliationSummary(
            total_lines=len(lines),
            reconciled=len(lines) - len(pending),
            pending=len(pending),
            pending_amount=round_money(sum(line.amount for line in pending)),
        )
