# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Error taxonomy and operation results for Caixa Core.

Core calculators and services raise the exceptions defined here and let
them propagate. The API boundary (api.py) converts them into
`OperationResult` values carrying a human-readable message, and batch
operations collect per-item failures into a `BatchResult`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class CaixaError(Exception):
    """Base class for every error raised by Caixa Core."""


class ValidationError(CaixaError, ValueError):
    """
    A record or request violates a business rule.

    Attributes
    ----------
    errors:
        Individual rule violations. The exception message joins them.
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class PeriodLockedError(ValidationError):
    """The accounting period of an entry is closed for changes."""


class NotFoundError(CaixaError, LookupError):
    """A referenced record (ledger entry, bank line, account) is missing."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} não encontrado: {key}")


class LockTimeoutError(CaixaError, TimeoutError):
    """The advisory document lock could not be acquired in time."""

    def __init__(self, scope: str, timeout: float):
        self.scope = scope
        self.timeout = timeout
        super().__init__(
            f"Não foi possível obter o lock '{scope}' em {timeout:g}s. "
            "Tente novamente em instantes."
        )


class BudgetExceededError(CaixaError):
    """A batch job ran past its wall-clock budget."""

    def __init__(self, last_completed_step: str, elapsed: float, budget: float):
        self.last_completed_step = last_completed_step
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(
            f"Tempo de execução excedido após '{last_completed_step}' "
            f"({elapsed:.1f}s de {budget:.0f}s)"
        )


class ComputationError(CaixaError):
    """A report could not be computed. The original error is chained."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"Não foi possível calcular {what}")


class ReferenceIntegrityWarning(UserWarning):
    """An entry points at reference data (account, branch, ...) that is unknown."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a mutation at the API boundary."""

    success: bool
    message: str
    data: Any = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> OperationResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str) -> OperationResult:
        return cls(success=False, message=message)


@dataclass
class BatchResult:
    """
    Outcome of a batch operation (bulk payment, auto reconciliation, ...).

    Per-item failures never abort the batch; they are recorded as
    ``(item_id, reason)`` pairs.
    """

    processed: int = 0
    succeeded: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_failure(self, item_id: str, reason: str) -> None:
        self.processed += 1
        self.failures.append((item_id, reason))

    @property
    def failed(self) -> int:
        return len(self.failures)
