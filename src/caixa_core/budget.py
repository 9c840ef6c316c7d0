# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""Wall-clock budget of batch jobs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional

from .errors import BudgetExceededError

logger = logging.getLogger(__name__)

DEFAULT_MAX_SECONDS = 330.0


class ExecutionBudget:
    """
    Tracks the time spent by a batch job.

    ``check(step)`` is called after each completed step; once the elapsed
    time exceeds ``max_seconds`` it raises `BudgetExceededError` naming
    the last step that completed.
    """

    def __init__(
        self,
        max_seconds: float = DEFAULT_MAX_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_seconds = max_seconds
        self._clock = clock
        self._started = clock()
        self.last_completed_step: Optional[str] = None

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    @property
    def remaining(self) -> float:
        return max(self.max_seconds - self.elapsed, 0.0)

    def check(self, step: str) -> None:
        self.last_completed_step = step
        elapsed = self.elapsed
        if elapsed > self.max_seconds:
            logger.warning("Execution budget exceeded after %r (%.1fs)", step, elapsed)
            raise BudgetExceededError(step, elapsed, self.max_seconds)
