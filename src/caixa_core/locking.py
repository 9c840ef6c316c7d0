# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Advisory document lock.

Read-then-write mutations (payments, reconciliation, imports) serialize on
a named scope. The lock is released on every exit path of the ``with``
block; failing to acquire it within the timeout raises
`LockTimeoutError`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from .errors import LockTimeoutError

logger = logging.getLogger(__name__)

DOCUMENT_SCOPE = "document"
DEFAULT_TIMEOUT_SECONDS = 5.0


class LockProvider(ABC):
    """Port for the advisory lock."""

    @abstractmethod
    def acquire(self, scope: str = DOCUMENT_SCOPE, timeout: Optional[float] = None):
        """Context manager holding ``scope`` for the duration of the block."""
        raise NotImplementedError


class ThreadLockProvider(LockProvider):
    """In-process lock provider, one `threading.Lock` per scope."""

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.default_timeout = default_timeout
        self._locks: dict[str, threading.Lock] = {}
        self._registry = threading.Lock()

    def _lock_for(self, scope: str) -> threading.Lock:
        with self._registry:
            return self._locks.setdefault(scope, threading.Lock())

    @contextmanager
    def acquire(
        self, scope: str = DOCUMENT_SCOPE, timeout: Optional[float] = None
    ) -> Iterator[None]:
        wait = self.default_timeout if timeout is None else timeout
        lock = self._lock_for(scope)
        if not lock.acquire(timeout=wait):
            logger.warning("Lock %r not acquired within %.1fs", scope, wait)
            raise LockTimeoutError(scope, wait)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, scope: str = DOCUMENT_SCOPE) -> bool:
        return self._lock_for(scope).locked()
