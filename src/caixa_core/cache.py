# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Namespaced time-to-live cache.

Reference data is cached for an hour; computed reports (DRE, DFC, KPI) for
two minutes. Every ledger or reconciliation mutation drops the report
namespaces before returning, so a reader never sees a report computed
before a mutation that has already been acknowledged.

The cache is injected into the services; `TTLCache` is the in-process
implementation used by the CLI and the tests.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

NS_REFERENCE = "reference"
NS_DRE = "dre"
NS_DFC = "dfc"
NS_KPI = "kpi"

REPORT_NAMESPACES = (NS_DRE, NS_DFC, NS_KPI)

DEFAULT_TTL_SECONDS = 3600


class Cache(ABC):
    """Typed key/value cache partitioned into namespaces."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        raise NotImplementedError

    @abstractmethod
    def set(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, namespace: str, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_namespace(self, namespace: str) -> None:
        raise NotImplementedError

    def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], T],
        ttl: Optional[float] = None,
    ) -> T:
        """
        Return the cached value or compute it with ``loader`` and cache it.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(namespace, key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set(namespace, key, value, ttl)
        return value

    def invalidate_reports(self) -> None:
        for namespace in REPORT_NAMESPACES:
            self.remove_namespace(namespace)


class TTLCache(Cache):
    """
    In-process cache with per-entry expiry.

    Parameters
    ----------
    default_ttl:
        TTL in seconds used when ``set`` is called without one.
    clock:
        Monotonic clock returning seconds. Injected by tests.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: dict[str, dict[str, tuple[float, Any]]] = {}
        self._mutex = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[Any]:
        with self._mutex:
            bucket = self._data.get(namespace)
            if not bucket or key not in bucket:
                return None
            expires_at, value = bucket[key]
            if self._clock() >= expires_at:
                del bucket[key]
                return None
            return value

    def set(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        with self._mutex:
            self._data.setdefault(namespace, {})[key] = (self._clock() + lifetime, value)

    def remove(self, namespace: str, key: str) -> None:
        with self._mutex:
            self._data.get(namespace, {}).pop(key, None)

    def remove_namespace(self, namespace: str) -> None:
        with self._mutex:
            dropped = len(self._data.pop(namespace, {}))
        if dropped:
            logger.debug("Cache namespace %r cleared (%d keys)", namespace, dropped)

    def clear(self) -> None:
        with self._mutex:
            self._data.clear()

    def keys(self, namespace: str) -> list[str]:
        with self._mutex:
            return sorted(self._data.get(namespace, {}))
