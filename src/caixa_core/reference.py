# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Reference data resolver.

Answers account, branch, channel and cost-center lookups from a cached
snapshot of the reference store. The snapshot of each kind is loaded once
per cache window (one hour by default) and reloaded synchronously on the
first lookup after it expires or after `invalidate()`. Store failures
propagate to the caller; stale data is never served past its TTL.
"""

from __future__ import annotations

import logging
from typing import Optional

from .cache import NS_REFERENCE, Cache
from .errors import NotFoundError
from .models import Account, AccountType, Branch, Channel, CostCenter, ReferenceSets
from .stores import ReferenceStore

logger = logging.getLogger(__name__)


class ReferenceDataResolver:
    def __init__(self, store: ReferenceStore, cache: Cache, ttl: float = 3600):
        self.store = store
        self.cache = cache
        self.ttl = ttl

    # -- accounts -----------------------------------------------------------

    def _account_map(self) -> dict[str, Account]:
        def load() -> dict[str, Account]:
            accounts = self.store.load_accounts()
            logger.info("Loaded %d accounts from the reference store", len(accounts))
            return {acc.code: acc for acc in accounts}

        return self.cache.get_or_load(NS_REFERENCE, "accounts", load, self.ttl)

    def resolve_account(self, code: Optional[str]) -> Optional[Account]:
        """Return the account for ``code``, or None when it is unknown."""
        if not code:
            return None
        return self._account_map().get(code)

    def require_account(self, code: str) -> Account:
        account = self.resolve_account(code)
        if account is None:
            raise NotFoundError("Conta gerencial", code)
        return account

    def accounts(self) -> list[Account]:
        return sorted(self._account_map().values(), key=lambda acc: acc.code)

    def accounts_by_type(self, account_type: AccountType) -> list[Account]:
        return [acc for acc in self.accounts() if acc.type is account_type]

    def accounts_by_dre_group(self, group: str) -> list[Account]:
        return [acc for acc in self.accounts() if acc.dre_group == group]

    # -- other master data --------------------------------------------------

    def branches(self) -> list[Branch]:
        return list(
            self.cache.get_or_load(
                NS_REFERENCE, "branches", lambda: tuple(self.store.load_branches()), self.ttl
            )
        )

    def active_branches(self) -> list[Branch]:
        return [b for b in self.branches() if b.active]

    def channels(self) -> list[Channel]:
        return list(
            self.cache.get_or_load(
                NS_REFERENCE, "channels", lambda: tuple(self.store.load_channels()), self.ttl
            )
        )

    def cost_centers(self) -> list[CostCenter]:
        return list(
            self.cache.get_or_load(
                NS_REFERENCE,
                "cost_centers",
                lambda: tuple(self.store.load_cost_centers()),
                self.ttl,
            )
        )

    def locked_periods(self) -> frozenset[str]:
        return self.cache.get_or_load(
            NS_REFERENCE,
            "locked_periods",
            lambda: frozenset(self.store.load_locked_periods()),
            self.ttl,
        )

    def reference_sets(self) -> ReferenceSets:
        return ReferenceSets(
            branches=frozenset(b.id for b in self.branches()),
            channels=frozenset(c.id for c in self.channels()),
            cost_centers=frozenset(c.id for c in self.cost_centers()),
            accounts=frozenset(self._account_map()),
        )

    def invalidate(self) -> None:
        """Drop every cached reference snapshot."""
        self.cache.remove_namespace(NS_REFERENCE)
        logger.info("Reference data cache invalidated")
