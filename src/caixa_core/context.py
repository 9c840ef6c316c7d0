# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""Explicit per-request context passed to the API boundary."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """
    Who is acting and under which correlation id.

    ``today`` pins the business date for validation (future payment dates,
    overdue receivables); None means the system date.
    """

    user: str = "system"
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    today: Optional[date] = None

    def business_date(self) -> date:
        return self.today or datetime.today().date()
