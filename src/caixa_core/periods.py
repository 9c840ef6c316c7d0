# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for Caixa Core.

Every report in the core is monthly. This module defines the `Period`
value object (a calendar month), helpers to build contiguous ranges of
periods (wrapping across years) and a couple of date utilities shared by
the calculators.
"""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from .errors import ValidationError

MIN_YEAR = 2000
MAX_YEAR = 2100


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month, ordered chronologically."""

    year: int
    month: int

    def __post_init__(self) -> None:
        errors: list[str] = []
        if not isinstance(self.year, int) or not MIN_YEAR <= self.year <= MAX_YEAR:
            errors.append(f"Ano inválido: {self.year} (esperado {MIN_YEAR}-{MAX_YEAR})")
        if not isinstance(self.month, int) or not 1 <= self.month <= 12:
            errors.append(f"Mês inválido: {self.month} (esperado 1-12)")
        if errors:
            raise ValidationError(errors)

    # -- constructors -------------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> Period:
        """Parse ``"YYYY-MM"`` (``"YYYY/MM"`` is accepted too)."""
        raw = str(text).strip().replace("/", "-")
        parts = raw.split("-")
        if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
            raise ValidationError(f"Período inválido: {text!r} (esperado YYYY-MM)")
        return cls(int(parts[0]), int(parts[1]))

    @classmethod
    def from_date(cls, value: date) -> Period:
        return cls(value.year, value.month)

    @classmethod
    def current(cls, today: Optional[date] = None) -> Period:
        return cls.from_date(today or _today())

    @classmethod
    def range(cls, start: Period, end: Period) -> list[Period]:
        """Contiguous inclusive list of periods from ``start`` to ``end``."""
        if end < start:
            raise ValidationError(
                f"Período final {end.label} anterior ao inicial {start.label}"
            )
        periods = [start]
        while periods[-1] < end:
            periods.append(periods[-1].next())
        return periods

    @classmethod
    def horizon(cls, start: Period, months: int) -> list[Period]:
        """``months`` contiguous periods beginning at ``start``."""
        if months < 1:
            raise ValidationError("O horizonte deve ter ao menos 1 mês")
        return cls.range(start, start.shift(months - 1))

    # -- navigation ---------------------------------------------------------

    def shift(self, months: int) -> Period:
        index = self.year * 12 + (self.month - 1) + months
        return Period(index // 12, index % 12 + 1)

    def next(self) -> Period:
        return self.shift(1)

    def previous(self) -> Period:
        return self.shift(-1)

    # -- bounds -------------------------------------------------------------

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def contains(self, value: Optional[date]) -> bool:
        if value is None:
            return False
        return self.start <= value <= self.end

    def __str__(self) -> str:
        return self.label


def _today() -> date:
    """Return today's date (isolated for easier testing)."""
    return datetime.today().date()


def diff_days(earlier: date, later: date) -> int:
    """Signed number of whole days from ``earlier`` to ``later``."""
    return (later - earlier).days


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)

