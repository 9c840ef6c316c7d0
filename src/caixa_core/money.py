# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Money helpers.

Amounts travel through the core as floats in reais and are rounded to
centavos at every boundary (statement summaries, persisted rows). The
database stores integer cents (see db.py).
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

DEFAULT_TOLERANCE = 0.01

# "1.234" or "-12.345.678": dots grouping thousands, no decimal part.
_THOUSANDS_ONLY = re.compile(r"-?[1-9]\d{0,2}(\.\d{3})+")


def round_money(value: float, decimals: int = 2) -> float:
    """Round half-up to ``decimals`` places (centavos by default)."""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def money_equals(a: float, b: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Return True when two amounts differ by at most ``tolerance``."""
    # Rounded difference so that 0.01 apart compares equal under 0.01 tolerance.
    return round_money(abs(a - b), 6) <= tolerance


def to_cents(value: float) -> int:
    return int(round(round_money(value) * 100))


def from_cents(cents: int | None) -> float:
    if cents is None:
        return 0.0
    return cents / 100.0


def calculate_percentage(part: float, total: float) -> float:
    """``part / total * 100`` rounded to 2 decimals, 0 when ``total`` is 0."""
    if total == 0:
        return 0.0
    return round_money(part / total * 100)


def safe_ratio(numerator: float, denominator: float) -> float:
    """Plain division returning 0 for a zero denominator."""
    if denominator == 0:
        return 0.0
    return numerator / denominator


def compute_net_amount(
    gross: float,
    discount: float = 0.0,
    interest: float = 0.0,
    penalty: float = 0.0,
) -> float:
    """Net amount of a ledger entry: gross - discount + interest + penalty."""
    return round_money(gross - discount + interest + penalty)


def is_finite_amount(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_money(value: object) -> float:
    """
    Parse an amount written in Brazilian notation.

    Accepted inputs: numbers, ``"1.234,56"``, ``"R$ 1.234,56"``,
    ``"1234,56"``, ``"1234.56"``, ``"-150,00"``, ``"1.234"``. A dot is a
    thousands separator when it splits the digits into groups of three
    and there is no comma. Empty strings and None parse as 0.

    Raises
    ------
    ValueError
        If the text is not a number.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise ValueError(f"Invalid amount: {value!r}")
        return float(value)

    text = str(value).strip().replace("R$", "").replace(" ", "").replace(" ", "")
    if not text:
        return 0.0

    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".")
    elif _THOUSANDS_ONLY.fullmatch(text):
        text = text.replace(".", "")

    try:
        parsed = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return float(parsed)
