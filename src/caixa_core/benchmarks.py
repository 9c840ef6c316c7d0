# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Benchmark tiers for KPIs.

Each metric can be given a benchmark: five value ranges, one per tier
(SENSATIONAL, EXCELLENT, GOOD, POOR, TERRIBLE). Classification walks the
tiers from best to worst and returns the first whose inclusive
``[min, max]`` contains the value; a value outside every range is
TERRIBLE. Ranges may share their boundaries, the better tier wins.

Benchmarks are read from a TOML file with one table per metric:

    [benchmarks.MARGEM_BRUTA]
    unit = "%"
    sensational = [60, 100]
    excellent = [50, 60]
    good = [40, 50]
    poor = [30, 40]
    terrible = [-1000, 30]

Metrics missing from the file keep the built-in defaults below (the DRE
margin tables); metrics without any benchmark are left unclassified.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .config import _load_toml


class BenchmarkRange(str, Enum):
    SENSATIONAL = "SENSACIONAL"
    EXCELLENT = "EXCELENTE"
    GOOD = "BOM"
    POOR = "RUIM"
    TERRIBLE = "PESSIMO"


class KPIMetric(str, Enum):
    DESCONTO_MEDIO = "DESCONTO_MEDIO"
    CMA = "CMA"
    CMV = "CMV"
    MARGEM_BRUTA = "MARGEM_BRUTA"
    MARGEM_LIQUIDA = "MARGEM_LIQUIDA"
    EBITDA_PCT = "EBITDA_PCT"
    DESPESAS_FIXAS_PCT = "DESPESAS_FIXAS_PCT"
    DESPESAS_VAR_PCT = "DESPESAS_VAR_PCT"
    SALDO_CAIXA = "SALDO_CAIXA"
    DIAS_CAIXA = "DIAS_CAIXA"


class MetricUnit(str, Enum):
    PERCENT = "%"
    CURRENCY = "R$"
    CURRENCY_PER_UNIT = "R$/UNID"
    DAYS = "DIAS"
    RATIO = "RATIO"


TIER_ORDER = (
    BenchmarkRange.SENSATIONAL,
    BenchmarkRange.EXCELLENT,
    BenchmarkRange.GOOD,
    BenchmarkRange.POOR,
)

_TOML_KEYS = {
    BenchmarkRange.SENSATIONAL: "sensational",
    BenchmarkRange.EXCELLENT: "excellent",
    BenchmarkRange.GOOD: "good",
    BenchmarkRange.POOR: "poor",
    BenchmarkRange.TERRIBLE: "terrible",
}


@dataclass(frozen=True)
class Bounds:
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class BenchmarkConfig:
    """Tier ranges of one metric."""

    metric: str
    unit: MetricUnit
    ranges: Mapping[BenchmarkRange, Bounds]


def get_benchmark_range(value: float, benchmark: BenchmarkConfig) -> BenchmarkRange:
    """Classify ``value`` into the first tier whose inclusive range contains it."""
    for tier in TIER_ORDER:
        bounds = benchmark.ranges.get(tier)
        if bounds is not None and bounds.contains(value):
            return tier
    return BenchmarkRange.TERRIBLE


# ---------------------------------------------------------------------------
# Threshold tables
# ---------------------------------------------------------------------------

GROSS_MARGIN_THRESHOLDS = (60.0, 50.0, 40.0, 30.0)
EBITDA_THRESHOLDS = (25.0, 20.0, 15.0, 10.0)
NET_MARGIN_THRESHOLDS = (20.0, 15.0, 10.0, 5.0)


def classify_by_thresholds(
    value: float, thresholds: tuple[float, float, float, float]
) -> BenchmarkRange:
    """
    Tier for "higher is better" metrics given the lower bound of each of
    SENSATIONAL, EXCELLENT, GOOD and POOR.
    """
    for tier, threshold in zip(TIER_ORDER, thresholds):
        if value >= threshold:
            return tier
    return BenchmarkRange.TERRIBLE


def benchmark_from_thresholds(
    metric: str, thresholds: tuple[float, float, float, float], unit: MetricUnit
) -> BenchmarkConfig:
    """Express a threshold table as ranges sharing their boundaries."""
    upper = math.inf
    ranges: dict[BenchmarkRange, Bounds] = {}
    for tier, threshold in zip(TIER_ORDER, thresholds):
        ranges[tier] = Bounds(threshold, upper)
        upper = threshold
    ranges[BenchmarkRange.TERRIBLE] = Bounds(-math.inf, upper)
    return BenchmarkConfig(metric=metric, unit=unit, ranges=ranges)


def default_benchmarks() -> dict[str, BenchmarkConfig]:
    return {
        KPIMetric.MARGEM_BRUTA.value: benchmark_from_thresholds(
            KPIMetric.MARGEM_BRUTA.value, GROSS_MARGIN_THRESHOLDS, MetricUnit.PERCENT
        ),
        KPIMetric.EBITDA_PCT.value: benchmark_from_thresholds(
            KPIMetric.EBITDA_PCT.value, EBITDA_THRESHOLDS, MetricUnit.PERCENT
        ),
        KPIMetric.MARGEM_LIQUIDA.value: benchmark_from_thresholds(
            KPIMetric.MARGEM_LIQUIDA.value, NET_MARGIN_THRESHOLDS, MetricUnit.PERCENT
        ),
    }


# ---------------------------------------------------------------------------
# TOML loading
# ---------------------------------------------------------------------------


def _parse_bounds(metric: str, key: str, raw: Any) -> Bounds:
    if (
        not isinstance(raw, (list, tuple))
        or len(raw) != 2
        or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in raw)
    ):
        raise ValueError(
            f"Invalid benchmark range for {metric}.{key}: expected [min, max] numbers."
        )
    low, high = float(raw[0]), float(raw[1])
    if high < low:
        raise ValueError(f"Invalid benchmark range for {metric}.{key}: max < min.")
    return Bounds(low, high)


def parse_benchmarks(data: Mapping[str, Any]) -> dict[str, BenchmarkConfig]:
    """Build benchmark configs from the ``[benchmarks]`` table of a TOML document."""
    section = data.get("benchmarks") or {}
    if not isinstance(section, Mapping):
        raise ValueError("Invalid [benchmarks] section, expected a table.")

    configs: dict[str, BenchmarkConfig] = {}
    for metric, definition in section.items():
        if not isinstance(definition, Mapping):
            raise ValueError(f"Invalid benchmark definition for {metric}.")
        try:
            unit = MetricUnit(str(definition.get("unit", "%")))
        except ValueError as exc:
            raise ValueError(f"Unknown unit for benchmark {metric}: {definition.get('unit')!r}") from exc

        ranges = {
            tier: _parse_bounds(metric, key, definition[key])
            for tier, key in _TOML_KEYS.items()
            if key in definition
        }
        if not ranges:
            raise ValueError(f"Benchmark {metric} defines no ranges.")
        configs[str(metric)] = BenchmarkConfig(metric=str(metric), unit=unit, ranges=ranges)
    return configs


def load_benchmarks(path: Optional[Path]) -> dict[str, BenchmarkConfig]:
    """
    Return the default benchmarks overridden by those defined in ``path``.

    A None path yields the defaults only.
    """
    configs = default_benchmarks()
    if path is None:
        return configs
    configs.update(parse_benchmarks(_load_toml(Path(path))))
    return configs
