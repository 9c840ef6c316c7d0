import math

import pytest

from caixa_core.benchmarks import (
    EBITDA_THRESHOLDS,
    GROSS_MARGIN_THRESHOLDS,
    BenchmarkConfig,
    BenchmarkRange,
    Bounds,
    KPIMetric,
    MetricUnit,
    classify_by_thresholds,
    default_benchmarks,
    get_benchmark_range,
    load_benchmarks,
    parse_benchmarks,
)


def _gross_margin_config() -> BenchmarkConfig:
    return BenchmarkConfig(
        metric="MARGEM_BRUTA",
        unit=MetricUnit.PERCENT,
        ranges={
            BenchmarkRange.SENSATIONAL: Bounds(60, 100),
            BenchmarkRange.EXCELLENT: Bounds(50, 60),
            BenchmarkRange.GOOD: Bounds(40, 50),
            BenchmarkRange.POOR: Bounds(30, 40),
            BenchmarkRange.TERRIBLE: Bounds(-1000, 30),
        },
    )


def test_value_on_shared_boundary_takes_better_tier() -> None:
    config = _gross_margin_config()
    assert get_benchmark_range(40, config) is BenchmarkRange.GOOD
    assert get_benchmark_range(60, config) is BenchmarkRange.SENSATIONAL
    assert get_benchmark_range(45.5, config) is BenchmarkRange.GOOD
    assert get_benchmark_range(29.99, config) is BenchmarkRange.TERRIBLE


def test_upper_bound_is_inclusive_with_disjoint_ranges() -> None:
    config = BenchmarkConfig(
        metric="MARGEM_BRUTA",
        unit=MetricUnit.PERCENT,
        ranges={
            BenchmarkRange.EXCELLENT: Bounds(40.01, 50),
            BenchmarkRange.GOOD: Bounds(30, 40),
        },
    )
    assert get_benchmark_range(40, config) is BenchmarkRange.GOOD
    assert get_benchmark_range(40.005, config) is BenchmarkRange.TERRIBLE


def test_value_outside_every_range_is_terrible() -> None:
    config = BenchmarkConfig(
        metric="DIAS_CAIXA",
        unit=MetricUnit.DAYS,
        ranges={BenchmarkRange.SENSATIONAL: Bounds(90, 1000)},
    )
    assert get_benchmark_range(5000, config) is BenchmarkRange.TERRIBLE
    assert get_benchmark_range(10, config) is BenchmarkRange.TERRIBLE


@pytest.mark.parametrize(
    "value, expected",
    [
        (65.0, BenchmarkRange.SENSATIONAL),
        (55.0, BenchmarkRange.EXCELLENT),
        (50.0, BenchmarkRange.EXCELLENT),
        (42.0, BenchmarkRange.GOOD),
        (35.0, BenchmarkRange.POOR),
        (10.0, BenchmarkRange.TERRIBLE),
        (-20.0, BenchmarkRange.TERRIBLE),
    ],
)
def test_gross_margin_thresholds(value, expected) -> None:
    assert classify_by_thresholds(value, GROSS_MARGIN_THRESHOLDS) is expected


def test_default_benchmarks_agree_with_thresholds() -> None:
    defaults = default_benchmarks()
    assert set(defaults) == {"MARGEM_BRUTA", "EBITDA_PCT", "MARGEM_LIQUIDA"}

    ebitda = defaults[KPIMetric.EBITDA_PCT.value]
    for value in (-5, 0, 9.99, 10, 14, 15, 20, 24.99, 25, 80):
        assert get_benchmark_range(value, ebitda) is classify_by_thresholds(
            value, EBITDA_THRESHOLDS
        )
    assert ebitda.ranges[BenchmarkRange.SENSATIONAL].max == math.inf


def test_parse_benchmarks() -> None:
    configs = parse_benchmarks(
        {
            "benchmarks": {
                "DIAS_CAIXA": {
                    "unit": "DIAS",
                    "sensational": [90, 1000],
                    "poor": [15, 29.99],
                }
            }
        }
    )
    config = configs["DIAS_CAIXA"]
    assert config.unit is MetricUnit.DAYS
    assert set(config.ranges) == {BenchmarkRange.SENSATIONAL, BenchmarkRange.POOR}
    assert get_benchmark_range(20, config) is BenchmarkRange.POOR


@pytest.mark.parametrize(
    "definition",
    [
        {"unit": "%", "good": [10]},
        {"unit": "%", "good": [50, 10]},
        {"unit": "%", "good": ["a", "b"]},
        {"unit": "EUR", "good": [0, 10]},
        {"unit": "%"},
    ],
)
def test_parse_benchmarks_rejects_invalid_definitions(definition) -> None:
    with pytest.raises(ValueError):
        parse_benchmarks({"benchmarks": {"MARGEM_BRUTA": definition}})


def test_load_benchmarks_overrides_defaults(tmp_path) -> None:
    path = tmp_path / "benchmarks.toml"
    path.write_text(
        """
[benchmarks.MARGEM_BRUTA]
unit = "%"
sensational = [80, 100]
excellent = [70, 80]

[benchmarks.DESCONTO_MEDIO]
unit = "%"
sensational = [0, 2]
""",
        encoding="utf-8",
    )
    configs = load_benchmarks(path)

    assert get_benchmark_range(75, configs["MARGEM_BRUTA"]) is BenchmarkRange.EXCELLENT
    assert get_benchmark_range(65, configs["MARGEM_BRUTA"]) is BenchmarkRange.TERRIBLE
    assert "DESCONTO_MEDIO" in configs
    assert "EBITDA_PCT" in configs
    assert load_benchmarks(None).keys() == default_benchmarks().keys()
