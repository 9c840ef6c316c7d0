# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for Caixa Core.

This module is responsible for:
- loading the main application configuration from a TOML file,
- exposing typed dataclasses used by the rest of the application
  (reconciliation tolerances, cache TTLs, lock and batch budgets, KPI
  options, feature flags).

Every section is optional. Missing sections and keys fall back to the
defaults below; values of the wrong type in optional keys are ignored,
while values that are present but invalid (negative TTL, tolerance, ...)
raise ValueError.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .db import DatabaseConfig

DEFAULT_CONFIG_FILE = "caixa_config.toml"


@dataclass(frozen=True)
class ReconciliationSettings:
    """Bank reconciliation options."""

    amount_tolerance: float = 0.01
    min_confidence: int = 80
    date_window_days: int = 7


@dataclass(frozen=True)
class CacheSettings:
    """Time-to-live (seconds) of the cached namespaces."""

    reference_ttl: int = 3600
    report_ttl: int = 120


@dataclass(frozen=True)
class KPISettings:
    """
    KPI engine options.

    burn_rate_months:
        Number of past months averaged by the burn rate.
    marketing_subgroup:
        DRE subgroup whose expenses count as customer acquisition cost.
    top_expenses:
        Number of expense lines shown on the dashboard.
    """

    burn_rate_months: int = 3
    marketing_subgroup: str = "MARKETING"
    top_expenses: int = 5


@dataclass(frozen=True)
class FeatureFlags:
    auto_reconciliation: bool = True
    dfc_projection: bool = True


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for Caixa Core.

    This aggregates:
    - the database configuration (where ledger and statements are stored),
    - reconciliation, cache, lock and batch settings,
    - KPI options and an optional benchmark file,
    - feature flags and presentation options (timezone, currency).
    """

    database: DatabaseConfig
    reconciliation: ReconciliationSettings = ReconciliationSettings()
    cache: CacheSettings = CacheSettings()
    lock_timeout_seconds: float = 5.0
    max_execution_seconds: float = 330.0
    kpi: KPISettings = KPISettings()
    benchmarks_file: Optional[Path] = None
    features: FeatureFlags = FeatureFlags()
    timezone: str = "America/Sao_Paulo"
    currency: str = "BRL"


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        return {}
    return section


def _number(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"Invalid value for '{name}': expected a positive number.")
    return value


def _parse_reconciliation(raw: Mapping[str, Any]) -> ReconciliationSettings:
    section = _section(raw, "reconciliation")
    tolerance = _number(section, "amount_tolerance", 0.01)
    if tolerance < 0:
        raise ValueError("Invalid value for 'reconciliation.amount_tolerance'.")
    min_confidence = int(_number(section, "min_confidence", 80))
    if not 0 <= min_confidence <= 100:
        raise ValueError(
            "Invalid value for 'reconciliation.min_confidence': expected 0-100."
        )
    window = int(_positive(
        "reconciliation.date_window_days", _number(section, "date_window_days", 7)
    ))
    return ReconciliationSettings(
        amount_tolerance=tolerance,
        min_confidence=min_confidence,
        date_window_days=window,
    )


def _parse_cache(raw: Mapping[str, Any]) -> CacheSettings:
    section = _section(raw, "cache")
    return CacheSettings(
        reference_ttl=int(
            _positive("cache.reference_ttl", _number(section, "reference_ttl", 3600))
        ),
        report_ttl=int(
            _positive("cache.report_ttl", _number(section, "report_ttl", 120))
        ),
    )


def _parse_kpi(raw: Mapping[str, Any]) -> KPISettings:
    section = _section(raw, "kpi")
    months = int(_positive("kpi.burn_rate_months", _number(section, "burn_rate_months", 3)))
    top = int(_positive("kpi.top_expenses", _number(section, "top_expenses", 5)))
    subgroup = str(section.get("marketing_subgroup") or "MARKETING")
    return KPISettings(burn_rate_months=months, marketing_subgroup=subgroup, top_expenses=top)


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the Caixa Core application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [app]
        ``timezone`` and ``currency`` used for presentation.

    [database]
        Database engine and SQLite file path.

    [reconciliation]
        ``amount_tolerance`` (R$), ``min_confidence`` (0-100) used by the
        automatic matcher, ``date_window_days`` used by bulk matching.

    [cache]
        ``reference_ttl`` and ``report_ttl`` in seconds.

    [lock]
        ``timeout_seconds`` for the advisory document lock.

    [batch]
        ``max_execution_seconds`` wall-clock budget of batch jobs.

    [kpi]
        ``burn_rate_months``, ``marketing_subgroup``, ``top_expenses``.

    [benchmarks]
        ``file``: optional TOML file with benchmark tiers per metric.

    [features]
        ``auto_reconciliation`` and ``dfc_projection`` switches.

    All file paths in the TOML are resolved relative to the directory of
    the TOML file itself.

    Parameters
    ----------
    config_path:
        Path to the TOML configuration file. Defaults to
        ``caixa_config.toml`` in the current working directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILE).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/caixa.sqlite"
    database_config = DatabaseConfig(
        engine=db_engine, path=(base_dir / str(db_path_raw)).resolve()
    )

    # 2) Lock and batch budgets
    lock_timeout = _positive(
        "lock.timeout_seconds", _number(_section(raw, "lock"), "timeout_seconds", 5.0)
    )
    max_execution = _positive(
        "batch.max_execution_seconds",
        _number(_section(raw, "batch"), "max_execution_seconds", 330.0),
    )

    # 3) Benchmarks file
    benchmarks_raw = _section(raw, "benchmarks").get("file")
    benchmarks_file = (base_dir / str(benchmarks_raw)).resolve() if benchmarks_raw else None

    # 4) Feature flags
    features_section = _section(raw, "features")
    features = FeatureFlags(
        auto_reconciliation=bool(features_section.get("auto_reconciliation", True)),
        dfc_projection=bool(features_section.get("dfc_projection", True)),
    )

    app_section = _section(raw, "app")

    return AppConfig(
        database=database_config,
        reconciliation=_parse_reconciliation(raw),
        cache=_parse_cache(raw),
        lock_timeout_seconds=lock_timeout,
        max_execution_seconds=max_execution,
        kpi=_parse_kpi(raw),
        benchmarks_file=benchmarks_file,
        features=features,
        timezone=str(app_section.get("timezone") or "America/Sao_Paulo"),
        currency=str(app_section.get("currency") or "BRL"),
    )
