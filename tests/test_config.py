from pathlib import Path

import pytest

from caixa_core.config import load_app_config


def _write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "caixa_config.toml"
    path.write_text(content, encoding="utf-8")
    return path


def test_minimal_config_uses_defaults(tmp_path) -> None:
    path = _write_config(tmp_path, '[database]\npath = "db/caixa.sqlite"\n')
    cfg = load_app_config(str(path))

    assert cfg.database.engine == "sqlite"
    assert cfg.database.path == (tmp_path / "db" / "caixa.sqlite").resolve()
    assert cfg.reconciliation.amount_tolerance == 0.01
    assert cfg.reconciliation.min_confidence == 80
    assert cfg.reconciliation.date_window_days == 7
    assert cfg.cache.reference_ttl == 3600
    assert cfg.cache.report_ttl == 120
    assert cfg.lock_timeout_seconds == 5.0
    assert cfg.max_execution_seconds == 330.0
    assert cfg.kpi.burn_rate_months == 3
    assert cfg.benchmarks_file is None
    assert cfg.features.auto_reconciliation is True
    assert cfg.timezone == "America/Sao_Paulo"
    assert cfg.currency == "BRL"


def test_full_config_is_parsed(tmp_path) -> None:
    path = _write_config(
        tmp_path,
        """
[app]
timezone = "America/Manaus"

[database]
path = "caixa.sqlite"

[reconciliation]
amount_tolerance = 0.05
min_confidence = 90
date_window_days = 3

[cache]
reference_ttl = 600
report_ttl = 30

[lock]
timeout_seconds = 2.5

[batch]
max_execution_seconds = 60

[kpi]
burn_rate_months = 6
marketing_subgroup = "PUBLICIDADE"
top_expenses = 3

[benchmarks]
file = "conf/benchmarks.toml"

[features]
auto_reconciliation = false
dfc_projection = false
""",
    )
    cfg = load_app_config(str(path))

    assert cfg.timezone == "America/Manaus"
    assert cfg.reconciliation.amount_tolerance == 0.05
    assert cfg.reconciliation.min_confidence == 90
    assert cfg.reconciliation.date_window_days == 3
    assert cfg.cache.reference_ttl == 600
    assert cfg.cache.report_ttl == 30
    assert cfg.lock_timeout_seconds == 2.5
    assert cfg.max_execution_seconds == 60.0
    assert cfg.kpi.burn_rate_months == 6
    assert cfg.kpi.marketing_subgroup == "PUBLICIDADE"
    assert cfg.kpi.top_expenses == 3
    assert cfg.benchmarks_file == (tmp_path / "conf" / "benchmarks.toml").resolve()
    assert cfg.features.auto_reconciliation is False
    assert cfg.features.dfc_projection is False


def test_wrong_types_fall_back_to_defaults(tmp_path) -> None:
    path = _write_config(tmp_path, '[lock]\ntimeout_seconds = "fast"\n[cache]\nreport_ttl = true\n')
    cfg = load_app_config(str(path))
    assert cfg.lock_timeout_seconds == 5.0
    assert cfg.cache.report_ttl == 120


@pytest.mark.parametrize(
    "content",
    [
        "[cache]\nreport_ttl = -1\n",
        "[reconciliation]\nmin_confidence = 150\n",
        "[reconciliation]\namount_tolerance = -0.5\n",
        "[batch]\nmax_execution_seconds = 0\n",
    ],
)
def test_invalid_values_raise(tmp_path, content) -> None:
    path = _write_config(tmp_path, content)
    with pytest.raises(ValueError):
        load_app_config(str(path))


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "nope.toml"))


def test_invalid_toml_raises_value_error(tmp_path) -> None:
    path = _write_config(tmp_path, "[database\npath = 1")
    with pytest.raises(ValueError):
        load_app_config(str(path))


def test_default_file_is_read_from_working_directory(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, '[database]\npath = "x.sqlite"\n')
    monkeypatch.chdir(tmp_path)
    cfg = load_app_config()
    assert cfg.database.path == (tmp_path / "x.sqlite").resolve()
