import math
from dataclasses import fields
from datetime import date

import pytest
from helpers import add_entries, entry, make_api, payable

from caixa_core.benchmarks import BenchmarkRange, KPIMetric, MetricUnit
from caixa_core.models import EntryStatus
from caixa_core.periods import Period

MARCH = Period(2025, 3)


def _dataset():
    return [
        entry(
            "R1",
            gross=10000.0,
            discount=500.0,
            due=date(2025, 3, 10),
            payment=date(2025, 3, 12),
            channel="LOJA",
        ),
        entry(
            "R3",
            gross=2000.0,
            due=date(2025, 3, 20),
            payment=date(2025, 3, 16),
            channel="ONLINE",
        ),
        payable(
            "P1",
            account="4.01",
            gross=3000.0,
            due=date(2025, 3, 15),
            payment=date(2025, 3, 15),
            description="Mercadorias",
        ),
        payable(
            "P2",
            account="4.02",
            gross=1000.0,
            due=date(2025, 3, 15),
            payment=date(2025, 3, 17),
            description="Insumos",
        ),
        payable(
            "P3",
            account="5.01",
            gross=2000.0,
            due=date(2025, 3, 5),
            payment=date(2025, 3, 4),
            description="Aluguel",
        ),
        payable("P4", account="5.02", gross=600.0, payment=date(2025, 3, 20), description="Anúncios"),
        payable("P5", account="6.01", gross=200.0, payment=date(2025, 3, 25), description="Juros"),
        entry("F1", gross=1000.0, status=EntryStatus.FORECAST, due=date(2025, 3, 25)),
        payable("F2", gross=500.0, status=EntryStatus.FORECAST, due=date(2025, 4, 10)),
    ]


@pytest.fixture
def api(tmp_path):
    api = make_api(tmp_path)
    add_entries(api, *_dataset())
    return api


def test_calculate_kpis(api) -> None:
    kpis = api.kpi.calculate_kpis(MARCH)
    by_metric = {k.metric: k for k in kpis}

    assert [k.metric for k in kpis] == list(KPIMetric)
    assert by_metric[KPIMetric.DESCONTO_MEDIO].value == 2.66
    assert by_metric[KPIMetric.DESCONTO_MEDIO].range is None
    assert by_metric[KPIMetric.CMA].value == 1000.0
    assert by_metric[KPIMetric.CMV].value == 3000.0
    assert by_metric[KPIMetric.CMV].unit is MetricUnit.CURRENCY_PER_UNIT
    assert by_metric[KPIMetric.MARGEM_BRUTA].value == 65.22
    assert by_metric[KPIMetric.MARGEM_BRUTA].range is BenchmarkRange.SENSATIONAL
    assert by_metric[KPIMetric.EBITDA_PCT].value == 42.61
    assert by_metric[KPIMetric.MARGEM_LIQUIDA].value == 40.87
    assert by_metric[KPIMetric.DESPESAS_FIXAS_PCT].value == 17.39
    assert by_metric[KPIMetric.DESPESAS_VAR_PCT].value == 40.0
    assert by_metric[KPIMetric.SALDO_CAIXA].value == 4700.0
    assert by_metric[KPIMetric.DIAS_CAIXA].value == 21.43


def test_kpis_by_channel(api) -> None:
    by_metric = {k.metric: k.value for k in api.kpi.calculate_kpis(MARCH, channel_id="ONLINE")}
    assert by_metric[KPIMetric.MARGEM_BRUTA] == 100.0
    assert by_metric[KPIMetric.CMV] == 0.0


def test_configured_benchmarks_classify_kpis(tmp_path) -> None:
    path = tmp_path / "benchmarks.toml"
    path.write_text(
        '[benchmarks.DESCONTO_MEDIO]\nunit = "%"\nsensational = [0, 2]\nexcellent = [2.01, 5]\n',
        encoding="utf-8",
    )
    api = make_api(tmp_path, benchmarks_file=path)
    add_entries(api, *_dataset())

    by_metric = {k.metric: k for k in api.kpi.calculate_kpis(MARCH)}
    assert by_metric[KPIMetric.DESCONTO_MEDIO].range is BenchmarkRange.EXCELLENT


def test_monthly_indicators(api) -> None:
    m = api.kpi.get_kpis_mensal(MARCH, as_of=date(2025, 3, 31))

    assert m.gross_revenue == 12000.0
    assert m.net_income == 4700.0
    assert m.roi == 69.12
    assert m.current_liquidity == 11.4
    assert m.cash_balance == 4700.0
    assert m.burn_rate == 6800.0
    assert m.runway_months == 0.69
    assert not m.runway_is_infinite
    assert m.delinquency_rate == 8.0
    assert m.revenue_growth_pct == 0.0
    assert m.average_ticket == 6000.0
    assert m.avg_days_to_collect == -1.0
    assert m.avg_days_to_pay == 0.33
    assert m.cac == 300.0
    assert m.opex_ratio == 22.61
    assert m.break_even == 3986.67


def test_overdue_depends_on_reference_date(api) -> None:
    early = api.kpi.get_kpis_mensal(MARCH, as_of=date(2025, 3, 20))
    assert early.delinquency_rate == 0.0


def test_revenue_growth_against_previous_month(api) -> None:
    add_entries(api, entry("R0", gross=8000.0, accrual=date(2025, 2, 10)))
    m = api.kpi.get_kpis_mensal(MARCH, as_of=date(2025, 3, 31))
    assert m.revenue_growth_pct == 50.0


def test_runway_is_infinite_without_outflows(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("R1", gross=500.0))

    m = api.kpi.get_kpis_mensal(MARCH, as_of=date(2025, 3, 31))

    assert m.burn_rate == 0.0
    assert m.runway_is_infinite
    assert m.current_liquidity == 0.0


def test_dashboard_data(api) -> None:
    dashboard = api.kpi.get_dashboard_data(MARCH)

    assert dashboard.gross_revenue == 12000.0
    assert dashboard.ebitda == 4900.0
    assert dashboard.cash_balance == 4700.0
    assert len(dashboard.kpis) == len(KPIMetric)
    assert dashboard.top_expenses == (
        ("Mercadorias", 3000.0),
        ("Aluguel", 2000.0),
        ("Insumos", 1000.0),
        ("Anúncios", 600.0),
        ("Juros", 200.0),
    )
    assert api.kpi.top_expenses(MARCH, limit=2) == [("Mercadorias", 3000.0), ("Aluguel", 2000.0)]


def test_kpi_trend(api) -> None:
    trend = api.kpi.get_kpi_trend(KPIMetric.MARGEM_BRUTA, [Period(2025, 2), MARCH])
    assert trend == [(Period(2025, 2), 0.0), (MARCH, 65.22)]


def test_empty_ledger_gives_zero_kpis(tmp_path) -> None:
    api = make_api(tmp_path)

    kpis = api.kpi.calculate_kpis(MARCH)

    assert [k.metric for k in kpis] == list(KPIMetric)
    assert all(k.value == 0.0 for k in kpis)


def test_empty_ledger_gives_zero_monthly_indicators(tmp_path) -> None:
    api = make_api(tmp_path)

    monthly = api.kpi.get_kpis_mensal(MARCH, as_of=date(2025, 3, 31))

    values = {
        f.name: getattr(monthly, f.name)
        for f in fields(monthly)
        if f.name not in ("period", "branch_id", "channel_id")
    }
    assert not any(math.isnan(v) for v in values.values())
    assert monthly.runway_is_infinite
    del values["runway_months"]
    assert all(v == 0.0 for v in values.values())
