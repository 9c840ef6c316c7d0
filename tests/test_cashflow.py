from datetime import date

import pytest
from helpers import add_entries, add_statements, entry, make_api, payable, statement

from caixa_core.cashflow import ForecastOptions, entry_direction
from caixa_core.models import (
    CashflowCategory,
    CashflowDirection,
    EntryStatus,
    EntryType,
)
from caixa_core.periods import Period

MARCH = Period(2025, 3)
APRIL = Period(2025, 4)


def _dataset():
    forecast = EntryStatus.FORECAST
    return [
        entry("R0", gross=2000.0, accrual=date(2025, 1, 15)),
        payable("P0", gross=300.0, accrual=date(2025, 2, 10)),
        entry("R1", gross=1000.0, accrual=date(2025, 3, 1), payment=date(2025, 3, 5)),
        payable("P1", account="7.01", gross=400.0, accrual=date(2025, 3, 10)),
        payable("P2", account="6.01", gross=100.0, accrual=date(2025, 3, 20)),
        entry("F1", gross=500.0, status=forecast, due=date(2025, 4, 10)),
        payable("F2", gross=250.0, status=forecast, due=date(2025, 5, 5)),
        payable("F3", gross=80.0, status=forecast, due=date(2025, 7, 1)),
        payable("F4", gross=999.0, status=forecast),
    ]


@pytest.fixture
def api(tmp_path):
    api = make_api(tmp_path)
    add_entries(api, *_dataset())
    return api


def test_realized_cashflow_uses_payment_dates(api) -> None:
    lines = api.cashflow.calculate_realized_cashflow(MARCH)

    assert [line.entry_id for line in lines] == ["R1", "P1", "P2"]
    assert lines[0].date == date(2025, 3, 5)
    assert lines[0].direction is CashflowDirection.IN
    assert lines[1].category is CashflowCategory.INVESTING
    assert lines[2].category is CashflowCategory.FINANCING
    assert all(not line.projected for line in lines)


def test_dfc_report_balances(api) -> None:
    report = api.cashflow.generate_dfc_report(MARCH)

    assert report.opening_balance == 1700.0
    assert report.flow(CashflowCategory.OPERATING).inflow == 1000.0
    assert report.flow(CashflowCategory.INVESTING).outflow == 400.0
    assert report.flow(CashflowCategory.FINANCING).net == -100.0
    assert set(report.flows) == set(CashflowCategory)
    assert report.variation == 500.0
    assert report.closing_balance == 2200.0
    assert report.closing_balance == pytest.approx(report.opening_balance + report.variation)


def test_forecast_cashflow_covers_whole_months(api) -> None:
    lines = api.cashflow.calculate_forecast_cashflow(APRIL, ForecastOptions(horizon_months=3))

    assert [line.entry_id for line in lines] == ["F1", "F2"]
    assert all(line.projected for line in lines)
    assert api.cashflow.calculate_forecast_cashflow(
        APRIL, ForecastOptions(include_forecast=False)
    ) == []


def test_forecast_horizon_wraps_year(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        payable("F1", gross=120.0, status=EntryStatus.FORECAST, due=date(2026, 1, 15)),
        payable("F2", gross=120.0, status=EntryStatus.FORECAST, due=date(2026, 2, 1)),
    )

    lines = api.cashflow.calculate_forecast_cashflow(
        Period(2025, 11), ForecastOptions(horizon_months=3)
    )
    assert [line.entry_id for line in lines] == ["F1"]


def test_monthly_balance_projection(api) -> None:
    opening = api.cashflow.generate_dfc_report(MARCH).closing_balance
    df = api.cashflow.project_monthly_balances(
        APRIL, ForecastOptions(horizon_months=3, opening_balance=opening)
    )

    assert list(df.columns) == ["period", "inflow", "outflow", "net", "closing_balance"]
    assert df["period"].tolist() == ["2025-04", "2025-05", "2025-06"]
    assert df["closing_balance"].tolist() == [2700.0, 2450.0, 2450.0]
    assert api.cashflow.calculate_projected_balance(opening, APRIL) == 2700.0
    assert api.cashflow.calculate_opening_balance(APRIL) == 2200.0


def test_future_accounts_timeline(api) -> None:
    timeline = api.cashflow.get_future_accounts_timeline(90, today=date(2025, 4, 1))
    assert [e.id for e in timeline] == ["F1", "F2"]

    assert api.cashflow.get_future_accounts_timeline(5, today=date(2025, 4, 1)) == []


def test_reconciled_lines_carry_bank_account(api) -> None:
    add_statements(api, statement("EB1", date(2025, 3, 6), 1000.0, bank_account="BB-002"))
    api.matcher.reconcile("EB1", "R1")

    lines = api.cashflow.calculate_realized_cashflow(MARCH)
    r1 = next(line for line in lines if line.entry_id == "R1")

    assert r1.bank_account == "BB-002"
    assert r1.date == date(2025, 3, 6)
    assert next(line for line in lines if line.entry_id == "P1").bank_account is None


def test_non_receivables_flow_out() -> None:
    assert entry_direction(entry(type=EntryType.ADJUSTMENT)) is CashflowDirection.OUT
    assert entry_direction(entry(type=EntryType.RECEIVABLE)) is CashflowDirection.IN


def test_empty_ledger_gives_zero_cashflow(tmp_path) -> None:
    api = make_api(tmp_path)

    assert api.cashflow.calculate_realized_cashflow(MARCH) == []
    assert api.cashflow.calculate_forecast_cashflow(MARCH) == []

    report = api.cashflow.generate_dfc_report(MARCH)
    assert report.opening_balance == 0.0
    assert report.closing_balance == 0.0
    assert report.variation == 0.0
    for category in CashflowCategory:
        flows = report.flow(category)
        assert (flows.inflow, flows.outflow, flows.net) == (0.0, 0.0, 0.0)
