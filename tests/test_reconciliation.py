from datetime import date

import pytest
from helpers import add_entries, add_statements, entry, make_api, payable, statement

from caixa_core.budget import ExecutionBudget
from caixa_core.cache import NS_DFC
from caixa_core.errors import BudgetExceededError, NotFoundError
from caixa_core.models import EntryStatus, EntryType
from caixa_core.periods import Period
from caixa_core.reconciliation import date_bonus

JAN_10 = date(2025, 1, 10)
FORECAST = EntryStatus.FORECAST


def _assert_linked(api, line_id: str, entry_id: str) -> None:
    line = api.matcher.statements.get_statement_by_id(line_id)
    linked = api.ledger.store.get_entry_by_id(entry_id)
    assert line.reconciled
    assert line.ledger_entry_id == entry_id
    assert linked.bank_statement_id == line_id


def _assert_pending(api, line_id: str) -> None:
    line = api.matcher.statements.get_statement_by_id(line_id)
    assert not line.reconciled
    assert line.ledger_entry_id is None


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def test_same_day_realized_match_scores_100(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    suggestions = api.matcher.suggest_matches("EB1")

    assert len(suggestions) == 1
    assert suggestions[0].ledger_entry_id == "L1"
    assert suggestions[0].confidence == 100
    assert suggestions[0].reason == "Valor igual, diferença de 0 dias"


def test_candidate_beyond_seven_days_is_dropped(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10, payment=date(2025, 1, 25)))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    assert api.matcher.suggest_matches("EB1") == []


def test_suggestions_are_ranked(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        payable("L1", gross=150.0, accrual=JAN_10, payment=date(2025, 1, 12)),
        payable("L2", gross=150.0, accrual=JAN_10, payment=date(2025, 1, 4)),
        payable("L3", gross=150.0, accrual=JAN_10, status=FORECAST, due=date(2025, 1, 10)),
        payable("L4", gross=151.0, accrual=JAN_10),
    )
    # Debits may come negative.
    add_statements(api, statement("EB1", JAN_10, -150.0))

    suggestions = api.matcher.suggest_matches("EB1")

    assert [(s.ledger_entry_id, s.confidence) for s in suggestions] == [
        ("L1", 90),
        ("L2", 70),
        ("L3", 50),
    ]
    assert suggestions[0].day_difference == 2
    assert suggestions[1].day_difference == -6
    assert suggestions[2].reason == "Valor igual, diferença de ? dias"
    assert suggestions[2].day_difference is None


def test_amount_tolerance(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10))
    add_statements(
        api,
        statement("EB1", JAN_10, 200.01),
        statement("EB2", JAN_10, 200.05),
    )

    assert [s.ledger_entry_id for s in api.matcher.suggest_matches("EB1")] == ["L1"]
    assert api.matcher.suggest_matches("EB2") == []


def test_canceled_and_linked_entries_are_not_candidates(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        entry("L1", gross=200.0, accrual=JAN_10),
        entry("L2", gross=200.0, accrual=JAN_10, status=EntryStatus.CANCELED, payment=None),
        entry("L3", gross=200.0, accrual=JAN_10),
    )
    add_statements(api, statement("EB1", JAN_10, 200.0), statement("EB2", JAN_10, 200.0))
    api.matcher.reconcile("EB1", "L1")

    assert [s.ledger_entry_id for s in api.matcher.suggest_matches("EB2")] == ["L3"]


def test_unknown_line_raises(tmp_path) -> None:
    api = make_api(tmp_path)
    with pytest.raises(NotFoundError):
        api.matcher.suggest_matches("EB404")


def test_date_bonus() -> None:
    assert date_bonus(0) == 40
    assert date_bonus(-3) == 30
    assert date_bonus(7) == 10
    assert date_bonus(8) is None


# ---------------------------------------------------------------------------
# Automatic reconciliation
# ---------------------------------------------------------------------------


def test_auto_reconcile_links_confident_matches_only(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        entry("L1", gross=200.0, accrual=JAN_10),
        entry("L2", gross=350.0, accrual=JAN_10, payment=date(2025, 1, 12)),
        entry("L3", gross=999.0, accrual=JAN_10, status=FORECAST, due=date(2025, 1, 20)),
    )
    add_statements(
        api,
        statement("EB1", JAN_10, 200.0),
        statement("EB2", JAN_10, 350.0),
        statement("EB3", JAN_10, 999.0),
    )

    result = api.matcher.auto_reconcile(80)

    assert result.succeeded == 2
    assert result.failed == 0
    _assert_linked(api, "EB1", "L1")
    _assert_linked(api, "EB2", "L2")
    _assert_pending(api, "EB3")
    assert api.ledger.store.get_entry_by_id("L3").bank_statement_id is None


def test_auto_reconcile_matches_an_entry_once(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10))
    add_statements(
        api,
        statement("EB1", JAN_10, 200.0),
        statement("EB2", date(2025, 1, 11), 200.0),
    )

    result = api.matcher.auto_reconcile(80)

    assert result.succeeded == 1
    _assert_linked(api, "EB1", "L1")
    _assert_pending(api, "EB2")


def test_auto_reconcile_uses_configured_threshold(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10, status=FORECAST, due=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    assert api.matcher.auto_reconcile().succeeded == 0
    assert api.matcher.auto_reconcile(50).succeeded == 1


def test_auto_reconcile_sets_payment_date(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10, payment=date(2025, 1, 9)))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    api.matcher.auto_reconcile(80)

    assert api.ledger.store.get_entry_by_id("L1").payment_date == JAN_10


def test_budget_stops_batch_and_keeps_links(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        entry("L1", gross=200.0, accrual=JAN_10),
        entry("L2", gross=300.0, accrual=JAN_10),
    )
    add_statements(api, statement("EB1", JAN_10, 200.0), statement("EB2", JAN_10, 300.0))
    api.cashflow.calculate_realized_cashflow(Period(2025, 1))
    assert api.cache.keys(NS_DFC)

    clock = iter([0.0, 10.0, 20.0])
    budget = ExecutionBudget(max_seconds=5, clock=lambda: next(clock))

    with pytest.raises(BudgetExceededError) as excinfo:
        api.matcher.auto_reconcile(80, budget=budget)

    assert excinfo.value.last_completed_step == "conciliação EB1"
    _assert_linked(api, "EB1", "L1")
    _assert_pending(api, "EB2")
    assert api.cache.keys(NS_DFC) == []


# ---------------------------------------------------------------------------
# Bulk reconciliation
# ---------------------------------------------------------------------------


def _bulk_dataset(api) -> None:
    add_entries(
        api,
        payable("P-A", gross=300.0, accrual=date(2025, 2, 1), status=FORECAST, due=date(2025, 2, 9)),
        payable("P-B", gross=300.0, accrual=date(2025, 2, 1), status=FORECAST, due=date(2025, 2, 13)),
        entry("R-A", gross=300.0, accrual=date(2025, 2, 1), status=FORECAST, due=date(2025, 2, 11)),
        payable("P-C", gross=300.0, accrual=date(2025, 2, 1), status=FORECAST, due=date(2025, 3, 30)),
    )
    add_statements(
        api,
        statement("EB1", date(2025, 2, 10), -300.0),
        statement("EB2", date(2025, 2, 12), -300.0),
        statement("EB3", date(2025, 2, 11), 300.0),
    )


def test_bulk_reconcile_is_direction_aware_and_greedy(tmp_path) -> None:
    api = make_api(tmp_path)
    _bulk_dataset(api)

    result = api.matcher.bulk_reconcile()

    assert result.succeeded == 3
    _assert_linked(api, "EB1", "P-A")
    _assert_linked(api, "EB3", "R-A")
    _assert_linked(api, "EB2", "P-B")
    assert api.ledger.store.get_entry_by_id("P-C").bank_statement_id is None


def test_bulk_reconcile_respects_window(tmp_path) -> None:
    api = make_api(tmp_path)
    _bulk_dataset(api)

    result = api.matcher.bulk_reconcile(window_days=0)

    assert result.succeeded == 1
    _assert_linked(api, "EB3", "R-A")
    _assert_pending(api, "EB1")
    _assert_pending(api, "EB2")


# ---------------------------------------------------------------------------
# Manual link / unlink, import and summary
# ---------------------------------------------------------------------------


def test_relinking_releases_previous_partners(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10), entry("L2", gross=80.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0), statement("EB2", JAN_10, 80.0))

    api.matcher.reconcile("EB1", "L1")
    api.matcher.reconcile("EB1", "L2")
    _assert_linked(api, "EB1", "L2")
    assert api.ledger.store.get_entry_by_id("L1").bank_statement_id is None

    api.matcher.reconcile("EB2", "L2")
    _assert_linked(api, "EB2", "L2")
    _assert_pending(api, "EB1")

    api.matcher.unreconcile("EB2")
    _assert_pending(api, "EB2")
    assert api.ledger.store.get_entry_by_id("L2").bank_statement_id is None

    # Unlinking a pending line is a no-op.
    api.matcher.unreconcile("EB2")
    _assert_pending(api, "EB2")


def test_reconcile_unknown_records(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 1000.0))

    with pytest.raises(NotFoundError, match="Extrato"):
        api.matcher.reconcile("EB9", "L1")
    with pytest.raises(NotFoundError, match="Lançamento"):
        api.matcher.reconcile("EB1", "L9")


def test_import_statements_assigns_ids_per_year(tmp_path) -> None:
    api = make_api(tmp_path)
    count = api.matcher.import_statements(
        [
            statement("x", date(2025, 12, 30), 10.0),
            statement("y", date(2026, 1, 2), -5.0),
            statement("z", date(2025, 12, 31), 7.5),
        ]
    )

    assert count == 3
    ids = [line.id for line in api.matcher.statements.list_statements()]
    assert ids == ["EB2025-000001", "EB2025-000002", "EB2026-000001"]
    assert api.matcher.import_statements([]) == 0


def test_pending_summary(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10))
    add_statements(
        api,
        statement("EB1", JAN_10, 200.0),
        statement("EB2", JAN_10, -45.5),
        statement("EB3", JAN_10, 100.0),
    )
    api.matcher.reconcile("EB1", "L1")

    summary = api.matcher.pending_summary()

    assert summary.total_lines == 3
    assert summary.reconciled == 1
    assert summary.pending == 2
    assert summary.pending_amount == 54.5


# ---------------------------------------------------------------------------
# Cash direction and failed writes
# ---------------------------------------------------------------------------


def test_debit_line_never_settles_a_receivable(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("R1", gross=200.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, -200.0), statement("EB2", JAN_10, 200.0))

    assert api.matcher.suggest_matches("EB1") == []
    assert [s.ledger_entry_id for s in api.matcher.suggest_matches("EB2")] == ["R1"]

    result = api.matcher.auto_reconcile(80)

    assert result.succeeded == 1
    _assert_pending(api, "EB1")
    _assert_linked(api, "EB2", "R1")


def test_credit_line_never_settles_a_payable(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(api, payable("P1", gross=200.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    assert api.matcher.suggest_matches("EB1") == []
    assert api.matcher.auto_reconcile(50).succeeded == 0


def test_debits_match_transfers_and_adjustments(tmp_path) -> None:
    api = make_api(tmp_path)
    add_entries(
        api,
        entry("T1", type=EntryType.TRANSFER, account="5.01", gross=500.0, accrual=JAN_10),
        entry("A1", type=EntryType.ADJUSTMENT, account="5.01", gross=35.0, accrual=JAN_10),
    )
    add_statements(api, statement("EB1", JAN_10, -500.0), statement("EB2", JAN_10, -35.0))

    assert [s.ledger_entry_id for s in api.matcher.suggest_matches("EB1")] == ["T1"]

    result = api.matcher.bulk_reconcile()

    assert result.succeeded == 2
    _assert_linked(api, "EB1", "T1")
    _assert_linked(api, "EB2", "A1")


def test_failed_entry_write_leaves_line_pending(tmp_path, monkeypatch) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("R1", gross=200.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))

    def broken_update(entry_id, changes):
        raise RuntimeError("disk full")

    monkeypatch.setattr(api.matcher.ledger, "update_entry", broken_update)

    result = api.matcher.auto_reconcile(80)

    assert result.succeeded == 0
    assert result.failures == [("EB1", "disk full")]
    _assert_pending(api, "EB1")
    assert api.ledger.store.get_entry_by_id("R1").bank_statement_id is None


def test_failed_relink_restores_previous_pairs(tmp_path, monkeypatch) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10), entry("L2", gross=80.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))
    api.matcher.reconcile("EB1", "L1")

    store = api.matcher.ledger
    original_update = store.update_entry

    def update_except_l2(entry_id, changes):
        if entry_id == "L2":
            raise RuntimeError("disk full")
        original_update(entry_id, changes)

    monkeypatch.setattr(store, "update_entry", update_except_l2)

    with pytest.raises(RuntimeError):
        api.matcher.reconcile("EB1", "L2")

    _assert_linked(api, "EB1", "L1")
    assert api.ledger.store.get_entry_by_id("L2").bank_statement_id is None


def test_failed_unlink_keeps_the_pair(tmp_path, monkeypatch) -> None:
    api = make_api(tmp_path)
    add_entries(api, entry("L1", gross=200.0, accrual=JAN_10))
    add_statements(api, statement("EB1", JAN_10, 200.0))
    api.matcher.reconcile("EB1", "L1")

    statements = api.matcher.statements
    original_update = statements.update_statement
    calls = []

    def fail_first_call(line_id, changes):
        calls.append(line_id)
        if len(calls) == 1:
            raise RuntimeError("disk full")
        original_update(line_id, changes)

    monkeypatch.setattr(statements, "update_statement", fail_first_call)

    with pytest.raises(RuntimeError):
        api.matcher.unreconcile("EB1")

    _assert_linked(api, "EB1", "L1")
