"""
Unit tests for the lazy budget cycle rollover.

Covers the watermark state function, the archive/inject/advance sequence,
at-most-once behaviour for sequential and threaded callers, and atomicity.
"""

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from budgeting import BudgetManager
from database_ops import BudgetHistory, Expense, FixedExpense, Settings
from exceptions import DatabaseError
from rollover import RolloverEngine, RolloverState, rollover_state
from settings_management import SettingsManager


def _seed_user(db_manager, reset_day=1, last_reset_date=None):
    """Create a Housing category, a Rent template and a settings row."""
    housing = BudgetManager(db_manager).create_category("u1", "Housing", "3500.00")
    with db_manager.session_scope() as session:
        session.add(FixedExpense(user_id="u1", name="Rent", amount=Decimal("3000.00"), category_id=housing.id))
        session.add(Settings(user_id="u1", reset_day=reset_day, last_reset_date=last_reset_date))
    return housing


def _counts(db_manager):
    with db_manager.session_scope() as session:
        return (
            session.query(BudgetHistory).count(),
            session.query(Expense).filter(Expense.description == "Fixed expense: Rent").count(),
        )


class TestRolloverState:
    """Tests for the pure watermark check."""

    def test_never_rolled_over_is_due(self):
        assert rollover_state(None, 1, datetime(2024, 6, 15)) is RolloverState.ROLLOVER_DUE

    def test_watermark_in_previous_cycle_is_due(self):
        assert rollover_state(datetime(2024, 5, 20), 1, datetime(2024, 6, 1, 8)) is RolloverState.ROLLOVER_DUE

    def test_watermark_at_cycle_start_is_up_to_date(self):
        assert rollover_state(datetime(2024, 6, 1), 1, datetime(2024, 6, 15)) is RolloverState.UP_TO_DATE

    def test_reset_day_not_reached_yet(self):
        # Cycle opened on May 20; a watermark from May 21 still covers it
        assert rollover_state(datetime(2024, 5, 21), 20, datetime(2024, 6, 19)) is RolloverState.UP_TO_DATE


class TestCheckAndPerform:
    """Tests for the rollover transaction."""

    @pytest.fixture
    def june_first(self, clock_factory):
        return clock_factory(datetime(2024, 6, 1, 8, 0))

    def test_no_settings_is_noop(self, db_manager, clock):
        result = RolloverEngine(db_manager, clock=clock).check_and_perform("u1")

        assert result.performed is False
        assert result.reason == "no_settings"
        assert _counts(db_manager) == (0, 0)

    def test_new_cycle_scenario(self, db_manager, june_first):
        """Reset day 1, Rent 3000 in Housing: first read on June 1 rolls May over."""
        housing = _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1, 9, 0))
        with db_manager.session_scope() as session:
            session.add(Expense(user_id="u1", amount=Decimal("3000.00"), description="Fixed expense: Rent",
                                date=datetime(2024, 5, 1, 9, 0), category_id=housing.id))
            session.add(Expense(user_id="u1", amount=Decimal("412.35"), description="Groceries",
                                date=datetime(2024, 5, 20)))
            session.add(Expense(user_id="u1", amount=Decimal("99.00"), description="April",
                                date=datetime(2024, 4, 30)))

        result = RolloverEngine(db_manager, clock=june_first).check_and_perform("u1")

        assert result.performed is True
        assert result.archived_month == "2024-05"
        assert len(result.injected_expense_ids) == 1
        with db_manager.session_scope() as session:
            history = session.query(BudgetHistory).one()
            assert history.month == "2024-05"
            assert history.total_spent == Decimal("3412.35")
            assert history.total_budget == Decimal("3500.00")

            injected = session.get(Expense, result.injected_expense_ids[0])
            assert injected.amount == Decimal("3000.00")
            assert injected.date == datetime(2024, 6, 1, 8, 0)
            assert injected.category_id == housing.id
            assert injected.description == "Fixed expense: Rent"

            settings = session.query(Settings).one()
            assert settings.last_reset_date == datetime(2024, 6, 1, 8, 0)

    def test_first_rollover_without_watermark(self, db_manager, clock):
        _seed_user(db_manager)

        result = RolloverEngine(db_manager, clock=clock).check_and_perform("u1")

        assert result.performed is True
        assert result.archived_month == "2024-05"
        assert _counts(db_manager) == (1, 1)

    def test_second_call_is_noop(self, db_manager, june_first):
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))
        engine = RolloverEngine(db_manager, clock=june_first)

        first = engine.check_and_perform("u1")
        june_first.set(datetime(2024, 6, 20, 12, 0))
        second = engine.check_and_perform("u1")

        assert first.performed is True
        assert second.performed is False
        assert second.reason == "up_to_date"
        assert _counts(db_manager) == (1, 1)

    def test_next_cycle_rolls_again(self, db_manager, june_first):
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))
        engine = RolloverEngine(db_manager, clock=june_first)

        engine.check_and_perform("u1")
        june_first.set(datetime(2024, 7, 2))
        engine.check_and_perform("u1")

        history = engine.list_history("u1")
        assert [h.month for h in history] == ["2024-06", "2024-05"]
        assert _counts(db_manager) == (2, 2)

    def test_existing_history_row_is_not_duplicated(self, db_manager, june_first):
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))
        with db_manager.session_scope() as session:
            session.add(BudgetHistory(user_id="u1", month="2024-05",
                                      total_budget=Decimal("1"), total_spent=Decimal("2")))

        result = RolloverEngine(db_manager, clock=june_first).check_and_perform("u1")

        assert result.performed is True
        assert result.archived_month is None
        with db_manager.session_scope() as session:
            assert session.query(BudgetHistory).one().total_spent == Decimal("2.00")
            assert session.query(Settings).one().last_reset_date == datetime(2024, 6, 1, 8, 0)

    def test_reset_day_change_mid_cycle_reinjects_without_archiving(self, db_manager, june_first):
        """Moving the reset day from 1 to 20 opens a new cycle whose predecessor is already archived."""
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))
        engine = RolloverEngine(db_manager, clock=june_first)
        engine.check_and_perform("u1")
        SettingsManager(db_manager).update_settings("u1", 20)

        june_first.set(datetime(2024, 6, 21, 9, 0))
        result = engine.check_and_perform("u1")

        assert result.performed is True
        assert result.archived_month is None
        assert result.period.label == "2024-06"
        assert len(result.injected_expense_ids) == 1
        # Rent lands twice in June and May stays archived once
        assert _counts(db_manager) == (1, 2)
        with db_manager.session_scope() as session:
            assert session.query(Settings).one().last_reset_date == datetime(2024, 6, 21, 9, 0)
        assert engine.check_and_perform("u1").performed is False

    def test_custom_prefix(self, db_manager, june_first):
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))

        result = RolloverEngine(db_manager, "[recurring] ", june_first).check_and_perform("u1")

        with db_manager.session_scope() as session:
            assert session.get(Expense, result.injected_expense_ids[0]).description == "[recurring] Rent"

    def test_failure_leaves_no_partial_state(self, db_manager, june_first, monkeypatch):
        _seed_user(db_manager, last_reset_date=datetime(2024, 5, 1))
        engine = RolloverEngine(db_manager, clock=june_first)

        def explode(*args, **kwargs):
            raise DatabaseError("disk full")

        monkeypatch.setattr(engine, "_inject_fixed_expenses", explode)

        with pytest.raises(DatabaseError):
            engine.check_and_perform("u1")

        assert _counts(db_manager) == (0, 0)
        with db_manager.session_scope() as session:
            assert session.query(Settings).one().last_reset_date == datetime(2024, 5, 1)


class TestConcurrentRollover:
    """Overlapping reads must roll a cycle over exactly once."""

    def test_threads_race_into_rollover(self, file_db_manager, clock_factory):
        _seed_user(file_db_manager, last_reset_date=datetime(2024, 5, 1))
        clock = clock_factory(datetime(2024, 6, 1, 8, 0))
        engines = [RolloverEngine(file_db_manager, clock=clock) for _ in range(8)]

        barrier = threading.Barrier(len(engines))
        results = []
        lock = threading.Lock()

        def worker(engine):
            barrier.wait()
            result = engine.check_and_perform("u1")
            with lock:
                results.append(result)

        threads = [threading.Thread(target=worker, args=(engine,)) for engine in engines]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == len(engines)
        assert sum(1 for r in results if r.performed) == 1
        assert _counts(file_db_manager) == (1, 1)
