"""
Integration tests for the BudgetService facade.

Exercises the read paths that trigger rollover and default seeding, stats
composition, and the end-to-end scenarios for overspending and category
deletion.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from budget_service import BudgetService
from database_ops import BudgetHistory, Category
from exceptions import InsufficientFundsError, NotFoundError


class TestListCategories:
    """Category listing seeds defaults and runs the rollover check."""

    def test_new_user_gets_defaults_once(self, service, db_manager):
        first = service.list_categories("new-user")
        second = service.list_categories("new-user")

        assert [c.name for c in first] == ["Rent", "Groceries", "Bills", "Fuel/Transport", "Entertainment"]
        assert [c.id for c in second] == [c.id for c in first]
        with db_manager.session_scope() as session:
            assert session.query(Category).count() == 5

    def test_configured_defaults(self, db_manager, clock):
        config = {"budget": {"default_categories": [{"name": "Only", "budget_limit": "1.00", "color": "#000000"}]}}
        service = BudgetService(db_manager, config, clock)
        assert [c.name for c in service.list_categories("u1")] == ["Only"]

    def test_listing_triggers_rollover(self, service, db_manager, clock):
        service.update_settings("u1", 1)
        service.create_fixed_expense("u1", "Rent", "3000")

        service.list_categories("u1")
        service.list_categories("u1")

        with db_manager.session_scope() as session:
            assert [h.month for h in session.query(BudgetHistory).all()] == ["2024-05"]
        rent = [e for e in service.list_expenses("u1") if e.description == "Fixed expense: Rent"]
        assert len(rent) == 1
        assert rent[0].date == clock.now
        assert service.get_settings("u1").last_reset_date == clock.now

    def test_user_without_settings_never_rolls_over(self, service):
        service.create_fixed_expense("u1", "Rent", "3000")
        service.list_categories("u1")
        assert service.list_expenses("u1") == []
        assert service.list_budget_history("u1") == []


class TestMonthlyStats:
    """Stats composition over the resolved cycle."""

    def test_overspent_groceries(self, service):
        groceries = service.create_category("u1", "Groceries", "500")
        service.create_expense("u1", "350", "Big shop", category_id=groceries.id)
        service.create_expense("u1", "250", "Party", category_id=groceries.id)

        stats = service.get_monthly_stats("u1")

        row = stats.categories[0]
        assert row.spent == Decimal("600.00")
        assert row.remaining == Decimal("-100.00")
        assert row.is_over_budget is True
        assert stats.total_budget == Decimal("500.00")
        assert stats.remaining == Decimal("-100.00")

    def test_deleted_category_expenses_become_uncategorized(self, service):
        bills = service.create_category("u1", "Bills", "1000")
        fun = service.create_category("u1", "Fun", "100")
        for amount in ("10", "20", "30"):
            service.create_expense("u1", amount, "Night out", category_id=fun.id)
        service.create_expense("u1", "40", "Power", category_id=bills.id)

        service.delete_category("u1", fun.id)

        expenses = [e for e in service.list_expenses("u1") if e.description == "Night out"]
        assert len(expenses) == 3
        assert all(e.category_id is None and e.category_name is None for e in expenses)

        stats = service.get_monthly_stats("u1")
        assert stats.total_spent == Decimal("100.00")
        assert [c.name for c in stats.categories] == ["Bills"]
        assert stats.categories[0].spent == Decimal("40.00")
        assert stats.uncategorized_spent == Decimal("60.00")

    def test_only_current_cycle_counted(self, service, clock):
        service.update_settings("u1", 10)
        service.run_rollover("u1")
        food = service.create_category("u1", "Food", "100")
        service.create_expense("u1", "1", "previous cycle", date="2024-06-09T23:00:00", category_id=food.id)
        service.create_expense("u1", "2", "this cycle", date="2024-06-10T00:00:00", category_id=food.id)

        stats = service.get_monthly_stats("u1")

        assert stats.period.start == datetime(2024, 6, 10)
        assert stats.total_spent == Decimal("2.00")

    def test_explicit_month(self, service):
        food = service.create_category("u1", "Food", "100")
        service.create_expense("u1", "7", "march", date="2024-03-15", category_id=food.id)

        stats = service.get_monthly_stats("u1", month="2024-03")

        assert stats.period.label == "2024-03"
        assert stats.total_spent == Decimal("7.00")
        assert stats.to_dict()["month"] == "2024-03"

    def test_stats_do_not_seed_defaults(self, service):
        stats = service.get_monthly_stats("u1")
        assert stats.categories == []
        assert stats.total_budget == Decimal("0.00")


class TestExpenseListing:
    """Month filters resolve through the user's reset day."""

    def test_month_uses_reset_day(self, service):
        service.update_settings("u1", 15)
        for stamp in ("2024-05-14T12:00:00", "2024-05-15T00:00:00", "2024-06-14T23:59:00", "2024-06-15T00:00:00"):
            service.create_expense("u1", "1", stamp, date=stamp)

        listed = service.list_expenses("u1", month="2024-05")

        assert [e.description for e in listed] == ["2024-06-14T23:59:00", "2024-05-15T00:00:00"]

    def test_category_filter(self, service):
        food = service.create_category("u1", "Food", "100")
        service.create_expense("u1", "1", "a", category_id=food.id)
        service.create_expense("u1", "1", "b")
        assert [e.description for e in service.list_expenses("u1", category_id=str(food.id))] == ["a"]


class TestMoveBudgetFacade:
    def test_success_payload(self, service):
        a = service.create_category("u1", "A", "100")
        b = service.create_category("u1", "B", "0")

        assert service.move_budget("u1", a.id, b.id, "40") == {"success": True, "message": "Budget moved successfully"}
        assert service.get_category("u1", b.id).budget_limit == Decimal("40.00")

    def test_errors_propagate(self, service):
        a = service.create_category("u1", "A", "10")
        b = service.create_category("u1", "B", "0")
        with pytest.raises(InsufficientFundsError):
            service.move_budget("u1", a.id, b.id, "11")
        with pytest.raises(NotFoundError):
            service.move_budget("u2", a.id, b.id, "1")


class TestUpdateCategoryFacade:
    def test_update_fields(self, service):
        category = service.create_category("u1", "Old", "10")
        updated = service.update_category("u1", category.id, name="New", color="#00ff00")
        assert updated.name == "New"
        assert updated.color == "#00ff00"
        assert updated.budget_limit == Decimal("10.00")
