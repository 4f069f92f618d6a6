"""
Budget service facade.

Single entry point used by the CLI (and any transport layer) for every
user-facing operation. Category and stats reads run the lazy cycle rollover
first, and category reads seed the default categories for a brand-new user.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from aggregation import MonthlyStats, aggregate
from budget_period import BudgetPeriod, resolve_period
from budgeting import BudgetManager
from config_manager import get_budget_config
from database_ops import BudgetHistory, Category, DatabaseManager, FixedExpense, ShoppingList, ShoppingListItem, local_now
from expense_management import ExpenseManager, ExpenseRecord
from rollover import RolloverEngine, RolloverResult
from settings_management import SettingsManager, UserSettings
from shopping_lists import ShoppingListManager
from validation import optional_id

# Configure logging
logger = logging.getLogger(__name__)


class BudgetService:
    """
    Facade over the budget managers.

    Every method takes the acting ``user_id``; entities owned by another
    user are reported as not found.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the service.

        Args:
            db_manager: DatabaseManager instance
            config: Full application configuration (the ``budget`` section is used)
            clock: Returns "now" as a naive local datetime; defaults to the wall clock
        """
        budget_config = get_budget_config(config)
        self.db_manager = db_manager
        self.clock = clock or local_now

        self.settings = SettingsManager(db_manager, budget_config["default_reset_day"])
        self.budgets = BudgetManager(db_manager, budget_config["default_categories"])
        self.expenses = ExpenseManager(db_manager, self.clock)
        self.rollover = RolloverEngine(db_manager, budget_config["fixed_expense_prefix"], self.clock)
        self.shopping = ShoppingListManager(db_manager)
        logger.info("Budget service initialized")

    def _resolve_period(self, user_id: str, month: Optional[str]) -> BudgetPeriod:
        reset_day = self.settings.get_settings(user_id).reset_day
        return resolve_period(self.clock(), reset_day, month)

    # Categories

    def list_categories(self, user_id: str) -> List[Category]:
        """
        List a user's categories.

        Runs the rollover check, and seeds the default categories when the
        user has none.
        """
        self.rollover.check_and_perform(user_id)
        categories = self.budgets.get_categories(user_id)
        if not categories:
            self.budgets.seed_default_categories(user_id)
            categories = self.budgets.get_categories(user_id)
        return categories

    def get_category(self, user_id: str, category_id: Any) -> Category:
        return self.budgets.get_category(user_id, category_id)

    def create_category(self, user_id: str, name: Any, budget_limit: Any, color: Optional[str] = None) -> Category:
        return self.budgets.create_category(user_id, name, budget_limit, color)

    def update_category(self, user_id: str, category_id: Any, **changes: Any) -> Category:
        """Update name, budget_limit and/or color of a category."""
        return self.budgets.update_category(user_id, category_id, **changes)

    def delete_category(self, user_id: str, category_id: Any) -> None:
        """Delete a category; its expenses are kept as uncategorized."""
        self.budgets.delete_category(user_id, category_id)

    def move_budget(self, user_id: str, from_category_id: Any, to_category_id: Any, amount: Any) -> Dict[str, Any]:
        """
        Move allocation between two categories.

        Returns:
            ``{"success": True, "message": ...}``

        Raises:
            ValidationError: On a non-positive amount or identical categories
            NotFoundError: If either category does not exist
            InsufficientFundsError: If the source allocation is too small
        """
        self.budgets.move_budget(user_id, from_category_id, to_category_id, amount)
        return {"success": True, "message": "Budget moved successfully"}

    # Expenses

    def list_expenses(self, user_id: str, month: Optional[str] = None, category_id: Any = None) -> List[ExpenseRecord]:
        """
        List expenses, newest first.

        Args:
            user_id: Owning user
            month: Optional ``YYYY-MM``; restricts to the cycle opening in that
                month under the user's reset day
            category_id: Optional category filter
        """
        period = self._resolve_period(user_id, month) if month is not None else None
        return self.expenses.list_expenses(user_id, period, optional_id(category_id, "category_id"))

    def get_expense(self, user_id: str, expense_id: Any) -> ExpenseRecord:
        return self.expenses.get_expense(user_id, expense_id)

    def create_expense(
        self,
        user_id: str,
        amount: Any,
        description: Any,
        date: Any = None,
        category_id: Any = None
    ) -> ExpenseRecord:
        return self.expenses.create_expense(user_id, amount, description, date, category_id)

    def delete_expense(self, user_id: str, expense_id: Any) -> None:
        self.expenses.delete_expense(user_id, expense_id)

    # Settings

    def get_settings(self, user_id: str) -> UserSettings:
        """Get settings, or defaults (``persisted=False``) when never saved."""
        return self.settings.get_settings(user_id)

    def update_settings(self, user_id: str, reset_day: Any) -> UserSettings:
        return self.settings.update_settings(user_id, reset_day)

    # Stats

    def get_monthly_stats(self, user_id: str, month: Optional[str] = None) -> MonthlyStats:
        """
        Aggregate one cycle.

        Settings, categories and expenses are read in a single transaction so
        the figures are mutually consistent.

        Args:
            user_id: Owning user
            month: Optional ``YYYY-MM``; defaults to the current cycle

        Returns:
            MonthlyStats for the resolved cycle
        """
        self.rollover.check_and_perform(user_id)
        now = self.clock()

        with self.db_manager.session_scope("get_monthly_stats") as session:
            settings = self.settings.get_settings(user_id, session=session)
            period = resolve_period(now, settings.reset_day, month)
            categories = self.budgets.get_categories(user_id, session=session)
            expenses = self.expenses.get_expenses_in_range(user_id, period.start, period.end, session=session)
            stats = aggregate(categories, expenses, period)

        logger.debug(
            "Stats for user %s, %s: %d categories, %d expenses",
            user_id, period, len(categories), len(expenses)
        )
        return stats

    # Fixed expenses

    def list_fixed_expenses(self, user_id: str) -> List[FixedExpense]:
        return self.expenses.list_fixed_expenses(user_id)

    def create_fixed_expense(self, user_id: str, name: Any, amount: Any, category_id: Any = None) -> FixedExpense:
        return self.expenses.create_fixed_expense(user_id, name, amount, category_id)

    def delete_fixed_expense(self, user_id: str, fixed_expense_id: Any) -> None:
        self.expenses.delete_fixed_expense(user_id, fixed_expense_id)

    # Rollover and history

    def run_rollover(self, user_id: str) -> RolloverResult:
        """Run the rollover check explicitly (normally done lazily on reads)."""
        return self.rollover.check_and_perform(user_id)

    def list_budget_history(self, user_id: str) -> List[BudgetHistory]:
        return self.rollover.list_history(user_id)

    # Shopping lists

    def list_shopping_lists(self, user_id: str) -> List[ShoppingList]:
        return self.shopping.list_lists(user_id)

    def create_shopping_list(self, user_id: str, name: Any, is_recurring: bool = False) -> ShoppingList:
        return self.shopping.create_list(user_id, name, is_recurring)

    def delete_shopping_list(self, user_id: str, list_id: Any) -> None:
        self.shopping.delete_list(user_id, list_id)

    def add_shopping_item(self, user_id: str, list_id: Any, name: Any, amount: Optional[str] = None) -> ShoppingListItem:
        return self.shopping.create_item(user_id, list_id, name, amount)

    def update_shopping_item(self, user_id: str, item_id: Any, **changes: Any) -> ShoppingListItem:
        return self.shopping.update_item(user_id, item_id, **changes)

    def delete_shopping_item(self, user_id: str, item_id: Any) -> None:
        self.shopping.delete_item(user_id, item_id)
