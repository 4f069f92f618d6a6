"""
Expense management module.

Handles one-off expenses (entry, listing, deletion) and the fixed-expense
templates that the rollover engine re-materializes at every cycle start.
Expenses are never edited after creation; a wrong entry is deleted and
re-entered.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from budget_period import BudgetPeriod
from database_ops import Category, DatabaseManager, Expense, FixedExpense, local_now
from exceptions import NotFoundError
from validation import optional_id, parse_money, parse_timestamp, require_text, validate_id

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class ExpenseRecord:
    """
    Expense row joined with its category name.

    Attributes:
        category_name: Name of the category, None when uncategorized
    """
    id: int
    user_id: str
    amount: Decimal
    description: str
    date: datetime
    category_id: Optional[int]
    category_name: Optional[str] = None

    @classmethod
    def from_row(cls, expense: Expense, category_name: Optional[str] = None) -> "ExpenseRecord":
        return cls(
            id=expense.id,
            user_id=expense.user_id,
            amount=expense.amount,
            description=expense.description,
            date=expense.date,
            category_id=expense.category_id,
            category_name=category_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "description": self.description,
            "date": self.date.isoformat(),
            "category_id": self.category_id,
            "category_name": self.category_name,
            "user_id": self.user_id,
        }


def _check_category_owner(session: Session, user_id: str, category_id: Optional[int]) -> None:
    """Raise NotFoundError unless the category exists and belongs to the user."""
    if category_id is None:
        return
    owned = (
        session.query(Category.id)
        .filter(Category.id == category_id, Category.user_id == user_id)
        .first()
    )
    if owned is None:
        raise NotFoundError("Category", category_id)


class ExpenseManager:
    """Manages expenses and fixed-expense templates."""

    def __init__(self, db_manager: DatabaseManager, clock: Callable[[], datetime] = local_now):
        """
        Initialize the expense manager.

        Args:
            db_manager: DatabaseManager instance
            clock: Returns "now"; used when an expense has no explicit date
        """
        self.db_manager = db_manager
        self.clock = clock
        logger.info("Expense manager initialized")

    def list_expenses(
        self,
        user_id: str,
        period: Optional[BudgetPeriod] = None,
        category_id: Optional[int] = None
    ) -> List[ExpenseRecord]:
        """
        List a user's expenses, newest first.

        Args:
            user_id: Owning user
            period: Only expenses dated within this cycle
            category_id: Only expenses in this category

        Returns:
            List of ExpenseRecord objects
        """
        with self.db_manager.session_scope("list_expenses") as session:
            query = (
                session.query(Expense, Category.name)
                .outerjoin(Category, Expense.category_id == Category.id)
                .filter(Expense.user_id == user_id)
            )
            if category_id is not None:
                query = query.filter(Expense.category_id == category_id)
            if period is not None:
                query = query.filter(Expense.date >= period.start, Expense.date < period.end)

            rows = query.order_by(Expense.date.desc(), Expense.id.desc()).all()

        logger.debug("Listed %d expenses for user %s", len(rows), user_id)
        return [ExpenseRecord.from_row(expense, name) for expense, name in rows]

    def get_expenses_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        session: Optional[Session] = None
    ) -> List[Expense]:
        """
        Get expenses dated in ``[start, end)``.

        Args:
            user_id: Owning user
            start: Inclusive lower bound
            end: Exclusive upper bound
            session: Optional existing session

        Returns:
            List of Expense objects
        """
        def _query(active: Session) -> List[Expense]:
            return (
                active.query(Expense)
                .filter(
                    Expense.user_id == user_id,
                    Expense.date >= start,
                    Expense.date < end,
                )
                .all()
            )

        if session is not None:
            return _query(session)
        with self.db_manager.session_scope("get_expenses_in_range") as scoped:
            return _query(scoped)

    def get_expense(self, user_id: str, expense_id: Any) -> ExpenseRecord:
        """
        Get one expense.

        Raises:
            NotFoundError: If it does not exist or belongs to another user
        """
        expense_id = validate_id(expense_id, "expense_id")
        with self.db_manager.session_scope("get_expense") as session:
            row = (
                session.query(Expense, Category.name)
                .outerjoin(Category, Expense.category_id == Category.id)
                .filter(Expense.id == expense_id, Expense.user_id == user_id)
                .one_or_none()
            )
        if row is None:
            raise NotFoundError("Expense", expense_id)
        return ExpenseRecord.from_row(*row)

    def create_expense(
        self,
        user_id: str,
        amount: Any,
        description: Any,
        date: Any = None,
        category_id: Any = None
    ) -> ExpenseRecord:
        """
        Record an expense.

        Args:
            user_id: Owning user
            amount: Decimal amount (negative values record refunds)
            description: What the money was spent on
            date: When it happened; defaults to now
            category_id: Optional category owned by the user

        Returns:
            The stored expense

        Raises:
            ValidationError: On malformed input
            NotFoundError: If the category does not exist
        """
        amount = parse_money(amount, "amount", allow_negative=True)
        description = require_text(description, "description", max_length=500)
        when = parse_timestamp(date) if date is not None else self.clock()
        category_id = optional_id(category_id, "category_id")

        def _create(session: Session) -> ExpenseRecord:
            _check_category_owner(session, user_id, category_id)
            expense = Expense(
                user_id=user_id,
                amount=amount,
                description=description,
                date=when,
                category_id=category_id,
            )
            session.add(expense)
            session.flush()
            category_name = None
            if category_id is not None:
                category_name = session.get(Category, category_id).name
            return ExpenseRecord.from_row(expense, category_name)

        record = self.db_manager.run_in_transaction(_create, description="create_expense")
        logger.info(f"Recorded expense {record.id}: {record.amount} '{record.description}'")
        return record

    def delete_expense(self, user_id: str, expense_id: Any) -> None:
        """
        Delete an expense.

        Raises:
            NotFoundError: If it does not exist or belongs to another user
        """
        expense_id = validate_id(expense_id, "expense_id")
        with self.db_manager.session_scope("delete_expense") as session:
            deleted = (
                session.query(Expense)
                .filter(Expense.id == expense_id, Expense.user_id == user_id)
                .delete(synchronize_session=False)
            )
            if not deleted:
                raise NotFoundError("Expense", expense_id)
        logger.info(f"Deleted expense {expense_id}")

    # Fixed-expense templates

    def list_fixed_expenses(self, user_id: str, session: Optional[Session] = None) -> List[FixedExpense]:
        """Get a user's fixed-expense templates in creation order."""
        if session is not None:
            return (
                session.query(FixedExpense)
                .filter(FixedExpense.user_id == user_id)
                .order_by(FixedExpense.id)
                .all()
            )
        with self.db_manager.session_scope("list_fixed_expenses") as scoped:
            return (
                scoped.query(FixedExpense)
                .filter(FixedExpense.user_id == user_id)
                .order_by(FixedExpense.id)
                .all()
            )

    def create_fixed_expense(self, user_id: str, name: Any, amount: Any, category_id: Any = None) -> FixedExpense:
        """
        Create a fixed-expense template.

        Args:
            user_id: Owning user
            name: Template name (e.g., "Rent")
            amount: Non-negative amount charged every cycle
            category_id: Optional category owned by the user

        Returns:
            Created FixedExpense object
        """
        name = require_text(name, "name")
        amount = parse_money(amount, "amount")
        category_id = optional_id(category_id, "category_id")

        def _create(session: Session) -> FixedExpense:
            _check_category_owner(session, user_id, category_id)
            template = FixedExpense(user_id=user_id, name=name, amount=amount, category_id=category_id)
            session.add(template)
            session.flush()
            return template

        template = self.db_manager.run_in_transaction(_create, description="create_fixed_expense")
        logger.info(f"Created fixed expense '{template.name}' ({template.amount}) for user {user_id}")
        return template

    def delete_fixed_expense(self, user_id: str, fixed_expense_id: Any) -> None:
        """
        Delete a fixed-expense template. Expenses it already produced are kept.

        Raises:
            NotFoundError: If it does not exist or belongs to another user
        """
        fixed_expense_id = validate_id(fixed_expense_id, "fixed_expense_id")
        with self.db_manager.session_scope("delete_fixed_expense") as session:
            deleted = (
                session.query(FixedExpense)
                .filter(FixedExpense.id == fixed_expense_id, FixedExpense.user_id == user_id)
                .delete(synchronize_session=False)
            )
            if not deleted:
                raise NotFoundError("FixedExpense", fixed_expense_id)
        logger.info(f"Deleted fixed expense {fixed_expense_id}")
