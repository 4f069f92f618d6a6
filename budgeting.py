"""
Budgeting module for category envelopes.

This module provides category management (create, edit, delete, default
seeding for new users) and the budget transfer operation that moves
allocation from one category to another.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from database_ops import (
    DEFAULT_CATEGORY_COLOR,
    Category,
    DatabaseManager,
    Expense,
    FixedExpense,
)
from exceptions import InsufficientFundsError, NotFoundError, ValidationError
from validation import parse_money, require_text, validate_color, validate_id

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class BudgetTransfer:
    """
    Outcome of a budget move.

    Attributes:
        source: Category the allocation was taken from (post-transfer state)
        destination: Category the allocation was given to (post-transfer state)
        amount: Amount moved
    """
    source: Category
    destination: Category
    amount: Decimal


class BudgetManager:
    """
    Manages budget categories and transfers between them.

    All mutations run through ``DatabaseManager.run_in_transaction`` so they
    commit as a unit and are retried when they collide with a concurrent
    request.
    """

    def __init__(self, db_manager: DatabaseManager, default_categories: Optional[Sequence[Dict[str, Any]]] = None):
        """
        Initialize the budget manager.

        Args:
            db_manager: DatabaseManager instance
            default_categories: Categories seeded for a user with none
                (dicts with name, budget_limit, color)
        """
        self.db_manager = db_manager
        self.default_categories = list(default_categories or [])
        logger.info("Budget manager initialized")

    @staticmethod
    def _load_category(session: Session, user_id: str, category_id: int) -> Category:
        category = (
            session.query(Category)
            .filter(Category.id == category_id, Category.user_id == user_id)
            .one_or_none()
        )
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    def get_categories(self, user_id: str, session: Optional[Session] = None) -> List[Category]:
        """
        Get all categories of a user, oldest first.

        Args:
            user_id: Owning user
            session: Optional existing session

        Returns:
            List of Category objects
        """
        if session is not None:
            return session.query(Category).filter(Category.user_id == user_id).order_by(Category.id).all()
        with self.db_manager.session_scope("get_categories") as scoped:
            return scoped.query(Category).filter(Category.user_id == user_id).order_by(Category.id).all()

    def get_category(self, user_id: str, category_id: Any) -> Category:
        """
        Get a category by ID.

        Raises:
            NotFoundError: If it does not exist or belongs to another user
        """
        category_id = validate_id(category_id, "category_id")
        with self.db_manager.session_scope("get_category") as session:
            return self._load_category(session, user_id, category_id)

    def create_category(
        self,
        user_id: str,
        name: Any,
        budget_limit: Any,
        color: Optional[str] = None
    ) -> Category:
        """
        Create a category.

        Args:
            user_id: Owning user
            name: Category name
            budget_limit: Non-negative allocation
            color: Optional hex color

        Returns:
            Created Category object
        """
        category = Category(
            user_id=user_id,
            name=require_text(name, "name"),
            budget_limit=parse_money(budget_limit, "budget_limit"),
            color=validate_color(color) if color is not None else DEFAULT_CATEGORY_COLOR,
        )

        def _create(session: Session) -> Category:
            session.add(category)
            session.flush()
            return category

        created = self.db_manager.run_in_transaction(_create, description="create_category")
        logger.info(f"Created category '{created.name}' ({created.budget_limit}) for user {user_id}")
        return created

    def update_category(
        self,
        user_id: str,
        category_id: Any,
        name: Optional[str] = None,
        budget_limit: Any = None,
        color: Optional[str] = None
    ) -> Category:
        """
        Update a category; only the fields given are changed.

        Returns:
            Updated Category object

        Raises:
            NotFoundError: If the category does not exist
        """
        category_id = validate_id(category_id, "category_id")
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = require_text(name, "name")
        if budget_limit is not None:
            changes["budget_limit"] = parse_money(budget_limit, "budget_limit")
        if color is not None:
            changes["color"] = validate_color(color)

        def _update(session: Session) -> Category:
            category = self._load_category(session, user_id, category_id)
            for key, value in changes.items():
                setattr(category, key, value)
            session.flush()
            return category

        updated = self.db_manager.run_in_transaction(_update, description="update_category")
        logger.info(f"Updated category {category_id}")
        return updated

    def delete_category(self, user_id: str, category_id: Any) -> int:
        """
        Delete a category.

        Expenses and fixed-expense templates that referenced it are kept
        with their category cleared.

        Returns:
            Number of expenses that became uncategorized

        Raises:
            NotFoundError: If the category does not exist
        """
        category_id = validate_id(category_id, "category_id")

        def _delete(session: Session) -> int:
            category = self._load_category(session, user_id, category_id)
            orphaned = (
                session.query(Expense)
                .filter(Expense.category_id == category_id)
                .update({Expense.category_id: None}, synchronize_session=False)
            )
            session.query(FixedExpense).filter(FixedExpense.category_id == category_id).update(
                {FixedExpense.category_id: None}, synchronize_session=False
            )
            session.delete(category)
            return orphaned

        orphaned = self.db_manager.run_in_transaction(_delete, description="delete_category")
        logger.info(f"Deleted category {category_id}; {orphaned} expenses are now uncategorized")
        return orphaned

    def seed_default_categories(self, user_id: str) -> List[Category]:
        """
        Create the default categories for a user who has none.

        The emptiness check is repeated inside the transaction, so a user who
        gained categories in the meantime is left alone.

        Returns:
            The created categories (empty if the user already had some)
        """
        templates = [
            {
                "name": require_text(entry.get("name"), "name"),
                "budget_limit": parse_money(str(entry.get("budget_limit", "0")), "budget_limit"),
                "color": validate_color(entry.get("color", DEFAULT_CATEGORY_COLOR)),
            }
            for entry in self.default_categories
        ]

        def _seed(session: Session) -> List[Category]:
            existing = session.query(Category.id).filter(Category.user_id == user_id).first()
            if existing is not None:
                return []
            created = [Category(user_id=user_id, **template) for template in templates]
            session.add_all(created)
            session.flush()
            return created

        created = self.db_manager.run_in_transaction(_seed, description="seed_default_categories")
        if created:
            logger.info("Seeded %d default categories for user %s", len(created), user_id)
        return created

    def move_budget(self, user_id: str, from_category_id: Any, to_category_id: Any, amount: Any) -> BudgetTransfer:
        """
        Move budget allocation from one category to another.

        Both rows are read and written in one transaction and locked in
        ascending id order, so concurrent transfers touching the same
        category serialize instead of overwriting each other.

        Args:
            user_id: Owning user of both categories
            from_category_id: Source category
            to_category_id: Destination category
            amount: Amount to move, greater than zero

        Returns:
            BudgetTransfer with both categories' new state

        Raises:
            ValidationError: If the amount is not positive or both ids are the same
            NotFoundError: If either category does not exist
            InsufficientFundsError: If the source would drop below zero
        """
        from_category_id = validate_id(from_category_id, "from_category_id")
        to_category_id = validate_id(to_category_id, "to_category_id")
        amount = parse_money(amount, "amount", strictly_positive=True)
        if from_category_id == to_category_id:
            raise ValidationError("Source and destination categories must differ", field="to_category_id")

        def _transfer(session: Session) -> BudgetTransfer:
            locked = (
                session.query(Category)
                .filter(
                    Category.id.in_([from_category_id, to_category_id]),
                    Category.user_id == user_id,
                )
                .order_by(Category.id)
                .with_for_update()
                .all()
            )
            by_id = {category.id: category for category in locked}
            source = by_id.get(from_category_id)
            if source is None:
                raise NotFoundError("Category", from_category_id)
            destination = by_id.get(to_category_id)
            if destination is None:
                raise NotFoundError("Category", to_category_id)

            new_source_limit = source.budget_limit - amount
            if new_source_limit < 0:
                raise InsufficientFundsError(
                    "Insufficient funds in source category",
                    details={
                        "category_id": from_category_id,
                        "available": str(source.budget_limit),
                        "requested": str(amount),
                    }
                )

            source.budget_limit = new_source_limit
            destination.budget_limit = destination.budget_limit + amount
            session.flush()
            return BudgetTransfer(source=source, destination=destination, amount=amount)

        transfer = self.db_manager.run_in_transaction(_transfer, description="move_budget")
        logger.info(
            "Moved %s from category %d to %d for user %s",
            amount, from_category_id, to_category_id, user_id
        )
        return transfer
