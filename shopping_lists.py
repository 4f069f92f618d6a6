"""
Shopping list management.

Lists and their items are independent of the budget cycle. Deleting a list
deletes its items.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session, selectinload

from database_ops import DatabaseManager, ShoppingList, ShoppingListItem
from exceptions import NotFoundError, ValidationError
from validation import optional_text, require_text, validate_id

# Configure logging
logger = logging.getLogger(__name__)


class ShoppingListManager:
    """Manages shopping lists and their items."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        logger.info("Shopping list manager initialized")

    @staticmethod
    def _load_list(session: Session, user_id: str, list_id: int) -> ShoppingList:
        shopping_list = (
            session.query(ShoppingList)
            .options(selectinload(ShoppingList.items))
            .filter(ShoppingList.id == list_id, ShoppingList.user_id == user_id)
            .one_or_none()
        )
        if shopping_list is None:
            raise NotFoundError("ShoppingList", list_id)
        return shopping_list

    @staticmethod
    def _load_item(session: Session, user_id: str, item_id: int) -> ShoppingListItem:
        item = (
            session.query(ShoppingListItem)
            .join(ShoppingList, ShoppingListItem.list_id == ShoppingList.id)
            .filter(ShoppingListItem.id == item_id, ShoppingList.user_id == user_id)
            .one_or_none()
        )
        if item is None:
            raise NotFoundError("ShoppingListItem", item_id)
        return item

    def list_lists(self, user_id: str) -> List[ShoppingList]:
        """
        Get a user's shopping lists with their items loaded.

        Args:
            user_id: Owning user

        Returns:
            List of ShoppingList objects in creation order
        """
        with self.db_manager.session_scope("list_shopping_lists") as session:
            return (
                session.query(ShoppingList)
                .options(selectinload(ShoppingList.items))
                .filter(ShoppingList.user_id == user_id)
                .order_by(ShoppingList.id)
                .all()
            )

    def get_list(self, user_id: str, list_id: Any) -> ShoppingList:
        list_id = validate_id(list_id, "list_id")
        with self.db_manager.session_scope("get_shopping_list") as session:
            return self._load_list(session, user_id, list_id)

    def create_list(self, user_id: str, name: Any, is_recurring: bool = False) -> ShoppingList:
        """
        Create an empty shopping list.

        Args:
            user_id: Owning user
            name: List name
            is_recurring: Whether the list is reused every cycle

        Returns:
            Created ShoppingList object
        """
        if not isinstance(is_recurring, bool):
            raise ValidationError("is_recurring must be true or false", field="is_recurring")
        shopping_list = ShoppingList(
            user_id=user_id,
            name=require_text(name, "name"),
            is_recurring=is_recurring,
            items=[],
        )
        with self.db_manager.session_scope("create_shopping_list") as session:
            session.add(shopping_list)
            session.flush()
        logger.info(f"Created shopping list '{shopping_list.name}' for user {user_id}")
        return shopping_list

    def delete_list(self, user_id: str, list_id: Any) -> None:
        """
        Delete a shopping list and all of its items.

        Raises:
            NotFoundError: If the list does not exist
        """
        list_id = validate_id(list_id, "list_id")
        with self.db_manager.session_scope("delete_shopping_list") as session:
            shopping_list = self._load_list(session, user_id, list_id)
            session.delete(shopping_list)
        logger.info(f"Deleted shopping list {list_id}")

    def create_item(self, user_id: str, list_id: Any, name: Any, amount: Optional[str] = None) -> ShoppingListItem:
        """
        Add an item to a list.

        Args:
            user_id: Owning user of the list
            list_id: Target list
            name: Item name
            amount: Free-text quantity ("2 kg", "1 unit")

        Returns:
            Created ShoppingListItem object
        """
        list_id = validate_id(list_id, "list_id")
        name = require_text(name, "name", max_length=200)
        amount = optional_text(amount, "amount", max_length=64)

        with self.db_manager.session_scope("create_shopping_item") as session:
            self._load_list(session, user_id, list_id)
            item = ShoppingListItem(list_id=list_id, name=name, amount=amount, is_completed=False)
            session.add(item)
            session.flush()
        logger.info(f"Added item '{item.name}' to shopping list {list_id}")
        return item

    def update_item(
        self,
        user_id: str,
        item_id: Any,
        name: Optional[str] = None,
        amount: Optional[str] = None,
        is_completed: Optional[bool] = None
    ) -> ShoppingListItem:
        """
        Update an item; only the fields given are changed.

        Raises:
            NotFoundError: If the item does not exist
        """
        item_id = validate_id(item_id, "item_id")
        if is_completed is not None and not isinstance(is_completed, bool):
            raise ValidationError("is_completed must be true or false", field="is_completed")

        with self.db_manager.session_scope("update_shopping_item") as session:
            item = self._load_item(session, user_id, item_id)
            if name is not None:
                item.name = require_text(name, "name", max_length=200)
            if amount is not None:
                item.amount = optional_text(amount, "amount", max_length=64)
            if is_completed is not None:
                item.is_completed = is_completed
            session.flush()
        return item

    def delete_item(self, user_id: str, item_id: Any) -> None:
        """
        Delete an item.

        Raises:
            NotFoundError: If the item does not exist
        """
        item_id = validate_id(item_id, "item_id")
        with self.db_manager.session_scope("delete_shopping_item") as session:
            item = self._load_item(session, user_id, item_id)
            session.delete(item)
        logger.info(f"Deleted shopping item {item_id}")
