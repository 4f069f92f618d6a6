"""
Database operations module for household budget storage.

This module handles database connections, schema creation, and transaction
management using SQLAlchemy ORM. Supports SQLite by default with easy
migration to other databases.

Every multi-step mutation in the application goes through
``DatabaseManager.run_in_transaction`` so that it commits as a unit, rolls
back completely on failure, and is retried when it loses a race against a
concurrent request.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from exceptions import ConcurrencyConflictError, DatabaseError, StorageUnavailableError

# Configure logging
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_CATEGORY_COLOR = "#3b82f6"

T = TypeVar("T")

# Substrings (lower-cased) of driver messages that mean "lost a race, try again"
_CONFLICT_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "serialization failure",
    "lock wait timeout",
)


def local_now() -> datetime:
    """
    Get the current wall-clock time as a naive datetime.

    All timestamps in the database are naive and expressed in household
    local time, so cycle boundaries fall on local midnight.

    Returns:
        Current local datetime without tzinfo
    """
    return datetime.now()


def quantize_money(value: Decimal) -> Decimal:
    """Round a decimal to whole cents."""
    return value.quantize(CENT)


class Money(TypeDecorator):
    """
    Exact-precision money column.

    Persists NUMERIC(14, 2) where the backend supports decimals natively and
    canonical decimal text on SQLite (whose NUMERIC affinity would coerce to
    binary floating point). The Python side is always ``Decimal``.
    """

    impl = Numeric(14, 2)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(14, 2, asdecimal=True))

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("Money columns do not accept binary floating point values")
        try:
            amount = quantize_money(Decimal(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise TypeError(f"Invalid money value: {value!r}") from exc
        if dialect.name == "sqlite":
            return str(amount)
        return amount

    def process_result_value(self, value: Any, dialect) -> Optional[Decimal]:  # type: ignore[override]
        if value is None:
            return None
        return quantize_money(Decimal(str(value)))


# Base class for declarative models
Base = declarative_base()


class Category(Base):
    """
    SQLAlchemy model representing a budget category.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        name: Category name (e.g., "Groceries")
        budget_limit: Monthly allocation, never negative
        color: Hex color used by clients
        created_at: Timestamp when category was created
        updated_at: Timestamp when category was last updated
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    budget_limit = Column(Money(), nullable=False, default=ZERO)
    color = Column(String(16), nullable=False, default=DEFAULT_CATEGORY_COLOR)
    created_at = Column(DateTime, default=local_now, nullable=False)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now, nullable=False)

    def __repr__(self) -> str:
        """String representation of the category."""
        return f"<Category(id={self.id}, name='{self.name}', budget_limit={self.budget_limit})>"

    def to_dict(self) -> Dict[str, Any]:
        """Transport shape with money rendered as decimal text."""
        return {
            "id": self.id,
            "name": self.name,
            "budget_limit": str(self.budget_limit),
            "color": self.color,
            "user_id": self.user_id,
        }


class Expense(Base):
    """
    SQLAlchemy model representing a single expense.

    Expenses are never mutated after creation. Cycle membership is derived
    from ``date`` alone.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        amount: Expense amount (exact decimal)
        description: Free-text description
        date: When the expense happened
        category_id: Optional category (None means uncategorized)
    """

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    amount = Column(Money(), nullable=False)
    description = Column(String(500), nullable=False)
    date = Column(DateTime, nullable=False, default=local_now)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=local_now, nullable=False)

    category = relationship("Category")

    # Composite index for the per-cycle range reads
    __table_args__ = (
        Index("idx_expenses_user_date", "user_id", "date"),
    )

    def __repr__(self) -> str:
        """String representation of the expense."""
        return (
            f"<Expense(id={self.id}, date={self.date}, "
            f"description='{self.description[:30]}', amount={self.amount})>"
        )


class Settings(Base):
    """
    Per-user settings singleton.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user (unique)
        reset_day: Day of month on which a new budget cycle starts (1-31)
        last_reset_date: Watermark of the last successful rollover
    """

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True)
    reset_day = Column(Integer, nullable=False, default=1)
    last_reset_date = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Settings(user_id='{self.user_id}', reset_day={self.reset_day}, "
            f"last_reset_date={self.last_reset_date})>"
        )


class FixedExpense(Base):
    """Recurring-charge template re-materialized as an Expense on every rollover."""

    __tablename__ = "fixed_expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    amount = Column(Money(), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)

    category = relationship("Category")

    def __repr__(self) -> str:
        return f"<FixedExpense(id={self.id}, name='{self.name}', amount={self.amount})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "amount": str(self.amount),
            "category_id": self.category_id,
            "user_id": self.user_id,
        }


class BudgetHistory(Base):
    """
    Append-only archive of closed cycles.

    At most one row per (user, month); the unique constraint backs up the
    rollover watermark check.
    """

    __tablename__ = "budget_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    total_budget = Column(Money(), nullable=False)
    total_spent = Column(Money(), nullable=False)
    created_at = Column(DateTime, default=local_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_budget_history_user_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<BudgetHistory(user_id='{self.user_id}', month={self.month}, "
            f"total_budget={self.total_budget}, total_spent={self.total_spent})>"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "month": self.month,
            "total_budget": str(self.total_budget),
            "total_spent": str(self.total_spent),
            "user_id": self.user_id,
        }


class ShoppingList(Base):
    """A named shopping list; independent of the budget cycle."""

    __tablename__ = "shopping_lists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)

    items = relationship(
        "ShoppingListItem",
        back_populates="shopping_list",
        cascade="all, delete-orphan",
        order_by="ShoppingListItem.id",
    )

    def __repr__(self) -> str:
        return f"<ShoppingList(id={self.id}, name='{self.name}')>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_recurring": self.is_recurring,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
        }


class ShoppingListItem(Base):
    """Line on a shopping list; ``amount`` is free text ("2 kg", "1 unit")."""

    __tablename__ = "shopping_list_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    list_id = Column(Integer, ForeignKey("shopping_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(String(64), nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)

    shopping_list = relationship("ShoppingList", back_populates="items")

    def __repr__(self) -> str:
        return f"<ShoppingListItem(id={self.id}, name='{self.name}', completed={self.is_completed})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "list_id": self.list_id,
            "name": self.name,
            "amount": self.amount,
            "is_completed": self.is_completed,
        }


def attach_sqlite_listeners(engine) -> None:
    """
    Attach SQLAlchemy event listeners that make SQLite transactions serialize.

    pysqlite's implicit BEGIN is disabled and replaced with ``BEGIN IMMEDIATE``
    so a transaction holds the database write lock from its first read. This
    is what keeps read-modify-write sequences (budget transfers, rollovers)
    free of lost updates on SQLite, where ``SELECT ... FOR UPDATE`` is not
    available. Foreign keys are enabled on every connection.
    """
    if engine.dialect.name != "sqlite":
        return

    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - event hook
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    def _on_begin(connection):  # pragma: no cover - event hook
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    event.listen(engine, "connect", _on_connect)
    event.listen(engine, "begin", _on_begin)


def translate_error(exc: SQLAlchemyError, operation: str) -> DatabaseError:
    """
    Map a SQLAlchemy error onto the application's error taxonomy.

    Args:
        exc: Error raised by SQLAlchemy or the DBAPI driver
        operation: Name of the operation, recorded in the error details

    Returns:
        ConcurrencyConflictError for races (locks, serialization failures,
        unique-key collisions), StorageUnavailableError when the store cannot
        be reached, DatabaseError otherwise.
    """
    message = str(getattr(exc, "orig", None) or exc)
    lowered = message.lower()
    details = {"operation": operation, "error": message}

    if isinstance(exc, IntegrityError):
        if "unique constraint failed" in lowered or "duplicate" in lowered:
            return ConcurrencyConflictError(
                "Concurrent write collided on a unique key",
                details=details,
                original_error=exc
            )
        return DatabaseError("Write violates database constraints", details=details, original_error=exc)

    if isinstance(exc, DBAPIError):
        if any(marker in lowered for marker in _CONFLICT_MARKERS):
            return ConcurrencyConflictError(
                "Transaction conflicted with a concurrent update",
                details=details,
                original_error=exc
            )
        if exc.connection_invalidated or isinstance(exc, OperationalError):
            return StorageUnavailableError("Storage is unavailable", details=details, original_error=exc)

    return DatabaseError("Database operation failed", details=details, original_error=exc)


def _build_engine(connection_string: str, echo: bool = False):
    """Create an engine, sharing a single connection for in-memory SQLite."""
    url = make_url(connection_string)
    kwargs: Dict[str, Any] = {"echo": echo}
    if url.drivername.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(connection_string, **kwargs)
    attach_sqlite_listeners(engine)
    return engine


class DatabaseManager:
    """
    Manages database connections and transactions.

    This class handles database initialization, session management, and the
    transaction scope with bounded retry used by every mutation.
    """

    def __init__(
        self,
        connection_string: str,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
        echo: bool = False
    ):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budget.db')
            max_attempts: How many times a conflicting transaction is attempted
            retry_backoff_seconds: Base delay before the first retry (doubles per retry)
            echo: Echo SQL statements to the log

        Raises:
            StorageUnavailableError: If the engine cannot be created
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        try:
            self.engine = _build_engine(connection_string, echo=echo)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageUnavailableError(
                "Failed to initialize database",
                details={"operation": "initialize"},
                original_error=e
            ) from e
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        logger.info(f"Database manager initialized with connection: {self.engine.url!r}")

    @classmethod
    def from_config(cls, connection_string: str, config: Optional[Dict[str, Any]] = None) -> "DatabaseManager":
        """Build a manager using the retry settings from the ``database`` config section."""
        db_config = (config or {}).get("database", {})
        return cls(
            connection_string,
            max_attempts=int(db_config.get("max_attempts", 3)),
            retry_backoff_seconds=float(db_config.get("retry_backoff_seconds", 0.05)),
            echo=bool(db_config.get("echo", False)),
        )

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise translate_error(e, "create_tables") from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self, operation: str = "transaction") -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Commits when the block exits normally and rolls back on any exception.
        SQLAlchemy errors are translated; domain errors propagate unchanged.

        Args:
            operation: Name recorded in translated error details
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            error = translate_error(exc, operation)
            logger.debug("Rolled back %s: %s", operation, error)
            raise error from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run_in_transaction(self, operation: Callable[[Session], T], description: str = "transaction") -> T:
        """
        Run ``operation`` inside one transaction, retrying on conflicts.

        The whole operation is re-run from scratch on every attempt, so it
        must do all of its reads through the session it is given.

        Args:
            operation: Callable receiving the session
            description: Name used in logs and error details

        Returns:
            Whatever ``operation`` returns

        Raises:
            ConcurrencyConflictError: If every attempt conflicted
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.session_scope(description) as session:
                    return operation(session)
            except ConcurrencyConflictError as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Giving up on %s after %d conflicting attempts: %s",
                        description, attempt, exc
                    )
                    raise
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Conflict during %s (attempt %d/%d); retrying in %.3fs",
                    description, attempt, self.max_attempts, delay
                )
                time.sleep(delay)

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, 'engine'):
            self.engine.dispose()
            logger.info("Database connection closed")
