from datetime import datetime

import pytest

from budget_service import BudgetService
from database_ops import DatabaseManager


class FixedClock:
    """Callable clock that returns a settable naive datetime."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock_factory():
    """Build additional independent clocks."""
    return FixedClock


@pytest.fixture
def clock():
    """Clock frozen at 2024-06-15 10:00 local time."""
    return FixedClock(datetime(2024, 6, 15, 10, 0))


@pytest.fixture
def db_manager():
    """In-memory SQLite database with all tables created."""
    manager = DatabaseManager("sqlite:///:memory:", retry_backoff_seconds=0)
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def file_db_manager(tmp_path):
    """File-backed SQLite database, needed when several threads connect at once."""
    manager = DatabaseManager(
        f"sqlite:///{(tmp_path / 'budget.db').as_posix()}",
        max_attempts=5,
        retry_backoff_seconds=0.01,
    )
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def service(db_manager, clock):
    """BudgetService on the in-memory database with the fixed clock."""
    return BudgetService(db_manager, clock=clock)
