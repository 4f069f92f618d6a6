"""
Budget cycle rollover engine.

Rollover is lazy: every read of the category list or of the monthly stats
first calls ``RolloverEngine.check_and_perform``. When the user's watermark
(``Settings.last_reset_date``) predates the start of the current cycle, one
transaction:

1. archives the previous cycle's totals into ``budget_history``,
2. re-materializes every fixed-expense template as an expense dated now,
3. advances the watermark to now.

At most one rollover per user and cycle. The watermark is re-checked after
the per-user settings row is locked (``BEGIN IMMEDIATE`` on SQLite,
``SELECT ... FOR UPDATE`` elsewhere), and the unique ``(user_id, month)``
key on the history table turns any race that slips through into a conflict
whose retry finds the watermark already advanced.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from aggregation import aggregate
from budget_period import BudgetPeriod, resolve_period
from database_ops import (
    BudgetHistory,
    Category,
    DatabaseManager,
    Expense,
    FixedExpense,
    Settings,
    local_now,
)

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_FIXED_EXPENSE_PREFIX = "Fixed expense: "


class RolloverState(enum.Enum):
    """Per-user cycle state as seen by a single request."""
    UP_TO_DATE = "up_to_date"
    ROLLOVER_DUE = "rollover_due"
    ROLLOVER_IN_PROGRESS = "rollover_in_progress"


def rollover_state(last_reset_date: Optional[datetime], reset_day: int, now: datetime) -> RolloverState:
    """
    Decide whether the cycle containing ``now`` still needs its rollover.

    Args:
        last_reset_date: Watermark of the last rollover (None if never)
        reset_day: User's reset day
        now: Current timestamp

    Returns:
        UP_TO_DATE or ROLLOVER_DUE
    """
    period = resolve_period(now, reset_day)
    if last_reset_date is not None and last_reset_date >= period.start:
        return RolloverState.UP_TO_DATE
    return RolloverState.ROLLOVER_DUE


@dataclass
class RolloverResult:
    """
    Outcome of one rollover check.

    Attributes:
        user_id: User that was checked
        performed: True if this call archived and injected
        archived_month: Label of the history row written (None if none)
        injected_expense_ids: Ids of expenses created from fixed templates
        reason: Short machine-readable explanation
        period: Current cycle at the time of the check
    """
    user_id: str
    performed: bool
    archived_month: Optional[str] = None
    injected_expense_ids: List[int] = field(default_factory=list)
    reason: str = ""
    period: Optional[BudgetPeriod] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "performed": self.performed,
            "archived_month": self.archived_month,
            "injected_expense_ids": list(self.injected_expense_ids),
            "reason": self.reason,
            "month": self.period.label if self.period else None,
        }


class RolloverEngine:
    """Performs the lazy, at-most-once-per-cycle rollover."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        fixed_expense_prefix: str = DEFAULT_FIXED_EXPENSE_PREFIX,
        clock: Callable[[], datetime] = local_now
    ):
        """
        Initialize the rollover engine.

        Args:
            db_manager: DatabaseManager instance
            fixed_expense_prefix: Description prefix marking injected recurring charges
            clock: Returns "now" as a naive local datetime
        """
        self.db_manager = db_manager
        self.fixed_expense_prefix = fixed_expense_prefix
        self.clock = clock
        logger.info("Rollover engine initialized")

    def _read_state(self, user_id: str, now: datetime) -> Optional[RolloverState]:
        """Unlocked watermark check; None when the user has no settings."""
        with self.db_manager.session_scope("rollover_check") as session:
            settings = session.query(Settings).filter(Settings.user_id == user_id).one_or_none()
            if settings is None:
                return None
            return rollover_state(settings.last_reset_date, settings.reset_day, now)

    def check_and_perform(self, user_id: str) -> RolloverResult:
        """
        Run the rollover for ``user_id`` if the current cycle still needs it.

        Safe to call on every read; repeated and concurrent calls within a
        cycle are no-ops after the first.

        Args:
            user_id: User to check

        Returns:
            RolloverResult describing what happened

        Raises:
            ConcurrencyConflictError: If the transaction kept conflicting
            DatabaseError: If storage fails; nothing is persisted in that case
        """
        now = self.clock()

        state = self._read_state(user_id, now)
        if state is None:
            logger.debug("No settings for user %s; rollover not applicable", user_id)
            return RolloverResult(user_id=user_id, performed=False, reason="no_settings")
        if state is RolloverState.UP_TO_DATE:
            logger.debug("Budget cycle for user %s is up to date", user_id)
            return RolloverResult(user_id=user_id, performed=False, reason="up_to_date")

        def _rollover(session: Session) -> RolloverResult:
            return self._perform(session, user_id, now)

        result = self.db_manager.run_in_transaction(_rollover, description="rollover")
        if result.performed:
            logger.info(
                "Rolled over budget cycle for user %s: archived %s, injected %d fixed expenses",
                user_id, result.archived_month or "nothing", len(result.injected_expense_ids)
            )
        return result

    def _perform(self, session: Session, user_id: str, now: datetime) -> RolloverResult:
        settings = (
            session.query(Settings)
            .filter(Settings.user_id == user_id)
            .with_for_update()
            .one_or_none()
        )
        if settings is None:
            return RolloverResult(user_id=user_id, performed=False, reason="no_settings")

        current = resolve_period(now, settings.reset_day)
        if rollover_state(settings.last_reset_date, settings.reset_day, now) is RolloverState.UP_TO_DATE:
            # Another request finished the rollover while this one waited for the lock
            logger.debug("Rollover for user %s already performed for %s", user_id, current.label)
            return RolloverResult(user_id=user_id, performed=False, reason="up_to_date", period=current)

        logger.debug("User %s: %s for cycle %s", user_id, RolloverState.ROLLOVER_IN_PROGRESS.value, current)
        previous = current.previous()

        archived_month = self._archive(session, user_id, previous)
        injected_ids = self._inject_fixed_expenses(session, user_id, now)

        settings.last_reset_date = now
        session.flush()

        return RolloverResult(
            user_id=user_id,
            performed=True,
            archived_month=archived_month,
            injected_expense_ids=injected_ids,
            reason="rolled_over",
            period=current,
        )

    def _archive(self, session: Session, user_id: str, previous: BudgetPeriod) -> Optional[str]:
        """Write the history row for ``previous`` unless one already exists."""
        existing = (
            session.query(BudgetHistory.id)
            .filter(BudgetHistory.user_id == user_id, BudgetHistory.month == previous.label)
            .first()
        )
        if existing is not None:
            logger.warning(
                "History for %s already archived for user %s; skipping archive step",
                previous.label, user_id
            )
            return None

        categories = session.query(Category).filter(Category.user_id == user_id).all()
        expenses = (
            session.query(Expense)
            .filter(
                Expense.user_id == user_id,
                Expense.date >= previous.start,
                Expense.date < previous.end,
            )
            .all()
        )
        stats = aggregate(categories, expenses, previous)

        session.add(BudgetHistory(
            user_id=user_id,
            month=previous.label,
            total_budget=stats.total_budget,
            total_spent=stats.total_spent,
        ))
        session.flush()
        return previous.label

    def _inject_fixed_expenses(self, session: Session, user_id: str, now: datetime) -> List[int]:
        templates = (
            session.query(FixedExpense)
            .filter(FixedExpense.user_id == user_id)
            .order_by(FixedExpense.id)
            .all()
        )
        injected = [
            Expense(
                user_id=user_id,
                amount=template.amount,
                description=f"{self.fixed_expense_prefix}{template.name}",
                date=now,
                category_id=template.category_id,
            )
            for template in templates
        ]
        session.add_all(injected)
        session.flush()
        return [expense.id for expense in injected]

    def list_history(self, user_id: str) -> List[BudgetHistory]:
        """Get archived cycles for a user, newest month first."""
        with self.db_manager.session_scope("list_history") as session:
            return (
                session.query(BudgetHistory)
                .filter(BudgetHistory.user_id == user_id)
                .order_by(BudgetHistory.month.desc())
                .all()
            )
