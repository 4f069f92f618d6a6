"""
Per-user settings management.

Settings are a one-row-per-user singleton that is only materialized on the
first write. Reads go through a get-or-default accessor so callers never
handle a missing row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from database_ops import DatabaseManager, Settings
from validation import validate_reset_day

# Configure logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSettings:
    """
    Settings value object.

    Attributes:
        user_id: Owning user
        reset_day: Day of month on which a new cycle starts
        last_reset_date: Rollover watermark (None until the first rollover)
        persisted: False when these are defaults for a user with no stored row
    """
    user_id: str
    reset_day: int
    last_reset_date: Optional[datetime] = None
    persisted: bool = False

    @classmethod
    def from_row(cls, row: Settings) -> "UserSettings":
        return cls(
            user_id=row.user_id,
            reset_day=row.reset_day,
            last_reset_date=row.last_reset_date,
            persisted=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "reset_day": self.reset_day,
            "last_reset_date": self.last_reset_date.isoformat() if self.last_reset_date else None,
        }


class SettingsManager:
    """Reads and upserts the per-user settings row."""

    def __init__(self, db_manager: DatabaseManager, default_reset_day: int = 1):
        """
        Initialize the settings manager.

        Args:
            db_manager: DatabaseManager instance
            default_reset_day: Reset day reported for users with no settings row
        """
        self.db_manager = db_manager
        self.default_reset_day = validate_reset_day(default_reset_day)
        logger.info("Settings manager initialized")

    def defaults_for(self, user_id: str) -> UserSettings:
        return UserSettings(user_id=user_id, reset_day=self.default_reset_day)

    def get_settings(self, user_id: str, session: Optional[Session] = None) -> UserSettings:
        """
        Get a user's settings, or defaults if none are stored.

        Args:
            user_id: Owning user
            session: Optional existing session

        Returns:
            UserSettings value object
        """
        if session is not None:
            row = session.query(Settings).filter(Settings.user_id == user_id).one_or_none()
        else:
            with self.db_manager.session_scope("get_settings") as scoped:
                row = scoped.query(Settings).filter(Settings.user_id == user_id).one_or_none()

        if row is None:
            return self.defaults_for(user_id)
        return UserSettings.from_row(row)

    def update_settings(self, user_id: str, reset_day: Any) -> UserSettings:
        """
        Create or update a user's settings.

        A concurrent first write collides on the unique user key; the retry
        then finds the row and updates it.

        Args:
            user_id: Owning user
            reset_day: New reset day (1-31)

        Returns:
            The stored settings
        """
        reset_day = validate_reset_day(reset_day)

        def _upsert(session: Session) -> UserSettings:
            row = (
                session.query(Settings)
                .filter(Settings.user_id == user_id)
                .with_for_update()
                .one_or_none()
            )
            if row is None:
                row = Settings(user_id=user_id, reset_day=reset_day)
                session.add(row)
            else:
                row.reset_day = reset_day
            session.flush()
            return UserSettings.from_row(row)

        stored = self.db_manager.run_in_transaction(_upsert, description="update_settings")
        logger.info("Settings saved for user %s: reset_day=%d", user_id, stored.reset_day)
        return stored
