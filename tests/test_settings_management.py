"""
Unit tests for the get-or-default settings accessor and upsert.
"""

import pytest

from database_ops import Settings
from exceptions import ValidationError
from settings_management import SettingsManager


@pytest.fixture
def settings_manager(db_manager):
    return SettingsManager(db_manager, default_reset_day=1)


class TestSettings:
    """Tests for reading and saving settings."""

    def test_defaults_when_absent(self, settings_manager):
        settings = settings_manager.get_settings("u1")

        assert settings.reset_day == 1
        assert settings.last_reset_date is None
        assert settings.persisted is False

    def test_configured_default_reset_day(self, db_manager):
        assert SettingsManager(db_manager, default_reset_day=25).get_settings("u1").reset_day == 25

    def test_upsert_creates_then_updates_single_row(self, settings_manager, db_manager):
        created = settings_manager.update_settings("u1", 15)
        updated = settings_manager.update_settings("u1", "20")

        assert created.persisted is True
        assert updated.reset_day == 20
        with db_manager.session_scope() as session:
            assert session.query(Settings).filter(Settings.user_id == "u1").count() == 1

        assert settings_manager.get_settings("u1").reset_day == 20

    def test_users_are_isolated(self, settings_manager):
        settings_manager.update_settings("u1", 10)
        assert settings_manager.get_settings("u2").persisted is False

    @pytest.mark.parametrize("reset_day", [0, 32, "x", None, "²"])
    def test_invalid_reset_day(self, settings_manager, db_manager, reset_day):
        with pytest.raises(ValidationError):
            settings_manager.update_settings("u1", reset_day)
        with db_manager.session_scope() as session:
            assert session.query(Settings).count() == 0

    def test_to_dict(self, settings_manager):
        payload = settings_manager.update_settings("u1", 3).to_dict()
        assert payload == {"user_id": "u1", "reset_day": 3, "last_reset_date": None}
