"""
Unit tests for YAML configuration loading and saving.
"""

import yaml
import pytest

from config_manager import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG,
    get_budget_config,
    get_config_path,
    load_config,
    save_config,
)
from exceptions import ConfigError


class TestLoadConfig:
    """Test load_config function."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_partial_file_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("budget:\n  default_reset_day: 25\nlogging:\n  level: DEBUG\n")

        config = load_config(path)

        assert config["budget"]["default_reset_day"] == 25
        assert config["budget"]["fixed_expense_prefix"] == "Fixed expense: "
        assert config["logging"]["level"] == "DEBUG"
        assert config["database"]["max_attempts"] == 3

    def test_category_list_replaced_not_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "budget:\n  default_categories:\n    - {name: Food, budget_limit: '100', color: '#000000'}\n"
        )
        assert [c["name"] for c in load_config(path)["budget"]["default_categories"]] == ["Food"]

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("budget: [unclosed\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.details["config_path"] == str(path)

    def test_non_mapping_root_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == DEFAULT_CONFIG

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "from_env.yaml"
        path.write_text("cli:\n  default_user: alice\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert get_config_path() == path
        assert load_config()["cli"]["default_user"] == "alice"

    def test_explicit_path_beats_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.yaml"))
        assert get_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"


class TestSaveConfig:
    def test_save_preserves_existing_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("cli:\n  default_user: bob\n")

        assert save_config({"budget": {"default_reset_day": 5}}, path) is True

        saved = yaml.safe_load(path.read_text())
        assert saved["cli"]["default_user"] == "bob"
        assert saved["budget"]["default_reset_day"] == 5

    def test_save_failure_returns_false(self, tmp_path):
        assert save_config({"a": 1}, tmp_path / "missing_dir" / "config.yaml") is False


def test_get_budget_config_fills_defaults():
    budget = get_budget_config({"budget": {"default_reset_day": 12}})
    assert budget["default_reset_day"] == 12
    assert len(budget["default_categories"]) == 5
    assert get_budget_config()["fixed_expense_prefix"] == "Fixed expense: "
