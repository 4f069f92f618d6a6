"""
Configuration management module for the budget tracker.

This module handles loading and saving configuration values from
config.yaml, merged over built-in defaults so a partial (or missing) file
still yields a complete configuration.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE = 'config.yaml'
CONFIG_ENV_VAR = 'BUDGET_TRACKER_CONFIG'

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'database': {
        'data_dir': 'data',
        'path': 'budget.db',
        'max_attempts': 3,
        'retry_backoff_seconds': 0.05,
        'echo': False,
    },
    'budget': {
        'default_reset_day': 1,
        'fixed_expense_prefix': 'Fixed expense: ',
        'default_categories': [
            {'name': 'Rent', 'budget_limit': '4000', 'color': '#ef4444'},
            {'name': 'Groceries', 'budget_limit': '2500', 'color': '#f97316'},
            {'name': 'Bills', 'budget_limit': '1000', 'color': '#eab308'},
            {'name': 'Fuel/Transport', 'budget_limit': '800', 'color': '#22c55e'},
            {'name': 'Entertainment', 'budget_limit': '500', 'color': '#a855f7'},
        ],
    },
    'cli': {
        'default_user': 'local',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
}


def _deep_merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Return defaults overlaid with overrides, merging nested mappings."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """
    Resolve which configuration file to use.

    Order of precedence: explicit path, BUDGET_TRACKER_CONFIG, config.yaml.
    """
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path(CONFIG_FILE)


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        path: Optional config file path

    Returns:
        Configuration dictionary with defaults for missing values

    Raises:
        ConfigError: If the file exists but cannot be read or parsed
    """
    config_path = get_config_path(path)
    if not config_path.exists():
        logger.info("Config file %s not found; using defaults", config_path)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading configuration: {e}", exc_info=True)
        raise ConfigError(
            "Failed to load configuration",
            details={"config_path": str(config_path)},
            original_error=e
        ) from e

    if not isinstance(loaded, dict):
        raise ConfigError(
            "Configuration root must be a mapping",
            details={"config_path": str(config_path)}
        )

    config = _deep_merge(DEFAULT_CONFIG, loaded)
    logger.info("Configuration loaded from %s", config_path)
    return config


def save_config(config: Dict[str, Any], path: Optional[Union[str, Path]] = None) -> bool:
    """
    Save configuration to a YAML file.

    Args:
        config: Configuration dictionary to save
        path: Optional config file path

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path = get_config_path(path)

        # Read existing config to preserve other settings
        existing_config: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, 'r') as f:
                existing_config = yaml.safe_load(f) or {}

        # Update with new values
        existing_config = _deep_merge(existing_config, config)

        # Write back
        with open(config_path, 'w') as f:
            yaml.safe_dump(existing_config, f, default_flow_style=False, sort_keys=False)

        logger.info("Configuration saved successfully")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_budget_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the ``budget`` section with defaults filled in."""
    merged = _deep_merge(DEFAULT_CONFIG, config or {})
    return merged['budget']
