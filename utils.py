"""
Filesystem helpers for the budget tracker.

Everything relative in ``config.yaml`` (the data directory, the SQLite file,
the log file) is anchored at the directory holding this module, so the CLI
behaves the same regardless of the working directory it is launched from.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

CONNECTION_ENV_VAR = "DB_CONNECTION_STRING"

_PROJECT_ROOT = Path(__file__).resolve().parent


def get_project_root() -> Path:
    return _PROJECT_ROOT


def _anchor(path_value: str | Path) -> Path:
    path = Path(path_value)
    return path if path.is_absolute() else get_project_root() / path


def _make_dirs(directory: Path, purpose: str) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot create %s directory %s: %s", purpose, directory, exc)
        raise


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Create the configured ``database.data_dir`` if needed.

    Args:
        config: Loaded configuration; ``None`` means defaults.

    Returns:
        Absolute path of the data directory.
    """
    db_config = (config or {}).get("database", {})
    data_dir = _anchor(db_config.get("data_dir", "data"))
    _make_dirs(data_dir, "data")
    return data_dir


def _sqlite_file(connection_string: str) -> Optional[Path]:
    """Database file behind a SQLite URL, or None for other backends and ``:memory:``."""
    try:
        url = make_url(connection_string)
    except ArgumentError:
        logger.debug("Connection string is not a URL; leaving it to the engine")
        return None
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return None
    return _anchor(url.database)


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the database URL for this run.

    ``$DB_CONNECTION_STRING`` wins over ``database.connection_string``, which
    wins over a SQLite file named by ``database.path`` inside the data
    directory. For SQLite files the parent directory is created up front.

    Args:
        config: Loaded configuration; ``None`` means defaults.

    Returns:
        SQLAlchemy connection string.
    """
    db_config = (config or {}).get("database", {})
    connection_string = (os.environ.get(CONNECTION_ENV_VAR) or "").strip()
    if connection_string:
        logger.debug("Using connection string from $%s", CONNECTION_ENV_VAR)
    else:
        connection_string = db_config.get("connection_string") or ""

    if not connection_string:
        db_file = Path(db_config.get("path", "budget.db"))
        if not db_file.is_absolute():
            db_file = ensure_data_dir(config) / db_file
        connection_string = f"sqlite:///{db_file.as_posix()}"

    db_file = _sqlite_file(connection_string)
    if db_file is not None:
        _make_dirs(db_file.parent, "database")
    return connection_string


def resolve_log_path(log_path: str) -> Path:
    """Absolute log file path with its directory created."""
    resolved = _anchor(log_path)
    _make_dirs(resolved.parent, "log")
    return resolved
