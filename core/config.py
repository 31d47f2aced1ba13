"""
Shared configuration for GrantGate core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("grantgate")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _derive_effective_backend(db_backend: str) -> str:
    return db_backend if db_backend in {"postgres", "sqlite"} else "postgres"


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/grantgate.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Identifier allocation
APPLICATION_SEQUENCE_MAX = 99
ALLOCATOR_RETRY_MAX = _get_int("GRANTGATE_ALLOCATOR_RETRY_MAX", 3)
FACILITY_CODE_MAX = 999
SHORT_NAME_MAX_LENGTH = 6
SHORT_NAME_COUNTER_MAX = 99

# Request/input limits
ARCHIVE_BATCH_MAX = _get_int("GRANTGATE_ARCHIVE_BATCH_MAX", 500)
GHOST_CLEAR_BATCH_MAX = _get_int("GRANTGATE_GHOST_CLEAR_BATCH_MAX", 1000)
GHOST_LIST_LIMIT_DEFAULT = _get_int("GRANTGATE_GHOST_LIST_LIMIT_DEFAULT", 200)
GHOST_LIST_LIMIT_MAX = _get_int("GRANTGATE_GHOST_LIST_LIMIT_MAX", 1000)
AUDIT_LIST_LIMIT_DEFAULT = _get_int("GRANTGATE_AUDIT_LIST_LIMIT_DEFAULT", 100)
AUDIT_LIST_LIMIT_MAX = _get_int("GRANTGATE_AUDIT_LIST_LIMIT_MAX", 500)
MAX_NAME_LENGTH = _get_int("GRANTGATE_MAX_NAME_LENGTH", 255)
MAX_TITLE_LENGTH = _get_int("GRANTGATE_MAX_TITLE_LENGTH", 255)
MAX_REASON_LENGTH = _get_int("GRANTGATE_MAX_REASON_LENGTH", 2000)
MAX_ACTOR_LENGTH = _get_int("GRANTGATE_MAX_ACTOR_LENGTH", 255)

# Archive defaults
DEFAULT_ARCHIVE_ACTOR = os.environ.get("GRANTGATE_DEFAULT_ARCHIVE_ACTOR", "system_admin")
DEFAULT_ARCHIVE_REASON = "Archived by admin"


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if ALLOCATOR_RETRY_MAX < 1:
        errors.append("GRANTGATE_ALLOCATOR_RETRY_MAX must be >= 1")
    if ARCHIVE_BATCH_MAX < 1:
        errors.append("GRANTGATE_ARCHIVE_BATCH_MAX must be >= 1")

    DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
