"""
Shared configuration for AgentStats core.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agentstats")


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


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_optional(env_name: str) -> Optional[str]:
    value = os.environ.get(env_name)
    if value is None or not value.strip():
        return None
    return value.strip()


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/agentstats.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Authentication mode of the surrounding platform
AUTH_METHOD_API_KEY = "api-key"
AUTH_METHOD_USERS = "users"
AUTH_METHOD_KEYCLOAK = "keycloak"
AUTHENTICATION_METHOD = _get_optional("AUTHENTICATION_METHOD")
STATIC_API_KEY = _get_optional("STATIC_API_KEY")

# Shadow sync
STATISTICS_SYNC_ON_STARTUP = _get_bool("STATISTICS_SYNC_ON_STARTUP", True)
STATISTICS_AGENT_SYNC_BATCH_SIZE = _get_int("STATISTICS_AGENT_SYNC_BATCH_SIZE", 50)
AGENT_DIRECTORY_TIMEOUT_SECONDS = _get_float("AGENT_DIRECTORY_TIMEOUT_SECONDS", 10.0)
AGENT_MANAGER_API_KEY = _get_optional("AGENT_MANAGER_API_KEY")

# Request/input limits
DEFAULT_PAGE_LIMIT = _get_int("STATISTICS_DEFAULT_PAGE_LIMIT", 10)
MAX_RESULT_LIMIT = _get_int("STATISTICS_MAX_RESULT_LIMIT", 500)
MAX_SEARCH_LENGTH = _get_int("STATISTICS_MAX_SEARCH_LENGTH", 200)


def resolve_authentication_method(
    authentication_method: Optional[str] = None,
    static_api_key: Optional[str] = None,
) -> Optional[str]:
    """
    Effective authentication method of the deployment.

    An unset method falls back to api-key mode when a static API key is configured.
    """
    method = authentication_method if authentication_method is not None else AUTHENTICATION_METHOD
    api_key = static_api_key if static_api_key is not None else STATIC_API_KEY
    if method:
        return method.strip().lower()
    if api_key:
        return AUTH_METHOD_API_KEY
    return None


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if AUTHENTICATION_METHOD and AUTHENTICATION_METHOD.lower() not in {
        AUTH_METHOD_API_KEY,
        AUTH_METHOD_USERS,
        AUTH_METHOD_KEYCLOAK,
    }:
        errors.append("AUTHENTICATION_METHOD must be 'api-key', 'users', or 'keycloak'")

    if (AUTHENTICATION_METHOD or "").lower() == AUTH_METHOD_API_KEY and not STATIC_API_KEY:
        errors.append("AUTHENTICATION_METHOD=api-key requires STATIC_API_KEY")

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

    if STATISTICS_AGENT_SYNC_BATCH_SIZE <= 0:
        errors.append("STATISTICS_AGENT_SYNC_BATCH_SIZE must be positive")

    if DEFAULT_PAGE_LIMIT <= 0 or DEFAULT_PAGE_LIMIT > MAX_RESULT_LIMIT:
        errors.append("STATISTICS_DEFAULT_PAGE_LIMIT must be between 1 and STATISTICS_MAX_RESULT_LIMIT")

    DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
