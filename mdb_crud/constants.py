"""
Constants for MDB_CRUD.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

RECONNECT_DELAY_SECONDS: Final[float] = 1.0
"""Fixed delay before the single reconnect attempt scheduled after a timeout."""

DEFAULT_DB_NAME: Final[str] = "test"
"""Database used when the connection URI does not name one."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

MONGO_URI_ENV_VAR: Final[str] = "MONGO_URI"
"""Environment variable read when no `db` setting is given."""

# ============================================================================
# CACHE CONSTANTS
# ============================================================================

CACHE_CLEAN_EVENT: Final[str] = "cache.clean"
"""Event broadcast on the broker bus after every successful mutation."""

CACHE_KEY_SEPARATOR: Final[str] = "|"
"""Separator between cache-relevant parameter values in a cache key."""

DEFAULT_CACHE_TTL: Final[float | None] = None
"""Default cache entry lifetime in seconds (None means until invalidated)."""

MAX_CACHE_SIZE: Final[int] = 1000
"""Maximum number of cached action results before eviction."""

# ============================================================================
# QUERY CONSTANTS
# ============================================================================

MAX_LIMIT_ENV_VAR: Final[str] = "MDB_CRUD_MAX_LIMIT"
"""Environment variable holding an optional cap on `list` result size."""

SORT_DESCENDING_PREFIX: Final[str] = "-"
SORT_ASCENDING_PREFIX: Final[str] = "+"

# ============================================================================
# ACTION NAMES
# ============================================================================

ACTION_LIST: Final[str] = "list"
ACTION_COUNT: Final[str] = "count"
ACTION_CREATE: Final[str] = "create"
ACTION_GET: Final[str] = "get"
ACTION_UPDATE: Final[str] = "update"
ACTION_REMOVE: Final[str] = "remove"
ACTION_DROP: Final[str] = "drop"

LIST_CACHE_KEYS: Final[tuple[str, ...]] = ("limit", "offset", "sort", "search")
COUNT_CACHE_KEYS: Final[tuple[str, ...]] = ("search",)
GET_CACHE_KEYS: Final[tuple[str, ...]] = ("id",)
