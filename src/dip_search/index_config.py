"""
Configuration helpers for the vector index and embedding provider.
"""

from __future__ import annotations

import os
from pathlib import Path


DEFAULT_DB_PATH = "~/.dip_search/vectors.duckdb"
ENV_DB_PATH = "DIP_SEARCH_DB_PATH"
ENV_LOG_LEVEL = "DIP_SEARCH_LOG_LEVEL"
ENV_LOG_FILE = "DIP_SEARCH_LOG_FILE"
MEMORY_DB_PATH = ":memory:"

RELEVANCE_THRESHOLD = 0.25
MAX_RESULTS = 20
PROGRESS_EVERY = 5
MIN_QUERY_LENGTH = 2


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the vector store path from an explicit override, env var, or default.

    Precedence:
    1) explicit override_path
    2) DIP_SEARCH_DB_PATH
    3) default path

    `":memory:"` is passed through untouched and selects an ephemeral store.

    The store lives in its own file, separate from the host's metadata
    database, so the two never contend for the same lock.
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    if raw_path == MEMORY_DB_PATH:
        return raw_path
    resolved = Path(raw_path).expanduser().resolve()
    return str(resolved)


def resolve_log_level(override: str | None = None) -> str:
    return (override or os.getenv(ENV_LOG_LEVEL) or "INFO").upper()


def resolve_log_file(override: str | None = None) -> str | None:
    return override or os.getenv(ENV_LOG_FILE) or None
