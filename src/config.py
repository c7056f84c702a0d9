"""Centralized configuration for link verification and the admission queue.

Values are read from environment variables once at import time. Tests that
need different values should patch the module attributes (for example
``patch("src.config.REDIS_URL", None)``) rather than mutating os.environ
after import.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default

    try:
        parsed = float(raw_value)
    except ValueError:
        logger.warning("Invalid %s value '%s'; using default %s", name, raw_value, default)
        return default

    return max(minimum, parsed)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default

    try:
        parsed = int(raw_value)
    except ValueError:
        logger.warning("Invalid %s value '%s'; using default %s", name, raw_value, default)
        return default

    return max(minimum, parsed)


def _env_bool(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return raw_value.strip().lower() in ("1", "true", "yes")


APP_ENV = os.getenv("APP_ENV", "development").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Shared store for the admission queue. Unset means "queue not configured".
REDIS_URL = os.getenv("REDIS_URL") or None
REDIS_SOCKET_TIMEOUT_SECONDS = _env_float("REDIS_SOCKET_TIMEOUT_SECONDS", 5.0, 0.1)

# Link verification
LINK_CACHE_TTL_SECONDS = _env_float("LINK_CACHE_TTL_SECONDS", 15 * 60, 1.0)
LINK_CACHE_MAX_ENTRIES = _env_int("LINK_CACHE_MAX_ENTRIES", 1000, 1)
HEAD_TIMEOUT_SECONDS = _env_float("HEAD_TIMEOUT_SECONDS", 3.0, 0.1)
GET_TIMEOUT_SECONDS = _env_float("GET_TIMEOUT_SECONDS", 8.0, 0.1)
RETRY_BACKOFF_SECONDS = _env_float("RETRY_BACKOFF_SECONDS", 1.0)
VERIFY_CONCURRENCY = _env_int("VERIFY_CONCURRENCY", 20, 1)
MAX_BATCH_URLS = _env_int("MAX_BATCH_URLS", 100, 1)

# Admission queue
QUEUE_LOCK_TTL_SECONDS = _env_int("QUEUE_LOCK_TTL_SECONDS", 60, 1)
QUEUE_HEARTBEAT_TTL_SECONDS = _env_int("QUEUE_HEARTBEAT_TTL_SECONDS", 20, 1)
QUEUE_POLL_INTERVAL_SECONDS = _env_float("QUEUE_POLL_INTERVAL_SECONDS", 3.0, 0.1)

# Private/loopback hosts are rejected in production only.
BLOCK_PRIVATE_URLS = _env_bool("BLOCK_PRIVATE_URLS", APP_ENV == "production")

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")
