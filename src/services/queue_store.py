"""Shared-store primitives behind the admission queue.

``AdmissionQueue`` only talks to a ``QueueStore``. ``RedisQueueStore`` is the
production implementation; the compare-and-act operations run as Lua scripts
so they stay atomic across concurrent callers. ``InMemoryQueueStore`` keeps
the same semantics inside one process (single-instance development and tests).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Protocol

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from src.services.errors import AdmissionUnavailableError

logger = logging.getLogger(__name__)


class QueueKeys(str, Enum):
    """Key names shared by every process using the queue."""

    JOB_LIST = "job_queue"  # LIST  → waiting tickets, head = next in line
    GLOBAL_LOCK = "global_processing_lock"  # STRING → owning ticket, TTL
    HEARTBEAT_PREFIX = "queue:heartbeat:"  # STRING per ticket, TTL


def heartbeat_key(ticket_id: str) -> str:
    return f"{QueueKeys.HEARTBEAT_PREFIX.value}{ticket_id}"


class QueueStore(Protocol):
    def ping(self) -> bool: ...

    def append(self, list_key: str, value: str) -> int: ...

    def head(self, list_key: str) -> str | None: ...

    def index_of(self, list_key: str, value: str) -> int: ...

    def length(self, list_key: str) -> int: ...

    def remove(self, list_key: str, value: str) -> int: ...

    def pop_head_if(self, list_key: str, value: str) -> bool: ...

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...

    def delete_if_equals(self, key: str, value: str) -> bool: ...

    def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    def exists(self, key: str) -> bool: ...


_DELETE_IF_EQUALS = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

_EXPIRE_IF_EQUALS = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
end
return 0
"""

_POP_HEAD_IF = """
local head = redis.call('LINDEX', KEYS[1], 0)
if head == ARGV[1] then
    redis.call('LPOP', KEYS[1])
    return 1
end
return 0
"""


def create_redis_client(url: str, *, socket_timeout_seconds: float = 5.0) -> Redis:
    """Construct a Redis client for the queue."""
    return Redis.from_url(
        url,
        socket_connect_timeout=socket_timeout_seconds,
        socket_timeout=socket_timeout_seconds,
        decode_responses=True,
        encoding="utf-8",
    )


class RedisQueueStore:
    """``QueueStore`` backed by Redis."""

    def __init__(self, client: Redis):
        self.client = client
        self._delete_if_equals = client.register_script(_DELETE_IF_EQUALS)
        self._expire_if_equals = client.register_script(_EXPIRE_IF_EQUALS)
        self._pop_head_if = client.register_script(_POP_HEAD_IF)

    @contextmanager
    def _unavailable_on_failure(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.error("Queue store unreachable during %s: %s", operation, exc)
            raise AdmissionUnavailableError(f"Queue store unreachable: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.warning("Queue store ping failed: %s", exc)
            return False

    def append(self, list_key: str, value: str) -> int:
        with self._unavailable_on_failure("append"):
            return int(self.client.rpush(list_key, value))

    def head(self, list_key: str) -> str | None:
        with self._unavailable_on_failure("head"):
            items = self.client.lrange(list_key, 0, 0)
        return items[0] if items else None

    def index_of(self, list_key: str, value: str) -> int:
        with self._unavailable_on_failure("index_of"):
            try:
                position = self.client.lpos(list_key, value)
            except ResponseError:
                # LPOS needs Redis 6.0.6+; scan the list on older servers.
                items = self.client.lrange(list_key, 0, -1)
                return items.index(value) if value in items else -1
        return -1 if position is None else int(position)

    def length(self, list_key: str) -> int:
        with self._unavailable_on_failure("length"):
            return int(self.client.llen(list_key))

    def remove(self, list_key: str, value: str) -> int:
        with self._unavailable_on_failure("remove"):
            return int(self.client.lrem(list_key, 1, value))

    def pop_head_if(self, list_key: str, value: str) -> bool:
        with self._unavailable_on_failure("pop_head_if"):
            return bool(self._pop_head_if(keys=[list_key], args=[value]))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._unavailable_on_failure("set_if_absent"):
            return bool(self.client.set(key, value, nx=True, ex=ttl_seconds))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._unavailable_on_failure("set"):
            self.client.set(key, value, ex=ttl_seconds)

    def get(self, key: str) -> str | None:
        with self._unavailable_on_failure("get"):
            return self.client.get(key)

    def delete(self, key: str) -> None:
        with self._unavailable_on_failure("delete"):
            self.client.delete(key)

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._unavailable_on_failure("delete_if_equals"):
            return bool(self._delete_if_equals(keys=[key], args=[value]))

    def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._unavailable_on_failure("expire_if_equals"):
            return bool(self._expire_if_equals(keys=[key], args=[value, ttl_seconds]))

    def exists(self, key: str) -> bool:
        with self._unavailable_on_failure("exists"):
            return bool(self.client.exists(key))


class InMemoryQueueStore:
    """Single-process ``QueueStore`` with TTL expiry driven by ``clock``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.RLock()
        self._lists: dict[str, list[str]] = {}
        self._values: dict[str, tuple[str, float | None]] = {}

    def _live_value(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def ping(self) -> bool:
        return True

    def append(self, list_key: str, value: str) -> int:
        with self._lock:
            items = self._lists.setdefault(list_key, [])
            items.append(value)
            return len(items)

    def head(self, list_key: str) -> str | None:
        with self._lock:
            items = self._lists.get(list_key) or []
            return items[0] if items else None

    def index_of(self, list_key: str, value: str) -> int:
        with self._lock:
            items = self._lists.get(list_key) or []
            return items.index(value) if value in items else -1

    def length(self, list_key: str) -> int:
        with self._lock:
            return len(self._lists.get(list_key) or [])

    def remove(self, list_key: str, value: str) -> int:
        with self._lock:
            items = self._lists.get(list_key) or []
            if value in items:
                items.remove(value)
                return 1
            return 0

    def pop_head_if(self, list_key: str, value: str) -> bool:
        with self._lock:
            items = self._lists.get(list_key) or []
            if items and items[0] == value:
                items.pop(0)
                return True
            return False

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live_value(key) is not None:
                return False
            self._values[key] = (value, self._clock() + ttl_seconds)
            return True

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._values[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live_value(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live_value(key) == value:
                del self._values[key]
                return True
            return False

    def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live_value(key) == value:
                self._values[key] = (value, self._clock() + ttl_seconds)
                return True
            return False

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_value(key) is not None

