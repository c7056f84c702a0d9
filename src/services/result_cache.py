"""Time-bounded memoization of verification results keyed by URL."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from src import config
from src.models.verification import VerificationResult


@dataclass(frozen=True)
class CacheEntry:
    result: VerificationResult
    stored_at: float


class ResultStore(Protocol):
    """Storage behind ``ResultCache``; swap in a fake for tests."""

    def get(self, url: str) -> CacheEntry | None: ...

    def put(self, url: str, entry: CacheEntry) -> None: ...

    def delete(self, url: str) -> None: ...

    def items(self) -> list[tuple[str, CacheEntry]]: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class InMemoryResultStore:
    """Process-local dict store guarded by a lock."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(url)

    def put(self, url: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[url] = entry

    def delete(self, url: str) -> None:
        with self._lock:
            self._entries.pop(url, None)

    def items(self) -> list[tuple[str, CacheEntry]]:
        with self._lock:
            return list(self._entries.items())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResultCache:
    """TTL cache for ``VerificationResult`` objects.

    Expired entries are dropped lazily on ``get`` and swept in bulk once the
    store grows past ``max_entries``. Failures are cached exactly like
    successes.
    """

    def __init__(
        self,
        store: ResultStore | None = None,
        *,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store: ResultStore = store if store is not None else InMemoryResultStore()
        self.ttl_seconds = config.LINK_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = config.LINK_CACHE_MAX_ENTRIES if max_entries is None else max_entries
        self._clock = clock
        # Serializes the size check and sweep in put().
        self._sweep_lock = threading.Lock()

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def get(self, url: str) -> VerificationResult | None:
        entry = self.store.get(url)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            self.store.delete(url)
            return None
        return entry.result

    def put(self, url: str, result: VerificationResult) -> None:
        self.store.put(url, CacheEntry(result=result, stored_at=self._clock()))
        if len(self.store) > self.max_entries:
            with self._sweep_lock:
                self.sweep()

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = self._clock()
        removed = 0
        for url, entry in self.store.items():
            if self._expired(entry, now):
                self.store.delete(url)
                removed += 1
        return removed

    def delete(self, url: str) -> None:
        self.store.delete(url)

    def clear(self) -> None:
        self.store.clear()

    def stats(self) -> dict[str, float | int]:
        return {"size": len(self.store), "max_age_seconds": self.ttl_seconds}
