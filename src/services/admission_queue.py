"""FIFO admission queue with a global single-flight lock.

Only one verification batch may run at a time across every process sharing
the store. Callers join the line, poll until they are at the head and hold
the global lock, do their work while heartbeating, then complete their
ticket. A head ticket that holds no lock and has stopped heartbeating is
pruned by the next poll from anyone else, so a crashed client cannot block
the line.

Ticket lifecycle::

    queued -> head-of-line -> lock-held -> completed
       \\__________________\\__> pruned
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from src import config
from src.models.verification import QueueStatus
from src.services.errors import AdmissionTimeoutError, AdmissionUnavailableError
from src.services.queue_store import (
    QueueKeys,
    QueueStore,
    RedisQueueStore,
    create_redis_client,
    heartbeat_key,
)

logger = logging.getLogger(__name__)

JOB_LIST = QueueKeys.JOB_LIST.value
GLOBAL_LOCK = QueueKeys.GLOBAL_LOCK.value


class AdmissionQueue:
    """Single-flight admission over a shared ``QueueStore``."""

    def __init__(
        self,
        store: QueueStore | None,
        *,
        lock_ttl_seconds: int | None = None,
        heartbeat_ttl_seconds: int | None = None,
    ):
        self.store = store
        self.lock_ttl_seconds = (
            config.QUEUE_LOCK_TTL_SECONDS if lock_ttl_seconds is None else lock_ttl_seconds
        )
        self.heartbeat_ttl_seconds = (
            config.QUEUE_HEARTBEAT_TTL_SECONDS
            if heartbeat_ttl_seconds is None
            else heartbeat_ttl_seconds
        )

    @classmethod
    def from_url(cls, redis_url: str | None = None) -> "AdmissionQueue":
        """Build a queue on Redis; unconfigured when no URL is available."""
        url = redis_url or config.REDIS_URL
        if not url:
            logger.warning("REDIS_URL not set; admission queue is not configured")
            return cls(None)
        client = create_redis_client(
            url, socket_timeout_seconds=config.REDIS_SOCKET_TIMEOUT_SECONDS
        )
        return cls(RedisQueueStore(client))

    def _require_store(self) -> QueueStore:
        if self.store is None:
            raise AdmissionUnavailableError("Queue system not configured (Redis missing)")
        return self.store

    def is_ready(self) -> bool:
        """True when a store is configured and answers a ping."""
        return self.store is not None and self.store.ping()

    def join(self) -> tuple[str, int]:
        """Append a new ticket to the tail of the line.

        Returns:
            (ticket_id, position) where position is 0-indexed
        """
        store = self._require_store()
        ticket_id = str(uuid.uuid4())
        # Fresh tickets start alive so they survive until their first poll.
        store.set(heartbeat_key(ticket_id), "1", self.heartbeat_ttl_seconds)
        length = store.append(JOB_LIST, ticket_id)
        logger.info("Ticket %s joined the queue at position %s", ticket_id, length - 1)
        return ticket_id, length - 1

    def position(self, ticket_id: str) -> int:
        """Index of the ticket in the line, or -1 when absent."""
        if self.store is None:
            return -1
        return self.store.index_of(JOB_LIST, ticket_id)

    def length(self) -> int:
        if self.store is None:
            return 0
        return self.store.length(JOB_LIST)

    def prune_stale_head(self, ticket_id: str) -> str | None:
        """Drop the head ticket if it is not the caller and looks abandoned.

        A head is abandoned when nobody holds the global lock and its
        heartbeat has expired. At most one ticket is pruned per call.

        Returns:
            The pruned ticket id, or None
        """
        store = self._require_store()
        head = store.head(JOB_LIST)
        if head is None or head == ticket_id:
            return None
        if store.exists(GLOBAL_LOCK):
            return None
        if store.exists(heartbeat_key(head)):
            return None

        if store.pop_head_if(JOB_LIST, head):
            logger.info("Pruned stale ticket %s from the head of the queue", head)
            return head
        return None

    def can_proceed(self, ticket_id: str) -> bool:
        """True when the ticket is at the head and holds the global lock.

        Acquires the lock when it is free; a ticket that already owns it gets
        True again so callers can keep polling while they work.
        """
        store = self._require_store()
        self.prune_stale_head(ticket_id)

        if store.head(JOB_LIST) != ticket_id:
            return False

        if store.set_if_absent(GLOBAL_LOCK, ticket_id, self.lock_ttl_seconds):
            logger.info("Ticket %s acquired the processing lock", ticket_id)
            return True

        return store.get(GLOBAL_LOCK) == ticket_id

    def heartbeat(self, ticket_id: str) -> None:
        """Refresh the ticket's liveness and extend its lock if it holds one."""
        store = self._require_store()
        store.set(heartbeat_key(ticket_id), "1", self.heartbeat_ttl_seconds)
        if store.expire_if_equals(GLOBAL_LOCK, ticket_id, self.lock_ttl_seconds):
            logger.debug("Extended processing lock for %s", ticket_id)

    def complete(self, ticket_id: str) -> None:
        """Release the lock if owned, leave the line, and clear the heartbeat.

        Safe to call more than once.
        """
        store = self._require_store()
        if store.delete_if_equals(GLOBAL_LOCK, ticket_id):
            logger.info("Ticket %s released the processing lock", ticket_id)
        store.remove(JOB_LIST, ticket_id)
        store.delete(heartbeat_key(ticket_id))

    def status(self, ticket_id: str) -> QueueStatus:
        """Poll on behalf of a waiting client.

        Counts as a heartbeat, then reports ``unknown`` for tickets no longer
        in line, ``ready`` once the ticket may proceed, and ``queued`` with
        its position otherwise (position 0 means next but the lock is busy).
        """
        position = self.position(ticket_id)
        if position == -1:
            return QueueStatus("unknown", -1, ticket_id)

        self.heartbeat(ticket_id)
        if self.can_proceed(ticket_id):
            return QueueStatus("ready", 0, ticket_id)

        position = self.position(ticket_id)
        if position == -1:
            return QueueStatus("unknown", -1, ticket_id)
        return QueueStatus("queued", position, ticket_id)


class _HeartbeatThread(threading.Thread):
    """Keeps a ticket (and its lock) alive while a batch runs."""

    def __init__(self, queue: AdmissionQueue, ticket_id: str, interval: float):
        super().__init__(name=f"queue-heartbeat-{ticket_id[:8]}", daemon=True)
        self.queue = queue
        self.ticket_id = ticket_id
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.queue.heartbeat(self.ticket_id)
            except AdmissionUnavailableError as exc:
                logger.warning("Heartbeat for %s failed: %s", self.ticket_id, exc)
            except Exception:
                # Any error here would end the thread and let the lock expire mid-batch.
                logger.exception("Heartbeat for %s failed", self.ticket_id)

    def stop(self) -> None:
        self._stop_event.set()
        self.join(timeout=self.interval + 1)


@contextmanager
def admitted(
    queue: AdmissionQueue,
    *,
    poll_interval: float | None = None,
    wait_timeout: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[str]:
    """Join the queue, wait for a turn, and hold it for the ``with`` body.

    Yields the ticket id. The ticket is completed on exit whether the body
    succeeds or raises.

    Raises:
        AdmissionUnavailableError: the store is missing or unreachable
        AdmissionTimeoutError: no turn within ``wait_timeout`` seconds
    """
    interval = config.QUEUE_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
    ticket_id, position = queue.join()
    started = time.monotonic()
    heartbeat_thread: _HeartbeatThread | None = None

    try:
        while True:
            status = queue.status(ticket_id)
            if status.is_ready:
                break
            if status.state == "unknown":
                # Pruned while waiting (e.g. a long pause); rejoin at the tail.
                logger.warning("Ticket %s dropped from the queue; rejoining", ticket_id)
                ticket_id, position = queue.join()
            elif status.position != position:
                position = status.position
                logger.info("Waiting in queue: position %s", position)
            if wait_timeout is not None and time.monotonic() - started > wait_timeout:
                raise AdmissionTimeoutError(
                    f"Ticket {ticket_id} not admitted within {wait_timeout:g}s"
                )
            sleep(interval)

        beat_every = max(1.0, min(interval, queue.heartbeat_ttl_seconds / 3))
        heartbeat_thread = _HeartbeatThread(queue, ticket_id, beat_every)
        heartbeat_thread.start()
        yield ticket_id
    finally:
        if heartbeat_thread is not None:
            heartbeat_thread.stop()
        try:
            queue.complete(ticket_id)
        except AdmissionUnavailableError as exc:
            # The lock TTL frees the slot once the store is reachable again.
            logger.error("Could not complete ticket %s: %s", ticket_id, exc)
