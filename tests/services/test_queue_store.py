from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from src.services.errors import AdmissionUnavailableError
from src.services.queue_store import (
    InMemoryQueueStore,
    QueueKeys,
    RedisQueueStore,
    create_redis_client,
    heartbeat_key,
)


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.register_script.side_effect = [MagicMock(), MagicMock(), MagicMock()]
    return client


@pytest.fixture
def redis_store(redis_client):
    return RedisQueueStore(redis_client)


def test_key_names_are_shared_contract():
    assert QueueKeys.JOB_LIST.value == "job_queue"
    assert QueueKeys.GLOBAL_LOCK.value == "global_processing_lock"
    assert heartbeat_key("abc") == "queue:heartbeat:abc"


def test_create_redis_client_decodes_responses():
    with patch("src.services.queue_store.Redis.from_url") as from_url:
        create_redis_client("redis://localhost:6379/0", socket_timeout_seconds=2)

    from_url.assert_called_once_with(
        "redis://localhost:6379/0",
        socket_connect_timeout=2,
        socket_timeout=2,
        decode_responses=True,
        encoding="utf-8",
    )


def test_scripts_are_registered_once(redis_client, redis_store):
    assert redis_client.register_script.call_count == 3


def test_lock_acquire_uses_set_nx_ex(redis_client, redis_store):
    redis_client.set.return_value = True

    assert redis_store.set_if_absent("global_processing_lock", "t1", 60) is True
    redis_client.set.assert_called_once_with("global_processing_lock", "t1", nx=True, ex=60)


def test_lock_acquire_reports_contention(redis_client, redis_store):
    redis_client.set.return_value = None

    assert redis_store.set_if_absent("global_processing_lock", "t2", 60) is False


def test_append_returns_new_length(redis_client, redis_store):
    redis_client.rpush.return_value = 3

    assert redis_store.append("job_queue", "t3") == 3
    redis_client.rpush.assert_called_once_with("job_queue", "t3")


def test_head_reads_first_element(redis_client, redis_store):
    redis_client.lrange.return_value = ["t1"]
    assert redis_store.head("job_queue") == "t1"

    redis_client.lrange.return_value = []
    assert redis_store.head("job_queue") is None


def test_index_of_uses_lpos(redis_client, redis_store):
    redis_client.lpos.return_value = 2
    assert redis_store.index_of("job_queue", "t3") == 2

    redis_client.lpos.return_value = None
    assert redis_store.index_of("job_queue", "missing") == -1


def test_index_of_falls_back_to_lrange_on_old_servers(redis_client, redis_store):
    redis_client.lpos.side_effect = ResponseError("unknown command 'LPOS'")
    redis_client.lrange.return_value = ["t1", "t2"]

    assert redis_store.index_of("job_queue", "t2") == 1
    assert redis_store.index_of("job_queue", "t9") == -1


def test_compare_and_delete_runs_script(redis_store):
    redis_store._delete_if_equals.return_value = 1

    assert redis_store.delete_if_equals("global_processing_lock", "t1") is True
    redis_store._delete_if_equals.assert_called_once_with(
        keys=["global_processing_lock"], args=["t1"]
    )


def test_compare_and_expire_passes_ttl(redis_store):
    redis_store._expire_if_equals.return_value = 0

    assert redis_store.expire_if_equals("global_processing_lock", "t2", 60) is False
    redis_store._expire_if_equals.assert_called_once_with(
        keys=["global_processing_lock"], args=["t2", 60]
    )


def test_pop_head_if_runs_script(redis_store):
    redis_store._pop_head_if.return_value = 1

    assert redis_store.pop_head_if("job_queue", "stale") is True
    redis_store._pop_head_if.assert_called_once_with(keys=["job_queue"], args=["stale"])


@pytest.mark.parametrize("error", [RedisConnectionError("down"), RedisTimeoutError("slow")])
def test_connection_failures_become_admission_unavailable(redis_client, redis_store, error):
    redis_client.rpush.side_effect = error

    with pytest.raises(AdmissionUnavailableError):
        redis_store.append("job_queue", "t1")


def test_ping_failure_is_not_ready(redis_client, redis_store):
    redis_client.ping.side_effect = RedisConnectionError("down")

    assert redis_store.ping() is False


def test_in_memory_values_expire_on_clock(fake_clock):
    store = InMemoryQueueStore(clock=fake_clock)
    store.set("k", "v", 10)

    fake_clock.advance(9.9)
    assert store.get("k") == "v"

    fake_clock.advance(0.1)
    assert store.get("k") is None
    assert store.set_if_absent("k", "w", 10) is True


def test_in_memory_pop_head_if_is_conditional():
    store = InMemoryQueueStore()
    store.append("job_queue", "a")
    store.append("job_queue", "b")

    assert store.pop_head_if("job_queue", "b") is False
    assert store.pop_head_if("job_queue", "a") is True
    assert store.head("job_queue") == "b"
