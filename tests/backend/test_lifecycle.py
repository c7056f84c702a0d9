"""Tests for FastAPI lifecycle management.

These tests verify that:
- Startup handlers initialize resources correctly
- Shutdown handlers clean up resources
- Dependency injection functions work as expected
- Resource overrides work in tests
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from src.services.admission_queue import AdmissionQueue
from src.services.link_verification import LinkVerificationService


def test_lifespan_context_manager_registers_correctly():
    """Verify that lifespan context manager is available."""
    from backend.app.lifecycle import lifespan

    app = FastAPI(lifespan=lifespan)
    assert app.router.lifespan_context is not None


@pytest.mark.asyncio
async def test_startup_initializes_all_resources():
    """Startup creates the session, verification service and queue."""
    from backend.app.lifecycle import shutdown_resources, startup_resources

    app = FastAPI()
    await startup_resources(app)

    assert app.state.http_session is not None
    assert isinstance(app.state.verification_service, LinkVerificationService)
    assert isinstance(app.state.admission_queue, AdmissionQueue)
    # REDIS_URL is unset in tests.
    assert app.state.admission_queue.store is None
    assert app.state.ready is True

    await shutdown_resources(app)


@pytest.mark.asyncio
async def test_startup_preserves_injected_resources():
    """Resources already on app.state are not replaced."""
    from backend.app.lifecycle import shutdown_resources, startup_resources

    app = FastAPI()
    session = MagicMock()
    service = MagicMock()
    queue = AdmissionQueue(None)
    app.state.http_session = session
    app.state.verification_service = service
    app.state.admission_queue = queue

    await startup_resources(app)

    assert app.state.http_session is session
    assert app.state.verification_service is service
    assert app.state.admission_queue is queue

    await shutdown_resources(app)


@pytest.mark.asyncio
async def test_startup_survives_queue_init_failure():
    """A broken Redis URL leaves an unconfigured queue instead of failing startup."""
    from backend.app.lifecycle import shutdown_resources, startup_resources

    app = FastAPI()
    with patch(
        "backend.app.lifecycle.AdmissionQueue.from_url",
        side_effect=ValueError("bad url"),
    ):
        await startup_resources(app)

    assert app.state.admission_queue.store is None
    assert app.state.ready is True

    await shutdown_resources(app)


@pytest.mark.asyncio
async def test_shutdown_closes_session_and_redis_client():
    """Shutdown closes the HTTP session and Redis client and clears ready."""
    from backend.app.lifecycle import shutdown_resources

    app = FastAPI()
    app.state.http_session = MagicMock()
    redis_client = MagicMock()
    app.state.admission_queue = SimpleNamespace(store=SimpleNamespace(client=redis_client))
    app.state.ready = True

    await shutdown_resources(app)

    app.state.http_session.close.assert_called_once()
    redis_client.close.assert_called_once()
    assert app.state.ready is False


@pytest.mark.asyncio
async def test_shutdown_tolerates_close_errors():
    from backend.app.lifecycle import shutdown_resources

    app = FastAPI()
    session = MagicMock()
    session.close.side_effect = RuntimeError("already closed")
    app.state.http_session = session
    app.state.ready = True

    await shutdown_resources(app)

    assert app.state.ready is False


def test_startup_sets_ready_flag():
    """Test that startup handler sets the ready flag."""
    from backend.app.lifecycle import lifespan

    app = FastAPI(lifespan=lifespan)
    with TestClient(app):
        assert app.state.ready is True
    assert app.state.ready is False


def test_dependency_injection_functions():
    """Dependencies read from app.state and fall back sensibly."""
    from backend.app.lifecycle import (
        get_admission_queue,
        get_verification_service,
        is_ready,
        lifespan,
    )

    app = FastAPI(lifespan=lifespan)

    @app.get("/probe")
    def probe(
        service=Depends(get_verification_service),
        queue=Depends(get_admission_queue),
        ready: bool = Depends(is_ready),
    ):
        return {
            "service": service is not None,
            "queue_configured": queue.store is not None,
            "ready": ready,
        }

    with TestClient(app) as client:
        assert client.get("/probe").json() == {
            "service": True,
            "queue_configured": False,
            "ready": True,
        }


def test_dependency_overrides_work():
    """Tests can swap the verification service through dependency overrides."""
    from backend.app.lifecycle import get_verification_service, lifespan

    app = FastAPI(lifespan=lifespan)
    fake_service = MagicMock()
    fake_service.cache_stats.return_value = {"size": 7, "max_age_seconds": 900}

    @app.get("/stats")
    def stats(service=Depends(get_verification_service)):
        return service.cache_stats()

    app.dependency_overrides[get_verification_service] = lambda: fake_service
    with TestClient(app) as client:
        assert client.get("/stats").json() == {"size": 7, "max_age_seconds": 900}


def test_get_admission_queue_without_state_returns_unconfigured_queue():
    from backend.app.lifecycle import get_admission_queue

    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    queue = get_admission_queue(request)

    assert queue.store is None
