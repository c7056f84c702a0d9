"""FastAPI lifecycle management for shared resources.

This module centralizes startup and shutdown handling for:
- HTTP Session shared by every link probe
- LinkVerificationService (and its in-process result cache)
- AdmissionQueue (Redis-backed single-flight queue)

This ensures proper resource initialization and cleanup, and makes
dependency injection straightforward for route handlers and tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, cast

import requests
from fastapi import FastAPI, Request

from src.services.admission_queue import AdmissionQueue
from src.services.link_verification import LinkVerificationService

logger = logging.getLogger(__name__)


async def startup_resources(app: FastAPI) -> None:
    """Initialize shared resources for the FastAPI app.

    Resources already present on ``app.state`` (for example, injected by
    tests) are left alone.

    Args:
        app: The FastAPI application instance
    """
    logger.info("Starting resource initialization...")

    # 1. Shared HTTP session
    try:
        if getattr(app.state, "http_session", None) is None:
            app.state.http_session = requests.Session()
            logger.info("HTTP session initialized")
        else:
            logger.info("HTTP session already provided on app.state; skipping init")
    except Exception as exc:
        logger.exception("Failed to initialize HTTP session", exc_info=exc)
        app.state.http_session = None

    # 2. Link verification service
    try:
        if getattr(app.state, "verification_service", None) is None:
            app.state.verification_service = LinkVerificationService(
                http_session=app.state.http_session
            )
            logger.info("LinkVerificationService initialized")
        else:
            logger.info(
                "LinkVerificationService already provided on app.state; skipping init"
            )
    except Exception as exc:
        logger.exception("Failed to initialize LinkVerificationService", exc_info=exc)
        app.state.verification_service = None

    # 3. Admission queue (unconfigured when REDIS_URL is unset)
    try:
        if getattr(app.state, "admission_queue", None) is None:
            app.state.admission_queue = AdmissionQueue.from_url()
            logger.info(
                "AdmissionQueue initialized (configured=%s)",
                app.state.admission_queue.store is not None,
            )
        else:
            logger.info("AdmissionQueue already provided on app.state; skipping init")
    except Exception as exc:
        logger.exception("Failed to initialize AdmissionQueue", exc_info=exc)
        app.state.admission_queue = AdmissionQueue(None)

    app.state.ready = True
    logger.info("All resources initialized, app is ready")


async def shutdown_resources(app: FastAPI) -> None:
    """Clean up shared resources gracefully.

    Args:
        app: The FastAPI application instance
    """
    logger.info("Starting resource cleanup...")

    queue = getattr(app.state, "admission_queue", None)
    client = getattr(getattr(queue, "store", None), "client", None)
    if client is not None:
        try:
            logger.info("Closing Redis client...")
            client.close()
        except Exception as exc:
            logger.exception("Error closing Redis client", exc_info=exc)

    if getattr(app.state, "http_session", None) is not None:
        try:
            logger.info("Closing HTTP session...")
            app.state.http_session.close()
            logger.info("HTTP session closed")
        except Exception as exc:
            logger.exception("Error closing HTTP session", exc_info=exc)

    if hasattr(app.state, "ready"):
        app.state.ready = False

    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI app lifecycle.

    Resources are initialized on startup (before yield) and cleaned up on
    shutdown (after yield).
    """
    await startup_resources(app)
    yield
    await shutdown_resources(app)


# Dependency injection functions for route handlers


def get_verification_service(request: Request) -> LinkVerificationService | None:
    """Dependency that provides the shared LinkVerificationService.

    Returns None if the service failed to initialize. Tests can override this
    dependency to inject a service with a fake prober.
    """
    return cast(
        Optional[LinkVerificationService],
        getattr(request.app.state, "verification_service", None),
    )


def get_admission_queue(request: Request) -> AdmissionQueue:
    """Dependency that provides the shared AdmissionQueue.

    Always returns a queue; an unconfigured queue has ``store is None``.
    """
    queue = getattr(request.app.state, "admission_queue", None)
    return queue if queue is not None else AdmissionQueue(None)


def is_ready(request: Request) -> bool:
    """Check if the application is ready to serve traffic."""
    return getattr(request.app.state, "ready", False)
