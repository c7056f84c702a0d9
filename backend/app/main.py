import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from backend.app.lifecycle import (
    get_admission_queue,
    get_verification_service,
    is_ready,
    lifespan,
)
from src import config
from src.models.verification import LinkItem
from src.services.admission_queue import AdmissionQueue
from src.services.errors import AdmissionUnavailableError
from src.services.link_verification import LinkVerificationService, summarize
from src.utils.url_validation import validate_url

logger = logging.getLogger(__name__)

app = FastAPI(title="Hyperlink Horizon API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in config.ALLOWED_ORIGINS.split(",")],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


class TicketRequest(BaseModel):
    jobId: Optional[str] = None


class VerifyRequest(BaseModel):
    url: Optional[str] = None
    urls: Optional[list[Any]] = None
    context: str = ""
    clearCacheFirst: bool = False
    jobId: Optional[str] = None


def _require_service(
    service: Optional[LinkVerificationService],
) -> LinkVerificationService:
    if service is None:
        raise HTTPException(status_code=503, detail="Verification service unavailable")
    return service


def _require_job_id(job_id: Optional[str]) -> str:
    if not job_id:
        raise HTTPException(status_code=400, detail="Job ID required")
    return job_id


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancer probes."""
    return {"status": "healthy", "service": "api"}


@app.get("/ready")
def readiness_check(
    ready: bool = Depends(is_ready),
    service: Optional[LinkVerificationService] = Depends(get_verification_service),
    queue: AdmissionQueue = Depends(get_admission_queue),
):
    """Readiness check endpoint for orchestration systems.

    Returns 503 until startup completes or when the verification service is
    missing. An unconfigured queue does not fail readiness; it is reported
    so operators can tell single-instance mode apart from an outage.
    """
    if not ready:
        raise HTTPException(
            status_code=503, detail="Application not ready: startup incomplete"
        )
    if service is None:
        raise HTTPException(
            status_code=503, detail="Application not ready: verification service missing"
        )

    if queue.store is None:
        queue_state = "not_configured"
    else:
        queue_state = "available" if queue.is_ready() else "unavailable"

    return {
        "status": "ready",
        "service": "api",
        "resources": {
            "verification": "available",
            "queue": queue_state,
        },
    }


# Admission queue


@app.post("/api/queue/join")
def join_queue(queue: AdmissionQueue = Depends(get_admission_queue)):
    """Take a ticket at the tail of the line."""
    if not queue.is_ready():
        raise HTTPException(
            status_code=503, detail="Queue system not configured (Redis missing)"
        )
    try:
        ticket_id, position = queue.join()
    except AdmissionUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"jobId": ticket_id, "position": position, "message": "Joined queue"}


@app.get("/api/queue/status")
def queue_status(
    jobId: Optional[str] = Query(default=None),
    queue: AdmissionQueue = Depends(get_admission_queue),
):
    """Poll a ticket. Polling also keeps the ticket alive."""
    ticket_id = _require_job_id(jobId)

    if queue.store is None:
        # Single-instance development: everyone is admitted.
        return {"status": "ready", "position": 0, "warning": "Redis not configured"}

    try:
        status = queue.status(ticket_id)
    except AdmissionUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    payload = status.to_dict()
    if status.state == "unknown":
        payload["message"] = "Job not found in queue"
    return payload


@app.post("/api/queue/heartbeat")
def queue_heartbeat(
    payload: TicketRequest, queue: AdmissionQueue = Depends(get_admission_queue)
):
    ticket_id = _require_job_id(payload.jobId)
    if queue.store is None:
        return {"success": True, "warning": "Redis not configured"}
    try:
        queue.heartbeat(ticket_id)
    except AdmissionUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True}


@app.post("/api/queue/complete")
def queue_complete(
    payload: TicketRequest, queue: AdmissionQueue = Depends(get_admission_queue)
):
    """Release the lock (if held) and leave the line. Idempotent."""
    ticket_id = _require_job_id(payload.jobId)
    if queue.store is None:
        return {"success": True, "warning": "Redis not configured"}
    try:
        queue.complete(ticket_id)
    except AdmissionUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True}


# Verification


@app.post("/api/verify")
def verify(
    payload: VerifyRequest,
    service: Optional[LinkVerificationService] = Depends(get_verification_service),
    queue: AdmissionQueue = Depends(get_admission_queue),
):
    """Verify a single ``url`` or a batch of ``urls``.

    When ``jobId`` is given and the queue is configured, the ticket must
    currently hold the processing lock.
    """
    service = _require_service(service)

    if payload.jobId and queue.store is not None:
        try:
            status = queue.status(payload.jobId)
        except AdmissionUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        if not status.is_ready:
            raise HTTPException(
                status_code=409,
                detail=f"Job {payload.jobId} is not admitted (status: {status.state})",
            )

    if payload.clearCacheFirst:
        service.clear_cache()

    if payload.url:
        validation = validate_url(payload.url)
        if not validation.is_valid:
            raise HTTPException(status_code=400, detail=validation.error)
        result = service.verify_link(validation.sanitized, payload.context)
        return result.to_dict()

    if payload.urls is not None:
        links = []
        for entry in payload.urls[: config.MAX_BATCH_URLS]:
            try:
                item = LinkItem.coerce(entry)
            except TypeError:
                continue
            validation = validate_url(item.url)
            if validation.is_valid:
                links.append(LinkItem(validation.sanitized, item.context))
            else:
                logger.debug("Skipping invalid URL %r: %s", item.url, validation.error)

        results = service.verify_links(links)
        return {
            "results": [result.to_dict() for result in results],
            "summary": summarize(results),
        }

    raise HTTPException(status_code=400, detail="Please provide a url or urls array")


@app.get("/api/verify")
async def verify_description():
    return {
        "message": "Hyperlink Horizon Verify API",
        "endpoints": {
            "POST": {
                "description": "Verify one or more URLs",
                "body": {
                    "url": "Single URL to verify",
                    "urls": "Array of URLs (or {url, context} objects) to verify in batch",
                    "context": "Optional context for a single URL",
                    "clearCacheFirst": "Optional boolean to clear cache before verification",
                    "jobId": "Optional admission ticket that must currently be admitted",
                },
            },
        },
        "maxBatchUrls": config.MAX_BATCH_URLS,
    }
