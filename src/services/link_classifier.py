"""Turn probe outcomes into link statuses."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.models.verification import LinkStatus
from src.services.link_prober import (
    ERROR_CONNECTION_REFUSED,
    ERROR_DNS_NOT_FOUND,
    ERROR_INVALID_URL,
    ERROR_TIMEOUT,
    ERROR_TLS,
    ERROR_TOO_MANY_REDIRECTS,
    ProbeOutcome,
)
from src.utils.domain_policies import (
    is_bot_blocking_domain,
    is_restricted_domain,
    looks_like_paywall,
    looks_like_soft_404,
)

logger = logging.getLogger(__name__)

_FAILURE_REASONS: dict[str, tuple[LinkStatus, str]] = {
    ERROR_DNS_NOT_FOUND: (LinkStatus.BROKEN, "Domain not found"),
    ERROR_CONNECTION_REFUSED: (LinkStatus.BROKEN, "Connection refused"),
    ERROR_TLS: (LinkStatus.BROKEN, "SSL/TLS certificate error"),
    ERROR_INVALID_URL: (LinkStatus.BROKEN, "Invalid URL"),
    ERROR_TOO_MANY_REDIRECTS: (LinkStatus.REDIRECT, "Redirect loop (too many redirects)"),
}


@dataclass(frozen=True)
class Classification:
    status: LinkStatus
    reason: str | None = None
    is_restricted: bool = False


def classify_status_code(url: str, status_code: int, location: str | None = None) -> Classification:
    """Map a final HTTP status code to a link status.

    ``status_code`` is the code left after retries, so a 429 here means the
    server was still rate limiting.
    """
    if 200 <= status_code < 300:
        if is_restricted_domain(url):
            return Classification(
                LinkStatus.RESTRICTED,
                "Academic/institutional access may be required",
                is_restricted=True,
            )
        return Classification(LinkStatus.WORKING)

    if 300 <= status_code < 400:
        return Classification(LinkStatus.REDIRECT, f"Redirects to {location or 'unknown'}")

    if status_code in (401, 403):
        if is_bot_blocking_domain(url):
            reason = (
                f"Blocked automated check ({status_code}); site is known to block bots "
                "and likely works in a browser"
            )
        else:
            reason = f"Access denied or authentication required ({status_code})"
        return Classification(LinkStatus.RESTRICTED, reason, is_restricted=True)

    if status_code == 404:
        return Classification(LinkStatus.BROKEN, "Page not found (404)")
    if status_code == 410:
        return Classification(LinkStatus.BROKEN, "Page permanently removed (410)")
    if status_code == 429:
        return Classification(LinkStatus.TIMEOUT, "Rate limited (429); recheck later")
    if status_code == 408:
        return Classification(LinkStatus.TIMEOUT, "Server timed out the request (408)")
    if status_code >= 500:
        return Classification(LinkStatus.BROKEN, f"Server error ({status_code})")
    if status_code >= 400:
        return Classification(LinkStatus.BROKEN, f"HTTP {status_code}")

    # 1xx responses are not failures.
    return Classification(LinkStatus.WORKING)


def classify_failure(error_kind: str | None, timeout: float | None = None) -> Classification:
    """Classify an attempt that never produced a response."""
    mapped = _FAILURE_REASONS.get(error_kind or "")
    if mapped is not None:
        return Classification(mapped[0], mapped[1])
    if error_kind == ERROR_TIMEOUT:
        limit = f" (>{timeout:g}s)" if timeout else ""
        return Classification(LinkStatus.TIMEOUT, f"Request timeout{limit}")
    return Classification(LinkStatus.TIMEOUT, f"Unable to connect ({error_kind or 'unknown error'})")


def inspect_body(classification: Classification, outcome: ProbeOutcome) -> Classification:
    """Apply soft-404 and paywall rules to a successful HTML GET.

    Only ``working`` results are reconsidered; HEAD outcomes and non-HTML
    bodies are returned untouched.
    """
    if classification.status is not LinkStatus.WORKING:
        return classification
    if outcome.method != "GET" or not outcome.success:
        return classification
    if outcome.content_type != "text/html":
        return classification

    body = outcome.read_body()
    if not body:
        return classification

    if looks_like_soft_404(body):
        logger.debug("Soft 404 detected (%d chars of HTML)", len(body))
        return Classification(LinkStatus.BROKEN, "Soft 404 (page content indicates not found)")

    if looks_like_paywall(body):
        return Classification(
            LinkStatus.RESTRICTED, "Paywall or login wall detected", is_restricted=True
        )

    return classification
