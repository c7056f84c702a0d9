"""Value objects exchanged by the link verification engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LinkStatus(str, Enum):
    """Semantic outcome of verifying one link."""

    WORKING = "working"
    BROKEN = "broken"
    REDIRECT = "redirect"
    RESTRICTED = "restricted"
    TIMEOUT = "timeout"


# Statuses surfaced to reviewers as "needs a human look".
REVIEW_STATUSES = frozenset({LinkStatus.REDIRECT, LinkStatus.RESTRICTED})


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LinkItem:
    """A link handed over by the document parser."""

    url: str
    context: str = ""

    @classmethod
    def coerce(cls, value: Any) -> "LinkItem":
        """Accept LinkItem, plain URL strings, or ``{"url", "context"}`` mappings."""
        if isinstance(value, LinkItem):
            return value
        if isinstance(value, str):
            return cls(url=value)
        if isinstance(value, dict):
            return cls(url=str(value.get("url", "")), context=str(value.get("context") or ""))
        raise TypeError(f"Unsupported link item: {value!r}")


@dataclass(frozen=True)
class VerificationResult:
    """Immutable verification outcome for a single URL.

    ``checked_at`` is set when the network check finished; a cached copy keeps
    the original timestamp so callers can tell a cache hit from a fresh check.
    """

    url: str
    status: LinkStatus
    status_code: int | None = None
    reason: str | None = None
    content_type: str | None = None
    is_image: bool = False
    response_time_ms: int | None = None
    is_restricted: bool = False
    checked_at: str = field(default_factory=utc_now_iso)
    context: str = ""
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Render the camelCase contract consumed by presentation/export."""
        return {
            "url": self.url,
            "status": self.status.value,
            "statusCode": self.status_code,
            "reason": self.reason,
            "contentType": self.content_type,
            "isImage": self.is_image,
            "responseTimeMs": self.response_time_ms,
            "isRestricted": self.is_restricted,
            "checkedAt": self.checked_at,
            "context": self.context,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class QueueStatus:
    """Answer to an admission-queue poll."""

    state: str  # "ready", "queued" or "unknown"
    position: int
    ticket_id: str

    @property
    def is_ready(self) -> bool:
        return self.state == "ready"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.state, "position": self.position, "jobId": self.ticket_id}
