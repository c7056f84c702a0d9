"""Data models for link verification and admission."""

from src.models.verification import (
    REVIEW_STATUSES,
    LinkItem,
    LinkStatus,
    QueueStatus,
    VerificationResult,
)

__all__ = [
    "REVIEW_STATUSES",
    "LinkItem",
    "LinkStatus",
    "QueueStatus",
    "VerificationResult",
]
