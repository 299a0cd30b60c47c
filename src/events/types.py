"""Typed audit event definitions.

- AuditEvent: a recognition decision or a review/confirmation action,
  carrying only redacted candidate identifiers (never raw PII)
"""

from enum import Enum

from pydantic import Field

from src.events.base import Event


class AuditAction(str, Enum):
    """What was decided or done."""

    AUTO_FILL = "auto_fill"
    CONFIRM_IDENTITY = "confirm_identity"
    ADMIN_REVIEW = "admin_review"
    CREATE_NEW = "create_new"
    RECOGNITION_DEGRADED = "recognition_degraded"
    MATCH_CONFIRMED = "match_confirmed"
    MATCH_DECLINED = "match_declined"
    REVIEW_APPROVED = "review_approved"
    REVIEW_REJECTED = "review_rejected"
    REVIEW_MERGED = "review_merged"


class AuditEvent(Event):
    """Emitted for every recognition call and every review action."""

    action: AuditAction = Field(description="Decision tier or action taken")
    confidence: int | None = Field(
        default=None, ge=0, le=100, description="Confidence behind the decision"
    )
    candidate_ids_redacted: list[str] = Field(
        default_factory=list,
        description="Salted hash prefixes of candidate profile ids",
    )
    actor: str | None = Field(default=None, description="Admin who acted, if any")
    cache_hit: bool = Field(default=False)
