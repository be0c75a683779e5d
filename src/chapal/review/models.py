"""
Records owned by the review workflow.

All records are frozen; the store swaps whole values on every write so a
reader never observes a half-applied transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Disposition(str, Enum):
    """Review state of a held reply. Only PENDING is non-terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"
    CORRECTED = "corrected"


class ReviewAction(str, Enum):
    """Reviewer actions accepted by the state machine."""

    APPROVE = "approve"
    BLOCK = "block"
    CORRECT = "correct"

    @property
    def disposition(self) -> Disposition:
        return {
            ReviewAction.APPROVE: Disposition.APPROVED,
            ReviewAction.BLOCK: Disposition.BLOCKED,
            ReviewAction.CORRECT: Disposition.CORRECTED,
        }[self]


@dataclass(frozen=True)
class ReviewableMessage:
    """A generated reply held for human review.

    `raw_content` always keeps the full model output; `visible_content`
    stays empty until a reviewer releases something.
    """

    id: str
    conversation_id: str
    user_id: str
    query: str
    raw_content: str
    review_reason: str
    pending_message: str
    created_at: datetime = field(default_factory=datetime.now)
    visible_content: str = ""
    disposition: Disposition = Disposition.PENDING
    reviewer_id: str | None = None
    reviewed_at: datetime | None = None
    reviewer_response: str | None = None
    risk_level: str | None = None
    verdict: dict[str, Any] | None = None

    @property
    def is_pending(self) -> bool:
        return self.disposition == Disposition.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "userId": self.user_id,
            "query": self.query,
            "rawContent": self.raw_content,
            "visibleContent": self.visible_content,
            "disposition": self.disposition.value,
            "reviewReason": self.review_reason,
            "pendingMessage": self.pending_message,
            "riskLevel": self.risk_level,
            "reviewerId": self.reviewer_id,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewerResponse": self.reviewer_response,
            "createdAt": self.created_at.isoformat(),
            "semanticVerdict": self.verdict,
        }


@dataclass(frozen=True)
class ConversationReviewLock:
    """Per-conversation gate held while a reply awaits review."""

    conversation_id: str
    is_locked: bool
    lock_reason: str | None = None
    locked_message_id: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    """Fanned out once per terminal review transition."""

    conversation_id: str
    user_id: str
    message_id: str
    action: Disposition
    summary_message: str
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def channel(self) -> str:
        return f"user-{self.user_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "action": self.action.value,
            "summaryMessage": self.summary_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Turn:
    """One entry of a conversation's history.

    Assistant turns that went to review carry the reviewable message id and
    take their content from that message once it is released. Blocked
    exchanges are kept for the record but never replayed to the model.
    """

    role: str
    content: str
    message_id: str | None = None
    blocked: bool = False


class IncidentStatus(str, Enum):
    """PENDING incidents wait for an admin; FLAGGED ones are informational."""

    PENDING = "pending"
    FLAGGED = "flagged"


@dataclass(frozen=True)
class Incident:
    """A logged safety event: a blocked message or a Layer-1 warning."""

    id: str
    conversation_id: str
    user_id: str
    query: str
    kind: str
    sub_kind: str | None
    severity: str
    layer: str
    excerpt: str | None
    safety_score: int
    emotion: str
    status: IncidentStatus
    ai_response: str | None = None
    detection: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "userId": self.user_id,
            "userQuery": self.query,
            "anomalyType": self.kind,
            "subType": self.sub_kind,
            "severity": self.severity,
            "layer": self.layer,
            "matchedPattern": self.excerpt,
            "safetyScore": self.safety_score,
            "userEmotion": self.emotion,
            "status": self.status.value,
            "aiResponse": self.ai_response,
            "detectionDetails": self.detection,
            "createdAt": self.created_at.isoformat(),
        }
