"""
Review state machine.

The only component allowed to change review state. A held reply moves
pending -> approved | blocked | corrected exactly once; the store's
compare-and-set makes any second attempt fail with ReviewConflict and
leave the message untouched.

Effects per transition:
- approved: the raw reply becomes visible
- blocked: nothing becomes visible; restricting the author is a separate,
  explicit choice
- corrected: the reviewer's response becomes visible and the
  (query, raw reply, correction) triple goes to the feedback sink
Every transition clears the conversation lock and publishes exactly one
notification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import uuid4

from chapal.errors import (
    ConversationLocked,
    InvalidReviewAction,
    ReviewConflict,
    UserRestricted,
)
from chapal.logging import get_logger
from chapal.notifications import NotificationHub
from chapal.review.models import (
    ConversationReviewLock,
    Disposition,
    NotificationEvent,
    ReviewableMessage,
    ReviewAction,
)
from chapal.safety.semantic import (
    ReviewReason,
    SemanticVerdict,
    derive_review_reason,
    pending_message,
)
from chapal.store import InMemoryStore

logger = get_logger(__name__)

SUMMARY_MESSAGES: dict[Disposition, str] = {
    Disposition.APPROVED: "Your message has been reviewed and the response was approved.",
    Disposition.BLOCKED: "Your message has been reviewed and the response was withheld.",
    Disposition.CORRECTED: "An expert has reviewed your message and provided a response.",
}

DEFAULT_RESTRICTION_REASON = "Restricted by reviewer"


@dataclass(frozen=True)
class FeedbackRecord:
    query: str
    raw_content: str
    reviewer_response: str
    message_id: str


@runtime_checkable
class FeedbackSink(Protocol):
    """Receives reviewer corrections for future context augmentation."""

    async def record(self, feedback: FeedbackRecord) -> None: ...


class InMemoryFeedbackSink:
    def __init__(self):
        self.records: list[FeedbackRecord] = []

    async def record(self, feedback: FeedbackRecord) -> None:
        self.records.append(feedback)


class ReviewStateMachine:
    """Owns ReviewableMessage dispositions, conversation locks and restrictions."""

    def __init__(
        self,
        store: InMemoryStore,
        hub: NotificationHub,
        feedback: FeedbackSink | None = None,
    ):
        self.store = store
        self.hub = hub
        self.feedback = feedback or InMemoryFeedbackSink()

    # ---- admission ----

    def admit(self, conversation_id: str, user_id: str) -> None:
        """Reject input from restricted accounts and into locked conversations."""
        reason = self.store.restriction_for(user_id)
        if reason is not None:
            raise UserRestricted(user_id, reason)
        lock = self.store.get_lock(conversation_id)
        if lock.is_locked:
            raise ConversationLocked(
                conversation_id,
                lock.message or pending_message(ReviewReason.UNKNOWN),
                locked_message_id=lock.locked_message_id,
            )

    def lock_for(self, conversation_id: str) -> ConversationReviewLock:
        return self.store.get_lock(conversation_id)

    # ---- creation ----

    def open_review(
        self,
        conversation_id: str,
        user_id: str,
        query: str,
        raw_content: str,
        verdict: SemanticVerdict,
        message_id: str | None = None,
    ) -> ReviewableMessage:
        """Hold a reply for review and lock its conversation."""
        reason = derive_review_reason(verdict)
        message = ReviewableMessage(
            id=message_id or str(uuid4()),
            conversation_id=conversation_id,
            user_id=user_id,
            query=query,
            raw_content=raw_content,
            review_reason=reason.value,
            pending_message=pending_message(reason),
            risk_level=verdict.risk_level,
            verdict=verdict.to_dict(),
        )
        message = self.store.create_review(message, lock_reason=reason.value)
        logger.info(
            "review_opened",
            message_id=message.id,
            conversation_id=conversation_id,
            reason=reason.value,
            risk_level=verdict.risk_level,
        )
        return message

    def pending(self) -> list[ReviewableMessage]:
        return self.store.list_reviews(Disposition.PENDING)

    # ---- transitions ----

    async def approve(self, message_id: str, reviewer_id: str) -> ReviewableMessage:
        current = self.store.get_review(message_id)
        updated = self.store.transition(
            message_id,
            Disposition.APPROVED,
            reviewer_id,
            visible_content=current.raw_content,
        )
        await self._resolved(updated)
        return updated

    async def block(
        self,
        message_id: str,
        reviewer_id: str,
        restrict_author: bool = False,
        reason: str | None = None,
    ) -> ReviewableMessage:
        updated = self.store.transition(message_id, Disposition.BLOCKED, reviewer_id)
        await self._resolved(updated)
        if restrict_author:
            self.restrict_user(updated.user_id, reason, reviewer_id=reviewer_id)
        return updated

    async def correct(
        self, message_id: str, reviewer_id: str, reviewer_response: str
    ) -> ReviewableMessage:
        current = self.store.get_review(message_id)
        if not current.is_pending:
            raise ReviewConflict(message_id, current.disposition.value)
        if not reviewer_response or not reviewer_response.strip():
            raise InvalidReviewAction("A correction requires a non-empty reviewer response")
        updated = self.store.transition(
            message_id,
            Disposition.CORRECTED,
            reviewer_id,
            visible_content=reviewer_response,
            reviewer_response=reviewer_response,
        )
        await self._resolved(updated)
        await self.feedback.record(
            FeedbackRecord(
                query=updated.query,
                raw_content=updated.raw_content,
                reviewer_response=reviewer_response,
                message_id=updated.id,
            )
        )
        return updated

    async def apply(
        self,
        message_id: str,
        action: ReviewAction | str,
        reviewer_id: str,
        reviewer_response: str | None = None,
        restrict_user: bool = False,
    ) -> ReviewableMessage:
        """Dispatch a reviewer action by name."""
        try:
            action = ReviewAction(action)
        except ValueError as e:
            raise InvalidReviewAction(f"Unknown review action: {action}") from e

        if restrict_user and action != ReviewAction.BLOCK:
            raise InvalidReviewAction("Restricting the author is only allowed with block")

        if action == ReviewAction.APPROVE:
            return await self.approve(message_id, reviewer_id)
        if action == ReviewAction.BLOCK:
            return await self.block(message_id, reviewer_id, restrict_author=restrict_user)
        return await self.correct(message_id, reviewer_id, reviewer_response or "")

    def restrict_user(
        self,
        user_id: str,
        reason: str | None = None,
        reviewer_id: str | None = None,
    ) -> None:
        """Restrict an account. Never implied by a block transition."""
        self.store.restrict_user(user_id, reason or DEFAULT_RESTRICTION_REASON)
        logger.warning(
            "user_restricted", user_id=user_id, reviewer_id=reviewer_id, reason=reason
        )

    async def _resolved(self, message: ReviewableMessage) -> None:
        logger.info(
            "review_resolved",
            message_id=message.id,
            conversation_id=message.conversation_id,
            disposition=message.disposition.value,
            reviewer_id=message.reviewer_id,
        )
        await self.hub.publish(
            NotificationEvent(
                conversation_id=message.conversation_id,
                user_id=message.user_id,
                message_id=message.id,
                action=message.disposition,
                summary_message=SUMMARY_MESSAGES[message.disposition],
            )
        )
