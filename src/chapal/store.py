"""
In-memory data-write layer.

Holds conversations, reviewable messages, review locks and account
restrictions. Every mutation runs under one lock, so the review
invariants are enforced here, at the write, not by callers:
- creating a reviewable message and setting its conversation lock is a
  single write, idempotent on the message id
- a disposition transition is a compare-and-set from PENDING; anything
  else raises ReviewConflict and changes nothing
- a conversation is locked exactly while it has a pending message
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime

from chapal.errors import ReviewConflict, ReviewNotFound
from chapal.logging import get_logger
from chapal.review.models import (
    ConversationReviewLock,
    Disposition,
    Incident,
    IncidentStatus,
    ReviewableMessage,
    Turn,
)

logger = get_logger(__name__)


@dataclass
class Conversation:
    id: str
    user_id: str
    turns: list[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)


class InMemoryStore:
    """Process-local store; swap for a database-backed one in production."""

    def __init__(self):
        self._mutex = threading.Lock()
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, ReviewableMessage] = {}
        self._locks: dict[str, ConversationReviewLock] = {}
        self._restrictions: dict[str, str] = {}
        self._incidents: list[Incident] = []

    # ---- conversations ----

    def ensure_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        with self._mutex:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id, user_id=user_id)
                self._conversations[conversation_id] = conversation
            return conversation

    def append_turn(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_id: str | None = None,
        blocked: bool = False,
    ) -> None:
        with self._mutex:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise KeyError(f"Unknown conversation: {conversation_id}")
            conversation.turns.append(
                Turn(role=role, content=content, message_id=message_id, blocked=blocked)
            )

    def turns(self, conversation_id: str) -> list[Turn]:
        """Every stored turn, blocked ones included."""
        with self._mutex:
            conversation = self._conversations.get(conversation_id)
            return list(conversation.turns) if conversation is not None else []

    def history(self, conversation_id: str) -> list[Turn]:
        """Visible turns only: held replies appear once released, never before."""
        with self._mutex:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return []
            visible: list[Turn] = []
            for turn in conversation.turns:
                if turn.blocked:
                    continue
                if turn.message_id is None:
                    if turn.content:
                        visible.append(turn)
                    continue
                message = self._messages.get(turn.message_id)
                if message is not None and message.visible_content:
                    visible.append(replace(turn, content=message.visible_content))
            return visible

    # ---- reviews ----

    def create_review(
        self,
        message: ReviewableMessage,
        lock_reason: str,
    ) -> ReviewableMessage:
        """Create a pending message and lock its conversation in one write."""
        with self._mutex:
            existing = self._messages.get(message.id)
            if existing is not None:
                return existing
            if not message.is_pending:
                raise ValueError("Reviewable messages are created pending")

            self._messages[message.id] = message
            lock = self._locks.get(message.conversation_id)
            if lock is None or not lock.is_locked:
                self._locks[message.conversation_id] = ConversationReviewLock(
                    conversation_id=message.conversation_id,
                    is_locked=True,
                    lock_reason=lock_reason,
                    locked_message_id=message.id,
                    message=message.pending_message,
                )
            return message

    def get_review(self, message_id: str) -> ReviewableMessage:
        with self._mutex:
            message = self._messages.get(message_id)
        if message is None:
            raise ReviewNotFound(message_id)
        return message

    def list_reviews(
        self, disposition: Disposition | None = Disposition.PENDING
    ) -> list[ReviewableMessage]:
        with self._mutex:
            messages = [
                m
                for m in self._messages.values()
                if disposition is None or m.disposition == disposition
            ]
        messages.sort(key=lambda m: m.created_at)
        return messages

    def transition(
        self,
        message_id: str,
        disposition: Disposition,
        reviewer_id: str,
        visible_content: str = "",
        reviewer_response: str | None = None,
    ) -> ReviewableMessage:
        """Move a pending message to a terminal disposition and release its lock."""
        if disposition == Disposition.PENDING:
            raise ValueError("Cannot transition to pending")

        with self._mutex:
            current = self._messages.get(message_id)
            if current is None:
                raise ReviewNotFound(message_id)
            if not current.is_pending:
                raise ReviewConflict(message_id, current.disposition.value)

            updated = replace(
                current,
                disposition=disposition,
                reviewer_id=reviewer_id,
                reviewed_at=datetime.now(),
                visible_content=visible_content,
                reviewer_response=reviewer_response,
            )
            self._messages[message_id] = updated
            self._release_lock(updated)
            return updated

    def _release_lock(self, message: ReviewableMessage) -> None:
        lock = self._locks.get(message.conversation_id)
        if lock is None or lock.locked_message_id != message.id:
            return
        # Hand the lock to the oldest message still pending, if any
        remaining = sorted(
            (
                m
                for m in self._messages.values()
                if m.conversation_id == message.conversation_id and m.is_pending
            ),
            key=lambda m: m.created_at,
        )
        if remaining:
            nxt = remaining[0]
            self._locks[message.conversation_id] = ConversationReviewLock(
                conversation_id=message.conversation_id,
                is_locked=True,
                lock_reason=nxt.review_reason,
                locked_message_id=nxt.id,
                message=nxt.pending_message,
            )
        else:
            self._locks[message.conversation_id] = ConversationReviewLock(
                conversation_id=message.conversation_id,
                is_locked=False,
            )

    def get_lock(self, conversation_id: str) -> ConversationReviewLock:
        with self._mutex:
            lock = self._locks.get(conversation_id)
        return lock or ConversationReviewLock(
            conversation_id=conversation_id, is_locked=False
        )

    # ---- incidents ----

    def record_incident(self, incident: Incident) -> Incident:
        with self._mutex:
            self._incidents.append(incident)
        logger.info(
            "incident_recorded",
            incident_id=incident.id,
            conversation_id=incident.conversation_id,
            kind=incident.kind,
            severity=incident.severity,
            status=incident.status.value,
        )
        return incident

    def list_incidents(self, status: IncidentStatus | None = None) -> list[Incident]:
        """Newest first."""
        with self._mutex:
            incidents = [i for i in self._incidents if status is None or i.status == status]
        incidents.sort(key=lambda i: i.created_at, reverse=True)
        return incidents

    # ---- account restrictions ----

    def restrict_user(self, user_id: str, reason: str) -> None:
        with self._mutex:
            self._restrictions[user_id] = reason

    def restriction_for(self, user_id: str) -> str | None:
        with self._mutex:
            return self._restrictions.get(user_id)
