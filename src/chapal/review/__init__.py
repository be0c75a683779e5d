"""Human review workflow: held replies, conversation locks, dispositions."""

from chapal.review.models import (
    ConversationReviewLock,
    Disposition,
    NotificationEvent,
    ReviewableMessage,
    ReviewAction,
)
from chapal.review.state_machine import (
    FeedbackRecord,
    FeedbackSink,
    InMemoryFeedbackSink,
    ReviewStateMachine,
)

__all__ = [
    "ConversationReviewLock",
    "Disposition",
    "NotificationEvent",
    "ReviewableMessage",
    "ReviewAction",
    "FeedbackRecord",
    "FeedbackSink",
    "InMemoryFeedbackSink",
    "ReviewStateMachine",
]
