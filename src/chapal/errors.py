"""
Error taxonomy for the safety pipeline.

Each class maps to one failure mode of the pipeline. Recoverable errors
(auditor rate limits, malformed auditor output, transient generation
failures) are caught where the recovery lives; the rest reach the caller.
"""

from __future__ import annotations


class ChapalError(Exception):
    """Base class for all pipeline errors."""


class RuleEngineError(ChapalError):
    """A detection rule is malformed. Programming error, never recovered."""


# Semantic auditor


class AuditorError(ChapalError):
    """Base class for semantic auditor failures."""


class AuditorRateLimited(AuditorError):
    """The current auditor credential hit a rate limit."""


class AuditorExhausted(AuditorError):
    """Every auditor credential was rate limited within one request."""

    def __init__(self, message: str = "All auditor API keys rate limited"):
        super().__init__(message)


class AuditorMalformedResponse(AuditorError):
    """The auditor's structured output could not be parsed."""


# Primary generation


class GenerationError(ChapalError):
    """Base class for primary model failures."""


class GenerationTransientFailure(GenerationError):
    """A generation attempt failed in a way that may succeed on retry."""


class GenerationCredentialsExhausted(GenerationError):
    """Every generation credential was rate limited. Not retried."""

    def __init__(
        self,
        message: str = "All API keys are rate limited. Please try again later.",
    ):
        super().__init__(message)


# Review workflow


class ReviewError(ChapalError):
    """Base class for review workflow failures."""


class ReviewNotFound(ReviewError):
    """No reviewable message exists for the given id."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Reviewable message not found: {message_id}")


class ReviewConflict(ReviewError):
    """A transition was attempted on a message that is no longer pending."""

    def __init__(self, message_id: str, disposition: str):
        self.message_id = message_id
        self.disposition = disposition
        super().__init__(
            f"Message {message_id} was already reviewed (disposition={disposition})"
        )


class InvalidReviewAction(ReviewError, ValueError):
    """A review action is missing required input."""


# Boundary admission


class ConversationLocked(ChapalError):
    """New input rejected while a reply in the conversation awaits review."""

    def __init__(
        self,
        conversation_id: str,
        message: str,
        locked_message_id: str | None = None,
    ):
        self.conversation_id = conversation_id
        self.message = message
        self.locked_message_id = locked_message_id
        super().__init__(message)


class UserRestricted(ChapalError):
    """The authoring account was restricted by a reviewer."""

    def __init__(self, user_id: str, reason: str | None = None):
        self.user_id = user_id
        self.reason = reason
        super().__init__(
            "Your account has been blocked. You cannot use the chatbot."
        )
