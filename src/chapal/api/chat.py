from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from chapal.agents.orchestrator import (
    AttachmentSummary,
    ChatSubmission,
    StreamingOrchestrator,
)
from chapal.api.deps import provide_orchestrator
from chapal.errors import ConversationLocked, UserRestricted
from chapal.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class AttachmentIn(BaseModel):
    name: str
    text: str = ""


class MessageRequest(BaseModel):
    user_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    attachments: list[AttachmentIn] = Field(default_factory=list)


@router.post("/conversations/{conversation_id}/messages", response_model=None)
async def post_message(
    conversation_id: str,
    body: MessageRequest,
    orchestrator: StreamingOrchestrator = Depends(provide_orchestrator),
) -> EventSourceResponse | dict[str, Any]:
    """Submit a user message and stream the pipeline's events as SSE.

    Restricted accounts and locked conversations get a JSON status body
    instead of a stream.
    """
    submission = ChatSubmission(
        conversation_id=conversation_id,
        user_id=body.user_id,
        text=body.text,
        attachments=[AttachmentSummary(name=a.name, text=a.text) for a in body.attachments],
    )
    try:
        orchestrator.admit(submission)
    except UserRestricted as e:
        logger.info("submission_rejected_restricted", user_id=e.user_id)
        return {"locked": True, "restricted": True, "message": str(e)}
    except ConversationLocked as e:
        logger.info(
            "submission_rejected_locked",
            conversation_id=e.conversation_id,
            locked_message_id=e.locked_message_id,
        )
        return {
            "locked": True,
            "message": e.message,
            "lockedMessageId": e.locked_message_id,
        }

    async def event_generator() -> AsyncGenerator[dict[str, str], None]:
        async for event in orchestrator.stream(submission):
            yield event.to_sse()

    return EventSourceResponse(event_generator())


@router.get("/conversations/{conversation_id}/lock")
async def get_lock(
    conversation_id: str,
    orchestrator: StreamingOrchestrator = Depends(provide_orchestrator),
) -> dict[str, Any]:
    lock = orchestrator.review.lock_for(conversation_id)
    return {
        "conversationId": lock.conversation_id,
        "isLocked": lock.is_locked,
        "lockReason": lock.lock_reason,
        "lockedMessageId": lock.locked_message_id,
        "message": lock.message,
    }


@router.get("/users/{user_id}/notifications")
async def get_notifications(
    user_id: str,
    orchestrator: StreamingOrchestrator = Depends(provide_orchestrator),
) -> list[dict[str, Any]]:
    return [e.to_dict() for e in orchestrator.review.hub.events_for(user_id)]
