from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from chapal.api.deps import provide_review, require_admin_auth
from chapal.errors import InvalidReviewAction, ReviewConflict, ReviewNotFound
from chapal.review.models import IncidentStatus, ReviewAction
from chapal.review.state_machine import ReviewStateMachine

router = APIRouter(
    prefix="/api/admin",
    tags=["review"],
    dependencies=[Depends(require_admin_auth)],
)


class ReviewActionRequest(BaseModel):
    action: ReviewAction
    reviewer_id: str
    reviewer_response: str | None = None
    restrict_user: bool = False


class RestrictRequest(BaseModel):
    reason: str | None = None
    reviewer_id: str | None = None


@router.get("/reviews")
async def list_pending_reviews(
    review: ReviewStateMachine = Depends(provide_review),
) -> list[dict[str, Any]]:
    return [m.to_dict() for m in review.pending()]


@router.get("/reviews/{message_id}")
async def get_review(
    message_id: str,
    review: ReviewStateMachine = Depends(provide_review),
) -> dict[str, Any]:
    try:
        return review.store.get_review(message_id).to_dict()
    except ReviewNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.post("/reviews/{message_id}")
async def apply_review_action(
    message_id: str,
    body: ReviewActionRequest,
    review: ReviewStateMachine = Depends(provide_review),
) -> dict[str, Any]:
    try:
        message = await review.apply(
            message_id,
            body.action,
            body.reviewer_id,
            reviewer_response=body.reviewer_response,
            restrict_user=body.restrict_user,
        )
    except ReviewNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ReviewConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InvalidReviewAction as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    return message.to_dict()


@router.post("/users/{user_id}/restrict")
async def restrict_user(
    user_id: str,
    body: RestrictRequest | None = None,
    review: ReviewStateMachine = Depends(provide_review),
) -> dict[str, Any]:
    body = body or RestrictRequest()
    review.restrict_user(user_id, body.reason, reviewer_id=body.reviewer_id)
    return {"userId": user_id, "restricted": True}


@router.get("/incidents")
async def list_incidents(
    status_filter: IncidentStatus | None = Query(default=None, alias="status"),
    review: ReviewStateMachine = Depends(provide_review),
) -> list[dict[str, Any]]:
    return [i.to_dict() for i in review.store.list_incidents(status_filter)]
