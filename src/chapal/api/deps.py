from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, status

from chapal.agents.orchestrator import StreamingOrchestrator, get_streaming_orchestrator
from chapal.config import get_settings
from chapal.review.state_machine import ReviewStateMachine


def require_admin_auth(authorization: str | None = Header(None)) -> str:
    """Require Authorization: Bearer <token> if configured.

    If `ADMIN_API_TOKEN` (settings.admin_api_token) is set, enforce matching token.
    If not set, allow access (development convenience).
    Returns the token used (may be empty string if not configured).
    """
    configured = get_settings().admin_api_token
    if not configured:
        return ""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token"
        )
    token = authorization.split(" ", 1)[1].strip()
    if token != configured:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token"
        )
    return token


# Orchestrator factory injection
ORCHESTRATOR_FACTORY: Callable[[], StreamingOrchestrator] | None = None


def set_orchestrator_factory(
    factory: Callable[[], StreamingOrchestrator] | None,
) -> None:
    global ORCHESTRATOR_FACTORY
    ORCHESTRATOR_FACTORY = factory


def provide_orchestrator() -> StreamingOrchestrator:
    """Provide the StreamingOrchestrator via injectable factory or the global one."""
    if ORCHESTRATOR_FACTORY:
        return ORCHESTRATOR_FACTORY()
    return get_streaming_orchestrator()


def provide_review(
    orchestrator: StreamingOrchestrator = Depends(provide_orchestrator),
) -> ReviewStateMachine:
    return orchestrator.review
