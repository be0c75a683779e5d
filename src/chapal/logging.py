"""
Logging and observability for CHAPAL.

Provides structured logging with tracing support for chat requests,
detection results, retries, and review transitions.
"""

from __future__ import annotations

import logging as std_logging
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog

from chapal.config import get_settings


def level_number(name: str) -> int:
    """Map a level name like "debug" to its numeric level; unknown names mean INFO."""
    level = std_logging.getLevelName(name.upper())
    return level if isinstance(level, int) else std_logging.INFO


def configure_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    log_level = getattr(settings, "log_level", "INFO")
    if not isinstance(log_level, str):
        log_level = "INFO"

    is_dev = getattr(settings, "is_development", True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            # Use pretty console output in development
            (
                structlog.dev.ConsoleRenderer()
                if is_dev
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_number(log_level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance with the given name."""
    return structlog.get_logger(name)


class TraceContext:
    """
    Context manager for tracing one chat request.

    Collects the stages, detection outcome, retries and review events of a
    single user message so the whole flow can be correlated in the logs.
    """

    def __init__(
        self,
        operation: str,
        conversation_id: str | None = None,
        user_id: str | None = None,
    ):
        self.operation = operation
        self.trace_id = str(uuid4())[:8]
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.start_time = datetime.now()
        self.events: list[dict[str, Any]] = []
        self.logger = get_logger("trace")

    def __enter__(self) -> "TraceContext":
        self.logger.info(
            "trace_start",
            trace_id=self.trace_id,
            operation=self.operation,
            conversation_id=self.conversation_id,
            user_id=self.user_id,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000
        self.logger.info(
            "trace_end",
            trace_id=self.trace_id,
            operation=self.operation,
            duration_ms=round(duration_ms, 2),
            event_count=len(self.events),
            error=str(exc_val) if exc_val else None,
        )

    def log_event(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        **kwargs,
    ) -> None:
        """Log an event within this trace."""
        event = {
            "type": event_type,
            "timestamp": datetime.now().isoformat(),
            "data": data or {},
            **kwargs,
        }
        self.events.append(event)
        self.logger.debug(
            f"trace_event_{event_type}",
            trace_id=self.trace_id,
            **event,
        )

    def log_stage(self, stage: str) -> None:
        """Log a thinking stage transition."""
        self.log_event("stage", data={"stage": stage})

    def log_detection(
        self,
        layer: str,
        verdict: str,
        score: int,
        kinds: list[str],
    ) -> None:
        """Log a detection outcome."""
        self.log_event(
            "detection",
            data={
                "layer": layer,
                "verdict": verdict,
                "score": score,
                "kinds": kinds,
            },
        )

    def log_retry(self, attempt: int, error: str | None = None) -> None:
        """Log a generation retry."""
        self.log_event("retry", data={"attempt": attempt, "error": error})

    def log_review(self, message_id: str, reason: str) -> None:
        """Log creation of a pending review."""
        self.log_event(
            "review", data={"message_id": message_id, "reason": reason}
        )


# Configure logging on module import
configure_logging()
