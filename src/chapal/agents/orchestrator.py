"""Streaming generation orchestrator.

Drives one user message through the pipeline and emits tagged events:

    thinking -> detection -> [blocked: done]
             -> chunk* (retry, chunk*)* -> [semanticVerdict] -> done | error

The orchestrator is the single producer of an EventChannel; the transport
only reads from it. When the reader goes away the channel is closed and
emits become no-ops, but the producer task runs on so Layer-2 results and
review state are still persisted.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from chapal.agents.base import SupportsGenerate
from chapal.agents.generator import GeminiResponseGenerator
from chapal.config import Settings, get_settings
from chapal.errors import GenerationCredentialsExhausted
from chapal.logging import TraceContext, get_logger
from chapal.notifications import NotificationHub
from chapal.review.models import Incident, IncidentStatus
from chapal.review.state_machine import ReviewStateMachine
from chapal.safety.base import DetectionResult
from chapal.safety.detector import Layer1Detector
from chapal.safety.semantic import SemanticOrchestrator, SemanticVerdict
from chapal.safety.spike import SpikeDetector
from chapal.store import InMemoryStore

logger = get_logger(__name__)


class StreamEventType(str, Enum):
    """Tags of the streaming event protocol."""

    THINKING = "thinking"
    DETECTION = "detection"
    CHUNK = "chunk"
    SEMANTIC_VERDICT = "semanticVerdict"
    RETRY = "retry"
    DONE = "done"
    ERROR = "error"


class ThinkingStage(str, Enum):
    ANALYZING_SAFETY = "analyzing_safety"
    CHECKING_INJECTION = "checking_injection"
    DETECTING_EMOTION = "detecting_emotion"
    GENERATING_RESPONSE = "generating_response"
    SEMANTIC_ANALYSIS = "semantic_analysis"
    COMPLETE = "complete"


STAGE_MESSAGES: dict[ThinkingStage, str] = {
    ThinkingStage.ANALYZING_SAFETY: "Analyzing safety protocols...",
    ThinkingStage.CHECKING_INJECTION: "Checking for injection attempts...",
    ThinkingStage.DETECTING_EMOTION: "Detecting emotional context...",
    ThinkingStage.GENERATING_RESPONSE: "Generating response...",
    ThinkingStage.SEMANTIC_ANALYSIS: "Running semantic analysis...",
    ThinkingStage.COMPLETE: "Complete",
}

# Stages paced before detection results are shown
PRE_DETECTION_STAGES = (
    ThinkingStage.ANALYZING_SAFETY,
    ThinkingStage.CHECKING_INJECTION,
    ThinkingStage.DETECTING_EMOTION,
)


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> dict[str, str]:
        return {"event": self.type.value, "data": json.dumps(self.data)}


@dataclass(frozen=True)
class AttachmentSummary:
    """Extracted text of an uploaded document."""

    name: str
    text: str


@dataclass
class ChatSubmission:
    conversation_id: str
    user_id: str
    text: str
    attachments: list[AttachmentSummary] = field(default_factory=list)

    def model_text(self) -> str:
        """User text with attachment sections appended, as sent to the model."""
        parts = [self.text]
        for attachment in self.attachments:
            parts.append(f"[Document: {attachment.name}]\n{attachment.text}")
        return "\n\n".join(parts)


class EventChannel:
    """Single-producer queue of stream events.

    `close()` is called by the consumer side; afterwards `emit` silently
    drops events so the producer never blocks on a reader that left.
    """

    _END = object()

    def __init__(self):
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event_type: StreamEventType, data: dict[str, Any] | None = None) -> None:
        if not self._closed:
            self._queue.put_nowait(StreamEvent(event_type, data or {}))

    def finish(self) -> None:
        self._queue.put_nowait(self._END)

    def close(self) -> None:
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                return
            yield item


@dataclass
class RunOutcome:
    """What a finished run produced; returned by `run` for callers and tests."""

    detection: DetectionResult
    reply: str | None = None
    verdict: SemanticVerdict | None = None
    is_pending_review: bool = False
    message_id: str | None = None
    error: str | None = None
    attempts: int = 0
    incident: Incident | None = None


class StreamingOrchestrator:
    """
    Per-message pipeline driver.

    Components are injectable; defaults are built from settings. `sleep`
    is injectable so tests can skip pacing and backoff delays.
    """

    def __init__(
        self,
        detector: Layer1Detector | None = None,
        generator: SupportsGenerate | None = None,
        semantic: SemanticOrchestrator | None = None,
        review: ReviewStateMachine | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.detector = detector or Layer1Detector(
            spike_detector=SpikeDetector(self.settings)
        )
        self.generator = generator or GeminiResponseGenerator(settings=self.settings)
        self.semantic = semantic or SemanticOrchestrator(settings=self.settings)
        self.review = review or ReviewStateMachine(InMemoryStore(), NotificationHub())
        self._sleep = sleep
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> InMemoryStore:
        return self.review.store

    def admit(self, submission: ChatSubmission) -> None:
        """Boundary check; raises UserRestricted or ConversationLocked."""
        self.review.admit(submission.conversation_id, submission.user_id)

    async def stream(self, submission: ChatSubmission) -> AsyncIterator[StreamEvent]:
        """Run the pipeline in a background task and yield its events."""
        channel = EventChannel()
        task = asyncio.create_task(self._run_to_channel(submission, channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                logger.info(
                    "stream_consumer_gone",
                    conversation_id=submission.conversation_id,
                )
            channel.close()

    async def _run_to_channel(
        self, submission: ChatSubmission, channel: EventChannel
    ) -> None:
        try:
            await self.run(submission, channel)
        except Exception as e:
            logger.error(
                "pipeline_error",
                conversation_id=submission.conversation_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            channel.emit(
                StreamEventType.ERROR,
                {"message": "An error occurred while processing your message."},
            )
        finally:
            channel.finish()

    async def run(self, submission: ChatSubmission, channel: EventChannel) -> RunOutcome:
        """Process one admitted submission, emitting events into `channel`."""
        with TraceContext(
            "chat_message",
            conversation_id=submission.conversation_id,
            user_id=submission.user_id,
        ) as trace:
            detection = self.detector.analyze(submission.text, user_id=submission.user_id)
            trace.log_detection(
                detection.layer.value,
                detection.verdict,
                detection.safety_score,
                [f.kind.value for f in detection.findings],
            )

            for stage in PRE_DETECTION_STAGES:
                await self._stage(channel, trace, stage)

            needs_audit, reasons = self.semantic.should_audit(submission.text, detection)
            channel.emit(
                StreamEventType.DETECTION,
                {
                    **detection.to_dict(),
                    "needsLayer2": needs_audit,
                    "layer2Reasons": reasons,
                },
            )

            outcome = RunOutcome(detection=detection)
            if detection.is_blocked:
                self.store.ensure_conversation(
                    submission.conversation_id, submission.user_id
                )
                self.store.append_turn(
                    submission.conversation_id, "user", submission.text, blocked=True
                )
                self.store.append_turn(
                    submission.conversation_id,
                    "assistant",
                    detection.user_message or "",
                    blocked=True,
                )
                outcome.incident = self._record_incident(
                    submission, detection, IncidentStatus.PENDING
                )
                channel.emit(
                    StreamEventType.DONE,
                    {
                        "isPendingReview": False,
                        "accuracyScore": detection.accuracy_score,
                        "isBlocked": True,
                        "userMessage": detection.user_message,
                    },
                )
                return outcome

            self.store.ensure_conversation(submission.conversation_id, submission.user_id)
            history = self.store.history(submission.conversation_id)
            model_text = submission.model_text()
            self.store.append_turn(submission.conversation_id, "user", model_text)

            await self._stage(channel, trace, ThinkingStage.GENERATING_RESPONSE)
            reply = await self._generate_with_retry(
                history, model_text, channel, trace, outcome
            )
            if reply is None:
                if detection.should_log:
                    outcome.incident = self._record_incident(
                        submission, detection, IncidentStatus.FLAGGED
                    )
                return outcome
            outcome.reply = reply

            if needs_audit:
                await self._stage(channel, trace, ThinkingStage.SEMANTIC_ANALYSIS)
                verdict = await self.semantic.audit(submission.text, reply)
                outcome.verdict = verdict
                outcome.detection = detection.merge_semantic(verdict)
                channel.emit(
                    StreamEventType.SEMANTIC_VERDICT,
                    {**verdict.to_dict(), "reasons": reasons},
                )

            done: dict[str, Any] = {
                "isPendingReview": False,
                "accuracyScore": outcome.verdict.accuracy_score if outcome.verdict else 100,
            }
            if outcome.verdict is not None and outcome.verdict.requires_human_review:
                message = self.review.open_review(
                    conversation_id=submission.conversation_id,
                    user_id=submission.user_id,
                    query=submission.text,
                    raw_content=reply,
                    verdict=outcome.verdict,
                    message_id=str(uuid4()),
                )
                trace.log_review(message.id, message.review_reason)
                self.store.append_turn(
                    submission.conversation_id, "assistant", "", message_id=message.id
                )
                outcome.is_pending_review = True
                outcome.message_id = message.id
                done.update(
                    isPendingReview=True,
                    pendingMessage=message.pending_message,
                    reviewReason=message.review_reason,
                    messageId=message.id,
                )
            else:
                self.store.append_turn(submission.conversation_id, "assistant", reply)
                if detection.should_log:
                    outcome.incident = self._record_incident(
                        submission, detection, IncidentStatus.FLAGGED, ai_response=reply
                    )

            await self._stage(channel, trace, ThinkingStage.COMPLETE, pace=False)
            channel.emit(StreamEventType.DONE, done)
            return outcome

    def _record_incident(
        self,
        submission: ChatSubmission,
        detection: DetectionResult,
        status: IncidentStatus,
        ai_response: str | None = None,
    ) -> Incident:
        primary = detection.primary_finding
        return self.store.record_incident(
            Incident(
                id=str(uuid4()),
                conversation_id=submission.conversation_id,
                user_id=submission.user_id,
                query=submission.text,
                kind=primary.kind.value if primary else "unknown",
                sub_kind=primary.sub_kind if primary else None,
                severity=primary.severity.value if primary else "high",
                layer=detection.layer.value,
                excerpt=primary.matched_excerpt if primary else None,
                safety_score=detection.safety_score,
                emotion=detection.emotion.value,
                status=status,
                ai_response=ai_response,
                detection=detection.to_dict(),
            )
        )

    async def _stage(
        self,
        channel: EventChannel,
        trace: TraceContext,
        stage: ThinkingStage,
        pace: bool = True,
    ) -> None:
        channel.emit(
            StreamEventType.THINKING,
            {"stage": stage.value, "message": STAGE_MESSAGES[stage]},
        )
        trace.log_stage(stage.value)
        delay_ms = self.settings.thinking_stage_delay_ms.get(stage.value, 0)
        if pace and delay_ms > 0:
            await self._sleep(delay_ms / 1000)

    async def _generate_with_retry(
        self,
        history: list[Any],
        model_text: str,
        channel: EventChannel,
        trace: TraceContext,
        outcome: RunOutcome,
    ) -> str | None:
        """Up to N attempts with linear backoff. Returns the reply or None on error."""
        max_attempts = self.settings.max_generation_attempts
        keys = getattr(self.generator, "keys", None)
        request_keys = keys.for_request() if keys is not None else None

        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            if attempt > 1:
                channel.emit(
                    StreamEventType.RETRY,
                    {"attempt": attempt, "maxAttempts": max_attempts},
                )
                await self._sleep(self.settings.retry_backoff_ms * attempt / 1000)

            try:
                return await asyncio.wait_for(
                    self._attempt(history, model_text, channel, request_keys),
                    timeout=self.settings.generation_timeout_seconds,
                )
            except GenerationCredentialsExhausted as e:
                logger.error("generation_credentials_exhausted", attempt=attempt)
                outcome.error = str(e)
                channel.emit(StreamEventType.ERROR, {"message": str(e)})
                return None
            except Exception as e:
                error = "Generation timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
                trace.log_retry(attempt, error)
                if attempt < max_attempts:
                    logger.warning(
                        "generation_attempt_failed",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=error,
                    )
                    continue
                logger.error(
                    "generation_failed", attempts=max_attempts, error=error
                )
                outcome.error = (
                    f"Failed to generate response after {max_attempts} attempts. "
                    "Please try again."
                )
                channel.emit(StreamEventType.ERROR, {"message": outcome.error})
                return None
        return None

    async def _attempt(
        self,
        history: list[Any],
        model_text: str,
        channel: EventChannel,
        keys: Any,
    ) -> str:
        parts: list[str] = []
        async for chunk in self.generator.stream(history, model_text, keys=keys):
            parts.append(chunk)
            channel.emit(StreamEventType.CHUNK, {"text": chunk})
        return "".join(parts)


# Global singleton for the app and CLI
_orchestrator: StreamingOrchestrator | None = None


def get_streaming_orchestrator() -> StreamingOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = StreamingOrchestrator()
    return _orchestrator
