"""Shared fakes for the pipeline tests. Nothing here touches the network."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest

from chapal.agents.orchestrator import ChatSubmission, StreamingOrchestrator
from chapal.config import Settings
from chapal.notifications import NotificationHub
from chapal.review.state_machine import ReviewStateMachine
from chapal.safety.detector import Layer1Detector
from chapal.safety.keys import KeyRotationManager
from chapal.safety.semantic import SemanticOrchestrator
from chapal.store import InMemoryStore


class FakeRateLimitError(Exception):
    """Looks like an SDK 429."""

    status_code = 429


class FakeAuditorClient:
    """Stands in for AsyncOpenAI: `client.chat.completions.create(...)`."""

    def __init__(self, responses: list[Any] | None = None):
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        item = self.responses.pop(0) if self.responses else "{}"
        if isinstance(item, BaseException):
            raise item
        content = item if isinstance(item, str) else json.dumps(item)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeGenerator:
    """Scripted generator: one entry per attempt, either chunks or an exception."""

    def __init__(self, script: list[Any] | None = None):
        self.script = list(script or [["Hello", " there."]])
        self.calls: list[dict[str, Any]] = []

    async def stream(self, history, user_text, keys=None):
        self.calls.append({"history": list(history), "user_text": user_text})
        step = self.script.pop(0) if self.script else ["ok"]
        if isinstance(step, BaseException):
            raise step
        for chunk in step:
            yield chunk


def make_semantic(
    clients: list[FakeAuditorClient], settings: Settings
) -> SemanticOrchestrator:
    by_key = {f"key-{i}": client for i, client in enumerate(clients)}
    keys = KeyRotationManager(list(by_key), lambda k: by_key[k], name="auditor")
    return SemanticOrchestrator(keys=keys, settings=settings)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        generation_api_keys=[],
        auditor_api_keys=[],
        admin_api_token="",
        thinking_stage_delay_ms={},
        retry_backoff_ms=0,
    )


@pytest.fixture
def review() -> ReviewStateMachine:
    return ReviewStateMachine(InMemoryStore(), NotificationHub())


@pytest.fixture
def auditor() -> FakeAuditorClient:
    return FakeAuditorClient()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(settings, review, auditor, generator, sleeps) -> StreamingOrchestrator:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return StreamingOrchestrator(
        detector=Layer1Detector(),
        generator=generator,
        semantic=make_semantic([auditor], settings),
        review=review,
        settings=settings,
        sleep=fake_sleep,
    )


def submission(text: str, conversation_id: str = "conv-1", user_id: str = "user-1"):
    return ChatSubmission(conversation_id=conversation_id, user_id=user_id, text=text)


async def collect(orchestrator: StreamingOrchestrator, sub: ChatSubmission):
    return [event async for event in orchestrator.stream(sub)]
