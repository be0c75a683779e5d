"""Tests for structured logging setup."""

import logging

import pytest

from chapal.config import get_settings
from chapal.logging import TraceContext, configure_logging, get_logger, level_number


@pytest.fixture
def reconfigure(monkeypatch):
    def apply(level):
        monkeypatch.setenv("LOG_LEVEL", level)
        get_settings.cache_clear()  # type: ignore[attr-defined]
        configure_logging()

    yield apply
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    get_settings.cache_clear()  # type: ignore[attr-defined]
    configure_logging()


@pytest.mark.parametrize(
    "name,expected",
    [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("Warning", logging.WARNING),
        ("error", logging.ERROR),
        ("bogus", logging.INFO),
        ("", logging.INFO),
    ],
)
def test_level_number(name, expected):
    assert level_number(name) == expected


@pytest.mark.parametrize("level", ["DEBUG", "warning", "bogus"])
def test_configure_accepts_any_level(reconfigure, level):
    reconfigure(level)
    logger = get_logger("chapal.test")
    logger.debug("debug_line", detail="x")
    logger.info("info_line", event_name="review_resolved")


def test_trace_context_collects_events(reconfigure):
    reconfigure("DEBUG")
    with TraceContext("chat_message", conversation_id="conv-1", user_id="user-1") as trace:
        trace.log_stage("analyzing_safety")
        trace.log_detection("deterministic", "blocked", 40, ["prompt_injection"])
        trace.log_retry(2, "boom")
        trace.log_review("msg-1", "serious_medical")
    assert [e["type"] for e in trace.events] == ["stage", "detection", "retry", "review"]
    assert trace.events[1]["data"]["verdict"] == "blocked"
