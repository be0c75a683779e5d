"""
Sudden-spike (message flood) detection.

Per-user sliding window over submission timestamps. A flood yields a
critical finding that blocks the message before any rule evaluation.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from chapal.config import Settings, get_settings
from chapal.logging import get_logger
from chapal.safety.base import DetectionFinding, FindingKind, Severity

logger = get_logger(__name__)

SIMULATION_MARKER = "[DDOS_SIMULATION]"


@dataclass
class SpikeResult:
    should_block: bool
    message_count: int
    finding: DetectionFinding | None = None


class SpikeDetector:
    """Counts submissions per user inside a sliding time window."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or get_settings()
        self.window_seconds = settings.spike_window_seconds
        self.max_messages = settings.spike_max_messages
        self._clock = clock
        self._history: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def record(self, user_id: str, text: str = "") -> SpikeResult:
        """Register one submission and report whether the user is flooding."""
        now = self._clock()
        with self._lock:
            self._prune(now - self.window_seconds)
            bucket = self._history.setdefault(user_id, deque())
            bucket.append(now)
            count = len(bucket)

        simulated = SIMULATION_MARKER in text
        if count <= self.max_messages and not simulated:
            return SpikeResult(should_block=False, message_count=count)

        if simulated:
            count = max(count, self.max_messages + 1)
        logger.warning(
            "sudden_spike_detected",
            user_id=user_id,
            message_count=count,
            window_seconds=self.window_seconds,
            simulated=simulated,
        )
        finding = DetectionFinding(
            kind=FindingKind.SUDDEN_SPIKE,
            sub_kind="message_flood",
            severity=Severity.CRITICAL,
            human_message=f"Sudden spike detected: {count} rapid messages",
            matched_excerpt=f"{count} messages in {self.window_seconds:g}s",
            confidence=95,
        )
        return SpikeResult(should_block=True, message_count=count, finding=finding)

    def _prune(self, cutoff: float) -> None:
        # Caller holds self._lock. Users whose whole window expired are dropped.
        for user_id, bucket in list(self._history.items()):
            while bucket and bucket[0] < cutoff:
                bucket.popleft()
            if not bucket:
                del self._history[user_id]

    def reset(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._history.clear()
            else:
                self._history.pop(user_id, None)
