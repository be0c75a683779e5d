"""
CHAPAL: Contextual Human-Assisted Protection and Anomaly Learning

A two-layer content-safety pipeline that mediates every message between
a user and a generative model.

Safety Architecture:
- Layer 1: deterministic pattern rules (PII, injection, safety, policy)
- Layer 2: semantic audit of the generated reply by an external model
- Human review state machine with per-conversation locks
- Fail-open on auditor trouble, fail-loud on generation capacity
"""

__version__ = "0.1.0"
__author__ = "Lapicero"

from chapal.agents.orchestrator import (
    ChatSubmission,
    StreamEvent,
    StreamEventType,
    StreamingOrchestrator,
)
from chapal.config import Settings
from chapal.review.state_machine import ReviewStateMachine
from chapal.safety import DetectionResult, Layer1Detector, SemanticOrchestrator

__all__ = [
    "ChatSubmission",
    "DetectionResult",
    "Layer1Detector",
    "ReviewStateMachine",
    "SemanticOrchestrator",
    "Settings",
    "StreamEvent",
    "StreamEventType",
    "StreamingOrchestrator",
    "__version__",
]
