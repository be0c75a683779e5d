"""
Base types for the safety pipeline.

Defines the finding/result records shared by the rule engine, the
Layer-1 detector and the Layer-2 semantic orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chapal.safety.semantic import SemanticVerdict


class FindingKind(str, Enum):
    """Categories of detection findings."""

    PII = "pii"
    PROMPT_INJECTION = "prompt_injection"
    SAFETY = "safety"
    POLICY_VIOLATION = "policy_violation"
    SUDDEN_SPIKE = "sudden_spike"
    # Layer-2 pre-screen indicators
    MEDICAL = "medical"
    MENTAL_HEALTH = "mental_health"
    HALLUCINATION = "hallucination"


class Severity(str, Enum):
    """Severity of a single finding."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DetectionLayer(str, Enum):
    """Which layer produced a finding or result."""

    DETERMINISTIC = "deterministic"
    SEMANTIC = "semantic"


class Emotion(str, Enum):
    """User emotion labels."""

    ANXIOUS = "anxious"
    ANGRY = "angry"
    SAD = "sad"
    HAPPY = "happy"
    CURIOUS = "curious"
    HOSTILE = "hostile"
    DISTRESSED = "distressed"
    SUSPICIOUS = "suspicious"
    NEUTRAL = "neutral"


class EmotionIntensity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Additive penalty per finding; the score starts at 100 and floors at 0
SEVERITY_PENALTY: dict[Severity, int] = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}

EMOTION_INTENSITY: dict[Emotion, EmotionIntensity] = {
    Emotion.DISTRESSED: EmotionIntensity.HIGH,
    Emotion.HOSTILE: EmotionIntensity.HIGH,
    Emotion.ANGRY: EmotionIntensity.HIGH,
    Emotion.ANXIOUS: EmotionIntensity.MEDIUM,
    Emotion.SAD: EmotionIntensity.MEDIUM,
}


def emotion_intensity(emotion: Emotion) -> EmotionIntensity:
    """Fixed label-to-intensity mapping."""
    return EMOTION_INTENSITY.get(emotion, EmotionIntensity.LOW)


def safety_score(findings: list[DetectionFinding]) -> int:
    """Compute the additive-penalty safety score, floored at 0."""
    score = 100
    for finding in findings:
        score -= SEVERITY_PENALTY[finding.severity]
    return max(0, score)


@dataclass(frozen=True)
class DetectionFinding:
    """One rule match. Immutable once produced."""

    kind: FindingKind
    sub_kind: str
    severity: Severity
    human_message: str
    matched_excerpt: str
    confidence: int
    layer: DetectionLayer = DetectionLayer.DETERMINISTIC

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "subType": self.sub_kind,
            "severity": self.severity.value,
            "message": self.human_message,
            "matchedPattern": self.matched_excerpt,
            "confidence": self.confidence,
            "layer": self.layer.value,
        }


@dataclass
class DetectionResult:
    """Outcome of Layer-1 analysis, optionally merged with a Layer-2 verdict."""

    layer: DetectionLayer
    is_blocked: bool
    is_warning: bool
    is_safe: bool
    safety_score: int
    findings: list[DetectionFinding] = field(default_factory=list)
    emotion: Emotion = Emotion.NEUTRAL
    emotion_intensity: EmotionIntensity = EmotionIntensity.LOW
    should_log: bool = False
    is_pending_review: bool = False
    accuracy_score: int = 100
    user_message: str | None = None

    @property
    def verdict(self) -> str:
        if self.is_blocked:
            return "blocked"
        if self.is_warning:
            return "warning"
        return "safe"

    @property
    def primary_finding(self) -> DetectionFinding | None:
        return self.findings[0] if self.findings else None

    def has_kind(self, kind: FindingKind) -> bool:
        return any(f.kind == kind for f in self.findings)

    def merge_semantic(self, verdict: SemanticVerdict) -> DetectionResult:
        """Fold a Layer-2 verdict into this result without touching Layer-1 flags."""
        return replace(
            self,
            layer=DetectionLayer.SEMANTIC,
            is_pending_review=verdict.requires_human_review,
            accuracy_score=verdict.accuracy_score,
            findings=list(self.findings),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer.value,
            "isBlocked": self.is_blocked,
            "isWarning": self.is_warning,
            "isPendingReview": self.is_pending_review,
            "isSafe": self.is_safe,
            "safetyScore": self.safety_score,
            "accuracyScore": self.accuracy_score,
            "userEmotion": self.emotion.value,
            "emotionIntensity": self.emotion_intensity.value,
            "anomalies": [f.to_dict() for f in self.findings],
            "shouldLog": self.should_log,
            "userMessage": self.user_message,
        }
