"""
Two-layer safety evaluation for CHAPAL.

1. Layer 1: pattern rule engine over PII, injection, safety and policy
   catalogs, with emotion classification (synchronous, local)
2. Layer 2: semantic audit of the generated reply by an external model,
   with key rotation and a safe fallback verdict
"""

from chapal.safety.base import (
    DetectionFinding,
    DetectionLayer,
    DetectionResult,
    Emotion,
    EmotionIntensity,
    FindingKind,
    Severity,
)
from chapal.safety.detector import Layer1Detector, classify_emotion
from chapal.safety.engine import DetectionRule, RuleSet, evaluate
from chapal.safety.keys import CredentialSlot, KeyRotationManager, is_rate_limit_error
from chapal.safety.semantic import (
    ReviewReason,
    SemanticOrchestrator,
    SemanticVerdict,
    derive_review_reason,
)
from chapal.safety.spike import SpikeDetector

__all__ = [
    # Base types
    "DetectionFinding",
    "DetectionLayer",
    "DetectionResult",
    "Emotion",
    "EmotionIntensity",
    "FindingKind",
    "Severity",
    # Layer 1
    "DetectionRule",
    "RuleSet",
    "evaluate",
    "Layer1Detector",
    "classify_emotion",
    "SpikeDetector",
    # Layer 2
    "CredentialSlot",
    "KeyRotationManager",
    "is_rate_limit_error",
    "ReviewReason",
    "SemanticOrchestrator",
    "SemanticVerdict",
    "derive_review_reason",
]
