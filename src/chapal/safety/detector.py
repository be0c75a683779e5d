"""
Layer-1 deterministic detector.

Runs on every user message before generation:
- PII, prompt-injection, safety and policy catalogs, in that order
- Additive-penalty safety score and a block/warn/safe verdict
- Keyword emotion classification, overridden by a safety rule's emotion

Synchronous; nothing here touches the network.
"""

from __future__ import annotations

import re

from chapal.logging import get_logger
from chapal.safety.base import (
    DetectionFinding,
    DetectionLayer,
    DetectionResult,
    Emotion,
    FindingKind,
    Severity,
    emotion_intensity,
    safety_score,
)
from chapal.safety.engine import RuleSet, count_matches, evaluate
from chapal.safety.rules import EMOTION_INDICATORS, LAYER1_RULE_SETS, SAFETY_RULES
from chapal.safety.spike import SpikeDetector

logger = get_logger(__name__)


def classify_emotion(
    text: str,
    indicators: dict[Emotion, tuple[re.Pattern[str], ...]] = EMOTION_INDICATORS,
) -> Emotion:
    """Pick the emotion with the most indicator matches.

    Ties go to the category declared first; no matches at all is neutral.
    """
    best = Emotion.NEUTRAL
    best_count = 0
    for emotion, patterns in indicators.items():
        count = count_matches(text, patterns)
        if count > best_count:
            best, best_count = emotion, count
    return best


def safety_emotion(findings: list[DetectionFinding]) -> Emotion | None:
    """Emotion attached to the first matched safety rule, if any."""
    for finding in findings:
        if finding.kind != FindingKind.SAFETY:
            continue
        rule = SAFETY_RULES.rule_for(finding.sub_kind)
        if rule is not None and rule.emotion is not None:
            return rule.emotion
    return None


def build_result(
    findings: list[DetectionFinding], emotion: Emotion
) -> DetectionResult:
    """Apply scoring and verdict rules to a list of Layer-1 findings."""
    has_critical = any(f.severity == Severity.CRITICAL for f in findings)
    has_high = any(f.severity == Severity.HIGH for f in findings)
    has_injection = any(f.kind == FindingKind.PROMPT_INJECTION for f in findings)
    has_policy = any(f.kind == FindingKind.POLICY_VIOLATION for f in findings)
    has_medium_pii = any(
        f.kind == FindingKind.PII and f.severity == Severity.MEDIUM for f in findings
    )

    is_blocked = has_critical or (has_injection and has_high)
    is_warning = not is_blocked and (has_high or has_policy or has_medium_pii)
    is_safe = not is_blocked and not is_warning

    user_message = None
    if is_blocked:
        reason = findings[0].human_message if findings else "Security protocols triggered"
        user_message = f"Message Blocked: {reason}. This incident has been logged."
    elif is_warning:
        reason = findings[0].human_message if findings else "Potential policy violation detected"
        user_message = f"Warning: {reason}."

    return DetectionResult(
        layer=DetectionLayer.DETERMINISTIC,
        is_blocked=is_blocked,
        is_warning=is_warning,
        is_safe=is_safe,
        safety_score=safety_score(findings),
        findings=findings,
        emotion=emotion,
        emotion_intensity=emotion_intensity(emotion),
        should_log=is_blocked or is_warning,
        user_message=user_message,
    )


class Layer1Detector:
    """
    Fast rule-based pre-generation scanner.

    Rule sets are injectable so tests (and future deployments) can run
    a reduced or extended catalog without touching the engine. With a
    SpikeDetector attached, a message flood blocks before any rule runs.
    """

    def __init__(
        self,
        rule_sets: tuple[RuleSet, ...] = LAYER1_RULE_SETS,
        spike_detector: SpikeDetector | None = None,
    ):
        self.rule_sets = rule_sets
        self.spike_detector = spike_detector

    def analyze(self, text: str, user_id: str | None = None) -> DetectionResult:
        if self.spike_detector is not None and user_id is not None:
            spike = self.spike_detector.record(user_id, text)
            if spike.should_block and spike.finding is not None:
                return build_result([spike.finding], classify_emotion(text))

        findings: list[DetectionFinding] = []
        for rule_set in self.rule_sets:
            findings.extend(evaluate(text, rule_set))

        emotion = safety_emotion(findings) or classify_emotion(text)
        result = build_result(findings, emotion)

        if result.should_log:
            logger.info(
                "layer1_flagged",
                verdict=result.verdict,
                safety_score=result.safety_score,
                kinds=[f.kind.value for f in findings],
                sub_kinds=[f.sub_kind for f in findings],
            )
        return result
