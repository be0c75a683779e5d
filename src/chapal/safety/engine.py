"""
Pattern rule engine.

Rules are plain data records (patterns, severity, message, sub-kind);
the engine is a pure function over (text, rule set):
- No state, no network, no randomness
- Same input and rule set always yield the same findings, in order
- At most one finding per rule: a rule's patterns are tried in declared
  order and the rule stops at its first hit
- Matched text is truncated (and masked for PII) before it is attached
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from chapal.errors import RuleEngineError
from chapal.safety.base import (
    DetectionFinding,
    DetectionLayer,
    Emotion,
    FindingKind,
    Severity,
)

# Characters left readable at the start of a masked excerpt
_VISIBLE_PREFIX = 2


@dataclass(frozen=True)
class DetectionRule:
    """One detection rule: ordered patterns sharing a severity and message."""

    sub_kind: str
    severity: Severity
    human_message: str
    patterns: tuple[str, ...]
    emotion: Emotion | None = None
    flags: int = re.IGNORECASE
    _compiled: tuple[re.Pattern[str], ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.patterns:
            raise RuleEngineError(f"Rule {self.sub_kind!r} has no patterns")
        try:
            compiled = tuple(re.compile(p, self.flags) for p in self.patterns)
        except re.error as e:
            raise RuleEngineError(f"Rule {self.sub_kind!r} is malformed: {e}") from e
        object.__setattr__(self, "_compiled", compiled)

    def first_match(self, text: str) -> str | None:
        """Return the text matched by the first matching pattern, if any."""
        for pattern in self._compiled:
            match = pattern.search(text)
            if match:
                return match.group(0)
        return None


@dataclass(frozen=True)
class RuleSet:
    """An ordered catalog of rules producing findings of one kind."""

    kind: FindingKind
    rules: tuple[DetectionRule, ...]
    confidence: int
    layer: DetectionLayer = DetectionLayer.DETERMINISTIC
    mask_excerpts: bool = False
    excerpt_limit: int = 30

    def rule_for(self, sub_kind: str) -> DetectionRule | None:
        for rule in self.rules:
            if rule.sub_kind == sub_kind:
                return rule
        return None


def mask_excerpt(matched: str, limit: int, mask: bool) -> str:
    """Truncate a match and optionally mask everything past a short prefix."""
    excerpt = matched[:limit]
    if mask:
        chars = []
        seen = 0
        for ch in excerpt:
            if ch.isalnum():
                seen += 1
                chars.append(ch if seen <= _VISIBLE_PREFIX else "*")
            else:
                chars.append(ch)
        excerpt = "".join(chars)
    if len(matched) > limit:
        excerpt += "***"
    return excerpt


def evaluate(text: str, rule_set: RuleSet) -> list[DetectionFinding]:
    """Evaluate every rule in declared order; at most one finding per rule."""
    findings: list[DetectionFinding] = []
    if not text:
        return findings

    for rule in rule_set.rules:
        matched = rule.first_match(text)
        if matched is None:
            continue
        findings.append(
            DetectionFinding(
                kind=rule_set.kind,
                sub_kind=rule.sub_kind,
                severity=rule.severity,
                human_message=rule.human_message,
                matched_excerpt=mask_excerpt(
                    matched, rule_set.excerpt_limit, rule_set.mask_excerpts
                ),
                confidence=rule_set.confidence,
                layer=rule_set.layer,
            )
        )
    return findings


def count_matches(text: str, patterns: tuple[re.Pattern[str], ...]) -> int:
    """Total number of non-overlapping matches across all patterns."""
    return sum(len(p.findall(text)) for p in patterns)
