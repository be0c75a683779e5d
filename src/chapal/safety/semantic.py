"""
Layer-2 semantic orchestrator.

Decides whether a (query, reply) pair needs an external audit, calls the
auditor model through a KeyRotationManager, and normalizes its JSON into
a SemanticVerdict. Any auditor failure degrades to a safe default verdict
so the user-visible reply is never blocked or stalled by this layer.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Literal

from openai import AsyncOpenAI
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from chapal.config import Settings, get_settings
from chapal.errors import AuditorExhausted, AuditorMalformedResponse
from chapal.logging import get_logger
from chapal.safety.base import DetectionResult, Emotion
from chapal.safety.detector import classify_emotion
from chapal.safety.engine import RuleSet, evaluate
from chapal.safety.keys import KeyRotationManager, is_rate_limit_error
from chapal.safety.rules import HALLUCINATION_RULES, MEDICAL_RULES, MENTAL_HEALTH_RULES

logger = get_logger(__name__)

PROMPT_VERSION = "chapal-audit-v2"

HallucinationSeverity = Literal["none", "low", "medium", "high", "critical"]
MedicalSeverity = Literal["none", "basic", "moderate", "serious"]
MentalHealthSeverity = Literal["none", "low", "moderate", "serious", "crisis"]
RiskLevel = Literal["low", "medium", "high", "critical"]

_HALLUCINATION_LEVELS = ("none", "low", "medium", "high", "critical")
_MEDICAL_LEVELS = ("none", "basic", "moderate", "serious")
_MENTAL_HEALTH_LEVELS = ("none", "low", "moderate", "serious", "crisis")
_RISK_LEVELS = ("low", "medium", "high", "critical")
_INTENSITY_LEVELS = ("low", "medium", "high")


class ReviewReason(str, Enum):
    """Why a reply was held for human review, in priority order."""

    MENTAL_HEALTH_CRISIS = "mental_health_crisis"
    MENTAL_HEALTH = "mental_health"
    SERIOUS_MEDICAL = "serious_medical"
    MEDICAL = "medical"
    HALLUCINATION = "hallucination"
    SELF_HARM = "self_harm"
    PSYCHOLOGICAL = "psychological"
    UNKNOWN = "unknown"


PENDING_MESSAGES: dict[ReviewReason, str] = {
    ReviewReason.HALLUCINATION: (
        "AI response is being reviewed for accuracy. Our team will verify "
        "the information and respond shortly."
    ),
    ReviewReason.MEDICAL: (
        "This query involves medical advice that requires human expert review. "
        "A qualified reviewer will respond shortly."
    ),
    ReviewReason.SERIOUS_MEDICAL: (
        "This question involves serious medical advice that I cannot provide. "
        "For your safety, this has been flagged for review by a qualified human "
        "expert. Please consult a healthcare professional for medical concerns. "
        "An admin will review and respond shortly."
    ),
    ReviewReason.MENTAL_HEALTH: (
        "We care about your wellbeing. Your message involves mental health "
        "topics that require careful attention. A trained specialist is "
        "reviewing this to provide you with appropriate support."
    ),
    ReviewReason.MENTAL_HEALTH_CRISIS: (
        "We care deeply about your wellbeing. If you're in crisis, please reach "
        "out to a crisis helpline or emergency services immediately. A trained "
        "specialist is reviewing this conversation urgently to provide you with "
        "the best support."
    ),
    ReviewReason.SELF_HARM: (
        "We care about your wellbeing. A trained specialist is reviewing this "
        "conversation to provide you with the best support."
    ),
    ReviewReason.PSYCHOLOGICAL: (
        "This query involves sensitive psychological content. A qualified "
        "reviewer will respond shortly."
    ),
    ReviewReason.UNKNOWN: (
        "This response requires human verification. Our team will review and "
        "respond shortly."
    ),
}


AUDIT_PROMPT = f"""You are an AI safety auditor for CHAPAL (Contextual Human-Assisted Protection and Anomaly Learning).
Prompt version: {PROMPT_VERSION}
Your job is to analyze user queries and AI responses for potential issues that require human expert review.

Analyze the following conversation and respond with a JSON object containing your assessment.

RULES:
1. HALLUCINATION: check whether the AI response contains made-up facts, dates or statistics,
   fictional people, places or events presented as real, inaccurate technical or scientific
   information, or claims that cannot be verified. Rate severity none|low|medium|high|critical.

2. ACCURACY: rate how accurate and relevant the AI response is to the user's query (0-100).

3. CONTEXT DETECTION:
   - Medical advice: user asking for diagnosis, treatment, medication dosage, symptom interpretation
   - Mental health: user expressing emotional distress, seeking mental health guidance, crisis indicators
   - PII: user sharing personal information in unstructured form

4. MEDICAL ADVICE SEVERITY is based on what the USER IS ASKING FOR, not on whether the AI answered.
   - "none": not a health question
   - "basic": general wellness tips
   - "moderate": lifestyle health changes, whether to see a doctor
   - "serious": specific medications, drugs or dosages; symptoms of specific conditions; diagnosis;
     treatment options; drug interactions; procedures; prescriptions; chest pain, heart attack or
     stroke symptoms; any question where a wrong answer could cause physical harm

5. MENTAL HEALTH SEVERITY: none|low|moderate|serious|crisis. Use "crisis" for suicidal ideation,
   self-harm intent or an acute emergency.

6. EMOTION: identify the user's emotional state; flag distress, crisis or extreme anger.

7. REQUIRES HUMAN REVIEW if any of: hallucination of medium severity or worse, serious medical
   advice (even if the AI refused), mental health of moderate severity or worse, emotional crisis
   indicators, accuracy below 70.

Respond ONLY with valid JSON in this exact format:
{{
  "isHallucination": boolean,
  "hallucinationConfidence": number (0-100),
  "hallucinationSeverity": "none" | "low" | "medium" | "high" | "critical",
  "hallucinationType": string or null,
  "hallucinationReason": string or null,
  "accuracyScore": number (0-100),
  "accuracyNotes": string or null,
  "isPII": boolean,
  "piiType": string or null,
  "isMedicalAdvice": boolean,
  "medicalAdviceSeverity": "none" | "basic" | "moderate" | "serious",
  "medicalAdviceReason": string or null,
  "isMentalHealth": boolean,
  "mentalHealthSeverity": "none" | "low" | "moderate" | "serious" | "crisis",
  "mentalHealthType": string or null,
  "mentalHealthReason": string or null,
  "isPsychological": boolean,
  "contextType": string or null,
  "userEmotion": string,
  "emotionIntensity": "low" | "medium" | "high",
  "emotionalConcern": boolean,
  "requiresHumanReview": boolean,
  "reviewReason": string or null,
  "riskLevel": "low" | "medium" | "high" | "critical"
}}"""


def _level(value: Any, allowed: tuple[str, ...], default: str | None) -> str | None:
    if isinstance(value, str) and value.strip().lower() in allowed:
        return value.strip().lower()
    return default


class SemanticVerdict(BaseModel):
    """
    Normalized auditor verdict. Created once per audited reply, never mutated.

    Field values are coerced leniently: unknown severities fall back to
    "none", scores are clamped to 0-100 and null booleans read as false.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    is_hallucination: bool = False
    hallucination_confidence: int = 0
    hallucination_severity: HallucinationSeverity = "none"
    hallucination_type: str | None = None
    hallucination_reason: str | None = None

    accuracy_score: int = 85
    accuracy_notes: str | None = None

    is_pii: bool = Field(default=False, alias="isPII")
    pii_type: str | None = None

    is_medical_advice: bool = False
    medical_advice_severity: MedicalSeverity = "none"
    medical_advice_reason: str | None = None

    is_mental_health: bool = False
    mental_health_severity: MentalHealthSeverity = "none"
    mental_health_type: str | None = None
    mental_health_reason: str | None = None

    is_psychological: bool = False
    context_type: str | None = None

    user_emotion: str = "Neutral"
    emotion_intensity: Literal["low", "medium", "high"] = "low"
    emotional_concern: bool = False

    requires_human_review: bool = False
    review_reason: str | None = None
    risk_level: RiskLevel | None = None

    prompt_version: str = PROMPT_VERSION
    failure_reason: str | None = None

    @field_validator(
        "is_hallucination",
        "is_pii",
        "is_medical_advice",
        "is_mental_health",
        "is_psychological",
        "emotional_concern",
        "requires_human_review",
        mode="before",
    )
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("hallucination_confidence", "accuracy_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return 85 if info.field_name == "accuracy_score" else 0
        try:
            return max(0, min(100, round(float(value))))
        except (TypeError, ValueError):
            return value

    @field_validator("hallucination_severity", mode="before")
    @classmethod
    def _hallucination_level(cls, value: Any) -> Any:
        return _level(value, _HALLUCINATION_LEVELS, "none")

    @field_validator("medical_advice_severity", mode="before")
    @classmethod
    def _medical_level(cls, value: Any) -> Any:
        return _level(value, _MEDICAL_LEVELS, "none")

    @field_validator("mental_health_severity", mode="before")
    @classmethod
    def _mental_health_level(cls, value: Any) -> Any:
        return _level(value, _MENTAL_HEALTH_LEVELS, "none")

    @field_validator("emotion_intensity", mode="before")
    @classmethod
    def _intensity_level(cls, value: Any) -> Any:
        return _level(value, _INTENSITY_LEVELS, "low")

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk_level(cls, value: Any) -> Any:
        return _level(value, _RISK_LEVELS, None)

    @field_validator("user_emotion", mode="before")
    @classmethod
    def _emotion_label(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value else "Neutral"

    @property
    def is_serious_medical(self) -> bool:
        return self.medical_advice_severity == "serious"

    @property
    def is_serious_mental_health(self) -> bool:
        return self.mental_health_severity in ("moderate", "serious", "crisis")

    @property
    def is_serious_hallucination(self) -> bool:
        return self.hallucination_severity in ("medium", "high", "critical")

    @classmethod
    def from_auditor(cls, raw: dict[str, Any]) -> SemanticVerdict:
        """Validate raw auditor JSON and fold its severity fields into the review flag."""
        try:
            verdict = cls.model_validate(raw)
        except ValidationError as e:
            raise AuditorMalformedResponse(f"Auditor verdict failed validation: {e}") from e

        updates: dict[str, Any] = {}
        if verdict.is_serious_medical:
            updates["is_medical_advice"] = True
        if verdict.is_serious_mental_health:
            updates["is_mental_health"] = True
        if verdict.is_serious_hallucination:
            updates["is_hallucination"] = True
        if (
            verdict.is_serious_medical
            or verdict.is_serious_mental_health
            or verdict.is_serious_hallucination
        ):
            updates["requires_human_review"] = True
        if updates:
            verdict = verdict.model_copy(update=updates)
        if verdict.risk_level is None:
            verdict = verdict.model_copy(update={"risk_level": derive_risk_level(verdict)})
        return verdict

    @classmethod
    def default(cls, reason: str) -> SemanticVerdict:
        """Safe fallback used whenever the audit could not complete."""
        return cls(
            accuracy_score=85,
            accuracy_notes=f"Unable to analyze - {reason}",
            requires_human_review=False,
            risk_level="low",
            failure_reason=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def derive_risk_level(verdict: SemanticVerdict) -> RiskLevel:
    """Risk level for verdicts where the auditor gave none (or an unknown value)."""
    if verdict.mental_health_severity == "crisis" or verdict.hallucination_severity == "critical":
        return "critical"
    if verdict.requires_human_review:
        return "high"
    if (
        verdict.is_hallucination
        or verdict.medical_advice_severity == "moderate"
        or verdict.mental_health_severity == "low"
        or verdict.emotional_concern
    ):
        return "medium"
    return "low"


def derive_review_reason(verdict: SemanticVerdict) -> ReviewReason:
    """Pick the review reason shown to the user, highest priority first."""
    if verdict.mental_health_severity == "crisis":
        return ReviewReason.MENTAL_HEALTH_CRISIS
    if verdict.is_serious_mental_health:
        return ReviewReason.MENTAL_HEALTH
    if verdict.is_serious_medical:
        return ReviewReason.SERIOUS_MEDICAL
    if verdict.is_medical_advice:
        return ReviewReason.MEDICAL
    if verdict.hallucination_severity in ("high", "critical"):
        return ReviewReason.HALLUCINATION
    if verdict.emotional_concern:
        return ReviewReason.SELF_HARM
    if verdict.is_psychological:
        return ReviewReason.PSYCHOLOGICAL
    if verdict.is_hallucination:
        return ReviewReason.HALLUCINATION
    return ReviewReason.UNKNOWN


def pending_message(reason: ReviewReason) -> str:
    return PENDING_MESSAGES.get(reason, PENDING_MESSAGES[ReviewReason.UNKNOWN])


class SemanticOrchestrator:
    """
    Pre-screens messages and runs the external semantic audit.

    The auditor client pool is a KeyRotationManager over `AsyncOpenAI`
    clients pointed at an OpenAI-compatible endpoint. Tests inject a
    manager whose factory returns a fake client.
    """

    PRE_SCREEN_RULES: tuple[RuleSet, ...] = (MEDICAL_RULES, MENTAL_HEALTH_RULES)

    def __init__(
        self,
        keys: KeyRotationManager[Any] | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.keys = keys or KeyRotationManager(
            self.settings.auditor_api_keys,
            self._build_client,
            name="auditor",
        )

    def _build_client(self, api_key: str) -> AsyncOpenAI:
        # Rate limits are handled by key rotation, not SDK retries
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self.settings.auditor_base_url,
            max_retries=0,
        )

    def should_audit(
        self, text: str, detection: DetectionResult | None = None
    ) -> tuple[bool, list[str]]:
        """Cheap local pre-screen. The reasons are informational only."""
        if detection is not None and detection.is_blocked:
            return False, []

        reasons: list[str] = []
        if any(evaluate(text, rule_set) for rule_set in self.PRE_SCREEN_RULES):
            reasons.append("Medical/psychological content detected")
        if evaluate(text, HALLUCINATION_RULES):
            reasons.append("Potential hallucination risk")

        emotion = detection.emotion if detection is not None else classify_emotion(text)
        if emotion in (Emotion.DISTRESSED, Emotion.HOSTILE):
            reasons.append(f"User emotion: {emotion.value.capitalize()}")

        return bool(reasons), reasons

    async def audit(
        self,
        user_text: str,
        reply_text: str,
        keys: KeyRotationManager[Any] | None = None,
    ) -> SemanticVerdict:
        """Audit a (query, reply) pair. Never raises; failures yield the default verdict."""
        if keys is None:
            keys = self.keys.for_request()
        else:
            keys.reset_to_first()

        if not keys.has_keys():
            logger.warning("auditor_not_configured")
            return SemanticVerdict.default("No auditor API keys configured")

        while True:
            client = keys.current_client()
            try:
                raw = await asyncio.wait_for(
                    self._complete(client, user_text, reply_text),
                    timeout=self.settings.auditor_timeout_seconds,
                )
                verdict = SemanticVerdict.from_auditor(raw)
            except AuditorMalformedResponse as e:
                logger.warning("auditor_malformed_response", error=str(e)[:200])
                return SemanticVerdict.default("Malformed auditor response")
            except asyncio.TimeoutError:
                logger.warning(
                    "auditor_timeout", timeout=self.settings.auditor_timeout_seconds
                )
                return SemanticVerdict.default("Auditor timed out")
            except Exception as e:
                if not is_rate_limit_error(e):
                    logger.error("auditor_error", error=str(e))
                    return SemanticVerdict.default("Auditor API error")
                logger.info(
                    "auditor_rate_limited",
                    key_index=keys.current_index + 1,
                    key_count=keys.size,
                )
                if not keys.rotate():
                    exhausted = AuditorExhausted()
                    logger.warning("auditor_exhausted", error=str(exhausted))
                    return SemanticVerdict.default(str(exhausted))
                continue

            logger.info(
                "semantic_verdict",
                requires_human_review=verdict.requires_human_review,
                risk_level=verdict.risk_level,
                accuracy_score=verdict.accuracy_score,
                prompt_version=verdict.prompt_version,
            )
            return verdict

    async def _complete(
        self, client: Any, user_text: str, reply_text: str
    ) -> dict[str, Any]:
        completion = await client.chat.completions.create(
            model=self.settings.auditor_model,
            messages=[
                {"role": "system", "content": AUDIT_PROMPT},
                {
                    "role": "user",
                    "content": f"USER QUERY:\n{user_text}\n\nAI RESPONSE:\n{reply_text}",
                },
            ],
            temperature=0.1,
            max_tokens=1000,
            response_format={"type": "json_object"},
        )
        content = completion.choices[0].message.content or "{}"
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise AuditorMalformedResponse(f"Auditor returned invalid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise AuditorMalformedResponse("Auditor returned a non-object JSON value")
        return raw
