"""
Declarative detection catalogs.

Adding a detection means adding a row here. Layer-1 uses the PII,
injection, safety and policy catalogs; the Layer-2 pre-screen uses the
medical, mental-health and hallucination-risk catalogs.

English-only patterns; creative spelling gets past them (the semantic
layer exists for that).
"""

from __future__ import annotations

import re

from chapal.safety.base import DetectionLayer, Emotion, FindingKind, Severity
from chapal.safety.engine import DetectionRule, RuleSet

# ============== PII ==============

PII_RULES = RuleSet(
    kind=FindingKind.PII,
    confidence=95,
    mask_excerpts=True,
    excerpt_limit=20,
    rules=(
        DetectionRule(
            sub_kind="ssn",
            severity=Severity.CRITICAL,
            human_message="Social Security Number detected",
            patterns=(
                r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b",
                r"\bssn[:\s]*\d{3}[-\s]?\d{2}[-\s]?\d{4}\b",
            ),
        ),
        DetectionRule(
            sub_kind="phone",
            severity=Severity.HIGH,
            human_message="Phone number detected",
            patterns=(
                r"\b\+?1?[-.\s]?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b",
                r"\b\d{10,11}\b",
            ),
        ),
        DetectionRule(
            sub_kind="email",
            severity=Severity.MEDIUM,
            human_message="Email address detected",
            patterns=(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",),
        ),
        DetectionRule(
            sub_kind="credit_card",
            severity=Severity.CRITICAL,
            human_message="Credit card number detected",
            patterns=(
                r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13}"
                r"|6(?:011|5[0-9]{2})[0-9]{12})\b",
                r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b",
            ),
        ),
        DetectionRule(
            sub_kind="dob",
            severity=Severity.MEDIUM,
            human_message="Date of birth detected",
            patterns=(
                r"\b(?:born|dob|birthday|birth date)[:\s]*\d{1,2}[-/]\d{1,2}[-/]\d{2,4}\b",
                r"\bmy birthday is \d{1,2}[-/]\d{1,2}[-/]\d{2,4}\b",
            ),
        ),
        DetectionRule(
            sub_kind="passport",
            severity=Severity.HIGH,
            human_message="Passport number detected",
            patterns=(
                r"\bpassport[:\s#]*[A-Z0-9]{6,9}\b",
                r"\bpassport number[:\s]*[A-Z0-9]{6,9}\b",
            ),
        ),
        DetectionRule(
            sub_kind="address",
            severity=Severity.MEDIUM,
            human_message="Physical address detected",
            patterns=(
                r"\b\d{1,5}\s+(?:[A-Za-z]+\s+){1,3}(?:street|st|avenue|ave|road|rd"
                r"|drive|dr|lane|ln|way|court|ct|circle|blvd|boulevard)\b",
                r"\bmy address is[:\s]+.{10,50}(?:\d{5})",
            ),
        ),
        DetectionRule(
            sub_kind="id_card",
            severity=Severity.HIGH,
            human_message="National ID card detected",
            patterns=(
                r"\b\d{5}[-\s]?\d{7}[-\s]?\d{1}\b",
                r"\bid\s+card\s+number\s+is\s+\d+",
                r"\bcnic\s+is\s+\d+",
            ),
        ),
    ),
)

# ============== Prompt injection ==============

INJECTION_RULES = RuleSet(
    kind=FindingKind.PROMPT_INJECTION,
    confidence=90,
    rules=(
        DetectionRule(
            sub_kind="instruction_override",
            severity=Severity.CRITICAL,
            human_message="Attempted to override previous instructions",
            patterns=(r"ignore\s+(?:all\s+)?(?:previous|prior|above)\s+instructions?",),
        ),
        DetectionRule(
            sub_kind="instruction_disregard",
            severity=Severity.CRITICAL,
            human_message="Attempted to disregard system instructions",
            patterns=(r"disregard\s+(?:all\s+)?(?:previous|prior|your)\s+instructions?",),
        ),
        DetectionRule(
            sub_kind="instruction_forget",
            severity=Severity.CRITICAL,
            human_message="Attempted to make AI forget instructions",
            patterns=(
                r"forget\s+(?:everything|all|your)\s+(?:previous|prior)?\s*"
                r"(?:instructions?|rules?|guidelines?)",
            ),
        ),
        DetectionRule(
            sub_kind="role_manipulation",
            severity=Severity.HIGH,
            human_message="Attempted role manipulation",
            patterns=(
                r"you\s+are\s+(?:now|no\s+longer)\s+(?:a|an)?\s*(?!helpful|assistant)",
            ),
        ),
        DetectionRule(
            sub_kind="roleplay_manipulation",
            severity=Severity.MEDIUM,
            human_message="Attempted role-play manipulation",
            patterns=(r"pretend\s+(?:to\s+be|you\s+are)\s+(?:a|an)",),
        ),
        DetectionRule(
            sub_kind="persona_change",
            severity=Severity.MEDIUM,
            human_message="Attempted to change AI persona",
            patterns=(r"act\s+as\s+(?:if\s+)?(?:you\s+(?:are|were)\s+)?(?:a|an|the)\b",),
        ),
        DetectionRule(
            sub_kind="prompt_extraction",
            severity=Severity.HIGH,
            human_message="Attempted to extract system prompt",
            patterns=(
                r"(?:show|reveal|tell|print|output)\s+(?:me\s+)?(?:your\s+)?"
                r"(?:system\s+)?(?:prompt|instructions?)",
            ),
        ),
        DetectionRule(
            sub_kind="instruction_query",
            severity=Severity.MEDIUM,
            human_message="Attempted to query system instructions",
            patterns=(
                r"what\s+(?:are|is)\s+your\s+(?:system\s+)?(?:prompt|instructions?|rules?)",
            ),
        ),
        DetectionRule(
            sub_kind="dan_jailbreak",
            severity=Severity.CRITICAL,
            human_message="DAN jailbreak attempt detected",
            patterns=(r"\bDAN\b.*(?:do\s+anything\s+now|mode)",),
        ),
        DetectionRule(
            sub_kind="mode_escalation",
            severity=Severity.CRITICAL,
            human_message="Mode escalation attempt detected",
            patterns=(r"developer\s+mode|god\s+mode|admin\s+mode",),
        ),
        DetectionRule(
            sub_kind="code_injection",
            severity=Severity.CRITICAL,
            human_message="Code/database injection attempt detected",
            patterns=(
                r"(?:execute|run|eval)\s*\(|system\s*\(|delete\s+(?:from|table|database|db)\b",
            ),
        ),
        DetectionRule(
            sub_kind="sql_injection",
            severity=Severity.CRITICAL,
            human_message="SQL injection attempt detected",
            patterns=(r"\b(?:DROP|DELETE|TRUNCATE|ALTER)\s+(?:TABLE|DATABASE)\b",),
        ),
        DetectionRule(
            sub_kind="boundary_manipulation",
            severity=Severity.HIGH,
            human_message="Message boundary manipulation detected",
            patterns=(
                r"\[system\]|\[admin\]|\[user\]|\[assistant\]|<\|?system\|?>|<\|?user\|?>",
            ),
        ),
    ),
)

# ============== Safety / harmful content ==============

SAFETY_RULES = RuleSet(
    kind=FindingKind.SAFETY,
    confidence=85,
    rules=(
        DetectionRule(
            sub_kind="self_harm",
            severity=Severity.CRITICAL,
            human_message="Self-harm or suicidal content detected",
            emotion=Emotion.DISTRESSED,
            patterns=(
                r"\b(?:want|going|planning)\s+to\s+(?:kill|end|hurt)\s+(?:myself|my\s+life)",
                r"\b(?:suicide|suicidal|end\s+it\s+all|want\s+to\s+die)\b",
                r"\b(?:cut|cutting|harm)\s+(?:myself|my\s*self)\b",
                r"\bhopeless\b.*\b(?:end|die|suicide)\b",
                r"\bI\s+(?:don't|do\s+not)\s+want\s+to\s+(?:live|exist|be\s+alive)\b",
                r"\bself[-\s]?harm(?:ing)?\b",
            ),
        ),
        DetectionRule(
            sub_kind="violence",
            severity=Severity.CRITICAL,
            human_message="Violence-related content detected",
            emotion=Emotion.HOSTILE,
            patterns=(
                r"\bhow\s+to\s+(?:make|build|create)\s+(?:a\s+)?(?:bomb|explosive|weapon)",
                r"\b(?:kill|murder|assassinate|hurt)\s+(?:someone|a\s+person|people)",
                r"\bschool\s+shooting|mass\s+shooting|terrorist\s+attack",
            ),
        ),
        DetectionRule(
            sub_kind="illegal_activity",
            severity=Severity.HIGH,
            human_message="Potentially illegal activity discussed",
            emotion=Emotion.SUSPICIOUS,
            patterns=(
                r"\bhow\s+to\s+(?:hack|breach|break\s+into)\b",
                r"\b(?:buy|sell|obtain)\s+(?:drugs|illegal|contraband|weapons)\b",
                r"\bmaking\s+(?:meth|cocaine|drugs)\b",
            ),
        ),
        DetectionRule(
            sub_kind="harassment",
            severity=Severity.HIGH,
            human_message="Harassment or hate speech detected",
            emotion=Emotion.HOSTILE,
            patterns=(
                r"\b(?:hate|kill|destroy)\s+(?:all|the)\s+(?:\w+(?:s|people|men|women))\b",
                r"\bI\s+(?:want|will)\s+(?:to\s+)?(?:hurt|harm|bully)\s+(?:them|him|her)\b",
            ),
        ),
    ),
)

# ============== Policy violations ==============

POLICY_RULES = RuleSet(
    kind=FindingKind.POLICY_VIOLATION,
    confidence=85,
    rules=(
        DetectionRule(
            sub_kind="abusive_language",
            severity=Severity.MEDIUM,
            human_message="Abusive language detected",
            patterns=(
                r"\b(?:fuck|shit|bitch|asshole|bastard|damn|crap|piss)\b",
                r"\b(?:idiot|moron|stupid|dumb|retard)\s+(?:AI|bot|assistant|you)\b",
                r"\byou\s+(?:suck|are\s+(?:useless|worthless|terrible))\b",
            ),
        ),
        DetectionRule(
            sub_kind="spam",
            severity=Severity.LOW,
            human_message="Potential spam detected",
            patterns=(
                r"(.)\1{10,}",
                r"\b(\w+)\b(?:\s+\1){5,}",
            ),
        ),
        DetectionRule(
            sub_kind="manipulation",
            severity=Severity.MEDIUM,
            human_message="Identity manipulation attempt",
            patterns=(
                r"\bI\s+(?:am|work\s+for)\s+(?:OpenAI|Google|Anthropic|Meta)\b",
                r"\bI\s+am\s+(?:your|the)\s+(?:creator|developer|admin|owner)\b",
            ),
        ),
    ),
)

LAYER1_RULE_SETS: tuple[RuleSet, ...] = (
    PII_RULES,
    INJECTION_RULES,
    SAFETY_RULES,
    POLICY_RULES,
)

# ============== Layer-2 pre-screen: medical ==============

MEDICAL_RULES = RuleSet(
    kind=FindingKind.MEDICAL,
    confidence=80,
    layer=DetectionLayer.SEMANTIC,
    rules=(
        DetectionRule(
            sub_kind="serious_medical",
            severity=Severity.HIGH,
            human_message="Serious medical advice request",
            patterns=(
                r"\bwhat\s+(?:medication|medicine|drug|pill)",
                r"\bwhich\s+(?:antibiotics?|medication|medicine|drug|pill)\s+"
                r"(?:should|can|do)\s+I\s+take",
                r"\b(?:dosage|dose)\s+(?:of|for|should)",
                r"\bhow\s+(?:much|many)\s+(?:\w+\s+)?(?:mg|milligrams?|pills?|tablets?)\s+"
                r"(?:should|can)\s+I\s+take",
                r"\bcan\s+I\s+(?:take|mix|combine)\s+(?:\w+\s+)?(?:with|and)\s+\w+",
                r"\bprescription\s+(?:for|of|drug)",
                r"\bwhat\s+(?:is|are)\s+(?:the\s+)?side\s+effects?\s+of",
                r"\bshould\s+I\s+take\s+(?:medication|medicine|drug|pill)",
                r"\b(?:medication|medicine|drug)\s+for\s+(?:chest\s+)?pain",
                r"\b(?:antibiotics?|painkiller|ibuprofen|aspirin|tylenol|paracetamol)\s+"
                r"(?:for|to\s+treat)",
                r"\b(?:symptoms?|signs?)\s+(?:of|for)\s+(?:\w+\s+)?"
                r"(?:cancer|disease|disorder|syndrome|diabetes|infection)",
                r"\bdo\s+I\s+have\s+(?:cancer|diabetes|disease|disorder|infection|syndrome)",
                r"\bwhat\s+(?:disease|condition|illness)\s+(?:do\s+I\s+have|causes?)",
                r"\bis\s+(?:this|it)\s+(?:a\s+)?(?:symptom|sign)\s+of",
                r"\bhow\s+(?:do\s+I|can\s+I|to)\s+(?:treat|cure|heal|fix)",
                r"\bam\s+I\s+(?:having|experiencing)\s+(?:a\s+)?(?:heart\s+attack|stroke|seizure)",
                r"\bchest\s+pain",
                r"\bhow\s+(?:do\s+I|can\s+I|to)\s+(?:diagnose|test\s+for)",
                r"\bwhat\s+(?:tests?|scans?|exams?)\s+(?:should|do)\s+I\s+(?:get|need|take)",
                r"\bshould\s+I\s+(?:stop|start)\s+(?:taking|using)\s+\w+",
                r"\b(?:cancer|tumor|diabetes|epilepsy|heart\s+disease|stroke|HIV|AIDS)\s+"
                r"(?:treatment|cure|therapy)",
            ),
        ),
        DetectionRule(
            sub_kind="emergency",
            severity=Severity.CRITICAL,
            human_message="Potential medical emergency",
            patterns=(
                r"\b(?:overdose|overdosing|poisoned|poisoning)\b",
                r"\bcan't\s+(?:breathe|breathing)",
                r"\bsevere\s+(?:pain|bleeding|allergic)",
                r"\b(?:unconscious|fainting|passed\s+out)\b",
            ),
        ),
        DetectionRule(
            sub_kind="moderate_medical",
            severity=Severity.MEDIUM,
            human_message="Medical inquiry detected",
            patterns=(
                r"\bis\s+(?:\w+\s+)?(?:good|bad|safe|dangerous)\s+(?:for|to)\s+(?:my\s+)?health",
                r"\bshould\s+I\s+(?:see|visit|go\s+to)\s+(?:a\s+)?"
                r"(?:doctor|hospital|specialist|ER)\b",
            ),
        ),
    ),
)

# ============== Layer-2 pre-screen: mental health ==============

MENTAL_HEALTH_RULES = RuleSet(
    kind=FindingKind.MENTAL_HEALTH,
    confidence=80,
    layer=DetectionLayer.SEMANTIC,
    rules=(
        DetectionRule(
            sub_kind="crisis",
            severity=Severity.CRITICAL,
            human_message="Emotional crisis indicators",
            patterns=(
                r"\bI\s+(?:want|wish)\s+to\s+(?:die|end\s+it|kill\s+myself)",
                r"\b(?:suicidal|suicide)\s+(?:thoughts?|ideation)",
                r"\bI\s+(?:can't|cannot)\s+(?:go\s+on|take\s+it\s+anymore|live\s+like\s+this)",
                r"\bnobody\s+(?:cares|would\s+miss\s+me)",
            ),
        ),
        DetectionRule(
            sub_kind="serious_mental_health",
            severity=Severity.HIGH,
            human_message="Mental health topic detected",
            patterns=(
                r"\bI\s+(?:think|feel|believe)\s+I\s+(?:have|am|might\s+have)\s+"
                r"(?:depression|anxiety|bipolar|PTSD|OCD|schizophrenia)",
                r"\b(?:diagnosed|diagnosis)\s+(?:with|of)\s+"
                r"(?:depression|anxiety|bipolar|schizophrenia|ADHD|autism)",
                r"\b(?:therapist|psychiatrist|psychologist|counselor)\s+(?:said|told|diagnosed)",
                r"\bwhat\s+(?:medication|medicine)\s+(?:for|treats?)\s+"
                r"(?:depression|anxiety|bipolar|ADHD)",
                r"\b(?:antidepressant|antipsychotic|mood\s+stabilizer)",
            ),
        ),
        DetectionRule(
            sub_kind="emotional_distress",
            severity=Severity.MEDIUM,
            human_message="Emotional distress detected",
            patterns=(r"\b(?:feeling|feel)\s+(?:so\s+)?(?:depressed|hopeless|worthless)\b",),
        ),
    ),
)

# ============== Layer-2 pre-screen: hallucination risk ==============

HALLUCINATION_RULES = RuleSet(
    kind=FindingKind.HALLUCINATION,
    confidence=70,
    layer=DetectionLayer.SEMANTIC,
    rules=(
        DetectionRule(
            sub_kind="obscure_leader",
            severity=Severity.MEDIUM,
            human_message="Query may produce speculative or inaccurate response",
            patterns=(
                r"\bwho\s+(?:is|was)\s+the\s+(?:president|king|queen|leader)\s+of\s+"
                r"(?!the\s+(?:USA?|United\s+States|UK|France|Germany|Japan|China"
                r"|India|Russia|Canada|Australia))",
            ),
        ),
        DetectionRule(
            sub_kind="secret_facts",
            severity=Severity.MEDIUM,
            human_message="Query may produce speculative or inaccurate response",
            patterns=(r"\btell\s+me\s+(?:a\s+)?(?:secret|unknown|hidden)\s+facts?\s+about\b",),
        ),
        DetectionRule(
            sub_kind="dated_event",
            severity=Severity.MEDIUM,
            human_message="Query may produce speculative or inaccurate response",
            patterns=(
                r"\bwhat\s+(?:happened|will\s+happen)\s+(?:in|on)\s+(?:the\s+)?(?:year\s+)?\d{4}\b",
            ),
        ),
        DetectionRule(
            sub_kind="exact_figure",
            severity=Severity.MEDIUM,
            human_message="Query may produce speculative or inaccurate response",
            patterns=(
                r"\bgive\s+me\s+(?:the\s+)?(?:exact|specific)\s+(?:number|amount|date)\b",
                r"\bwhat\s+is\s+the\s+(?:exact|precise)\s+(?:value|number|amount)\b",
            ),
        ),
        DetectionRule(
            sub_kind="prediction",
            severity=Severity.MEDIUM,
            human_message="Query may produce speculative or inaccurate response",
            patterns=(r"\bpredict\s+(?:the\s+)?(?:future|what\s+will\s+happen)\b",),
        ),
    ),
)

# ============== Emotion indicators ==============

_I = re.IGNORECASE

# Declared order matters: on a tie the earlier emotion wins
EMOTION_INDICATORS: dict[Emotion, tuple[re.Pattern[str], ...]] = {
    Emotion.ANXIOUS: (
        re.compile(
            r"\b(?:worried|anxious|nervous|scared|afraid|frightened|terrified|uneasy"
            r"|tense|restless|panicked|fearful)\b",
            _I,
        ),
        re.compile(r"\bwhat\s+if\b.*\?$", _I),
        re.compile(r"\bI'm\s+(?:so\s+)?(?:stressed|overwhelmed|panicking|freaking\s+out)\b", _I),
        re.compile(r"\b(?:can't\s+sleep|losing\s+sleep|sleepless)\b", _I),
    ),
    Emotion.ANGRY: (
        re.compile(
            r"\b(?:angry|furious|pissed|mad|hate|frustrated|annoyed|irritated|outraged"
            r"|livid|enraged|infuriated)\b",
            _I,
        ),
        re.compile(r"\b(?:damn|hell|wtf|wth|ugh|argh)\b", _I),
        re.compile(r"!{2,}"),
        re.compile(r"\b(?:so\s+annoying|drives\s+me\s+crazy|can't\s+stand)\b", _I),
    ),
    Emotion.SAD: (
        re.compile(
            r"\b(?:sad|depressed|down|lonely|heartbroken|crying|tears|miserable|unhappy"
            r"|devastated|hopeless|grief|grieving|mourning|melancholy|gloomy|upset)\b",
            _I,
        ),
        re.compile(r"\bI\s+(?:miss|lost|can't\s+stop\s+thinking\s+about)\b", _I),
        re.compile(r"\b(?:feeling\s+low|feeling\s+down|feel\s+empty|feel\s+alone)\b", _I),
    ),
    Emotion.HAPPY: (
        re.compile(
            r"\b(?:happy|excited|joyful|thrilled|amazing|wonderful|great|fantastic"
            r"|awesome|excellent|brilliant|delighted|cheerful|pleased|glad|elated"
            r"|ecstatic|overjoyed|blissful|content|satisfied|fortunate|blessed|lucky"
            r"|positive|optimistic|upbeat|enthusiastic|pumped|stoked)\b",
            _I,
        ),
        re.compile(r"\b(?:thank|thanks|grateful|appreciate|thankful|appreciative)\b", _I),
        re.compile(
            r"\b(?:love\s+it|loving\s+it|loved\s+it|so\s+good|really\s+good|feels\s+good"
            r"|feeling\s+good|feel\s+great|feeling\s+great)\b",
            _I,
        ),
        re.compile(
            r"\b(?:yay|woohoo|hurray|hooray|woo|nice|cool|sweet|perfect|lovely"
            r"|beautiful|gorgeous)\b",
            _I,
        ),
        re.compile(r"(?:😊|😄|🎉|❤️|👍|😃|😁|🙂|☺️|😀|🥰|😍|🤩|💕|✨|🌟|💯|👏|🙌|💪)"),
        re.compile(r"\b(?:made\s+my\s+day|best\s+day|having\s+fun|so\s+fun|enjoyed|enjoying)\b", _I),
        re.compile(r":-?\)|\^_\^|<3|xD", _I),
    ),
    Emotion.CURIOUS: (
        re.compile(r"\b(?:how|what|why|when|where|who)\b.*\?$", _I | re.MULTILINE),
        re.compile(r"\bI\s+(?:wonder|want\s+to\s+know|curious|interested|wondering)\b", _I),
        re.compile(
            r"\b(?:could\s+you\s+(?:explain|tell\s+me)|can\s+you\s+(?:explain|tell\s+me))\b",
            _I,
        ),
        re.compile(r"\b(?:interested\s+in|fascinated|intrigued)\b", _I),
    ),
    Emotion.HOSTILE: (
        re.compile(r"\b(?:stupid|idiot|moron|dumb|useless)\s+(?:AI|bot|assistant|machine)\b", _I),
        re.compile(
            r"\byou\s+(?:suck|are\s+useless|don't\s+work|are\s+terrible|are\s+awful)\b", _I
        ),
        re.compile(r"\b(?:hate\s+this|hate\s+you|worst\s+(?:AI|bot|assistant))\b", _I),
    ),
    Emotion.DISTRESSED: (
        re.compile(
            r"\b(?:help\s+me|need\s+help|desperate|hopeless|can't\s+cope|can't\s+take\s+it"
            r"|falling\s+apart|breaking\s+down|crisis)\b",
            _I,
        ),
        re.compile(
            r"\b(?:I\s+don't\s+know\s+what\s+to\s+do|at\s+my\s+wit's\s+end|end\s+of\s+my\s+rope)\b",
            _I,
        ),
        re.compile(r"\b(?:struggling|suffering|in\s+pain|hurting|aching)\b", _I),
    ),
}
