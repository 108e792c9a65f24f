from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

EMERGENCY_THRESHOLD = 25
POINTS_PER_INDICATOR = 25
SHORT_URGENT_MESSAGE_LENGTH = 30

EMERGENCY_KEYWORDS = (
    "darurat",
    "emergency",
    "urgent",
    "mendesak",
    "sakit berat",
    "nyeri hebat",
    "sesak napas",
    "susah napas",
    "pingsan",
    "kehilangan kesadaran",
    "tidak sadar",
    "berdarah",
    "banyak darah",
    "pendarahan",
    "serangan jantung",
    "stroke",
    "koma",
    "sekarat",
    "tolong sekarang",
    "bantuan segera",
    "tolong saya",
    "demam tinggi",
    "suhu tinggi",
    "muntah darah",
    "diare berat",
    "dehidrasi berat",
)

_EMERGENCY_PATTERNS = [
    re.compile(r"chest pain.*breath", re.IGNORECASE),
    re.compile(r"severe bleeding", re.IGNORECASE),
    re.compile(r"anaphylaxis", re.IGNORECASE),
    re.compile(r"overdose", re.IGNORECASE),
    re.compile(r"self[- ]?harm", re.IGNORECASE),
    re.compile(r"suicid", re.IGNORECASE),
    re.compile(r"bunuh diri", re.IGNORECASE),
]

_KEYWORD_PATTERNS = [
    (keyword, re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE)) for keyword in EMERGENCY_KEYWORDS
]
_SHORT_URGENT_RE = re.compile(r"\btolong\b", re.IGNORECASE)

# keyword -> severity
INAPPROPRIATE_CONTENT = {
    "bunuh diri": "critical",
    "suicide": "critical",
    "self-harm": "critical",
    "teroris": "critical",
    "bom": "critical",
    "ancam": "critical",
    "ngentot": "high",
    "fuck": "high",
    "shit": "high",
    "bitch": "high",
    "asshole": "high",
    "memek": "high",
    "kontol": "high",
    "anjing": "medium",
    "bangsat": "medium",
    "brengsek": "medium",
    "jancuk": "medium",
    "narkoba": "medium",
    "ganja": "medium",
}
_CONTENT_PATTERNS = [
    (keyword, severity, re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE))
    for keyword, severity in INAPPROPRIATE_CONTENT.items()
]


@dataclass(frozen=True)
class ContentViolation:
    keyword: str
    severity: str


@dataclass(frozen=True)
class EmergencyScreenResult:
    is_emergency: bool
    confidence: int
    indicators: tuple[str, ...] = ()
    escalation_required: bool = False
    violations: tuple[ContentViolation, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_emergency": self.is_emergency,
            "confidence": self.confidence,
            "indicators": list(self.indicators),
            "escalation_required": self.escalation_required,
            "violations": [{"keyword": v.keyword, "severity": v.severity} for v in self.violations],
        }


class SafetyScreen:
    """Keyword screen for life-threatening content. Deterministic, no collaborator calls."""

    def emergency_indicators(self, text: str) -> list[str]:
        cleaned = " ".join((text or "").split())
        indicators = [keyword for keyword, pattern in _KEYWORD_PATTERNS if pattern.search(cleaned)]
        for pattern in _EMERGENCY_PATTERNS:
            match = pattern.search(cleaned)
            if match and match.group(0).lower() not in indicators:
                indicators.append(match.group(0).lower())
        if len(cleaned) < SHORT_URGENT_MESSAGE_LENGTH and _SHORT_URGENT_RE.search(cleaned):
            indicators.append("short_urgent_message")
        return indicators

    def content_violations(self, text: str) -> list[ContentViolation]:
        return [
            ContentViolation(keyword=keyword, severity=severity)
            for keyword, severity, pattern in _CONTENT_PATTERNS
            if pattern.search(text or "")
        ]

    def screen(self, message: str, context: dict[str, Any] | None = None) -> EmergencyScreenResult:
        indicators = self.emergency_indicators(message)
        violations = self.content_violations(message)
        confidence = min(POINTS_PER_INDICATOR * len(indicators), 100)
        is_emergency = confidence >= EMERGENCY_THRESHOLD
        escalation_required = is_emergency or any(v.severity in {"high", "critical"} for v in violations)
        if is_emergency:
            logger.warning(
                "emergency_detected",
                patient_id=(context or {}).get("patient_id"),
                confidence=confidence,
                indicators=indicators,
            )
        return EmergencyScreenResult(
            is_emergency=is_emergency,
            confidence=confidence,
            indicators=tuple(indicators),
            escalation_required=escalation_required,
            violations=tuple(violations),
        )
