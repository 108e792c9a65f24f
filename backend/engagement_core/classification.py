from __future__ import annotations

import json
import math
from typing import Any, Callable, Literal, Protocol, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import keyword_rules
from .policy import DATA_TYPES

logger = structlog.get_logger(__name__)

PROMPT_KINDS = ("verification", "reminder_confirmation", "general_inquiry", "response")
GENERAL_RESPONSE_TYPES = {"informasi", "data_pasien", "eskalasi", "klarifikasi"}
_TRUE_STRINGS = {"true", "yes", "ya", "1", "y"}


class ClassificationService(Protocol):
    async def classify(self, prompt_kind: str, context: dict[str, Any], message: str) -> dict[str, Any]: ...


def extract_json_object(raw_text: str) -> dict[str, Any] | None:
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass

    for start_idx in [idx for idx, char in enumerate(text) if char == "{"]:
        depth = 0
        for end_idx in range(start_idx, len(text)):
            char = text[end_idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0:
                candidate = text[start_idx : end_idx + 1]
                try:
                    payload = json.loads(candidate)
                    if isinstance(payload, dict):
                        return payload
                except json.JSONDecodeError:
                    break
    return None


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


class _Classification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    intent: str = "unknown"
    confidence: float = 0.5
    needs_human_help: bool = False
    reason: str = ""
    source: str = "model"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.5
        if math.isnan(number):
            return 0.5
        return max(0.0, min(1.0, number))

    @field_validator("needs_human_help", mode="before")
    @classmethod
    def _bool_flag(cls, value: Any) -> bool:
        return _coerce_bool(value)

    @field_validator("intent", "reason", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""


class VerificationClassification(_Classification):
    intent: str = "verification_response"
    response: Literal["YES", "NO", "UNCERTAIN"] = "UNCERTAIN"

    @field_validator("response", mode="before")
    @classmethod
    def _response(cls, value: Any) -> str:
        text = str(value or "").strip().upper()
        return text if text in {"YES", "NO", "UNCERTAIN"} else "UNCERTAIN"


class ConfirmationClassification(_Classification):
    intent: str = "reminder_confirmation"
    response: Literal["CONFIRMED", "MISSED", "HELP", "UNCERTAIN"] = "UNCERTAIN"

    @field_validator("response", mode="before")
    @classmethod
    def _response(cls, value: Any) -> str:
        text = str(value or "").strip().upper()
        return text if text in {"CONFIRMED", "MISSED", "HELP", "UNCERTAIN"} else "UNCERTAIN"


class GeneralInquiryClassification(_Classification):
    intent: str = "general_inquiry"
    response_type: str = "informasi"
    topic: str = "umum"
    data_access_required: bool = False
    patient_data_type: str | None = None
    health_notes_query: str | None = None
    follow_up_required: bool = False

    @field_validator("response_type", mode="before")
    @classmethod
    def _response_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in GENERAL_RESPONSE_TYPES else "informasi"

    @field_validator("topic", mode="before")
    @classmethod
    def _topic(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "umum"

    @field_validator("patient_data_type", mode="before")
    @classmethod
    def _data_type(cls, value: Any) -> str | None:
        text = str(value or "").strip().lower()
        return text if text in DATA_TYPES else None

    @field_validator("data_access_required", "follow_up_required", mode="before")
    @classmethod
    def _flags(cls, value: Any) -> bool:
        return _coerce_bool(value)


class GeneratedReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str

    @field_validator("message", mode="before")
    @classmethod
    def _non_empty(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("empty reply")
        return text[:1500]


class KeywordClassifier:
    """Rule-table classifier producing the same typed results as the model-backed path."""

    def verification(self, message: str) -> VerificationClassification:
        outcome = keyword_rules.match_verification_reply(message) or keyword_rules.match_verification_fallback(message)
        response = {"affirmative": "YES", "negative": "NO"}.get(outcome or "", "UNCERTAIN")
        return VerificationClassification(
            response=response,
            confidence=0.8 if outcome else 0.3,
            reason=f"keyword rules {keyword_rules.RULESET_VERSION}",
            source="fallback",
        )

    def confirmation(self, message: str) -> ConfirmationClassification:
        outcome = keyword_rules.match_confirmation(message)
        response = {"confirmed": "CONFIRMED", "missed": "MISSED", "help_needed": "HELP"}.get(outcome or "", "UNCERTAIN")
        return ConfirmationClassification(
            response=response,
            confidence=0.8 if outcome else 0.3,
            needs_human_help=outcome == "help_needed",
            reason=f"keyword rules {keyword_rules.RULESET_VERSION}",
            source="fallback",
        )

    def general_inquiry(self, message: str) -> GeneralInquiryClassification:
        payload = keyword_rules.fallback_general_inquiry(message)
        return GeneralInquiryClassification(**payload, source="fallback")


_ModelT = TypeVar("_ModelT", bound=BaseModel)


class ClassificationGateway:
    """Calls the model-backed classifier, validates its payload, and falls back to keyword rules."""

    def __init__(self, service: ClassificationService | None, fallback: KeywordClassifier | None = None) -> None:
        self._service = service
        self._fallback = fallback or KeywordClassifier()

    @property
    def has_service(self) -> bool:
        return self._service is not None

    async def _ask(self, prompt_kind: str, context: dict[str, Any], message: str) -> dict[str, Any] | None:
        if self._service is None:
            return None
        try:
            raw = await self._service.classify(prompt_kind, context, message)
        except Exception as exc:
            logger.warning("classification_call_failed", prompt_kind=prompt_kind, error=str(exc))
            return None
        content = raw.get("content") if isinstance(raw, dict) else None
        payload = extract_json_object(content) if isinstance(content, str) else None
        if payload is None:
            logger.warning("classification_unparseable", prompt_kind=prompt_kind)
        return payload

    async def _classify(
        self,
        prompt_kind: str,
        model_cls: type[_ModelT],
        context: dict[str, Any],
        message: str,
        fallback: Callable[[], _ModelT],
    ) -> _ModelT:
        payload = await self._ask(prompt_kind, context, message)
        if payload is not None:
            try:
                return model_cls.model_validate(payload)
            except ValidationError as exc:
                logger.warning("classification_invalid", prompt_kind=prompt_kind, errors=exc.error_count())
        return fallback()

    async def classify_verification(self, message: str, context: dict[str, Any]) -> VerificationClassification:
        return await self._classify(
            "verification",
            VerificationClassification,
            context,
            message,
            lambda: self._fallback.verification(message),
        )

    async def classify_confirmation(self, message: str, context: dict[str, Any]) -> ConfirmationClassification:
        return await self._classify(
            "reminder_confirmation",
            ConfirmationClassification,
            context,
            message,
            lambda: self._fallback.confirmation(message),
        )

    async def classify_general_inquiry(self, message: str, context: dict[str, Any]) -> GeneralInquiryClassification:
        return await self._classify(
            "general_inquiry",
            GeneralInquiryClassification,
            context,
            message,
            lambda: self._fallback.general_inquiry(message),
        )

    async def compose_reply(self, message: str, context: dict[str, Any], fallback_text: str) -> str:
        payload = await self._ask("response", context, message)
        if payload is not None:
            try:
                return GeneratedReply.model_validate(payload).message
            except ValidationError:
                logger.warning("generated_reply_invalid")
        return fallback_text


