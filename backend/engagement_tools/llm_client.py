from __future__ import annotations

import json
import os
from typing import Any

import httpx
import structlog

from engagement_core.errors import UpstreamError

logger = structlog.get_logger(__name__)

_OPENAI_API_BASE = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1").rstrip("/")
_OPENROUTER_API_BASE = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1").rstrip("/")
_ANTHROPIC_API_BASE = os.getenv("ANTHROPIC_API_BASE_URL", "https://api.anthropic.com/v1").rstrip("/")

_JSON_ONLY = "Respond with a single JSON object and nothing else."

SYSTEM_PROMPTS = {
    "verification": (
        "You classify a patient's reply to a WhatsApp verification request (Indonesian or English). "
        "Decide whether the patient agrees to receive medication reminders. "
        'Return {"intent": str, "confidence": 0..1, "response": "YES"|"NO"|"UNCERTAIN", '
        '"needs_human_help": bool, "reason": str}. ' + _JSON_ONLY
    ),
    "reminder_confirmation": (
        "You classify a patient's reply to a medication reminder. "
        'Return {"intent": str, "confidence": 0..1, "response": "CONFIRMED"|"MISSED"|"HELP"|"UNCERTAIN", '
        '"needs_human_help": bool, "reason": str}. ' + _JSON_ONLY
    ),
    "general_inquiry": (
        "You triage a general question from a patient enrolled in a medication reminder programme. "
        'Return {"intent": str, "response_type": "informasi"|"data_pasien"|"eskalasi"|"klarifikasi", '
        '"topic": str, "data_access_required": bool, "patient_data_type": "health_notes"|"medication_info"|'
        '"medication_schedule"|"medication_compliance"|"reminder"|"general"|null, "needs_human_help": bool, '
        '"follow_up_required": bool, "reason": str, "confidence": 0..1}. '
        "Set needs_human_help for anything requiring clinical judgement. " + _JSON_ONLY
    ),
    "response": (
        "You write a short, warm WhatsApp reply in Indonesian for a patient. Use only facts present in the "
        "context JSON under authorized_data; never invent medical facts or diagnoses. "
        'Return {"message": str}. ' + _JSON_ONLY
    ),
}


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _coerce_completion_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    content = choices[0].get("message", {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item["text"] for item in content if isinstance(item, dict) and isinstance(item.get("text"), str)
        )
    return ""


def _coerce_anthropic_text(response_json: dict[str, Any]) -> str:
    content = response_json.get("content")
    if not isinstance(content, list):
        return ""
    parts = [
        item["text"].strip()
        for item in content
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
    ]
    return "\n".join(part for part in parts if part).strip()


def provider_candidates(preference: str = "auto") -> list[dict[str, Any]]:
    candidates: list[dict[str, Any]] = []

    anthropic_api_key = (os.getenv("ANTHROPIC_API_KEY") or "").strip()
    if anthropic_api_key:
        candidates.append(
            {
                "provider": "anthropic",
                "base_url": _ANTHROPIC_API_BASE,
                "api_key": anthropic_api_key,
                "model": (os.getenv("ANTHROPIC_MODEL") or "claude-3-5-haiku-latest").strip(),
            }
        )

    openrouter_api_key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
    if openrouter_api_key:
        candidates.append(
            {
                "provider": "openrouter",
                "base_url": _OPENROUTER_API_BASE,
                "api_key": openrouter_api_key,
                "model": (os.getenv("OPENROUTER_MODEL") or "openai/gpt-4o-mini").strip(),
            }
        )

    openai_api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if openai_api_key:
        candidates.append(
            {
                "provider": "openai",
                "base_url": _OPENAI_API_BASE,
                "api_key": openai_api_key,
                "model": (os.getenv("ENGAGE_CLASSIFICATION_MODEL") or "gpt-4o-mini").strip(),
            }
        )

    aliases = {"claude": "anthropic", "anthropic": "anthropic", "openrouter": "openrouter", "openai": "openai"}
    canonical = aliases.get((preference or "auto").strip().lower())
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate["provider"] == canonical]
    others = [candidate for candidate in candidates if candidate["provider"] != canonical]
    return preferred + others


class LLMClassificationClient:
    """Model-backed classification over OpenAI-compatible and Anthropic chat APIs."""

    def __init__(
        self,
        *,
        providers: list[dict[str, Any]],
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._providers = providers
        self._timeout = httpx.Timeout(timeout_seconds, connect=8.0)
        self._transport = transport

    @property
    def available(self) -> bool:
        return bool(self._providers)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _openai_compatible(self, provider: dict[str, Any], system_prompt: str, user_content: str) -> str:
        payload = {
            "model": provider["model"],
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        }
        headers = {"Authorization": f"Bearer {provider['api_key']}", "Content-Type": "application/json"}
        app_name = (os.getenv("OPENROUTER_APP_NAME") or "").strip()
        if provider["provider"] == "openrouter" and app_name:
            headers["X-Title"] = app_name
        async with self._client() as client:
            response = await client.post(f"{provider['base_url']}/chat/completions", headers=headers, json=payload)
        if response.status_code >= 400:
            raise UpstreamError(_provider_error_message(response))
        return _coerce_completion_text(response.json()).strip()

    async def _anthropic(self, provider: dict[str, Any], system_prompt: str, user_content: str) -> str:
        payload = {
            "model": provider["model"],
            "max_tokens": 600,
            "temperature": 0.1,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_content}],
        }
        headers = {
            "x-api-key": str(provider["api_key"]),
            "anthropic-version": os.getenv("ANTHROPIC_API_VERSION", "2023-06-01"),
            "Content-Type": "application/json",
        }
        async with self._client() as client:
            response = await client.post(f"{provider['base_url']}/messages", headers=headers, json=payload)
        if response.status_code >= 400:
            raise UpstreamError(_provider_error_message(response))
        return _coerce_anthropic_text(response.json())

    async def classify(self, prompt_kind: str, context: dict[str, Any], message: str) -> dict[str, Any]:
        system_prompt = SYSTEM_PROMPTS.get(prompt_kind)
        if system_prompt is None:
            raise ValueError(f"Unknown prompt kind: {prompt_kind}")
        if not self._providers:
            raise UpstreamError("No classification provider configured")

        user_content = (
            "Context JSON:\n"
            f"{json.dumps(context, ensure_ascii=False, default=str)}\n\n"
            f"Patient message:\n{message.strip()[:2000]}"
        )
        errors: list[str] = []
        for provider in self._providers:
            provider_name = str(provider.get("provider") or "unknown")
            try:
                if provider_name == "anthropic":
                    text = await self._anthropic(provider, system_prompt, user_content)
                else:
                    text = await self._openai_compatible(provider, system_prompt, user_content)
            except (httpx.HTTPError, UpstreamError, ValueError) as exc:
                logger.warning("classification_provider_failed", provider=provider_name, prompt_kind=prompt_kind, error=str(exc))
                errors.append(f"{provider_name}: {exc}")
                continue
            if text:
                logger.debug("classification_provider_used", provider=provider_name, prompt_kind=prompt_kind)
                return {"content": text}
            errors.append(f"{provider_name}: empty response")
        raise UpstreamError("; ".join(errors) or "No provider returned content")
