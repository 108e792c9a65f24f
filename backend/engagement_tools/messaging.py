from __future__ import annotations

import httpx
import structlog

from engagement_core.notifications import SendOutcome
from patient_store.phone_utils import mask_phone, normalize_phone

logger = structlog.get_logger(__name__)


class HttpMessagingTransport:
    """Sends WhatsApp text messages through an HTTP gateway (Fonnte-style ``/send`` endpoint)."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = httpx.Timeout(timeout_seconds, connect=8.0)
        self._transport = transport

    async def send(self, recipient: str, text: str) -> SendOutcome:
        target = normalize_phone(recipient)
        if not target:
            return SendOutcome(recipient=recipient, ok=False, error="invalid_recipient")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/send",
                    headers={"Authorization": self._token},
                    data={"target": target, "message": text},
                )
        except httpx.HTTPError as exc:
            logger.warning("messaging_send_failed", recipient=mask_phone(target), error=str(exc))
            return SendOutcome(recipient=recipient, ok=False, error=str(exc))
        if response.status_code >= 400:
            logger.warning("messaging_send_rejected", recipient=mask_phone(target), status_code=response.status_code)
            return SendOutcome(recipient=recipient, ok=False, error=f"HTTP {response.status_code}")
        return SendOutcome(recipient=recipient, ok=True)


class LoggingMessagingTransport:
    """Used when no gateway is configured: records outbound text instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, text: str) -> SendOutcome:
        self.sent.append((recipient, text))
        logger.info("messaging_send_skipped", recipient=mask_phone(recipient), length=len(text))
        return SendOutcome(recipient=recipient, ok=True)
