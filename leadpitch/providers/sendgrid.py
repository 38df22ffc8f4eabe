from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

"""Email-delivery provider backed by the SendGrid v3 REST API.

send() reports failures through SendResult instead of raising, so a batch of
sends can record each outcome independently.
"""

__all__ = [
    "SENDGRID_API_URL",
    "SENDGRID_SCOPES_URL",
    "SendResult",
    "SendGridSender",
]

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"
SENDGRID_SCOPES_URL = "https://api.sendgrid.com/v3/scopes"


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if message:
                return str(message)
    return f"SendGrid API error: {response.status_code}"


class SendGridSender:
    def __init__(
        self,
        *,
        api_key: str | None,
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SendGridSender:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def send(
        self,
        *,
        to: str,
        from_email: str,
        from_name: str,
        subject: str,
        html: str,
        text: str | None = None,
        reply_to: str | None = None,
    ) -> SendResult:
        if not self._api_key:
            return SendResult(success=False, error="SendGrid API key not configured")
        if not to or not from_email or not subject or not (text or html):
            return SendResult(
                success=False,
                error="Missing required fields: to, from, subject, and either text or html",
            )

        content: list[dict[str, str]] = []
        if text:
            content.append({"type": "text/plain", "value": text})
        if html:
            content.append({"type": "text/html", "value": html})
        body: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": from_email, "name": from_name},
            "subject": subject,
            "content": content,
        }
        if reply_to:
            body["reply_to"] = {"email": reply_to}

        try:
            response = await self._client.post(SENDGRID_API_URL, headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            logger.warning(f"sendgrid request failed for {to}: {e}")
            return SendResult(success=False, error=f"Failed to send email: {e}")

        if response.status_code >= 400:
            return SendResult(success=False, error=_error_message(response))
        return SendResult(success=True, message_id=response.headers.get("X-Message-Id"))

    async def validate_api_key(self) -> bool:
        """True when the key is accepted by the /v3/scopes endpoint."""
        if not self._api_key:
            return False
        try:
            response = await self._client.get(
                SENDGRID_SCOPES_URL, headers={"Authorization": f"Bearer {self._api_key}"}
            )
        except httpx.HTTPError as e:
            logger.warning(f"sendgrid key validation failed: {e}")
            return False
        return response.is_success
