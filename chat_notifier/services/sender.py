from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

TEMPLATE_CHAT_NEW_MESSAGE = "chat_new_message"
TEMPLATE_CHAT_UNREAD_REMINDER = "chat_unread_reminder"


class MessageSender(Protocol):
    async def send(self, recipient_contact: str, template_kind: str, template_params: dict[str, Any]) -> bool: ...


class HttpMessageSender:
    """Hands rendered-email requests to the mailer service over HTTP.

    Templates, provider selection and retries live in the mailer; a non-2xx
    answer or a transport error is reported as ``False``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self._client = client

    async def send(self, recipient_contact: str, template_kind: str, template_params: dict[str, Any]) -> bool:
        payload = {
            "to": recipient_contact,
            "template": template_kind,
            "params": template_params,
        }
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await self._post(client, payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("mailer rejected template=%s to=%s: %s", template_kind, recipient_contact, exc)
            return False
        return True

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        return await client.post(f"{self.base_url}/messages", json=payload, headers=self.headers)
