"""
Chat transport — outbound messages through the Telegram Bot API.

Inbound updates reach the service through the webhook endpoint; this
module only covers the outbound half.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from geoattend.core.exceptions import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_message(
        self,
        recipient_id: str,
        text: str,
        *,
        parse_mode: str | None = None,
        silent: bool = False,
        reply_markup: dict[str, Any] | None = None,
    ) -> None: ...

    async def answer_callback_query(self, callback_query_id: str) -> None: ...

    async def aclose(self) -> None: ...


class DisabledTransport:
    """Used when no bot token is configured: every send fails (and is logged)."""

    async def send_message(self, recipient_id: str, text: str, **_options: Any) -> None:
        raise TransportError("Telegram bot token is not configured")

    async def answer_callback_query(self, callback_query_id: str) -> None:
        raise TransportError("Telegram bot token is not configured")

    async def aclose(self) -> None:
        return None


class TelegramTransport:
    """Thin async client over ``https://api.telegram.org/bot<token>/<method>``."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not token:
            raise ValueError("TELEGRAM_BOT_TOKEN is not configured")
        self._client = client or httpx.AsyncClient(
            base_url=f"{api_url.rstrip('/')}/bot{token}",
            timeout=timeout,
        )

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(f"/{method}", json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise TransportError(f"{method} rejected: {description}")
        return body.get("result")

    async def send_message(
        self,
        recipient_id: str,
        text: str,
        *,
        parse_mode: str | None = None,
        silent: bool = False,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": recipient_id,
            "text": text,
            "disable_notification": silent,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        await self._call("sendMessage", payload)

    async def set_webhook(self, url: str, secret_token: str | None = None) -> None:
        payload: dict[str, Any] = {"url": url, "allowed_updates": ["message", "callback_query"]}
        if secret_token:
            payload["secret_token"] = secret_token
        await self._call("setWebhook", payload)
        logger.info("Telegram webhook set to %s", url)

    async def answer_callback_query(self, callback_query_id: str) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_query_id})

    async def aclose(self) -> None:
        await self._client.aclose()
