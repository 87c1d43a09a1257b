"""Telegram Bot API alert channel."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from whale_observer.alerter.models import AlertMessage

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
DEFAULT_TIMEOUT_SECONDS = 10.0


class ChannelError(Exception):
    """Raised when an alert channel fails to deliver a message.

    Attributes:
        retry_after: Minimum delay the remote side asked us to wait, if any.
    """

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TelegramChannel:
    """Sends alerts to a Telegram chat via the Bot API.

    Example:
        ```python
        channel = TelegramChannel(bot_token, chat_id)
        await channel.send(message)
        await channel.aclose()
        ```
    """

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the channel.

        Args:
            bot_token: Telegram bot token.
            chat_id: Destination chat identifier.
            client: Optional shared httpx client (owned by the caller).
            timeout: Request timeout in seconds.
        """
        self._url = TELEGRAM_API_URL.format(token=bot_token)
        self._chat_id = chat_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, message: AlertMessage) -> None:
        """Send one alert.

        Raises:
            ChannelError: On transport failure or a rejected request.
        """
        payload = {
            "chat_id": self._chat_id,
            "text": message.text,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            # Never include the URL: it carries the bot token.
            raise ChannelError(f"Telegram request failed: {type(e).__name__}") from e

        body = self._parse_body(response)
        if response.status_code == 429:
            retry_after = self._retry_after(body)
            raise ChannelError("Telegram rate limit hit", retry_after=retry_after)
        if response.is_error or not body.get("ok", False):
            description = body.get("description") or response.reason_phrase
            raise ChannelError(f"Telegram rejected message ({response.status_code}): {description}")

        logger.debug("Telegram accepted alert for tx %s", message.tx_hash)

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _retry_after(body: dict[str, Any]) -> float | None:
        parameters = body.get("parameters")
        if isinstance(parameters, dict):
            value = parameters.get("retry_after")
            if isinstance(value, (int, float)):
                return float(value)
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
