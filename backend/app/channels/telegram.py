"""
Telegram Bot Integration.
Receives webhook updates and sends replies through the Bot API.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import httpx

logger = logging.getLogger(__name__)


class TelegramBot:
    """
    Telegram Bot API client for receiving updates and sending messages.
    """

    API_BASE = "https://api.telegram.org"

    def __init__(self, token: str, webhook_secret: Optional[str] = None, timeout: float = 30.0):
        """
        Initialize Telegram bot.

        Args:
            token: Bot token from BotFather
            webhook_secret: Value Telegram echoes in X-Telegram-Bot-Api-Secret-Token
            timeout: HTTP timeout in seconds
        """
        self.token = token
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _method_url(self, method: str) -> str:
        return f"{self.API_BASE}/bot{self.token}/{method}"

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self._method_url(method), json=payload)
            resp.raise_for_status()
            return resp.json()

    async def send_message(self, chat_id: str, text: str,
                           reply_markup: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a text message to a chat.

        Args:
            chat_id: Target chat ID
            text: Message text
            reply_markup: Optional keyboard markup
        """
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self._call("sendMessage", payload)

    async def set_message_reaction(self, chat_id: str, message_id: int,
                                   emoji: str = "👀") -> Dict[str, Any]:
        """React to a message with an emoji."""
        return await self._call("setMessageReaction", {
            "chat_id": chat_id,
            "message_id": message_id,
            "reaction": [{"type": "emoji", "emoji": emoji}],
        })

    async def set_webhook(self, url: str) -> Dict[str, Any]:
        """Point the bot's updates at our webhook endpoint."""
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if self.webhook_secret:
            payload["secret_token"] = self.webhook_secret
        return await self._call("setWebhook", payload)

    def verify_secret(self, header_value: Optional[str]) -> bool:
        """
        Check the webhook secret header.

        Returns:
            True if no secret is configured or the header matches
        """
        if not self.webhook_secret:
            return True
        if not header_value:
            return False
        return hmac.compare_digest(header_value, self.webhook_secret)

    @staticmethod
    def parse_update(body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse a Telegram update into a flat event.

        Args:
            body: Raw update JSON

        Returns:
            Parsed event with type, text, chat and sender info
        """
        update_id = body.get("update_id")
        message = body.get("message")
        if not message or "text" not in message:
            return {"type": "unknown", "update_id": update_id}

        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        timestamp = message.get("date")

        return {
            "type": "message",
            "update_id": update_id,
            "message_id": message.get("message_id"),
            "chat_id": str(chat.get("id", "")),
            "user_id": str(sender.get("id", "")),
            "username": sender.get("username"),
            "first_name": sender.get("first_name"),
            "text": message.get("text", ""),
            "date": datetime.fromtimestamp(timestamp, tz=timezone.utc) if timestamp else None,
        }
