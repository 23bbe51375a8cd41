"""Telegram Bot API client for the webhook transport."""

from typing import Any, Dict, Optional, Tuple

import requests

from urman_bot.settings import settings

START_COMMAND = "/start"


class TelegramError(Exception):
    """Bot API call failed."""


def parse_text_update(update: Dict[str, Any]) -> Optional[Tuple[int, int, str]]:
    """
    Extract (chat_id, from_user_id, text) from a Telegram update.

    Returns None for updates that carry no text message (stickers, edits,
    callbacks, ...).
    """
    message = update.get("message") or {}
    text = message.get("text")
    chat = message.get("chat") or {}
    if not text or "id" not in chat:
        return None
    sender = message.get("from") or {}
    return chat["id"], sender.get("id", chat["id"]), text


class TelegramClient:
    """Minimal sendMessage client."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.token = settings.telegram.bot_token if token is None else token
        self.api_url = api_url or settings.telegram.api_url
        self.timeout = timeout or settings.telegram.timeout

    def send_message(self, chat_id: int, text: str) -> Dict[str, Any]:
        if not self.token:
            raise TelegramError("TELEGRAM_BOT_TOKEN is not configured")
        try:
            response = requests.post(
                f"{self.api_url.rstrip('/')}/bot{self.token}/sendMessage",
                json={"chat_id": chat_id, "text": text},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise TelegramError(str(e)) from e
