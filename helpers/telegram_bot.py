"""
Minimal Telegram Bot API client used for operator alerts.
"""

from __future__ import annotations

from typing import Optional

import requests


class TelegramBot:
    """Sends plain/HTML text messages to a single chat."""

    def __init__(self, token: str, chat_id: str, *, timeout: float = 10.0) -> None:
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self.api_url = f"https://api.telegram.org/bot{token}"

    def send_text(self, text: str, *, parse_mode: Optional[str] = "HTML") -> None:
        """
        Send a text message to the configured chat.

        Raises:
            requests.RequestException: If the request fails or Telegram
                answers with a non-2xx status.
        """
        payload = {"chat_id": self.chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        response = requests.post(f"{self.api_url}/sendMessage", json=payload, timeout=self.timeout)
        response.raise_for_status()
