# signaldesk/services/telegram.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import requests

from signaldesk.core.config import TelegramChannel

log = logging.getLogger("signaldesk.telegram")


class TelegramService:
    """Blocking Telegram Bot API transport, one configured channel per bot."""

    def __init__(
        self,
        channels: Dict[str, TelegramChannel],
        api_url: str = "https://api.telegram.org",
        timeout: float = 15.0,
    ):
        self.channels = dict(channels)
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def channel(self, name: str) -> Optional[TelegramChannel]:
        return self.channels.get(name)

    def is_configured(self, name: str) -> bool:
        ch = self.channels.get(name)
        return bool(ch and ch.token and ch.chat_id)

    def send_message(self, text: str, channel: str) -> bool:
        """
        Returns False when the channel is unusable (not configured / malformed).
        Raises requests.HTTPError / RequestException on transport failures.
        """
        ch = self.channels.get(channel)
        if not ch or not ch.token or not ch.chat_id:
            log.warning("Telegram channel %s token or chatId is not configured", channel)
            return False

        if ":" not in ch.token:
            log.error("Telegram channel %s has a malformed token (expected ':')", channel)
            return False

        if not (ch.chat_id.startswith("-") or ch.chat_id.startswith("@")):
            log.error("Telegram channel %s has a malformed chatId (expected '-' or '@')", channel)
            return False

        url = f"{self.api_url}/bot{ch.token}/sendMessage"
        r = requests.post(
            url,
            json={"chat_id": ch.chat_id, "text": text, "parse_mode": "HTML"},
            timeout=self.timeout,
        )
        if r.status_code >= 400:
            try:
                desc = r.json().get("description")
            except ValueError:
                desc = r.text
            log.error("Telegram error for %s: %s - %s", channel, r.status_code, desc)
        r.raise_for_status()
        log.debug("Telegram message sent via %s (%s)", channel, ch.name or "-")
        return True

    def test_connection(self, channel: str) -> bool:
        ch = self.channels.get(channel)
        if not ch or not ch.token or not ch.chat_id:
            log.warning("Telegram channel %s token or chatId is not configured", channel)
            return False
        try:
            r = requests.get(f"{self.api_url}/bot{ch.token}/getMe", timeout=self.timeout)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            log.error("Telegram connection test failed for %s: %s", channel, e)
            return False

        if data.get("ok"):
            log.info("Telegram connection ok for %s: %s", channel, data.get("result", {}).get("username"))
            return True
        log.error("Telegram connection test failed for %s: %s", channel, data.get("description"))
        return False


class TelegramNotifier:
    """Notifier bound to one channel. Send failures are logged, never raised."""

    def __init__(self, service: TelegramService, channel: str):
        self.service = service
        self.channel = channel

    async def send(self, text: str) -> None:
        try:
            await asyncio.to_thread(self.service.send_message, text, self.channel)
        except Exception:
            log.exception("Telegram notification via %s failed", self.channel)
