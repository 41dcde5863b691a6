"""
Notifiers for feed outcomes.

The worker only needs `await notifier.notify(title, message)`. Delivery
failures are logged and never propagate: a notification is a side channel.

- LogNotifier: writes notifications to the log (default)
- TelegramNotifier: sends HTML messages through the Bot API
"""
from __future__ import annotations

import html
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .net import FetchError, HttpClient

log = logging.getLogger("oracle_validator.notify")


class Notifier(Protocol):
    async def notify(self, title: str, message: str) -> None:
        ...


class LogNotifier:
    async def notify(self, title: str, message: str) -> None:
        log.info("[%s] %s", title, message)


class MemoryNotifier:
    """Collects notifications in memory."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []

    async def notify(self, title: str, message: str) -> None:
        self.sent.append((title, message))


class TelegramNotifier:
    """
    Usage:
        notifier = TelegramNotifier(http, token, chat_id)
        await notifier.notify("Mainnet, updated prices", "SNEK/ADA=0.050000")
    """

    def __init__(
        self,
        http: HttpClient,
        token: Optional[str],
        chat_id: Optional[str],
        enabled: bool = True,
    ) -> None:
        self.http = http
        self.token = token
        self.chat_id = str(chat_id).split(",")[0].strip() if chat_id else None

        # enabled only with both token and chat
        self.enabled = bool(enabled and self.token and self.chat_id)
        if not self.enabled:
            log.warning("TelegramNotifier: disabled (no token or chat_id)")

    async def notify(self, title: str, message: str) -> None:
        if not self.enabled:
            return

        payload: Dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": f"<b>{html.escape(title)}</b>\n\n{html.escape(message)}",
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        url = f"https://api.telegram.org/bot{self.token}/sendMessage"

        try:
            resp = await self.http.request("POST", url, json_body=payload)
            if not resp.ok:
                log.warning("TelegramNotifier: sendMessage status %s, body: %s",
                            resp.status, resp.body[:500])
        except FetchError as e:
            log.error("TelegramNotifier: send failed: %s", e)
