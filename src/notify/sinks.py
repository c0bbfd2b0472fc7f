"""
Notifier sinks: a closed, statically registered set.

    log       -> "follow.notify" logger
    webhook   -> JSON POST via urllib
    telegram  -> Bot API sendMessage via requests

Sinks raise on delivery failure; the emitter logs and drops.
"""

from __future__ import annotations

import json
import logging
import urllib.request
from typing import Callable, Protocol

import requests

from config.loader import NotificationConfig
from follow_core.errors import ConfigError
from notify.events import TradeEvent

logger = logging.getLogger("follow.notify")

TELEGRAM_API = "https://api.telegram.org"
TELEGRAM_LIMIT = 4096


def post_json(url: str, payload: dict, *, timeout: float = 5.0) -> None:
    """POST *payload* as JSON. Raises on transport failure or HTTP error status."""
    data = json.dumps(payload, default=str).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=timeout):
        pass


class Notifier(Protocol):
    name: str

    def send(self, event: TradeEvent) -> None:
        ...


class LogNotifier:
    name = "log"

    def send(self, event: TradeEvent) -> None:
        level = logging.INFO if event.success else logging.WARNING
        logger.log(level, "%s", event.to_text().replace("\n", " | "))


class WebhookNotifier:
    name = "webhook"

    def __init__(self, url: str, *, timeout: float = 5.0) -> None:
        if not url.strip():
            raise ConfigError("webhook notifier requires notifications.webhook_url")
        self.url = url.strip()
        self.timeout = timeout

    def send(self, event: TradeEvent) -> None:
        post_json(self.url, {"event": "trade", **event.to_dict()}, timeout=self.timeout)


class TelegramNotifier:
    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        if not bot_token or not chat_id:
            raise ConfigError("telegram notifier requires TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")
        self._token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self._session = session or requests.Session()

    def send(self, event: TradeEvent) -> None:
        resp = self._session.post(
            f"{TELEGRAM_API}/bot{self._token}/sendMessage",
            json={
                "chat_id": self.chat_id,
                "text": event.to_text()[:TELEGRAM_LIMIT],
                "disable_web_page_preview": True,
            },
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise RuntimeError(f"Telegram sendMessage -> HTTP {resp.status_code}: {resp.text[:200]}")


NOTIFIERS: dict[str, Callable[[NotificationConfig], Notifier]] = {
    "log": lambda cfg: LogNotifier(),
    "webhook": lambda cfg: WebhookNotifier(cfg.webhook_url),
    "telegram": lambda cfg: TelegramNotifier(cfg.telegram_bot_token, cfg.telegram_chat_id),
}


def build_notifiers(config: NotificationConfig) -> list[Notifier]:
    """Instantiate the sinks named in ``config.sinks``, in order.

    Raises
    ------
    ConfigError
        Unknown sink name or a sink missing its settings.
    """
    sinks = []
    for name in config.sinks:
        factory = NOTIFIERS.get(name)
        if factory is None:
            raise ConfigError(f"Unknown notifier {name!r} (choose from {', '.join(sorted(NOTIFIERS))})")
        sinks.append(factory(config))
    return sinks
