"""
Notification emitter: fan TradeEvents out to sinks on a background pool.

``emit`` returns immediately. Delivery failures are logged and dropped;
nothing here can block or change a trade outcome.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Sequence

from notify.events import TradeEvent
from notify.sinks import Notifier

logger = logging.getLogger("follow.notify")


class NotificationEmitter:
    def __init__(self, notifiers: Sequence[Notifier], *, max_workers: int = 2) -> None:
        self._notifiers = list(notifiers)
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="follow-notify")
        self._closed = False

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def emit(self, event: TradeEvent) -> list[Future]:
        """Schedule delivery of *event* to every sink. Never raises."""
        if self._closed or not self._notifiers:
            return []
        futures = []
        for notifier in self._notifiers:
            try:
                futures.append(self._pool.submit(self._deliver, notifier, event))
            except RuntimeError as exc:
                # Pool shut down underneath us.
                logger.warning("Notification to %s not scheduled: %s", notifier.name, exc)
        return futures

    @staticmethod
    def _deliver(notifier: Notifier, event: TradeEvent) -> None:
        try:
            notifier.send(event)
        except Exception as exc:
            logger.warning("Notifier %s failed for %s: %s", notifier.name, event.plan_id, exc)

    def close(self, *, wait: bool = True) -> None:
        """Stop accepting events; by default let queued deliveries finish."""
        self._closed = True
        self._pool.shutdown(wait=wait)
