"""
Notifications: best-effort, non-blocking delivery of execution outcomes.
"""

from notify.emitter import NotificationEmitter
from notify.events import TradeEvent, event_from_result
from notify.sinks import NOTIFIERS, Notifier, build_notifiers

__all__ = [
    "NOTIFIERS",
    "NotificationEmitter",
    "Notifier",
    "TradeEvent",
    "build_notifiers",
    "event_from_result",
]
