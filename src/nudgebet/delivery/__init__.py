"""Nudge delivery: push/pull reminder source and the presentation queue."""

from nudgebet.delivery.events import (
    ConnectionLost,
    ConnectionRestored,
    ReminderReady,
    SourceEvent,
)
from nudgebet.delivery.queue import ActiveNudge, NudgeQueue, QueueState
from nudgebet.delivery.source import ReminderSource

__all__ = [
    "ActiveNudge",
    "ConnectionLost",
    "ConnectionRestored",
    "NudgeQueue",
    "QueueState",
    "ReminderReady",
    "ReminderSource",
    "SourceEvent",
]
