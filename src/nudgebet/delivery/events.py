"""Events emitted by the reminder source."""

from dataclasses import dataclass
from typing import Literal

from nudgebet.api.nudges import Nudge

Origin = Literal["push", "pull"]


@dataclass(frozen=True, slots=True)
class ReminderReady:
    nudge: Nudge
    origin: Origin


@dataclass(frozen=True, slots=True)
class ConnectionLost:
    reason: str


@dataclass(frozen=True, slots=True)
class ConnectionRestored:
    pass


SourceEvent = ReminderReady | ConnectionLost | ConnectionRestored
