"""Backend call wrappers for the NudgeEngine, MicroBet and TaskManager concepts."""

from nudgebet.api.bets import Bet, BetResolution, BettorProfile
from nudgebet.api.client import ApiClient, ApiError
from nudgebet.api.nudges import Nudge, StreamMessage
from nudgebet.api.tasks import Task

__all__ = [
    "ApiClient",
    "ApiError",
    "Bet",
    "BetResolution",
    "BettorProfile",
    "Nudge",
    "StreamMessage",
    "Task",
]
