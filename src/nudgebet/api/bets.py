"""MicroBet calls: resolution, expired/active queries, profile, place and cancel."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from nudgebet.api.client import ApiClient, ApiError

log = logging.getLogger(__name__)

CONCEPT = "MicroBet"

ResolutionStatus = Literal["success", "already_resolved"]


@dataclass(frozen=True, slots=True)
class Bet:
    id: str
    task: str
    wager: int
    deadline: str  # ISO datetime
    task_due_date: str | None = None
    success: bool | None = None  # None while pending

    @staticmethod
    def from_json(data: dict[str, Any]) -> Bet:
        success = data.get("success")
        return Bet(
            id=str(data.get("_id", "")),
            task=str(data["task"]),
            wager=int(data.get("wager", 0)),
            deadline=str(data["deadline"]),
            task_due_date=data.get("taskDueDate") or None,
            success=None if success is None else bool(success),
        )

    @property
    def resolved(self) -> bool:
        return self.success is not None

    def is_expired(self, now: datetime) -> bool:
        """Unresolved and past its deadline."""
        if self.resolved:
            return False
        deadline = datetime.fromisoformat(self.deadline)
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        return deadline < now


@dataclass(frozen=True, slots=True)
class BettorProfile:
    points: int = 0
    streak: int = 0
    total_bets: int = 0
    successful_bets: int = 0
    failed_bets: int = 0
    pending_bets: int = 0

    @staticmethod
    def from_json(data: dict[str, Any]) -> BettorProfile:
        return BettorProfile(
            points=int(data.get("points", 0)),
            streak=int(data.get("streak", 0)),
            total_bets=int(data.get("totalBets", 0)),
            successful_bets=int(data.get("successfulBets", 0)),
            failed_bets=int(data.get("failedBets", 0)),
            pending_bets=int(data.get("pendingBets", 0)),
        )

    @property
    def success_rate(self) -> int:
        """Whole-number percentage of bets won."""
        if self.total_bets <= 0:
            return 0
        return round(self.successful_bets / self.total_bets * 100)


@dataclass(frozen=True, slots=True)
class BetResolution:
    """Outcome of a resolve call. `already_resolved` is a normal result, not an error."""

    status: ResolutionStatus
    reward: int | None = None

    @property
    def already_resolved(self) -> bool:
        return self.status == "already_resolved"

    @staticmethod
    def from_json(data: Any) -> BetResolution:
        if not isinstance(data, dict):
            return BetResolution(status="success")
        status = data.get("status") or "success"
        reward = data.get("reward")
        return BetResolution(
            status="already_resolved" if status == "already_resolved" else "success",
            reward=None if reward is None else int(reward),
        )


def _bet_list(data: Any) -> list[Bet]:
    if isinstance(data, dict):
        data = data.get("bets", [])
    if not isinstance(data, list):
        log.warning("Expected a bet list, got %s", type(data).__name__)
        return []
    bets = []
    for item in data:
        try:
            bets.append(Bet.from_json(item))
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Skipping malformed bet document (%s): %.200s", e, item)
    return bets


def _is_missing_profile(err: ApiError) -> bool:
    return "profile not found" in err.message.lower()


async def resolve_bet(
    client: ApiClient, credential: str, task_id: str, completion_time: str
) -> BetResolution:
    """Resolve on start/completion. Safe to repeat: later calls report already_resolved."""
    data = await client.call(
        CONCEPT, "resolveBet", credential, task=task_id, completionTime=completion_time
    )
    return BetResolution.from_json(data)


async def resolve_expired_bet(
    client: ApiClient, credential: str, task_id: str
) -> BetResolution:
    data = await client.call(CONCEPT, "resolveExpiredBet", credential, task=task_id)
    return BetResolution.from_json(data)


async def get_expired_bets(client: ApiClient, credential: str) -> list[Bet]:
    try:
        data = await client.call(CONCEPT, "getExpiredBets", credential)
    except ApiError as e:
        if _is_missing_profile(e):
            return []
        raise
    return _bet_list(data)


async def get_active_bets(client: ApiClient, credential: str) -> list[Bet]:
    try:
        data = await client.call(CONCEPT, "getActiveBets", credential)
    except ApiError as e:
        if _is_missing_profile(e):
            return []
        raise
    return _bet_list(data)


async def get_bet(client: ApiClient, credential: str, task_id: str) -> Bet | None:
    try:
        data = await client.call(CONCEPT, "getBet", credential, task=task_id)
    except ApiError as e:
        if "not found" in e.message.lower():
            return None
        raise
    if isinstance(data, dict) and "bet" in data:
        data = data["bet"]
    return Bet.from_json(data)


async def get_user_profile(client: ApiClient, credential: str) -> BettorProfile:
    data = await client.call(CONCEPT, "getUserProfile", credential)
    return BettorProfile.from_json(data)


async def place_bet(
    client: ApiClient,
    credential: str,
    task_id: str,
    *,
    wager: int,
    deadline: str,
    task_due_date: str | None = None,
) -> str:
    """Returns the new bet id."""
    data = await client.call(
        CONCEPT,
        "placeBet",
        credential,
        task=task_id,
        wager=wager,
        deadline=deadline,
        taskDueDate=task_due_date,
    )
    return str(data["bet"])


async def cancel_bet(client: ApiClient, credential: str, task_id: str) -> None:
    await client.call(CONCEPT, "cancelBet", credential, task=task_id)
