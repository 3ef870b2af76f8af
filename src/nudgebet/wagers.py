"""Bet resolution driven by task lifecycle events and a periodic deadline sweep.

Task started/completed both call resolveBet; the backend answers success once
and already_resolved after that, so either or both may fire for a task. The
expired sweep runs every SWEEP_SECONDS and can race the task-event path for the
same bet. Neither path locks: an already_resolved answer counts as done.

Refreshes of the profile/active-bet projection are background work. They log
failures and never fail the action that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from nudgebet.api import bets as bets_api
from nudgebet.api.bets import Bet, BetResolution, BettorProfile
from nudgebet.api.client import ApiClient, ApiError
from nudgebet.config import SWEEP_SECONDS
from nudgebet.credentials import CredentialContext
from nudgebet.signals import Signal

log = logging.getLogger(__name__)

SWEEP_JOB_ID = "expired_bet_sweep"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BetBoard:
    """Read-only projection of the bettor profile and unresolved bets."""

    def __init__(self) -> None:
        self._profile: BettorProfile | None = None
        self._active_bets: list[Bet] = []
        self._changed: Signal[BetBoard] = Signal("bet_board.changed")

    @property
    def profile(self) -> BettorProfile | None:
        return self._profile

    @property
    def active_bets(self) -> list[Bet]:
        return list(self._active_bets)

    @property
    def points(self) -> int:
        return self._profile.points if self._profile else 0

    @property
    def streak(self) -> int:
        return self._profile.streak if self._profile else 0

    @property
    def total_wagered(self) -> int:
        return sum(b.wager for b in self._active_bets)

    def expired_bets(self, now: datetime | None = None) -> list[Bet]:
        now = now or datetime.now(timezone.utc)
        return [b for b in self._active_bets if b.is_expired(now)]

    def bet_for_task(self, task_id: str) -> Bet | None:
        return next((b for b in self._active_bets if b.task == task_id), None)

    def has_active_bet(self, task_id: str) -> bool:
        return self.bet_for_task(task_id) is not None

    def subscribe(self, callback: Callable[[BetBoard], None]) -> Callable[[], None]:
        return self._changed.connect(callback)

    def update(
        self,
        *,
        profile: BettorProfile | None = None,
        active_bets: list[Bet] | None = None,
    ) -> None:
        if profile is not None:
            self._profile = profile
        if active_bets is not None:
            self._active_bets = [b for b in active_bets if not b.resolved]
        self._changed.emit(self)

    def drop_task(self, task_id: str) -> None:
        self._active_bets = [b for b in self._active_bets if b.task != task_id]
        self._changed.emit(self)

    def clear(self) -> None:
        self._profile = None
        self._active_bets = []
        self._changed.emit(self)


class WagerCoordinator:
    def __init__(
        self,
        client: ApiClient,
        credentials: CredentialContext,
        scheduler: AsyncIOScheduler,
        *,
        sweep_seconds: float = SWEEP_SECONDS,
        board: BetBoard | None = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._scheduler = scheduler
        self._sweep_seconds = sweep_seconds
        self.board = board or BetBoard()
        self._background: set[asyncio.Task[Any]] = set()

    def _credential(self) -> str:
        token = self._credentials.current()
        if not token:
            raise ApiError("User not authenticated", 401)
        return token

    # --- sweep lifecycle ---

    @property
    def sweeping(self) -> bool:
        return self._scheduler.get_job(SWEEP_JOB_ID) is not None

    def start(self) -> None:
        """Arm the periodic expired-bet sweep. Idempotent."""
        if self.sweeping:
            return
        self._scheduler.add_job(
            self.sweep_expired,
            IntervalTrigger(seconds=self._sweep_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
        )
        log.info("Expired-bet sweep armed (every %ss)", self._sweep_seconds)

    async def stop(self) -> None:
        """Disarm the sweep and cancel any in-flight background refreshes."""
        job = self._scheduler.get_job(SWEEP_JOB_ID)
        if job:
            job.remove()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def join_background(self) -> None:
        """Wait for fire-and-forget refreshes spawned so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- projection refresh ---

    async def refresh(self) -> bool:
        """Reload profile and active bets. Failures are logged, never raised."""
        token = self._credentials.current()
        if not token:
            return False
        try:
            profile, active = await asyncio.gather(
                bets_api.get_user_profile(self._client, token),
                bets_api.get_active_bets(self._client, token),
            )
        except ApiError as e:
            log.warning("Bet refresh failed: %s", e.message)
            return False
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            log.warning("Bet refresh got a malformed document: %r", e)
            return False
        if self._credentials.current() != token:
            return False  # session ended or switched while we were waiting
        self.board.update(profile=profile, active_bets=active)
        return True

    # --- task lifecycle ---

    async def _resolve_for_task(self, task_id: str, event: str) -> BetResolution:
        resolution = await bets_api.resolve_bet(
            self._client, self._credential(), task_id, _now_iso()
        )
        if resolution.already_resolved:
            log.info("Bet for task %s already resolved (%s)", task_id, event)
        else:
            log.info("Bet for task %s resolved on %s, reward %s", task_id, event, resolution.reward)
            self._spawn(self.refresh())
        return resolution

    async def on_task_started(self, task_id: str) -> BetResolution:
        return await self._resolve_for_task(task_id, "start")

    async def on_task_completed(self, task_id: str) -> BetResolution:
        return await self._resolve_for_task(task_id, "completion")

    async def on_task_deleted(self, task_id: str) -> None:
        """The backend cascades the bet/nudge cancel; only the projection needs a reload."""
        self.board.drop_task(task_id)
        await self.refresh()

    # --- deadline sweep ---

    async def _resolve_expired(self, token: str, task_id: str) -> BetResolution | None:
        try:
            return await bets_api.resolve_expired_bet(self._client, token, task_id)
        except ApiError as e:
            log.warning("Resolving expired bet for task %s failed: %s", task_id, e.message)
            return None

    async def sweep_expired(self) -> int:
        """Resolve every past-deadline bet. Returns how many this sweep resolved."""
        token = self._credentials.current()
        if not token:
            return 0
        try:
            expired = await bets_api.get_expired_bets(self._client, token)
        except ApiError as e:
            log.warning("Expired-bet query failed: %s", e.message)
            return 0

        resolved = 0
        if expired:
            results = await asyncio.gather(
                *(self._resolve_expired(token, bet.task) for bet in expired)
            )
            resolved = sum(1 for r in results if r is not None and not r.already_resolved)
            log.info("Expired sweep: %d due, %d newly resolved", len(expired), resolved)
            # Refresh even when everything was already resolved by the task-event path.
            await self.refresh()
        return resolved

    # --- direct user actions (errors propagate) ---

    async def place_bet(
        self,
        task_id: str,
        *,
        wager: int,
        deadline: str,
        task_due_date: str | None = None,
    ) -> str:
        bet_id = await bets_api.place_bet(
            self._client,
            self._credential(),
            task_id,
            wager=wager,
            deadline=deadline,
            task_due_date=task_due_date,
        )
        await self.refresh()
        return bet_id

    async def cancel_bet(self, task_id: str) -> None:
        await bets_api.cancel_bet(self._client, self._credential(), task_id)
        self.board.drop_task(task_id)
        await self.refresh()
