"""Reminder source: push stream first, interval polling once push fails.

start() opens the NudgeEngine event stream. Any stream error or unexpected
close drops the session to pull mode for good: one immediate getReadyNudges
query, then one every POLL_SECONDS via an APScheduler interval job. Push is
only tried again on the next start(), typically after credential renewal.

Every start()/stop() bumps a generation counter. Work that resumes after an
await checks its generation first, so a request that completes after stop()
never emits events or re-arms the poll job.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from nudgebet.api import nudges as nudges_api
from nudgebet.api.client import ApiClient, ApiError
from nudgebet.config import POLL_SECONDS
from nudgebet.delivery.events import (
    ConnectionLost,
    ConnectionRestored,
    ReminderReady,
    SourceEvent,
)
from nudgebet.signals import Signal

log = logging.getLogger(__name__)

POLL_JOB_ID = "reminder_poll"

SourceMode = Literal["idle", "push", "pull"]


class ReminderSource:
    def __init__(
        self,
        client: ApiClient,
        scheduler: AsyncIOScheduler,
        *,
        poll_seconds: float = POLL_SECONDS,
    ) -> None:
        self._client = client
        self._scheduler = scheduler
        self._poll_seconds = poll_seconds
        self._events: Signal[SourceEvent] = Signal("reminder_source")
        self._credential: str | None = None
        self._started = False
        self._generation = 0
        self._mode: SourceMode = "idle"
        self._push_task: asyncio.Task[None] | None = None
        self._push_connected = False

    def subscribe(self, callback: Callable[[SourceEvent], None]) -> Callable[[], None]:
        return self._events.connect(callback)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def mode(self) -> SourceMode:
        return self._mode

    @property
    def push_connected(self) -> bool:
        return self._push_connected

    @property
    def polling(self) -> bool:
        return self._scheduler.get_job(POLL_JOB_ID) is not None

    def _is_current(self, generation: int) -> bool:
        return self._started and generation == self._generation

    # --- lifecycle ---

    async def start(self, credential: str) -> None:
        """Begin delivery. No-op when already started."""
        if self._started:
            return
        if not credential:
            raise ValueError("ReminderSource.start needs a credential")
        self._started = True
        self._generation += 1
        self._credential = credential
        self._mode = "push"
        log.info("Reminder source starting in push mode")
        self._push_task = asyncio.create_task(self._run_push(self._generation, credential))

    async def stop(self) -> None:
        """End delivery and release the stream or poll job. Safe when not started."""
        if not self._started:
            return
        self._started = False
        self._generation += 1
        self._mode = "idle"
        self._push_connected = False
        self._credential = None

        job = self._scheduler.get_job(POLL_JOB_ID)
        if job:
            job.remove()

        task, self._push_task = self._push_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        log.info("Reminder source stopped")

    # --- push ---

    async def _run_push(self, generation: int, credential: str) -> None:
        reason = "stream closed by server"
        try:
            async for msg in nudges_api.stream_nudges(self._client, credential):
                if not self._is_current(generation):
                    return
                if msg.type == "connected":
                    self._push_connected = True
                    log.info("Push stream connected")
                    self._events.emit(ConnectionRestored())
                elif msg.type == "nudge" and msg.nudge is not None:
                    self._events.emit(ReminderReady(msg.nudge, origin="push"))
                elif msg.type == "error":
                    reason = f"stream error: {msg.error or 'unknown'}"
                    break
        except ApiError as e:
            reason = e.message
        except Exception as e:
            log.exception("Push stream failed unexpectedly")
            reason = f"stream failure: {e!r}"
        finally:
            self._push_connected = False

        if not self._is_current(generation):
            return
        await self._fall_back_to_pull(generation, reason)

    # --- pull ---

    async def _fall_back_to_pull(self, generation: int, reason: str) -> None:
        log.warning("Push delivery lost (%s); polling every %ss", reason, self._poll_seconds)
        self._mode = "pull"
        self._push_task = None
        self._events.emit(ConnectionLost(reason))
        self._scheduler.add_job(
            self._poll_tick,
            IntervalTrigger(seconds=self._poll_seconds),
            id=POLL_JOB_ID,
            replace_existing=True,
        )
        await self._poll(generation)

    async def _poll_tick(self) -> None:
        await self._poll(self._generation)

    async def _poll(self, generation: int) -> None:
        if not self._is_current(generation) or self._credential is None:
            return
        try:
            ready = await nudges_api.get_ready_nudges(self._client, self._credential)
        except ApiError as e:
            log.warning("Nudge poll failed, retrying next tick: %s", e.message)
            return
        if not self._is_current(generation):
            return
        for nudge in ready:
            self._events.emit(ReminderReady(nudge, origin="pull"))

    async def poll_now(self) -> None:
        """Run one pull query outside the schedule (pull mode only)."""
        if self._mode == "pull":
            await self._poll(self._generation)
