"""Wires the nudge pipeline and the wager coordinator to one signed-in user.

A Session owns three background resources: the reminder source (stream or
poll job), the nudge queue (dismiss timer), and the expired-bet sweep job.
Credential invalidation tears all three down explicitly; renewal brings them
back, re-entering push mode.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from nudgebet.api import tasks as tasks_api
from nudgebet.api.bets import BetResolution
from nudgebet.api.client import ApiClient, ApiError
from nudgebet.config import DISMISS_DELAY, POLL_SECONDS, SWEEP_SECONDS, TZ
from nudgebet.credentials import CredentialContext
from nudgebet.delivery.queue import NudgeQueue
from nudgebet.delivery.source import ReminderSource
from nudgebet.directory import TaskDirectory
from nudgebet.wagers import WagerCoordinator

log = logging.getLogger(__name__)


class Session:
    def __init__(
        self,
        credentials: CredentialContext,
        *,
        client: ApiClient | None = None,
        scheduler: AsyncIOScheduler | None = None,
        poll_seconds: float = POLL_SECONDS,
        sweep_seconds: float = SWEEP_SECONDS,
        dismiss_delay: float = DISMISS_DELAY,
    ) -> None:
        self.credentials = credentials
        self.client = client or ApiClient()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=TZ)
        self.directory = TaskDirectory(self.client)
        self.source = ReminderSource(self.client, self.scheduler, poll_seconds=poll_seconds)
        self.queue = NudgeQueue(self.directory, dismiss_delay=dismiss_delay)
        self.wagers = WagerCoordinator(
            self.client, credentials, self.scheduler, sweep_seconds=sweep_seconds
        )
        self._wanted = False
        self._background: set[asyncio.Task[Any]] = set()

        self._disconnects = [
            self.source.subscribe(self.queue.handle_event),
            credentials.on_invalidated(self._on_invalidated),
            credentials.on_renewed(self._on_renewed),
        ]

    def _token(self) -> str:
        token = self.credentials.current()
        if not token:
            raise ApiError("User not authenticated", 401)
        return token

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def join_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.wagers.join_background()

    # --- lifecycle ---

    async def start(self) -> None:
        """Load tasks, open delivery, arm the sweep, and catch up on expired bets.

        Returns early if the credential changes while a step is awaited; the
        invalidate/renew handlers own what happens next.
        """
        token = self._token()
        self._wanted = True
        if not self.scheduler.running:
            self.scheduler.start()
        try:
            await self.directory.load(token)
        except ApiError as e:
            log.warning("Initial task load failed, nudges will wait: %s", e.message)
        if not self._is_current(token):
            log.info("Credential changed during task load; not starting delivery")
            if self.credentials.current() is None:
                self.directory.clear()
            return
        await self.source.start(token)
        self.wagers.start()
        await self.wagers.refresh()
        if not self._is_current(token):
            return
        await self.wagers.sweep_expired()

    def _is_current(self, token: str) -> bool:
        return self.credentials.current() == token

    async def teardown(self) -> None:
        """Release every background resource and forget per-user state."""
        await self.source.stop()
        self.queue.clear()
        await self.wagers.stop()
        self.wagers.board.clear()
        self.directory.clear()
        log.info("Session torn down")

    async def close(self) -> None:
        self._wanted = False
        await self.teardown()
        for disconnect in self._disconnects:
            disconnect()
        self.queue.close()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.client.close()

    def _on_invalidated(self, _: None) -> None:
        self._spawn(self.teardown())

    def _on_renewed(self, token: str) -> None:
        if not self._wanted:
            return
        self._spawn(self._resume())

    async def _resume(self) -> None:
        await self.source.stop()
        try:
            await self.start()
        except ApiError as e:
            log.warning("Resuming session after renewal failed: %s", e.message)

    # --- user actions ---

    def dismiss(self, nudge_id: str) -> bool:
        return self.queue.dismiss(nudge_id)

    async def reload_tasks(self) -> None:
        """Reload the task directory; buffered nudges are retried on completion."""
        await self.directory.load(self._token())

    async def mark_started(self, task_id: str) -> BetResolution:
        """Start the task, then resolve its bet. A bet error does not undo the start."""
        at = datetime.now(timezone.utc).isoformat()
        await tasks_api.mark_started(self.client, self._token(), task_id, at)
        self.directory.mark_started(task_id, at)
        return await self.wagers.on_task_started(task_id)

    async def mark_completed(self, task_id: str) -> BetResolution:
        at = datetime.now(timezone.utc).isoformat()
        await tasks_api.mark_complete(self.client, self._token(), task_id, at)
        self.directory.mark_completed(task_id, at)
        return await self.wagers.on_task_completed(task_id)

    async def delete_task(self, task_id: str) -> None:
        await tasks_api.delete_task(self.client, self._token(), task_id)
        self.directory.remove(task_id)
        await self.wagers.on_task_deleted(task_id)
