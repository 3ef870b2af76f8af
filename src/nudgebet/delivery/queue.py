"""De-duplicating FIFO of ready nudges with a single active slot.

A nudge moves through: ready -> (pending, if its task is unknown) -> queued ->
active -> dismissed. Only one nudge is active at a time. Promotion to active
happens when a nudge is enqueued while the slot is empty, or shortly after the
active nudge is dismissed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from nudgebet.api.nudges import Nudge
from nudgebet.config import DISMISS_DELAY
from nudgebet.delivery.events import ReminderReady, SourceEvent
from nudgebet.directory import TaskDirectory
from nudgebet.signals import Signal

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActiveNudge:
    nudge_id: str
    task_id: str
    task_title: str  # frozen at enqueue time
    message: str
    timestamp: str  # ISO datetime the backend triggered it


@dataclass(frozen=True, slots=True)
class QueueState:
    active: ActiveNudge | None
    queued: tuple[ActiveNudge, ...]
    pending_count: int


class NudgeQueue:
    def __init__(
        self, directory: TaskDirectory, *, dismiss_delay: float = DISMISS_DELAY
    ) -> None:
        self._directory = directory
        self._dismiss_delay = dismiss_delay
        self._active: ActiveNudge | None = None
        self._queue: deque[ActiveNudge] = deque()
        self._pending: dict[str, Nudge] = {}
        # Ids already shown and dismissed this session; a redelivery must not resurface them.
        self._dismissed: set[str] = set()
        self._promote_handle: asyncio.TimerHandle | None = None
        self._changed: Signal[QueueState] = Signal("queue.changed")
        self._disconnect_directory = directory.on_data_loaded(
            lambda _tasks: self.retry_pending()
        )

    # --- observable state ---

    @property
    def active(self) -> ActiveNudge | None:
        return self._active

    @property
    def queue(self) -> list[ActiveNudge]:
        return list(self._queue)

    @property
    def pending(self) -> list[Nudge]:
        return list(self._pending.values())

    def snapshot(self) -> QueueState:
        return QueueState(
            active=self._active,
            queued=tuple(self._queue),
            pending_count=len(self._pending),
        )

    def subscribe(self, callback: Callable[[QueueState], None]) -> Callable[[], None]:
        return self._changed.connect(callback)

    def _notify(self) -> None:
        self._changed.emit(self.snapshot())

    # --- intake ---

    def handle_event(self, event: SourceEvent) -> None:
        """Adapter for ReminderSource.subscribe; ignores connection events."""
        if isinstance(event, ReminderReady):
            self.on_reminder_ready(event.nudge)

    def on_reminder_ready(self, nudge: Nudge) -> bool:
        """Accept a ready nudge from either delivery path. Returns True if it was queued."""
        if not nudge.is_ready:
            log.debug("Ignoring untriggered nudge %s", nudge.id)
            return False
        return self._enqueue(nudge)

    def _is_known(self, nudge_id: str) -> bool:
        if self._active is not None and self._active.nudge_id == nudge_id:
            return True
        if nudge_id in self._dismissed:
            return True
        return any(n.nudge_id == nudge_id for n in self._queue)

    def _enqueue(self, nudge: Nudge) -> bool:
        if self._is_known(nudge.id):
            return False

        task = self._directory.resolve(nudge.task)
        if task is None:
            if nudge.id not in self._pending:
                log.info("Nudge %s waiting for task %s to load", nudge.id, nudge.task)
                self._pending[nudge.id] = nudge
                self._notify()
            return False

        self._pending.pop(nudge.id, None)
        self._queue.append(
            ActiveNudge(
                nudge_id=nudge.id,
                task_id=nudge.task,
                task_title=task.title,
                message=nudge.message or "",
                timestamp=nudge.triggered_at or nudge.delivery_time,
            )
        )
        self._show_next()
        self._notify()
        return True

    def retry_pending(self) -> int:
        """Re-resolve buffered nudges; returns how many moved into the queue."""
        if not self._pending:
            return 0
        moved = 0
        for nudge in list(self._pending.values()):
            if self._directory.resolve(nudge.task) is None:
                continue
            self._pending.pop(nudge.id, None)
            if self._enqueue(nudge):
                moved += 1
        if moved:
            log.info("Released %d pending nudges", moved)
        return moved

    # --- presentation ---

    def _show_next(self) -> bool:
        if self._active is not None or not self._queue:
            return False
        self._active = self._queue.popleft()
        log.info("Showing nudge %s for task %s", self._active.nudge_id, self._active.task_id)
        return True

    def _promote_after_dismiss(self) -> None:
        self._promote_handle = None
        if self._show_next():
            self._notify()

    def dismiss(self, nudge_id: str) -> bool:
        """Dismiss the active nudge; the next one is shown after a short pause."""
        if self._active is None or self._active.nudge_id != nudge_id:
            return False
        self._dismissed.add(nudge_id)
        self._active = None
        if self._promote_handle is not None:
            self._promote_handle.cancel()
        if self._dismiss_delay > 0:
            loop = asyncio.get_running_loop()
            self._promote_handle = loop.call_later(
                self._dismiss_delay, self._promote_after_dismiss
            )
        else:
            self._show_next()
        self._notify()
        return True

    def clear(self) -> None:
        """Drop everything (session end)."""
        if self._promote_handle is not None:
            self._promote_handle.cancel()
            self._promote_handle = None
        self._active = None
        self._queue.clear()
        self._pending.clear()
        self._dismissed.clear()
        self._notify()

    def close(self) -> None:
        self.clear()
        self._disconnect_directory()
