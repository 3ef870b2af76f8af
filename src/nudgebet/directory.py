"""In-memory task lookup shared by the nudge queue and the wager coordinator."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from nudgebet.api import tasks as tasks_api
from nudgebet.api.client import ApiClient
from nudgebet.api.tasks import Task
from nudgebet.signals import Signal

log = logging.getLogger(__name__)


class TaskDirectory:
    """Resolves task ids to display metadata. Read-only for the core's consumers."""

    def __init__(self, client: ApiClient | None = None) -> None:
        self._client = client
        self._tasks: dict[str, Task] = {}
        self._loading = False
        self._data_loaded: Signal[list[Task]] = Signal("directory.data_loaded")

    def resolve(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def title(self, task_id: str) -> str | None:
        task = self._tasks.get(task_id)
        return task.title if task else None

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def is_loading(self) -> bool:
        return self._loading

    def on_data_loaded(self, callback: Callable[[list[Task]], None]) -> Callable[[], None]:
        return self._data_loaded.connect(callback)

    async def load(self, credential: str) -> list[Task]:
        """Fetch the user's tasks, replace the local copy, then fire on_data_loaded."""
        if self._client is None:
            raise RuntimeError("TaskDirectory has no ApiClient to load from")
        self._loading = True
        try:
            fetched = await tasks_api.get_tasks(self._client, credential)
        finally:
            self._loading = False
        self.replace_all(fetched)
        return fetched

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Install a fresh task list (from a load or a test) and notify listeners."""
        self._tasks = {t.id: t for t in tasks}
        log.info("Task directory loaded %d tasks", len(self._tasks))
        self._data_loaded.emit(list(self._tasks.values()))

    def upsert(self, task: Task) -> None:
        self._tasks[task.id] = task

    def mark_started(self, task_id: str, at: str) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            self._tasks[task_id] = replace(task, started_at=at)

    def mark_completed(self, task_id: str, at: str) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            self._tasks[task_id] = replace(task, completed_at=at)

    def remove(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def clear(self) -> None:
        self._tasks = {}
