"""TaskManager calls used by the directory and the task lifecycle actions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from nudgebet.api.client import ApiClient

CONCEPT = "TaskManager"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    description: str = ""
    due_date: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @staticmethod
    def from_json(data: dict[str, Any]) -> Task:
        return Task(
            id=str(data["_id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            due_date=data.get("dueDate") or None,
            started_at=data.get("startedAt") or None,
            completed_at=data.get("completedAt") or None,
        )

    @property
    def status(self) -> str:
        if self.completed_at:
            return "completed"
        if self.started_at:
            return "in-progress"
        return "pending"


async def get_tasks(
    client: ApiClient, credential: str, *, limit: int | None = None
) -> list[Task]:
    data = await client.call(CONCEPT, "getTasks", credential, limit=limit)
    items = data.get("tasks", []) if isinstance(data, dict) else data
    return [Task.from_json(item) for item in items or []]


async def mark_started(
    client: ApiClient, credential: str, task_id: str, time_started: str
) -> None:
    await client.call(
        CONCEPT, "markStarted", credential, task=task_id, timeStarted=time_started
    )


async def mark_complete(
    client: ApiClient, credential: str, task_id: str, time_completed: str
) -> None:
    await client.call(
        CONCEPT, "markComplete", credential, task=task_id, timeCompleted=time_completed
    )


async def delete_task(client: ApiClient, credential: str, task_id: str) -> None:
    await client.call(CONCEPT, "deleteTask", credential, task=task_id)
