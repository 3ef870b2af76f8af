"""NudgeEngine calls: ready/user nudge queries, scheduling, and the push stream.

The push stream is a server-sent event feed. Each frame's `data:` payload is a
JSON object with a `type` of connected, nudge, heartbeat, or error. On connect
the server replays nudges triggered while the client was away, so backlog and
live nudges arrive through the same `nudge` frames.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

from nudgebet.api.client import ApiClient

log = logging.getLogger(__name__)

CONCEPT = "NudgeEngine"

StreamMessageType = Literal["connected", "nudge", "heartbeat", "error"]
NudgeStatus = Literal["pending", "triggered"]


@dataclass(frozen=True, slots=True)
class Nudge:
    id: str
    task: str
    delivery_time: str  # ISO datetime
    triggered_at: str | None = None  # set by the backend once the message exists
    message: str | None = None

    @staticmethod
    def from_json(data: dict[str, Any]) -> Nudge:
        return Nudge(
            id=str(data["_id"]),
            task=str(data["task"]),
            delivery_time=str(data.get("deliveryTime") or ""),
            triggered_at=data.get("triggeredAt") or None,
            message=data.get("message") or None,
        )

    @property
    def is_ready(self) -> bool:
        """Only triggered nudges with a message may ever be shown."""
        return self.triggered_at is not None and bool(self.message)


@dataclass(frozen=True, slots=True)
class StreamMessage:
    type: StreamMessageType
    nudge: Nudge | None = None
    error: str | None = None


def _nudge_list(data: Any) -> list[Nudge]:
    if isinstance(data, dict):
        data = data.get("nudges", [])
    if not isinstance(data, list):
        log.warning("Expected a nudge list, got %s", type(data).__name__)
        return []
    nudges = []
    for item in data:
        try:
            nudges.append(Nudge.from_json(item))
        except (KeyError, TypeError) as e:
            log.warning("Skipping malformed nudge document (%s): %.200s", e, item)
    return nudges


async def get_ready_nudges(client: ApiClient, credential: str) -> list[Nudge]:
    data = await client.call(CONCEPT, "getReadyNudges", credential)
    return _nudge_list(data)


async def get_user_nudges(
    client: ApiClient,
    credential: str,
    *,
    status: NudgeStatus | None = None,
    limit: int | None = None,
) -> list[Nudge]:
    data = await client.call(
        CONCEPT, "getUserNudges", credential, status=status, limit=limit
    )
    return _nudge_list(data)


async def schedule_nudge(
    client: ApiClient, credential: str, task_id: str, delivery_time: str
) -> str:
    """Returns the new nudge id."""
    data = await client.call(
        CONCEPT, "scheduleNudge", credential, task=task_id, deliveryTime=delivery_time
    )
    return str(data["nudge"])


async def cancel_nudge(client: ApiClient, credential: str, task_id: str) -> None:
    await client.call(CONCEPT, "cancelNudge", credential, task=task_id)


def _decode_frame(data_lines: list[str], event_name: str | None) -> StreamMessage | None:
    raw = "\n".join(data_lines)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Dropping malformed stream frame: %.200s", raw)
        return None
    if not isinstance(payload, dict):
        return None

    kind = payload.get("type") or event_name
    if kind == "nudge":
        body = payload.get("nudge", payload.get("data"))
        if not isinstance(body, dict):
            log.warning("Nudge frame without a nudge body: %.200s", raw)
            return None
        try:
            nudge = Nudge.from_json(body)
        except (KeyError, TypeError) as e:
            log.warning("Dropping nudge frame with a malformed body (%s): %.200s", e, raw)
            return None
        return StreamMessage(type="nudge", nudge=nudge)
    if kind == "error":
        return StreamMessage(type="error", error=str(payload.get("error") or payload.get("message") or ""))
    if kind in ("connected", "heartbeat"):
        return StreamMessage(type=kind)
    log.debug("Ignoring stream frame of type %r", kind)
    return None


async def parse_stream(lines: AsyncIterator[str]) -> AsyncIterator[StreamMessage]:
    """Group event-stream lines into frames and decode each frame's JSON payload."""
    data_lines: list[str] = []
    event_name: str | None = None
    async for line in lines:
        if not line:
            if data_lines:
                msg = _decode_frame(data_lines, event_name)
                if msg is not None:
                    yield msg
            data_lines = []
            event_name = None
            continue
        if line.startswith(":"):
            continue  # comment / keep-alive
        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value
    if data_lines:
        msg = _decode_frame(data_lines, event_name)
        if msg is not None:
            yield msg


async def stream_nudges(client: ApiClient, credential: str) -> AsyncIterator[StreamMessage]:
    """Subscribe to the push stream. Ends when the server closes the connection."""
    async for msg in parse_stream(client.stream_lines(CONCEPT, "stream", credential)):
        yield msg
