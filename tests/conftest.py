"""Shared fixtures for nudgebet tests."""

import os

os.environ.setdefault("NUDGEBET_API_URL", "http://127.0.0.1:9/api")

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from nudgebet.api.client import ApiClient


def iso(delta_minutes: float = 0) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=delta_minutes)).isoformat()


class FakeBackend:
    """In-process stand-in for the NudgeEngine / MicroBet / TaskManager backend."""

    def __init__(self) -> None:
        self.tasks: list[dict] = []
        self.ready_nudges: list[dict] = []
        self.user_nudges: list[dict] = []
        self.bets: dict[str, dict] = {}
        self.profile = {
            "points": 100,
            "streak": 0,
            "totalBets": 0,
            "successfulBets": 0,
            "failedBets": 0,
            "pendingBets": 0,
        }
        # push stream behaviour
        self.stream_status: int | None = None
        self.stream_frames: list[dict] = []
        self.hold_stream = True
        self.stream_opens = 0
        self.release = asyncio.Event()
        # failure switches
        self.fail_polls = 0
        self.poll_gate: asyncio.Event | None = None
        self.fail_profile = False
        self.fail_resolve = False
        self.fail_tasks = False
        self.tasks_gate: asyncio.Event | None = None
        self.stale_expired = False
        self.calls: list[tuple[str, dict]] = []
        self.client: ApiClient | None = None

    # --- helpers ---

    def add_task(self, task_id: str, title: str) -> None:
        self.tasks.append({"_id": task_id, "title": title, "description": ""})

    def add_bet(self, task_id: str, *, wager: int = 10, deadline_minutes: float = 60) -> None:
        self.bets[task_id] = {
            "_id": f"bet-{task_id}",
            "task": task_id,
            "wager": wager,
            "deadline": iso(deadline_minutes),
        }
        self.profile["totalBets"] += 1
        self.profile["pendingBets"] += 1

    def count(self, action: str) -> int:
        return sum(1 for name, _ in self.calls if name == action)

    def _settle(self, bet: dict, success: bool) -> None:
        bet["success"] = success
        self.profile["pendingBets"] -= 1
        if success:
            self.profile["points"] += bet["wager"]
            self.profile["successfulBets"] += 1
            self.profile["streak"] += 1
        else:
            self.profile["failedBets"] += 1
            self.profile["streak"] = 0

    # --- handlers ---

    async def _body(self, request: web.Request) -> dict:
        body = await request.json()
        self.calls.append((request.match_info["action"], body))
        return body

    async def nudge_engine(self, request: web.Request) -> web.Response:
        body = await self._body(request)
        action = request.match_info["action"]
        if action == "getReadyNudges":
            if self.poll_gate is not None:
                await self.poll_gate.wait()
            if self.fail_polls > 0:
                self.fail_polls -= 1
                return web.json_response({"error": "database unavailable"}, status=503)
            return web.json_response(self.ready_nudges)
        if action == "getUserNudges":
            items = self.user_nudges
            if body.get("status") == "triggered":
                items = [n for n in items if n.get("triggeredAt")]
            if body.get("limit"):
                items = items[: body["limit"]]
            return web.json_response(items)
        if action == "scheduleNudge":
            return web.json_response({"nudge": f"n-{body['task']}"})
        if action == "cancelNudge":
            return web.json_response({})
        return web.json_response({"error": f"unknown action {action}"}, status=404)

    async def stream(self, request: web.Request) -> web.StreamResponse:
        self.stream_opens += 1
        if self.stream_status is not None:
            return web.json_response({"error": "stream unavailable"}, status=self.stream_status)
        resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        for frame in self.stream_frames:
            await resp.write(f"data: {json.dumps(frame)}\n\n".encode())
        if self.hold_stream:
            await self.release.wait()
        return resp

    async def micro_bet(self, request: web.Request) -> web.Response:
        body = await self._body(request)
        action = request.match_info["action"]
        task = body.get("task")
        bet = self.bets.get(task) if task else None
        now = datetime.now(timezone.utc)

        if action == "resolveBet":
            if self.fail_resolve:
                return web.json_response({"error": "resolver offline"}, status=502)
            if bet is None:
                return web.json_response({"error": "bet not found"}, status=404)
            if "success" in bet:
                return web.json_response({"status": "already_resolved"})
            self._settle(bet, True)
            return web.json_response({"status": "success", "reward": bet["wager"]})
        if action == "resolveExpiredBet":
            if bet is None:
                return web.json_response({"error": "bet not found"}, status=404)
            if "success" in bet:
                return web.json_response({"status": "already_resolved"})
            self._settle(bet, False)
            return web.json_response({})
        if action == "getExpiredBets":
            expired = [
                b
                for b in self.bets.values()
                if (self.stale_expired or "success" not in b)
                and datetime.fromisoformat(b["deadline"]) < now
            ]
            return web.json_response({"bets": expired})
        if action == "getActiveBets":
            return web.json_response({"bets": [b for b in self.bets.values() if "success" not in b]})
        if action == "getUserProfile":
            if self.fail_profile:
                return web.json_response({"error": "profile service down"}, status=500)
            return web.json_response(self.profile)
        if action == "placeBet":
            if body["wager"] > self.profile["points"]:
                return web.json_response({"error": "insufficient points"}, status=400)
            self.bets[task] = {
                "_id": f"bet-{task}",
                "task": task,
                "wager": body["wager"],
                "deadline": body["deadline"],
                "taskDueDate": body.get("taskDueDate"),
            }
            self.profile["points"] -= body["wager"]
            return web.json_response({"bet": f"bet-{task}"})
        if action == "cancelBet":
            if bet is None:
                return web.json_response({"error": "bet not found"}, status=404)
            del self.bets[task]
            self.profile["points"] += bet["wager"]
            return web.json_response({})
        return web.json_response({"error": f"unknown action {action}"}, status=404)

    async def task_manager(self, request: web.Request) -> web.Response:
        body = await self._body(request)
        action = request.match_info["action"]
        if self.fail_tasks:
            return web.json_response({"error": "task service down"}, status=500)
        if action == "getTasks":
            if self.tasks_gate is not None:
                await self.tasks_gate.wait()
            return web.json_response({"tasks": self.tasks, "total": len(self.tasks)})
        task = next((t for t in self.tasks if t["_id"] == body.get("task")), None)
        if task is None:
            return web.json_response({"error": "task not found"}, status=404)
        if action == "markStarted":
            task["startedAt"] = body["timeStarted"]
            return web.json_response({})
        if action == "markComplete":
            task["completedAt"] = body["timeCompleted"]
            return web.json_response({})
        if action == "deleteTask":
            self.tasks.remove(task)
            self.bets.pop(task["_id"], None)
            return web.json_response({})
        return web.json_response({"error": f"unknown action {action}"}, status=404)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/NudgeEngine/stream", self.stream)
        app.router.add_post("/NudgeEngine/{action}", self.nudge_engine)
        app.router.add_post("/MicroBet/{action}", self.micro_bet)
        app.router.add_post("/TaskManager/{action}", self.task_manager)
        return app


@pytest_asyncio.fixture()
async def backend():
    """A running fake backend with an ApiClient pointed at it (backend.client)."""
    fake = FakeBackend()
    server = TestServer(fake.app())
    await server.start_server()
    fake.client = ApiClient(str(server.make_url("/")))
    yield fake
    fake.release.set()
    for gate in (fake.poll_gate, fake.tasks_gate):
        if gate is not None:
            gate.set()
    await fake.client.close()
    await server.close()


@pytest_asyncio.fixture()
async def scheduler():
    sched = AsyncIOScheduler(timezone="UTC")
    sched.start()
    yield sched
    if sched.running:
        sched.shutdown(wait=False)


@pytest.fixture()
def wait_until():
    """Poll a predicate on the event loop until it holds (or fail after a timeout)."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
