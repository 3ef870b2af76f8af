"""Tests for session.py: wiring, credential-driven teardown and resume, task actions."""

import asyncio

import pytest

from nudgebet.api.client import ApiError
from nudgebet.credentials import CredentialContext
from nudgebet.session import Session


def _nudge_frame(nudge_id: str, task: str) -> dict:
    return {
        "type": "nudge",
        "nudge": {
            "_id": nudge_id,
            "task": task,
            "deliveryTime": "2024-01-01T09:55:00Z",
            "triggeredAt": "2024-01-01T10:00:00Z",
            "message": "You said you'd start this now.",
        },
    }


def _session(backend, scheduler, token: str | None = "tok") -> Session:
    return Session(
        CredentialContext(token),
        client=backend.client,
        scheduler=scheduler,
        poll_seconds=3600,
        sweep_seconds=3600,
        dismiss_delay=0,
    )


@pytest.mark.asyncio
async def test_start_delivers_nudge_for_loaded_task(backend, scheduler, wait_until):
    backend.add_task("t1", "Write report")
    backend.stream_frames = [{"type": "connected"}, _nudge_frame("n1", "t1")]
    session = _session(backend, scheduler)

    await session.start()
    await wait_until(lambda: session.queue.active is not None)

    assert session.queue.active.task_title == "Write report"
    assert session.source.mode == "push"
    assert session.wagers.sweeping
    assert session.wagers.board.points == 100
    await session.close()


@pytest.mark.asyncio
async def test_start_catches_up_on_expired_bets(backend, scheduler):
    backend.add_bet("t1", deadline_minutes=-10)
    session = _session(backend, scheduler)

    await session.start()

    assert backend.count("resolveExpiredBet") == 1
    assert session.wagers.board.active_bets == []
    await session.close()


@pytest.mark.asyncio
async def test_start_without_credential_raises(backend, scheduler):
    session = _session(backend, scheduler, token=None)

    with pytest.raises(ApiError):
        await session.start()

    assert not session.source.started
    await session.close()


@pytest.mark.asyncio
async def test_failed_task_load_does_not_block_delivery(backend, scheduler, wait_until):
    backend.fail_tasks = True
    backend.stream_frames = [{"type": "connected"}, _nudge_frame("n1", "t1")]
    session = _session(backend, scheduler)

    await session.start()
    await wait_until(lambda: len(session.queue.pending) == 1)

    assert session.source.started
    assert session.queue.active is None
    await session.close()


@pytest.mark.asyncio
async def test_invalidation_tears_everything_down(backend, scheduler, wait_until):
    backend.add_task("t1", "Write report")
    backend.add_bet("t1")
    backend.stream_status = 500
    backend.ready_nudges = [_nudge_frame("n1", "t1")["nudge"]]
    session = _session(backend, scheduler)
    await session.start()
    await wait_until(lambda: session.queue.active is not None)
    assert session.source.polling

    session.credentials.invalidate()
    await session.join_background()

    assert not session.source.started
    assert not session.source.polling
    assert not session.wagers.sweeping
    assert scheduler.get_jobs() == []
    assert session.queue.active is None
    assert len(session.directory) == 0
    assert session.wagers.board.profile is None
    await session.close()


@pytest.mark.asyncio
async def test_renewal_resumes_in_push_mode(backend, scheduler, wait_until):
    backend.add_task("t1", "Write report")
    backend.stream_status = 500
    session = _session(backend, scheduler)
    await session.start()
    await wait_until(lambda: session.source.polling)
    session.credentials.invalidate()
    await session.join_background()

    backend.stream_status = None
    backend.stream_frames = [{"type": "connected"}]
    session.credentials.renew("tok-2")
    await session.join_background()
    await wait_until(lambda: session.source.push_connected)

    assert backend.stream_opens == 2
    assert session.source.mode == "push"
    assert not session.source.polling
    assert session.wagers.sweeping
    assert session.directory.title("t1") == "Write report"
    await session.close()


@pytest.mark.asyncio
async def test_renewal_before_start_does_nothing(backend, scheduler):
    session = _session(backend, scheduler)

    session.credentials.renew("tok-2")
    await session.join_background()

    assert not session.source.started
    assert backend.calls == []
    await session.close()


@pytest.mark.asyncio
async def test_reload_releases_pending_nudges(backend, scheduler, wait_until):
    backend.stream_frames = [{"type": "connected"}, _nudge_frame("n1", "t2")]
    session = _session(backend, scheduler)
    await session.start()
    await wait_until(lambda: len(session.queue.pending) == 1)

    backend.add_task("t2", "Call the dentist")
    await session.reload_tasks()

    assert session.queue.pending == []
    assert session.queue.active.nudge_id == "n1"
    assert session.queue.active.task_title == "Call the dentist"
    await session.close()


@pytest.mark.asyncio
async def test_dismiss_through_session(backend, scheduler, wait_until):
    backend.add_task("t1", "Write report")
    backend.stream_frames = [{"type": "connected"}, _nudge_frame("n1", "t1")]
    session = _session(backend, scheduler)
    await session.start()
    await wait_until(lambda: session.queue.active is not None)

    assert session.dismiss("n1") is True
    assert session.queue.active is None
    await session.close()


# --- task actions ---


@pytest.mark.asyncio
async def test_mark_started_keeps_start_when_bet_resolution_fails(backend, scheduler):
    backend.add_task("t1", "Write report")
    backend.add_bet("t1")
    backend.fail_resolve = True
    session = _session(backend, scheduler)
    await session.reload_tasks()

    with pytest.raises(ApiError):
        await session.mark_started("t1")

    assert backend.tasks[0].get("startedAt")
    assert session.directory.resolve("t1").status == "in-progress"
    await session.close()


@pytest.mark.asyncio
async def test_mark_completed_resolves_bet(backend, scheduler):
    backend.add_task("t1", "Write report")
    backend.add_bet("t1", wager=20)
    session = _session(backend, scheduler)
    await session.reload_tasks()

    resolution = await session.mark_completed("t1")
    await session.join_background()

    assert resolution.reward == 20
    assert session.directory.resolve("t1").status == "completed"
    assert session.wagers.board.points == 120
    await session.close()


@pytest.mark.asyncio
async def test_start_then_complete_resolves_once(backend, scheduler):
    backend.add_task("t1", "Write report")
    backend.add_bet("t1", wager=20)
    session = _session(backend, scheduler)
    await session.reload_tasks()

    first = await session.mark_started("t1")
    second = await session.mark_completed("t1")
    await session.join_background()

    assert not first.already_resolved
    assert second.already_resolved
    assert backend.profile["points"] == 120
    await session.close()


@pytest.mark.asyncio
async def test_delete_task_drops_task_and_bet(backend, scheduler):
    backend.add_task("t1", "Write report")
    backend.add_bet("t1")
    session = _session(backend, scheduler)
    await session.reload_tasks()
    await session.wagers.refresh()

    await session.delete_task("t1")

    assert "t1" not in session.directory
    assert not session.wagers.board.has_active_bet("t1")
    await session.close()


@pytest.mark.asyncio
async def test_close_shuts_down_scheduler(backend, scheduler):
    session = _session(backend, scheduler)
    await session.start()

    await session.close()

    assert not scheduler.running
    assert not session.source.started


# --- credential changes while start() is suspended ---


@pytest.mark.asyncio
async def test_invalidation_during_task_load_keeps_everything_stopped(
    backend, scheduler, wait_until
):
    backend.add_task("t1", "Write report")
    backend.tasks_gate = asyncio.Event()
    session = _session(backend, scheduler)

    starting = asyncio.create_task(session.start())
    await wait_until(lambda: backend.count("getTasks") == 1)
    session.credentials.invalidate()
    await session.join_background()
    backend.tasks_gate.set()
    await starting
    await session.join_background()

    assert not session.source.started
    assert session.source.mode == "idle"
    assert not session.wagers.sweeping
    assert scheduler.get_jobs() == []
    assert backend.stream_opens == 0
    assert len(session.directory) == 0
    assert backend.count("getUserProfile") == 0
    await session.close()


@pytest.mark.asyncio
async def test_renewal_during_task_load_starts_once_with_new_token(
    backend, scheduler, wait_until
):
    backend.add_task("t1", "Write report")
    backend.stream_frames = [{"type": "connected"}]
    backend.tasks_gate = asyncio.Event()
    session = _session(backend, scheduler)

    starting = asyncio.create_task(session.start())
    await wait_until(lambda: backend.count("getTasks") == 1)
    session.credentials.invalidate()
    session.credentials.renew("tok-2")
    await wait_until(lambda: backend.count("getTasks") == 2)
    backend.tasks_gate.set()
    await starting
    await session.join_background()
    await wait_until(lambda: session.source.push_connected)

    assert backend.stream_opens == 1
    assert session.wagers.sweeping
    assert len([j for j in scheduler.get_jobs() if j.id == "expired_bet_sweep"]) == 1
    assert session.directory.title("t1") == "Write report"
    assert {body["accessToken"] for _, body in backend.calls[2:]} == {"tok-2"}
    await session.close()
