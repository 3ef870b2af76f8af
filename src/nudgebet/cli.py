"""CLI handlers for `nudgebet watch`, `nudgebet nudges` and `nudgebet bets`."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime

from nudgebet.api import bets as bets_api
from nudgebet.api import nudges as nudges_api
from nudgebet.api.bets import Bet
from nudgebet.api.client import ApiClient, ApiError
from nudgebet.api.nudges import Nudge
from nudgebet.config import TZ
from nudgebet.credentials import CredentialContext
from nudgebet.delivery.events import ConnectionLost, ConnectionRestored, SourceEvent
from nudgebet.delivery.queue import ActiveNudge, QueueState
from nudgebet.session import Session
from nudgebet.wagers import WagerCoordinator


def _require_token() -> str:
    token = os.environ.get("NUDGEBET_TOKEN")
    if not token:
        print("Set NUDGEBET_TOKEN in .env or your environment.", file=sys.stderr)
        raise SystemExit(1)
    return token


def fmt_time(iso: str | None) -> str:
    if not iso:
        return "-"
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso[:16]
    if dt.tzinfo is not None:
        dt = dt.astimezone(TZ)
    return dt.strftime("%Y-%m-%d %H:%M")


def fmt_nudge(n: Nudge) -> str:
    state = "triggered" if n.triggered_at else "pending"
    text = n.message or ""
    return f"  {n.id}  task={n.task}  due {fmt_time(n.delivery_time)}  [{state}]  {text}"


def fmt_active(a: ActiveNudge) -> str:
    return f"[{fmt_time(a.timestamp)}] {a.task_title}: {a.message}"


def fmt_bet(b: Bet) -> str:
    if b.success is None:
        outcome = "pending"
    else:
        outcome = "won" if b.success else "lost"
    return f"  task={b.task}  wager {b.wager}  deadline {fmt_time(b.deadline)}  [{outcome}]"


# --- watch ---


async def _watch(token: str, show_seconds: float) -> None:
    session = Session(CredentialContext(token))
    loop = asyncio.get_running_loop()
    shown: set[str] = set()

    def on_queue(state: QueueState) -> None:
        active = state.active
        if active is None or active.nudge_id in shown:
            return
        shown.add(active.nudge_id)
        print(fmt_active(active), flush=True)
        loop.call_later(show_seconds, session.dismiss, active.nudge_id)

    def on_source(event: SourceEvent) -> None:
        if isinstance(event, ConnectionLost):
            print(f"(push lost: {event.reason}; polling)", file=sys.stderr)
        elif isinstance(event, ConnectionRestored):
            print("(connected)", file=sys.stderr)

    session.queue.subscribe(on_queue)
    session.source.subscribe(on_source)
    try:
        await session.start()
        await asyncio.Event().wait()
    finally:
        await session.close()


def run_watch_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="nudgebet watch")
    parser.add_argument(
        "--show",
        type=float,
        default=8.0,
        help="Seconds each nudge stays up before it is dismissed",
    )
    args = parser.parse_args(argv)
    token = _require_token()
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )
    try:
        asyncio.run(_watch(token, args.show))
    except KeyboardInterrupt:
        pass


# --- nudges ---


async def _nudges(args: argparse.Namespace, token: str) -> None:
    async with ApiClient() as client:
        if args.action == "list":
            items = await nudges_api.get_user_nudges(
                client, token, status=args.status, limit=args.limit
            )
            if not items:
                print("no nudges")
            for n in items:
                print(fmt_nudge(n))
        elif args.action == "ready":
            items = [n for n in await nudges_api.get_ready_nudges(client, token) if n.is_ready]
            if not items:
                print("no ready nudges")
            for n in items:
                print(fmt_nudge(n))
        elif args.action == "schedule":
            nudge_id = await nudges_api.schedule_nudge(client, token, args.task, args.at)
            print(f"scheduled {nudge_id} for task {args.task} at {fmt_time(args.at)}")
        elif args.action == "cancel":
            await nudges_api.cancel_nudge(client, token, args.task)
            print(f"cancelled nudge for task {args.task}")


def run_nudges_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="nudgebet nudges")
    sub = parser.add_subparsers(dest="action")

    list_p = sub.add_parser("list", help="List your nudges")
    list_p.add_argument("--status", choices=["pending", "triggered"], default=None)
    list_p.add_argument("--limit", type=int, default=None)

    sub.add_parser("ready", help="List nudges ready to show")

    sched_p = sub.add_parser("schedule", help="Schedule a nudge for a task")
    sched_p.add_argument("task", help="Task ID")
    sched_p.add_argument("--at", required=True, help="Delivery time (ISO datetime)")

    cancel_p = sub.add_parser("cancel", help="Cancel the nudge for a task")
    cancel_p.add_argument("task", help="Task ID")

    args = parser.parse_args(argv)
    if args.action is None:
        parser.print_help()
        sys.exit(1)

    token = _require_token()
    try:
        asyncio.run(_nudges(args, token))
    except ApiError as e:
        print(f"error: {e.message}", file=sys.stderr)
        sys.exit(1)


# --- bets ---


async def _bets(args: argparse.Namespace, token: str) -> None:
    async with ApiClient() as client:
        if args.action == "active":
            items = await bets_api.get_active_bets(client, token)
            if not items:
                print("no active bets")
            for b in items:
                print(fmt_bet(b))
        elif args.action == "expired":
            items = await bets_api.get_expired_bets(client, token)
            if not items:
                print("no expired bets")
            for b in items:
                print(fmt_bet(b))
        elif args.action == "profile":
            p = await bets_api.get_user_profile(client, token)
            print(
                f"points {p.points}  streak {p.streak}  "
                f"bets {p.total_bets} ({p.successful_bets} won, {p.failed_bets} lost, "
                f"{p.pending_bets} pending)  success {p.success_rate}%"
            )
        elif args.action == "sweep":
            from apscheduler.schedulers.asyncio import AsyncIOScheduler

            coordinator = WagerCoordinator(
                client, CredentialContext(token), AsyncIOScheduler(timezone=TZ)
            )
            resolved = await coordinator.sweep_expired()
            print(f"resolved {resolved} expired bets")


def run_bets_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="nudgebet bets")
    sub = parser.add_subparsers(dest="action")
    sub.add_parser("active", help="Show unresolved bets")
    sub.add_parser("expired", help="Show unresolved bets past their deadline")
    sub.add_parser("profile", help="Show points, streak and totals")
    sub.add_parser("sweep", help="Resolve every expired bet now")

    args = parser.parse_args(argv)
    if args.action is None:
        parser.print_help()
        sys.exit(1)

    token = _require_token()
    try:
        asyncio.run(_bets(args, token))
    except ApiError as e:
        print(f"error: {e.message}", file=sys.stderr)
        sys.exit(1)
