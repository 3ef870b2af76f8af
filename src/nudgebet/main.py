"""Entry point for the nudgebet console client."""

from __future__ import annotations

import sys

HELP = """\
nudgebet -- nudge delivery and bet resolution client

commands:
  nudgebet watch              Stream nudges to the console (push, polling fallback)
  nudgebet nudges list        List your nudges (--status, --limit)
  nudgebet nudges ready       List nudges ready to show
  nudgebet nudges schedule    Schedule a nudge for a task
  nudgebet nudges cancel      Cancel the nudge for a task
  nudgebet bets active        Show unresolved bets
  nudgebet bets expired       Show bets past their deadline
  nudgebet bets profile       Show points, streak and totals
  nudgebet bets sweep         Resolve every expired bet now
  nudgebet help               Show this help message

environment:
  NUDGEBET_API_URL   backend base URL (required)
  NUDGEBET_TOKEN     access token used by the CLI

examples:
  nudgebet watch --show 10
  nudgebet nudges list --status triggered --limit 5
  nudgebet nudges schedule 65f0c1 --at 2026-10-18T17:30:00+00:00
"""


def _dispatch_subcommand(argv: list[str]) -> bool:
    """Route CLI subcommands. Returns True if handled."""
    if not argv:
        return False
    cmd, rest = argv[0], argv[1:]
    if cmd in ("help", "--help", "-h"):
        print(HELP)
        return True
    routes = {
        "watch": "run_watch_command",
        "nudges": "run_nudges_command",
        "bets": "run_bets_command",
    }
    if cmd in routes:
        from nudgebet import cli

        getattr(cli, routes[cmd])(rest)
        return True
    return False


def main() -> None:
    if not _dispatch_subcommand(sys.argv[1:]):
        print(HELP)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
