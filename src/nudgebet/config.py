"""User-configurable values loaded from environment variables."""

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

_REQUIRED = ("NUDGEBET_API_URL",)
_missing = [var for var in _REQUIRED if not os.environ.get(var)]
if _missing:
    print(f"Missing required env vars: {', '.join(_missing)}", file=sys.stderr)
    print("Set them in .env or your environment.", file=sys.stderr)
    raise SystemExit(1)

API_URL: str = os.environ["NUDGEBET_API_URL"].rstrip("/")

POLL_SECONDS: float = float(os.environ.get("NUDGEBET_POLL_SECONDS") or 60)
SWEEP_SECONDS: float = float(os.environ.get("NUDGEBET_SWEEP_SECONDS") or 120)
# Pause between dismissing one nudge and showing the next.
DISMISS_DELAY: float = float(os.environ.get("NUDGEBET_DISMISS_DELAY") or 0.5)


def _detect_local_tz() -> str:
    """IANA name of the host zone from /etc/timezone or the /etc/localtime link; UTC otherwise."""
    try:
        name = Path("/etc/timezone").read_text().strip()
    except OSError:
        name = ""
    if name:
        return name

    link = Path("/etc/localtime")
    if link.is_symlink():
        parts = link.resolve().parts
        if "zoneinfo" in parts:
            return "/".join(parts[parts.index("zoneinfo") + 1 :])
    return "UTC"


TZ: ZoneInfo = ZoneInfo(os.environ.get("NUDGEBET_TIMEZONE") or _detect_local_tz())
