"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def elapsed_ms(started_ms: int) -> int:
    return max(0, monotonic_ms() - started_ms)
