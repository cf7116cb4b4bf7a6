"""Seconds <-> HH:MM:SS helpers and calendar-day keys."""
import time
from datetime import date, datetime, timedelta, timezone

import config


def format_hms(seconds: int) -> str:
    """Format seconds as HH:MM:SS. Hours are not capped at 24."""
    seconds = max(0, int(seconds))
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02d}:{m:02d}:{s:02d}"


def format_hm(seconds: int) -> str:
    """Format seconds as 'Xh Ym'."""
    seconds = max(0, int(seconds))
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def parse_hms(text: str) -> int:
    """Parse 'HH:MM' or 'HH:MM:SS' into seconds."""
    parts = text.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM or HH:MM:SS, got {text!r}")
    try:
        values = [int(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Non-numeric component in {text!r}") from e
    if any(v < 0 for v in values) or any(v >= 60 for v in values[1:]):
        raise ValueError(f"Out of range component in {text!r}")
    if len(values) == 2:
        values.append(0)
    h, m, s = values
    return h * 3600 + m * 60 + s


def now_ms() -> int:
    return int(time.time() * 1000)


def _tz() -> timezone:
    return timezone(timedelta(minutes=config.TZ_OFFSET_MINUTES))


def today_key(at_ms: int | None = None) -> str:
    """Calendar-day key (YYYY-MM-DD) for the given epoch-ms instant."""
    if at_ms is None:
        at_ms = now_ms()
    return datetime.fromtimestamp(at_ms / 1000, tz=_tz()).date().isoformat()


def date_key(d: date) -> str:
    return d.isoformat()


def parse_date_key(text: str) -> date:
    """Parse a YYYY-MM-DD key, raising ValueError if malformed."""
    return datetime.strptime(text, "%Y-%m-%d").date()


def ms_to_datetime(at_ms: int) -> datetime:
    return datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc)
