"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

# Numbers above this are epoch milliseconds, below it epoch seconds.
_EPOCH_MS_CUTOFF = 100_000_000_000


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    if cleaned.isdigit():
        return _from_epoch(int(cleaned))
    return None


def _from_epoch(value: float) -> datetime | None:
    seconds = value / 1000.0 if abs(value) >= _EPOCH_MS_CUTOFF else float(value)
    try:
        return datetime.fromtimestamp(seconds, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Convert ISO strings, epoch numbers or datetimes into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        if parsed is None:
            return None
        dt = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    return None


def to_epoch_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def duration_ms(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    return max(0, int(round((end - start).total_seconds() * 1000)))


def earliest(values: Iterable[datetime | None]) -> datetime | None:
    present = [v for v in values if v is not None]
    return min(present) if present else None


def latest(values: Iterable[datetime | None]) -> datetime | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None
