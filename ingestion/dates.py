"""
Date helpers for RKI payloads.

The RKI layers encode dates three different ways depending on the field:
  Aktualisierung / MeldeDatum → epoch milliseconds
  Datenstand                  → "01.05.2021, 00:00 Uhr" (sometimes ISO-8601 on mirrors)
All results are timezone-aware. Naive values are read as Europe/Berlin.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config.settings import TIMEZONE

_BERLIN = ZoneInfo(TIMEZONE)

# "01.05.2021, 00:00 Uhr" or "01.05.2021"
_GERMAN_DATE = re.compile(
    r"^\s*(\d{1,2})\.(\d{1,2})\.(\d{4})(?:,?\s*(\d{1,2}):(\d{2})(?:\s*Uhr)?)?\s*$"
)


def from_epoch_ms(value: Union[int, float]) -> datetime:
    """Convert an ArcGIS epoch-millisecond value to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def parse_date(raw: Union[str, int, float, datetime]) -> datetime:
    """
    Parse any date encoding the RKI layers (or the mirror) return.

    Raises ValueError for anything unrecognised.
    """
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=_BERLIN)
    if isinstance(raw, bool):
        raise ValueError(f"Unparseable date: {raw!r}")
    if isinstance(raw, (int, float)):
        return from_epoch_ms(raw)
    if not isinstance(raw, str):
        raise ValueError(f"Unparseable date: {raw!r}")

    match = _GERMAN_DATE.match(raw)
    if match:
        day, month, year, hour, minute = match.groups()
        return datetime(
            int(year), int(month), int(day),
            int(hour or 0), int(minute or 0),
            tzinfo=_BERLIN,
        )

    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Unparseable date: {raw!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=_BERLIN)


def get_date_before(days: int, now: Optional[datetime] = None) -> str:
    """Return the Berlin calendar date `days` before now as YYYY-MM-DD."""
    now = now or datetime.now(_BERLIN)
    return (now.astimezone(_BERLIN) - timedelta(days=days)).strftime("%Y-%m-%d")
