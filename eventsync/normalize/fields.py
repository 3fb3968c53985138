"""Field level parsing helpers shared by sources and the standardizer."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateparser

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_HAS_TIME_RE = re.compile(r"\d:\d|\d\s*[ap]\.?m\b", re.IGNORECASE)
_TIME_RE = re.compile(
    r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\b\.?|(?<![\d:])(\d{1,2}):(\d{2})\b",
    re.IGNORECASE,
)


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Resolve an IANA name or a ``UTC+HH:MM`` style offset."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        if name.startswith("UTC") and len(name) >= 6:
            sign = 1 if name[3] == "+" else -1
            hours = int(name[4:6])
            minutes = int(name[7:9]) if len(name) >= 9 else 0
            return timezone(sign * timedelta(hours=hours, minutes=minutes))
    return None


def to_local(value: datetime, zone: Optional[tzinfo]) -> datetime:
    """Return a naive wall-clock datetime in ``zone`` (UTC assumed for naive input)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if zone is not None:
        value = value.astimezone(zone)
    return value.replace(tzinfo=None)


def parse_time(value: Optional[str]) -> Optional[time]:
    """Parse a time-of-day string; return None when nothing usable is present."""
    if not value or not value.strip():
        return None
    found = find_times([value])
    if found:
        return found[0]
    if not _HAS_TIME_RE.search(value):
        return None
    try:
        parsed = dateparser.parse(value.strip())
    except (dateparser.ParserError, OverflowError):
        return None
    return parsed.time().replace(second=0, microsecond=0)


def split_datetime(value: str) -> Tuple[date, Optional[time]]:
    """Split a combined date/time string into its date and optional time."""
    text = value.strip()
    if _ISO_DATE_RE.match(text):
        return date.fromisoformat(text), None
    try:
        parsed = dateparser.parse(text)
    except (dateparser.ParserError, OverflowError) as exc:
        raise ValueError(str(exc)) from exc
    if _HAS_TIME_RE.search(text):
        return parsed.date(), parsed.time().replace(second=0, microsecond=0)
    return parsed.date(), None


def find_times(texts: Iterable[str]) -> List[time]:
    """Extract every ``8:00 PM`` / ``8pm`` / ``20:00`` occurrence, in order."""
    results: List[time] = []
    for text in texts:
        for match in _TIME_RE.finditer(text or ""):
            if match.group(3):
                hour = int(match.group(1)) % 12
                minute = int(match.group(2) or 0)
                if match.group(3).lower() == "p":
                    hour += 12
            else:
                hour = int(match.group(4))
                minute = int(match.group(5))
            if hour < 24 and minute < 60:
                results.append(time(hour, minute))
    return results


def parse_fuzzy_date(value: str, *, reference: datetime) -> Optional[date]:
    """Parse listing-style dates such as ``Fri, Jun 6``; missing parts come from ``reference``."""
    text = " ".join(value.split())
    if not text:
        return None
    default = reference.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    try:
        return dateparser.parse(text, default=default, fuzzy=True).date()
    except (dateparser.ParserError, OverflowError, ValueError):
        return None


def split_location(hint: Optional[str]) -> Tuple[str, str]:
    """Split ``"City, ST"`` on the first comma into (city, state)."""
    if not hint:
        return "", ""
    city, _, state = hint.partition(",")
    return city.strip(), state.strip()


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; return None for blank input."""
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None
