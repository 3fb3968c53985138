"""iCalendar feed reader with bounded recurrence expansion."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

import structlog
from dateutil.rrule import rruleset, rrulestr

from eventsync.errors import ConfigurationError, SourceFetchError
from eventsync.normalize.fields import resolve_timezone, to_local
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.base import RawEvent, SourceCollaborator

LOGGER = structlog.get_logger(__name__)

DEFAULT_HORIZON_DAYS = 180
DEFAULT_EVENT_LIMIT = 50

_DURATION_RE = re.compile(
    r"^(?P<sign>[+-])?P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_UNTIL_RE = re.compile(r"UNTIL=([0-9TZ]+)", re.IGNORECASE)


class Property(NamedTuple):
    params: Dict[str, str]
    value: str


Component = Dict[str, List[Property]]


def unfold(text: str) -> List[str]:
    """Join RFC 5545 continuation lines onto the line they continue."""
    lines: List[str] = []
    for line in text.splitlines():
        if line.startswith((" ", "\t")) and lines:
            lines[-1] += line[1:]
        elif line.strip():
            lines.append(line.rstrip("\r"))
    return lines


def unescape(value: str) -> str:
    return (
        value.replace("\\n", "\n")
        .replace("\\N", "\n")
        .replace("\\,", ",")
        .replace("\\;", ";")
        .replace("\\\\", "\\")
    )


def parse_line(line: str) -> Tuple[str, Dict[str, str], str]:
    """Split ``NAME;PARAM=x:VALUE`` honouring quoted parameter values."""
    in_quotes = False
    split_at = -1
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            split_at = index
            break
    if split_at < 0:
        return line.upper(), {}, ""
    head, value = line[:split_at], line[split_at + 1:]
    name, *raw_params = head.split(";")
    params: Dict[str, str] = {}
    for raw in raw_params:
        key, _, param_value = raw.partition("=")
        params[key.upper()] = param_value.strip('"')
    return name.upper(), params, value


def parse_calendar(text: str) -> Tuple[Dict[str, str], List[Component]]:
    """Return calendar-level properties and the VEVENT components."""
    lines = unfold(text)
    if not lines or lines[0].strip().upper() != "BEGIN:VCALENDAR":
        raise ValueError("not an iCalendar document")
    calendar: Dict[str, str] = {}
    events: List[Component] = []
    stack: List[str] = []
    current: Optional[Component] = None
    for line in lines:
        name, params, value = parse_line(line)
        if name == "BEGIN":
            stack.append(value.upper())
            if value.upper() == "VEVENT":
                current = {}
            continue
        if name == "END":
            closing = value.upper()
            if stack and stack[-1] == closing:
                stack.pop()
            if closing == "VEVENT" and current is not None:
                events.append(current)
                current = None
            continue
        if current is not None and stack and stack[-1] == "VEVENT":
            current.setdefault(name, []).append(Property(params, value))
        elif stack == ["VCALENDAR"]:
            calendar[name] = value
    return calendar, events


def parse_duration(value: str) -> Optional[timedelta]:
    match = _DURATION_RE.match(value.strip().upper())
    if not match:
        return None
    parts = {key: int(amount) for key, amount in match.groupdict().items() if amount and key != "sign"}
    delta = timedelta(**parts)
    return -delta if match.group("sign") == "-" else delta


@dataclass
class _Moment:
    """A wall-clock datetime in ``zone`` (all-day values sit at midnight)."""

    wall: datetime
    zone: tzinfo
    all_day: bool


def _parse_moment(prop: Property, default_zone: tzinfo) -> _Moment:
    value = prop.value.strip()
    if prop.params.get("VALUE", "").upper() == "DATE" or len(value) == 8:
        day = datetime.strptime(value[:8], "%Y%m%d")
        return _Moment(day, default_zone, True)
    utc = value.endswith("Z")
    stamp = datetime.strptime(value.rstrip("Z")[:15], "%Y%m%dT%H%M%S")
    if utc:
        return _Moment(stamp, timezone.utc, False)
    zone = resolve_timezone(prop.params.get("TZID")) or default_zone
    return _Moment(stamp, zone, False)


def _moment_list(props: Iterable[Property], zone: tzinfo, default_zone: tzinfo) -> List[datetime]:
    """Parse RDATE/EXDATE lists into wall-clock datetimes of ``zone``."""
    values: List[datetime] = []
    for prop in props:
        for part in prop.value.split(","):
            if not part.strip():
                continue
            moment = _parse_moment(Property(prop.params, part), default_zone)
            values.append(_rezone(moment, zone))
    return values


def _rezone(moment: _Moment, zone: tzinfo) -> datetime:
    if moment.all_day or moment.zone is zone:
        return moment.wall
    aware = moment.wall.replace(tzinfo=moment.zone)
    return aware.astimezone(zone).replace(tzinfo=None)


def _until_in_zone(rule: str, zone: tzinfo) -> str:
    """Rewrite a UTC ``UNTIL`` into floating wall-clock time of ``zone``."""

    def _replace(match: re.Match) -> str:
        raw = match.group(1)
        if len(raw) == 8:
            return f"UNTIL={raw}T235959"
        stamp = datetime.strptime(raw.rstrip("Z")[:15], "%Y%m%dT%H%M%S")
        if raw.endswith("Z"):
            stamp = stamp.replace(tzinfo=timezone.utc).astimezone(zone).replace(tzinfo=None)
        return f"UNTIL={stamp:%Y%m%dT%H%M%S}"

    return _UNTIL_RE.sub(_replace, rule)


def _text(component: Component, name: str) -> Optional[str]:
    props = component.get(name)
    if not props:
        return None
    value = unescape(props[0].value).strip()
    return value or None


class ICalSource(SourceCollaborator):
    """Reads an iCalendar feed such as a public Google Calendar.

    Options: ``horizon_days`` (default 180), ``offset_hours`` (fixed correction
    applied after timezone conversion), ``event_limit`` (default 50) and
    ``timezone``.
    """

    source_type = "ical"

    def check_config(self, config: SourceConfig) -> None:
        self.require_url(config)
        self.zone(config)
        try:
            int(config.option("horizon_days", DEFAULT_HORIZON_DAYS))
            int(config.option("event_limit", DEFAULT_EVENT_LIMIT))
            float(config.option("offset_hours", 0))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Source {config.source_id} has invalid iCal options: {exc}") from exc

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        body = await self.get_text(config, self.require_url(config))
        return self.parse(body, config)

    def parse(self, body: str, config: SourceConfig) -> List[RawEvent]:
        """Expand the feed into raw events between today and the horizon."""
        try:
            calendar, components = parse_calendar(body)
        except ValueError as exc:
            raise SourceFetchError(f"Malformed calendar for {config.source_id}: {exc}", source_id=config.source_id) from exc

        output_zone = self.zone(config)
        feed_zone = resolve_timezone(calendar.get("X-WR-TIMEZONE")) or output_zone
        now = self.local_now(config)
        window_start = datetime.combine(now.date(), time.min)
        window_end = window_start + timedelta(days=int(config.option("horizon_days", DEFAULT_HORIZON_DAYS)))
        offset = timedelta(hours=float(config.option("offset_hours", 0)))

        overridden: Dict[str, Set[datetime]] = {}
        for component in components:
            uid = _text(component, "UID")
            if uid and component.get("RECURRENCE-ID") and component.get("DTSTART"):
                moment = _parse_moment(component["RECURRENCE-ID"][0], feed_zone)
                overridden.setdefault(uid, set()).add(_rezone(moment, timezone.utc) if not moment.all_day else moment.wall)

        occurrences: List[Tuple[datetime, RawEvent]] = []
        for component in components:
            if (_text(component, "STATUS") or "").upper() == "CANCELLED" or not component.get("DTSTART"):
                continue
            try:
                occurrences.extend(
                    self._expand(component, feed_zone, output_zone, offset, window_start, window_end, overridden)
                )
            except (ValueError, OverflowError) as exc:
                LOGGER.warning("ical_event_skipped", source_id=config.source_id, uid=_text(component, "UID"), error=str(exc))

        occurrences.sort(key=lambda item: item[0])
        events: List[RawEvent] = []
        seen: Set[Tuple[str, str, str, str]] = set()
        for _, event in occurrences:
            key = (
                str(event.get("title", "")).casefold(),
                str(event.get("start_date", "")),
                str(event.get("start_time", "")),
                str(event.get("venue_name", "")).casefold(),
            )
            if key in seen:
                continue
            seen.add(key)
            events.append(event)

        limit = int(config.option("event_limit", DEFAULT_EVENT_LIMIT))
        if limit > 0:
            events = events[:limit]
        LOGGER.info("ical_parsed", source_id=config.source_id, components=len(components), events=len(events))
        return events

    def _expand(
        self,
        component: Component,
        feed_zone: tzinfo,
        output_zone: tzinfo,
        offset: timedelta,
        window_start: datetime,
        window_end: datetime,
        overridden: Dict[str, Set[datetime]],
    ) -> List[Tuple[datetime, RawEvent]]:
        start = _parse_moment(component["DTSTART"][0], feed_zone)
        duration = self._duration(component, start, feed_zone)
        uid = _text(component, "UID")

        if component.get("RRULE") and not component.get("RECURRENCE-ID"):
            rules = rruleset()
            for prop in component["RRULE"]:
                rules.rrule(rrulestr(_until_in_zone(prop.value, start.zone), dtstart=start.wall))
            for extra in _moment_list(component.get("RDATE", []), start.zone, feed_zone):
                rules.rdate(extra)
            for excluded in _moment_list(component.get("EXDATE", []), start.zone, feed_zone):
                rules.exdate(excluded)
            skip = overridden.get(uid or "", set())
            walls = []
            for wall in rules.between(window_start - timedelta(days=2), window_end + timedelta(days=2), inc=True):
                key = wall if start.all_day else _rezone(_Moment(wall, start.zone, False), timezone.utc)
                if key not in skip:
                    walls.append(wall)
        else:
            walls = [start.wall]

        results: List[Tuple[datetime, RawEvent]] = []
        for wall in walls:
            moment = _Moment(wall, start.zone, start.all_day)
            local_start = wall if start.all_day else to_local(wall.replace(tzinfo=start.zone), output_zone) + offset
            if local_start < window_start or local_start >= window_end:
                continue
            results.append((local_start, self._raw_event(component, moment, local_start, duration, output_zone, offset)))
        return results

    @staticmethod
    def _duration(component: Component, start: _Moment, feed_zone: tzinfo) -> timedelta:
        if component.get("DTEND"):
            end = _parse_moment(component["DTEND"][0], feed_zone)
            if start.all_day or end.all_day:
                return end.wall - start.wall
            return end.wall.replace(tzinfo=end.zone) - start.wall.replace(tzinfo=start.zone)
        if component.get("DURATION"):
            parsed = parse_duration(component["DURATION"][0].value)
            if parsed is not None:
                return parsed
        return timedelta(days=1) if start.all_day else timedelta(0)

    @staticmethod
    def _raw_event(
        component: Component,
        moment: _Moment,
        local_start: datetime,
        duration: timedelta,
        output_zone: tzinfo,
        offset: timedelta,
    ) -> RawEvent:
        event: RawEvent = {
            "title": _text(component, "SUMMARY"),
            "description": _text(component, "DESCRIPTION"),
            "start_date": local_start.date().isoformat(),
            "ticket_url": _text(component, "URL"),
        }
        if moment.all_day:
            last_day: date = (local_start + max(duration, timedelta(days=1)) - timedelta(days=1)).date()
            event["end_date"] = last_day.isoformat()
        else:
            event["start_time"] = local_start.strftime("%H:%M")
            if duration > timedelta(0):
                local_end = local_start + duration
                event["end_date"] = local_end.date().isoformat()
                event["end_time"] = local_end.strftime("%H:%M")
        location = _text(component, "LOCATION")
        if location:
            venue, _, address = location.partition(",")
            event["venue_name"] = venue.strip()
            event["address"] = address.strip() or location
        geo = _text(component, "GEO")
        if geo and ";" in geo:
            lat, _, lng = geo.partition(";")
            event["venue_coordinates"] = f"{lat.strip()},{lng.strip()}"
        return {key: value for key, value in event.items() if value is not None}
