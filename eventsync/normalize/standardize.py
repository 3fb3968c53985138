"""Map raw source dictionaries into :class:`StandardizedEvent` records."""
from __future__ import annotations

from typing import Dict, Mapping, Optional

from pydantic import ValidationError as ModelValidationError

from eventsync.errors import ValidationError
from eventsync.normalize.fields import clean_text, parse_time, split_datetime
from eventsync.quality.keys import generate
from eventsync.storage.models import StandardizedEvent

RawEvent = Dict[str, object]

FIELD_ALIASES: Dict[str, str] = {
    "name": "title",
    "summary": "title",
    "startDate": "start_date",
    "start": "start_date",
    "endDate": "end_date",
    "end": "end_date",
    "startTime": "start_time",
    "endTime": "end_time",
    "venue": "venue_name",
    "venueName": "venue_name",
    "venueAddress": "address",
    "locationName": "location_name",
    "location": "location_name",
    "ticketUrl": "ticket_url",
    "url": "ticket_url",
    "venueCity": "venue_city",
    "venueState": "venue_state",
    "venueZip": "venue_zip",
    "venueCountry": "venue_country",
    "venuePhone": "venue_phone",
    "venueWebsite": "venue_website",
    "venueCoordinates": "venue_coordinates",
    "venueCapacity": "venue_capacity",
}

VENUE_KEYS = {
    "venue_city": "city",
    "venue_state": "state",
    "venue_zip": "zip",
    "venue_country": "country",
    "venue_phone": "phone",
    "venue_website": "website",
    "venue_coordinates": "coordinates",
    "venue_capacity": "capacity",
    "venue_description": "description",
}


def _as_text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ",".join(str(part) for part in value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def map_fields(raw: Mapping[str, object]) -> RawEvent:
    """Rename source-specific keys to canonical ones and coerce values to text.

    Canonical keys win over aliases when a source supplies both. A nested
    ``venue_metadata`` mapping is flattened into ``venue_*`` keys.
    """
    mapped: RawEvent = {}
    nested: Mapping[str, object] = {}
    for key, value in raw.items():
        if key == "venue_metadata" and isinstance(value, Mapping):
            nested = value
            continue
        canonical = FIELD_ALIASES.get(key, key)
        if canonical != key and canonical in raw:
            continue
        if mapped.get(canonical):
            continue
        mapped[canonical] = _as_text(value)
    for key, value in map_fields(nested).items() if nested else ():
        target = key if key.startswith("venue_") or key == "address" else f"venue_{key}"
        if not mapped.get(target):
            mapped[target] = value
    return mapped


def _optional(mapped: Mapping[str, object], key: str) -> Optional[str]:
    return clean_text(mapped.get(key))  # type: ignore[arg-type]


def standardize(mapped: Mapping[str, object], *, source_id: str = "") -> StandardizedEvent:
    """Build the canonical record from an alias-mapped raw event.

    Raises :class:`ValidationError` when the start date cannot be parsed or the
    record violates the model invariants.
    """
    title = mapped.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("missing title")

    raw_start = _optional(mapped, "start_date")
    if not raw_start:
        raise ValidationError("missing start_date")
    try:
        start_date, embedded_start_time = split_datetime(raw_start)
    except ValueError:
        raise ValidationError(f"unparseable start_date: {raw_start!r}") from None

    end_date = None
    embedded_end_time = None
    raw_end = _optional(mapped, "end_date")
    if raw_end:
        try:
            end_date, embedded_end_time = split_datetime(raw_end)
        except ValueError:
            end_date = None

    start_time = parse_time(_optional(mapped, "start_time")) or embedded_start_time
    end_time = parse_time(_optional(mapped, "end_time")) or embedded_end_time

    venue_name = _optional(mapped, "venue_name") or ""
    ticket_url = _optional(mapped, "ticket_url")
    if ticket_url and not ticket_url.lower().startswith(("http://", "https://")):
        ticket_url = None

    venue_metadata: Dict[str, str] = {}
    for raw_key, target in VENUE_KEYS.items():
        value = _optional(mapped, raw_key)
        if value:
            venue_metadata[target] = value

    try:
        return StandardizedEvent(
            title=title,
            description=_optional(mapped, "description"),
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            venue_name=venue_name,
            address=_optional(mapped, "address") or "",
            location_name=_optional(mapped, "location_name") or "",
            ticket_url=ticket_url,
            price=_optional(mapped, "price"),
            identifier=generate(title, start_date.isoformat(), venue_name),
            source_id=source_id,
            venue_metadata=venue_metadata,
        )
    except ModelValidationError as exc:
        reasons = "; ".join(error["msg"] for error in exc.errors())
        raise ValidationError(reasons) from exc

