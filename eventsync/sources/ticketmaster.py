"""Ticketmaster Discovery API v2 client."""
from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from dateutil import parser as dateparser

from eventsync.errors import ConfigurationError
from eventsync.normalize.fields import to_local
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.base import RawEvent, SourceCollaborator

LOGGER = structlog.get_logger(__name__)

API_URL = "https://app.ticketmaster.com/discovery/v2/events.json"
DEFAULT_CREDENTIALS_ENV = "TICKETMASTER_API_KEY"
DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 5

SEGMENTS = {
    "music": "Music",
    "sports": "Sports",
    "arts_theatre": "Arts & Theatre",
    "film": "Film",
    "miscellaneous": "Miscellaneous",
}

_GEO_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


def _get(payload: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(payload, dict):
            payload = payload.get(key)
        elif isinstance(payload, list) and isinstance(key, int) and len(payload) > key:
            payload = payload[key]
        else:
            return None
    return payload


def _price(event: Dict[str, Any]) -> Optional[str]:
    price_range = _get(event, "priceRanges", 0)
    if not isinstance(price_range, dict):
        return None
    low = float(price_range.get("min") or 0)
    high = float(price_range.get("max") or low)
    if low == high:
        return f"${low:,.2f}"
    return f"${low:,.2f} - ${high:,.2f}"


def map_venue(venue: Dict[str, Any]) -> Dict[str, str]:
    """Flatten a Discovery API venue into ``venue*`` raw fields."""
    address = ", ".join(
        line for line in (_get(venue, "address", key) for key in ("line1", "line2", "line3")) if line
    )
    lat = _get(venue, "location", "latitude")
    lng = _get(venue, "location", "longitude")
    fields = {
        "venue": venue.get("name"),
        "venueAddress": address,
        "venueCity": _get(venue, "city", "name"),
        "venueState": _get(venue, "state", "stateCode"),
        "venueZip": venue.get("postalCode"),
        "venueCountry": _get(venue, "country", "countryCode"),
        "venuePhone": _get(venue, "boxOfficeInfo", "phoneNumberDetail"),
        "venueWebsite": venue.get("url"),
        "venueCoordinates": f"{lat},{lng}" if lat and lng else None,
    }
    return {key: str(value).strip() for key, value in fields.items() if value}


class TicketmasterSource(SourceCollaborator):
    """Searches the Discovery API around a point and keeps on-sale events.

    Options: ``classification`` (required), ``geo_point`` ("lat,lng"),
    ``radius`` (miles, default 50), ``genre_id``, ``venue_id``, ``page_size``
    and ``max_pages``.
    """

    source_type = "ticketmaster"

    def _api_key(self, config: SourceConfig) -> Optional[str]:
        if config.credentials_env:
            return config.credential()
        return os.environ.get(DEFAULT_CREDENTIALS_ENV, "").strip() or None

    def check_config(self, config: SourceConfig) -> None:
        if not self._api_key(config):
            env = config.credentials_env or DEFAULT_CREDENTIALS_ENV
            raise ConfigurationError(f"Source {config.source_id} needs an API key in ${env}")
        if not config.option("classification"):
            raise ConfigurationError(f"Source {config.source_id} needs a classification")
        geo_point = config.option("geo_point")
        if geo_point and not _GEO_RE.match(str(geo_point)):
            raise ConfigurationError(f"Source {config.source_id} has invalid geo_point {geo_point!r}")
        self.zone(config)

    def build_params(self, config: SourceConfig, page: int) -> Dict[str, Any]:
        classification = str(config.option("classification"))
        start = self.context.clock() + timedelta(hours=1)
        params: Dict[str, Any] = {
            "apikey": self._api_key(config),
            "size": int(config.option("page_size", DEFAULT_PAGE_SIZE)),
            "sort": "date,asc",
            "page": page,
            "segmentName": SEGMENTS.get(classification.lower(), classification),
            "startDateTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        geo_point = config.option("geo_point")
        if geo_point:
            match = _GEO_RE.match(str(geo_point))
            if match:
                params["geoPoint"] = f"{match.group(1)},{match.group(2)}"
                params["radius"] = str(config.option("radius", 50))
                params["unit"] = "miles"
        if config.option("genre_id"):
            params["genreId"] = config.option("genre_id")
        if config.option("venue_id"):
            params["venueId"] = config.option("venue_id")
        return params

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        url = config.url or API_URL
        max_pages = int(config.option("max_pages", DEFAULT_MAX_PAGES))
        events: List[RawEvent] = []
        seen_ids = set()
        page = 0
        total_pages = 1
        while page < min(total_pages, max_pages):
            payload = await self.get_json(config, url, params=self.build_params(config, page))
            if not isinstance(payload, dict):
                break
            items = _get(payload, "_embedded", "events") or []
            for item in items:
                event_id = item.get("id")
                if event_id in seen_ids:
                    continue
                seen_ids.add(event_id)
                mapped = self.map_event(item, config)
                if mapped is not None:
                    events.append(mapped)
            total_pages = int(_get(payload, "page", "totalPages") or 1)
            page += 1
            if not items:
                break
        LOGGER.info("ticketmaster_fetched", source_id=config.source_id, pages=page, events=len(events))
        return events

    def map_event(self, event: Dict[str, Any], config: SourceConfig) -> Optional[RawEvent]:
        """Map one Discovery API event; None when it is not on sale."""
        if _get(event, "dates", "status", "code") != "onsale":
            return None
        start_date = _get(event, "dates", "start", "localDate")
        start_time = _get(event, "dates", "start", "localTime")
        utc_value = _get(event, "dates", "start", "dateTime")
        if not start_date and utc_value:
            try:
                local = to_local(dateparser.isoparse(utc_value), self.zone(config))
            except (ValueError, OverflowError):
                local = None
            if local is not None:
                start_date = local.date().isoformat()
                start_time = local.strftime("%H:%M")
        raw: RawEvent = {
            "title": event.get("name"),
            "description": event.get("info") or event.get("pleaseNote"),
            "startDate": start_date,
            "startTime": start_time,
            "ticketUrl": event.get("url"),
            "price": _price(event),
            "artist": _get(event, "_embedded", "attractions", 0, "name"),
        }
        venue = _get(event, "_embedded", "venues", 0)
        if isinstance(venue, dict):
            raw.update(map_venue(venue))
            city, state = _get(venue, "city", "name"), _get(venue, "state", "stateCode")
            if city:
                raw["locationName"] = f"{city}, {state}" if state else city
        return {key: value for key, value in raw.items() if value not in (None, "")}
