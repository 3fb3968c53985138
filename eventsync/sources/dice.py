"""Dice.fm partner API client."""
from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from dateutil import parser as dateparser

from eventsync.errors import ConfigurationError
from eventsync.normalize.fields import to_local
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.base import RawEvent, SourceCollaborator

LOGGER = structlog.get_logger(__name__)

API_URL = "https://partners-endpoint.dice.fm/api/v2/events"
DEFAULT_CREDENTIALS_ENV = "DICE_API_KEY"
PARTNER_ID_ENV = "DICE_PARTNER_ID"


def _venue_fields(event: Dict[str, Any]) -> Dict[str, str]:
    venues = event.get("venues") or []
    venue = venues[0] if venues and isinstance(venues[0], dict) else {}
    location = event.get("location") if isinstance(event.get("location"), dict) else {}
    street = location.get("street") or event.get("address") or ""
    city = venue.get("city")
    if isinstance(city, dict):
        city = city.get("name")
    city = city or location.get("city") or ""
    address = ", ".join(part for part in (street, city) if part)
    fields = {
        "venue_name": venue.get("name") or "",
        "address": address,
        "city": city,
        "state": location.get("state") or "",
        "zip": location.get("zip") or "",
        "country": location.get("country") or "",
    }
    lat, lng = location.get("lat"), location.get("lng")
    if lat is not None and lng is not None:
        fields["coordinates"] = f"{lat},{lng}"
    return {key: str(value) for key, value in fields.items() if value}


class DiceSource(SourceCollaborator):
    """Lists a city's Dice.fm events within ``date_range_days``.

    Options: ``city`` (required), ``date_range_days`` (default 90),
    ``page_size`` (default 100), ``event_types``, ``partner_id`` and
    ``max_pages``.
    """

    source_type = "dice_fm"

    def _api_key(self, config: SourceConfig) -> Optional[str]:
        if config.credentials_env:
            return config.credential()
        return os.environ.get(DEFAULT_CREDENTIALS_ENV, "").strip() or None

    def check_config(self, config: SourceConfig) -> None:
        if not self._api_key(config):
            env = config.credentials_env or DEFAULT_CREDENTIALS_ENV
            raise ConfigurationError(f"Source {config.source_id} needs an API key in ${env}")
        if not str(config.option("city", "")).strip():
            raise ConfigurationError(f"Source {config.source_id} needs a city")
        self.zone(config)

    def _headers(self, config: SourceConfig) -> Dict[str, str]:
        headers = {"Accept": "application/json", "x-api-key": self._api_key(config) or ""}
        partner_id = config.option("partner_id") or os.environ.get(PARTNER_ID_ENV, "")
        if str(partner_id).strip():
            headers["X-Partner-Id"] = str(partner_id).strip()
        return headers

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        url = config.url or API_URL
        max_pages = int(config.option("max_pages", 3))
        items: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            params = {
                "page[size]": int(config.option("page_size", 100)),
                "page[number]": page,
                "types": config.option("event_types", "linkout,event"),
                "filter[cities][]": str(config.option("city")).strip(),
            }
            payload = await self.get_json(config, url, params=params, headers=self._headers(config))
            data = payload.get("data") if isinstance(payload, dict) else None
            if not isinstance(data, list):
                LOGGER.warning("dice_no_data", source_id=config.source_id, page=page)
                break
            items.extend(item for item in data if isinstance(item, dict))
            if not (payload.get("links") or {}).get("next"):
                break
        events = self.select(items, config)
        LOGGER.info("dice_fetched", source_id=config.source_id, raw=len(items), events=len(events))
        return events

    def select(self, items: List[Dict[str, Any]], config: SourceConfig) -> List[RawEvent]:
        """Map events and keep the ones starting between now and the date range."""
        now = self.local_now(config)
        until = now + timedelta(days=int(config.option("date_range_days", 90)))
        events: List[RawEvent] = []
        for item in items:
            start = self._local(item.get("date"), config)
            if start is None or start < now or start > until:
                continue
            end = self._local(item.get("date_end"), config)
            venue = _venue_fields(item)
            raw: RawEvent = {
                "title": item.get("name"),
                "description": item.get("description"),
                "startDate": start.date().isoformat(),
                "startTime": start.strftime("%H:%M"),
                "ticketUrl": item.get("url"),
                "venue": venue.pop("venue_name", ""),
                "address": venue.get("address", ""),
                "venue_metadata": venue,
            }
            if end is not None and end >= start:
                raw["endDate"] = end.date().isoformat()
                raw["endTime"] = end.strftime("%H:%M")
            events.append({key: value for key, value in raw.items() if value not in (None, "")})
        return events

    def _local(self, value: Any, config: SourceConfig) -> Optional[datetime]:
        if not value:
            return None
        try:
            parsed = dateparser.isoparse(str(value))
        except (ValueError, OverflowError):
            LOGGER.debug("dice_bad_date", source_id=config.source_id, value=value)
            return None
        return to_local(parsed, self.zone(config))
