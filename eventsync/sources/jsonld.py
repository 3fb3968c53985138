"""Reader for Schema.org ``Event`` nodes embedded as JSON-LD."""
from __future__ import annotations

from datetime import tzinfo
from typing import Dict, Iterable, List, Optional, Tuple

import orjson
import structlog
from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.normalize.fields import to_local
from eventsync.sources.base import RawEvent, SourceCollaborator

LOGGER = structlog.get_logger(__name__)

EVENT_TYPES = {"event", "musicevent", "festival", "comedyevent", "theaterevent", "danceevent", "socialevent"}


def _flatten_graph(payload: object) -> Iterable[Dict[str, object]]:
    if isinstance(payload, dict):
        if "@graph" in payload and isinstance(payload["@graph"], list):
            for node in payload["@graph"]:
                if isinstance(node, dict):
                    yield from _flatten_graph(node)
        elif "@list" in payload and isinstance(payload["@list"], list):
            for node in payload["@list"]:
                if isinstance(node, dict):
                    yield node
        else:
            yield payload
    elif isinstance(payload, list):
        for item in payload:
            if isinstance(item, dict):
                yield from _flatten_graph(item)


def _first_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, list):
        for item in value:
            found = _first_str(item)
            if found:
                return found
    return None


def _is_event(type_value: object) -> bool:
    if isinstance(type_value, list):
        return any(_is_event(item) for item in type_value)
    return isinstance(type_value, str) and type_value.replace(" ", "").lower() in EVENT_TYPES


def _split_moment(value: Optional[str], zone: Optional[tzinfo]) -> Tuple[Optional[str], Optional[str]]:
    """Return (date, time) strings; the time is None for date-only values."""
    if not value:
        return None, None
    try:
        parsed = dateparser.isoparse(value)
    except (ValueError, OverflowError):
        return value, None
    if "T" not in value:
        return parsed.date().isoformat(), None
    if parsed.tzinfo is not None:
        parsed = to_local(parsed, zone)
    return parsed.date().isoformat(), parsed.strftime("%H:%M")


def _location_fields(location: object) -> Dict[str, str]:
    if isinstance(location, list):
        location = next((item for item in location if isinstance(item, (dict, str))), None)
    if isinstance(location, str):
        return {"venue_name": location.strip()}
    if not isinstance(location, dict):
        return {}
    fields: Dict[str, Optional[str]] = {"venue_name": _first_str(location.get("name"))}
    address = location.get("address")
    if isinstance(address, dict):
        city = _first_str(address.get("addressLocality"))
        state = _first_str(address.get("addressRegion"))
        fields.update(
            {
                "address": _first_str(address.get("streetAddress")),
                "venue_city": city,
                "venue_state": state,
                "venue_zip": _first_str(address.get("postalCode")),
                "venue_country": _first_str(address.get("addressCountry")),
                "location_name": ", ".join(part for part in (city, state) if part) or None,
            }
        )
    elif isinstance(address, str):
        fields["address"] = address.strip()
    geo = location.get("geo")
    if isinstance(geo, dict):
        lat = _first_str(geo.get("latitude"))
        lng = _first_str(geo.get("longitude"))
        if lat and lng:
            fields["venue_coordinates"] = f"{lat},{lng}"
    fields["venue_phone"] = _first_str(location.get("telephone"))
    fields["venue_website"] = _first_str(location.get("url")) or _first_str(location.get("sameAs"))
    return {key: value for key, value in fields.items() if value}


def _offers(offers: object) -> Tuple[Optional[str], Optional[str]]:
    """Return (price, ticket url) from the first useful offer."""
    candidates = offers if isinstance(offers, list) else [offers]
    price = url = None
    for offer in candidates:
        if not isinstance(offer, dict):
            continue
        if price is None:
            amount = _first_str(offer.get("price")) or _first_str(offer.get("lowPrice"))
            if amount:
                currency = _first_str(offer.get("priceCurrency"))
                price = f"{amount} {currency}" if currency else amount
        url = url or _first_str(offer.get("url"))
    return price, url


def extract_events_from_jsonld(html: str, *, zone: Optional[tzinfo] = None) -> List[RawEvent]:
    """Extract raw events from JSON-LD blobs embedded in HTML."""
    soup = BeautifulSoup(html, "html.parser")
    results: List[RawEvent] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = orjson.loads((script.string or "{}").encode("utf-8"))
        except orjson.JSONDecodeError:
            LOGGER.debug("jsonld_decode_failed")
            continue
        for node in _flatten_graph(data):
            if not _is_event(node.get("@type")):
                continue
            start_date, start_time = _split_moment(_first_str(node.get("startDate")), zone)
            end_date, end_time = _split_moment(_first_str(node.get("endDate")), zone)
            price, offer_url = _offers(node.get("offers"))
            event: RawEvent = {
                "title": _first_str(node.get("name")),
                "description": _first_str(node.get("description")),
                "start_date": start_date,
                "start_time": start_time,
                "end_date": end_date,
                "end_time": end_time,
                "ticket_url": offer_url or _first_str(node.get("url")),
                "price": price,
            }
            event.update(_location_fields(node.get("location")))
            results.append({key: value for key, value in event.items() if value is not None})
    return results


class JsonLdSource(SourceCollaborator):
    """Reads every Schema.org event on a page and drops the ones already over."""

    source_type = "jsonld"

    def check_config(self, config: SourceConfig) -> None:
        self.require_url(config)
        self.zone(config)

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        body = await self.get_text(config, self.require_url(config))
        return self.parse(body, config)

    def parse(self, body: str, config: SourceConfig) -> List[RawEvent]:
        now = self.local_now(config)
        today = now.date().isoformat()
        current = now.strftime("%H:%M")
        events = []
        for event in extract_events_from_jsonld(body, zone=self.zone(config)):
            start_date = event.get("start_date")
            if isinstance(start_date, str) and len(start_date) == 10 and start_date[4] == "-":
                if start_date < today:
                    continue
                start_time = event.get("start_time")
                if start_date == today and isinstance(start_time, str) and start_time < current:
                    continue
            events.append(event)
        LOGGER.info("jsonld_parsed", source_id=config.source_id, events=len(events))
        return events
