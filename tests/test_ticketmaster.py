import asyncio

import pytest

from eventsync.errors import ConfigurationError
from eventsync.normalize.standardize import map_fields
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.ticketmaster import API_URL, TicketmasterSource, map_venue

VENUE = {
    "name": "Charleston Music Hall",
    "postalCode": "29401",
    "url": "https://www.ticketmaster.com/charleston-music-hall",
    "address": {"line1": "37 John St"},
    "city": {"name": "Charleston"},
    "state": {"stateCode": "SC"},
    "country": {"countryCode": "US"},
    "location": {"latitude": "32.7877", "longitude": "-79.9364"},
}


def _event(event_id, name, status="onsale", local_date="2025-05-10", local_time="20:00:00"):
    return {
        "id": event_id,
        "name": name,
        "url": f"https://www.ticketmaster.com/event/{event_id}",
        "info": "All ages.",
        "dates": {"start": {"localDate": local_date, "localTime": local_time}, "status": {"code": status}},
        "priceRanges": [{"min": 25, "max": 49.5}],
        "_embedded": {"venues": [VENUE], "attractions": [{"name": name}]},
    }


def _config(**options) -> SourceConfig:
    defaults = {"classification": "music", "geo_point": "32.7765,-79.9311", "radius": "25"}
    defaults.update(options)
    return SourceConfig(
        source_id="charleston_ticketmaster",
        source_type="ticketmaster",
        credentials_env="TM_TEST_KEY",
        options=defaults,
    )


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    monkeypatch.setenv("TM_TEST_KEY", "secret")


def test_build_params(make_context):
    source = TicketmasterSource(make_context())
    params = source.build_params(_config(genre_id="KnvZfZ7vAvF"), page=2)
    assert params == {
        "apikey": "secret",
        "size": 50,
        "sort": "date,asc",
        "page": 2,
        "segmentName": "Music",
        "startDateTime": "2025-05-01T17:00:00Z",
        "geoPoint": "32.7765,-79.9311",
        "radius": "25",
        "unit": "miles",
        "genreId": "KnvZfZ7vAvF",
    }


def test_map_venue_uses_venue_prefixed_keys():
    assert map_venue(VENUE) == {
        "venue": "Charleston Music Hall",
        "venueAddress": "37 John St",
        "venueCity": "Charleston",
        "venueState": "SC",
        "venueZip": "29401",
        "venueCountry": "US",
        "venueWebsite": "https://www.ticketmaster.com/charleston-music-hall",
        "venueCoordinates": "32.7877,-79.9364",
    }


def test_map_event_keeps_only_onsale(make_context):
    source = TicketmasterSource(make_context())
    assert source.map_event(_event("1", "Sold Out", status="offsale"), _config()) is None

    raw = source.map_event(_event("2", "Band"), _config())
    assert raw["startDate"] == "2025-05-10"
    assert raw["startTime"] == "20:00:00"
    assert raw["price"] == "$25.00 - $49.50"
    assert raw["locationName"] == "Charleston, SC"

    mapped = map_fields(raw)
    assert mapped["title"] == "Band"
    assert mapped["venue_name"] == "Charleston Music Hall"
    assert mapped["address"] == "37 John St"
    assert mapped["venue_zip"] == "29401"
    assert mapped["ticket_url"] == "https://www.ticketmaster.com/event/2"


def test_map_event_falls_back_to_utc_datetime(make_context):
    event = _event("3", "UTC Only")
    event["dates"]["start"] = {"dateTime": "2025-05-11T00:30:00Z"}
    raw = TicketmasterSource(make_context()).map_event(event, _config())
    assert raw["startDate"] == "2025-05-10"
    assert raw["startTime"] == "20:30"


def test_fetch_paginates_and_dedupes(make_context):
    pages = {
        0: {"_embedded": {"events": [_event("a", "First"), _event("b", "Second", status="cancelled")]}, "page": {"totalPages": 3}},
        1: {"_embedded": {"events": [_event("a", "First"), _event("c", "Third")]}, "page": {"totalPages": 3}},
        2: {"_embedded": {"events": [_event("d", "Fourth")]}, "page": {"totalPages": 3}},
    }
    context = make_context({API_URL: lambda params: pages[params["page"]]})
    events = asyncio.run(TicketmasterSource(context).fetch(_config(max_pages=2)))

    assert [event["title"] for event in events] == ["First", "Third"]
    assert [call["params"]["page"] for call in context.session.calls] == [0, 1]


def test_check_config(make_context, monkeypatch):
    source = TicketmasterSource(make_context())
    source.check_config(_config())
    with pytest.raises(ConfigurationError):
        source.check_config(_config(geo_point="somewhere"))
    with pytest.raises(ConfigurationError):
        source.check_config(_config(classification=""))
    monkeypatch.delenv("TM_TEST_KEY")
    with pytest.raises(ConfigurationError, match="TM_TEST_KEY"):
        source.check_config(_config())
