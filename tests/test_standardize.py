from datetime import date, time

import pytest

from eventsync.errors import ValidationError
from eventsync.normalize.standardize import map_fields, standardize
from eventsync.quality.keys import generate


def test_map_fields_renames_aliases():
    mapped = map_fields(
        {
            "name": "Quartet",
            "startDate": "2025-05-02",
            "startTime": "20:00",
            "venue": "Blue Note",
            "venueAddress": "123 Main",
            "ticketUrl": "https://t.example.com/1",
            "locationName": "Charleston, SC",
        }
    )
    assert mapped == {
        "title": "Quartet",
        "start_date": "2025-05-02",
        "start_time": "20:00",
        "venue_name": "Blue Note",
        "address": "123 Main",
        "ticket_url": "https://t.example.com/1",
        "location_name": "Charleston, SC",
    }


def test_map_fields_prefers_canonical_keys():
    mapped = map_fields({"name": "Alias", "title": "Canonical", "url": "https://a", "ticket_url": "https://b"})
    assert mapped["title"] == "Canonical"
    assert mapped["ticket_url"] == "https://b"


def test_map_fields_flattens_nested_venue_metadata():
    mapped = map_fields(
        {
            "title": "Show",
            "venue_city": "Chicago",
            "venue_metadata": {"city": "Ignored", "zip": "60614", "coordinates": [41.9, -87.6]},
        }
    )
    assert mapped["venue_city"] == "Chicago"
    assert mapped["venue_zip"] == "60614"
    assert mapped["venue_coordinates"] == "41.9,-87.6"


def test_standardize_builds_canonical_record():
    event = standardize(
        map_fields(
            {
                "title": "  THE Jazz Trio ",
                "start_date": "2025-05-02",
                "start_time": "8:00 PM",
                "end_date": "2025-05-02",
                "end_time": "22:30",
                "venue_name": " The  Blue Note ",
                "address": "123  Main St",
                "ticket_url": "https://t.example.com/1",
                "venue_zip": "29401",
            }
        ),
        source_id="forte",
    )
    assert event.title == "  THE Jazz Trio "
    assert event.start_date == date(2025, 5, 2)
    assert event.start_time == time(20, 0)
    assert event.end_time == time(22, 30)
    assert event.venue_name == "The Blue Note"
    assert event.address == "123 Main St"
    assert event.source_id == "forte"
    assert event.venue_metadata == {"zip": "29401"}
    assert event.identifier == generate("jazz trio", "2025-05-02", "blue note")


def test_standardize_reads_time_embedded_in_start_date():
    event = standardize({"title": "Late", "start_date": "2025-05-02T21:15:00"})
    assert event.start_date == date(2025, 5, 2)
    assert event.start_time == time(21, 15)


def test_standardize_drops_relative_ticket_url():
    event = standardize({"title": "x", "start_date": "2025-05-02", "ticket_url": "/shows/1"})
    assert event.ticket_url is None


@pytest.mark.parametrize(
    "mapped, message",
    [
        ({"start_date": "2025-05-02"}, "missing title"),
        ({"title": "  ", "start_date": "2025-05-02"}, "missing title"),
        ({"title": "x"}, "missing start_date"),
        ({"title": "x", "start_date": "someday soon"}, "unparseable start_date"),
        ({"title": "x", "start_date": "2025-05-02", "end_date": "2025-05-01"}, "end_date precedes start_date"),
    ],
)
def test_standardize_errors(mapped, message):
    with pytest.raises(ValidationError, match=message):
        standardize(mapped)
