from concurrent.futures import ThreadPoolExecutor

import pytest

from eventsync.errors import VenueCreationError
from eventsync.storage.venues import VenueResolver


def test_first_sighting_creates_venue():
    resolver = VenueResolver()
    ref = resolver.resolve("Forte Jazz Lounge", "Charleston, SC", {"address": "477 King St", "zip": "29403"})
    assert ref.created
    venue = resolver.get(ref.venue_id)
    assert venue.street == "477 King St"
    assert venue.city == "Charleston"
    assert venue.state == "SC"
    assert venue.zip == "29403"


def test_existing_fields_win_and_blanks_are_backfilled():
    resolver = VenueResolver()
    first = resolver.resolve("Blue Note", "", {"address": "123 Main"})
    second = resolver.resolve("Blue Note", "Chicago, IL", {"address": "999 Other", "phone": "555-0100"})
    assert second.venue_id == first.venue_id
    assert not second.created
    venue = resolver.get(first.venue_id)
    assert venue.street == "123 Main"
    assert venue.city == "Chicago"
    assert venue.phone == "555-0100"
    assert resolver.count() == 1


def test_structured_city_beats_location_hint():
    resolver = VenueResolver()
    ref = resolver.resolve("Metro", "Somewhere, ZZ", {"city": "Chicago"})
    venue = resolver.get(ref.venue_id)
    assert venue.city == "Chicago"
    assert venue.state == "ZZ"


def test_coordinates_and_capacity_are_coerced():
    resolver = VenueResolver()
    ref = resolver.resolve("Metro", "", {"coordinates": "41.94, -87.65", "capacity": "1,100 people"})
    venue = resolver.get(ref.venue_id)
    assert venue.coordinates == (41.94, -87.65)
    assert venue.capacity == 1100

    bad = resolver.get(resolver.resolve("Elsewhere", "", {"coordinates": "999,0"}).venue_id)
    assert bad.coordinates is None


def test_fractional_capacity_keeps_the_whole_part():
    resolver = VenueResolver()
    assert resolver.get(resolver.resolve("Half Hall", "", {"capacity": "12.5"}).venue_id).capacity == 12
    assert resolver.get(resolver.resolve("Float Hall", "", {"capacity": 300.0}).venue_id).capacity == 300


@pytest.mark.parametrize("capacity", ["99999999999999999999999", 10**30, float("inf"), float("nan"), "0", -5])
def test_out_of_range_capacity_is_dropped(capacity):
    resolver = VenueResolver()
    ref = resolver.resolve("Mega Dome", "Austin, TX", {"capacity": capacity})
    venue = resolver.get(ref.venue_id)
    assert ref.created
    assert venue.capacity is None
    assert venue.city == "Austin"


def test_name_match_is_exact():
    resolver = VenueResolver()
    lower = resolver.resolve("blue note")
    upper = resolver.resolve("Blue Note")
    assert lower.venue_id != upper.venue_id
    assert resolver.resolve("  Blue Note ").venue_id == upper.venue_id


def test_empty_name_is_rejected():
    with pytest.raises(VenueCreationError):
        VenueResolver().resolve("   ")


def test_concurrent_first_sightings_create_one_row(tmp_path):
    resolver = VenueResolver(tmp_path / "venues.db")
    with ThreadPoolExecutor(max_workers=8) as pool:
        refs = list(pool.map(lambda _: resolver.resolve("Royal American", "Charleston, SC"), range(16)))
    assert len({ref.venue_id for ref in refs}) == 1
    assert sum(ref.created for ref in refs) == 1
    assert resolver.count() == 1
    resolver.close()
