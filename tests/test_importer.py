import asyncio

import pytest

from eventsync.errors import ConfigurationError, SourceFetchError, VenueCreationError
from eventsync.orchestrator.importer import Importer, publish_accepted, run_import
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.quality.keys import generate
from eventsync.quality.quarantine import Quarantine
from eventsync.sources.registry import SourceRegistry
from eventsync.storage.publisher import SQLiteEventPublisher
from eventsync.storage.venues import VenueResolver

THREE_EVENTS = [
    {"title": "Early Set", "start_date": "2025-05-02", "start_time": "18:00", "venue_name": "Blue Note"},
    {"name": "Late Set", "startDate": "2025-05-02", "startTime": "22:00", "venue": "Blue Note"},
    {"title": "Sunday Jam", "start_date": "2025-05-04"},
]


def _source(source_id, source_type, **kwargs):
    return SourceConfig(source_id=source_id, source_type=source_type, **kwargs)


def _failing(config):
    raise SourceFetchError("upstream down", source_id=config.source_id)


def _crashing(config):
    raise RuntimeError("parser exploded")


async def _slow(config):
    await asyncio.sleep(1)
    return []


async def _late_but_first(config):
    await asyncio.sleep(0.05)
    return [{"title": "Shared Show", "start_date": "2025-05-03", "description": "from first"}]


def _registry():
    registry = SourceRegistry()
    registry.register_function("three", lambda config: THREE_EVENTS)
    registry.register_function("failing", _failing)
    registry.register_function("crashing", _crashing)
    registry.register_function("slow", _slow)
    registry.register_function("late_first", _late_but_first)
    registry.register_function(
        "shared",
        lambda config: [{"title": "The Shared Show", "start_date": "2025-05-03", "description": "from second"}],
    )
    registry.register_function(
        "huge_venue",
        lambda config: [
            {
                "title": "Stadium Show",
                "start_date": "2025-05-02",
                "venue_name": "Mega Dome",
                "venue_capacity": "99999999999999999999999",
            },
            {"title": "Club Show", "start_date": "2025-05-03", "venue_name": "Blue Note", "venue_capacity": "1,100"},
        ],
    )
    registry.register_function(
        "half_bad",
        lambda config: [{"title": "Good Show", "start_date": "2025-05-02"}, "oops"],
    )
    registry.register_function(
        "messy",
        lambda config: [
            {"title": "", "start_date": "2025-05-02"},
            {"title": "No Date"},
            {"title": "Bad Date", "start_date": "someday"},
            "not a mapping",
            {"title": "  THE Jazz Trio ", "start_date": "2025-05-02", "venue_name": "Blue Note", "address": "123 Main"},
        ],
    )
    return registry


@pytest.fixture()
def make_importer(settings, clock, stub_session_factory):
    def _make(**kwargs):
        kwargs.setdefault("session_factory", stub_session_factory())
        return Importer(_registry(), settings, clock=clock, **kwargs)

    return _make


def _run(importer, sources):
    return asyncio.run(importer.run_import(sources, run_id="20250501T160000"))


def test_failing_source_does_not_stop_the_others(make_importer):
    importer = make_importer()
    result = _run(importer, [_source("a", "failing"), _source("b", "three")])

    assert len(result.accepted) == 3
    assert [error.source for error in result.errors] == ["a"]
    assert isinstance(result.errors[0].error, SourceFetchError)
    assert result.source_stats["a"]["errors"] == 1
    assert result.source_stats["b"] == {"fetched": 3, "accepted": 3, "rejected": 0, "duplicates": 0, "errors": 0}
    assert importer.metrics.get("source_errors") == 1
    assert importer.metrics.get("events_accepted") == 3


def test_aliases_are_mapped_before_identity(make_importer):
    result = _run(make_importer(), [_source("b", "three")])
    late = result.accepted[1]
    assert late.title == "Late Set"
    assert late.venue_name == "Blue Note"
    assert late.identifier == generate("Late Set", "2025-05-02", "Blue Note")


def test_invalid_events_are_rejected_and_quarantined(make_importer, tmp_path):
    quarantine_dir = tmp_path / "quarantine"
    importer = make_importer(quarantine=Quarantine(quarantine_dir))
    result = _run(importer, [_source("m", "messy")])

    assert [event.title for event in result.accepted] == ["  THE Jazz Trio "]
    reasons = [rejected.reason for rejected in result.rejected]
    assert len(reasons) == 4
    assert "$.title" in reasons[0]
    assert "start_date" in reasons[1]
    assert "unparseable start_date" in reasons[2]
    assert reasons[3] == "raw event is not a mapping"
    assert len(list(quarantine_dir.glob("reject_*.json"))) == 4
    assert result.source_stats["m"]["rejected"] == 4


def test_end_to_end_identity_and_venue(make_importer):
    resolver = VenueResolver()
    result = _run(make_importer(venue_resolver=resolver), [_source("m", "messy")])

    event = result.accepted[0]
    assert event.identifier == generate("jazz trio", "2025-05-02", "blue note")
    ref = result.venue_refs[event.identifier]
    assert ref.created
    assert resolver.get(ref.venue_id).street == "123 Main"


def test_second_run_after_publishing_accepts_nothing(make_importer):
    publisher = SQLiteEventPublisher()
    first = _run(make_importer(), [_source("b", "three")])
    publish_accepted(first, publisher)
    assert [ref.action for ref in first.published] == ["created"] * 3

    second = _run(
        make_importer(previously_published=publisher.published_identifiers()),
        [_source("b", "three")],
    )
    assert second.accepted == []
    assert second.duplicates == 3
    assert publisher.count() == 3


def test_reused_importer_sees_its_own_published_events(make_importer):
    publisher = SQLiteEventPublisher()
    importer = make_importer(publisher=publisher)

    first = _run(importer, [_source("b", "three")])
    assert len(first.accepted) == 3
    publish_accepted(first, publisher)

    second = _run(importer, [_source("b", "three")])
    assert second.accepted == []
    assert second.duplicates == 3
    assert second.source_stats["b"]["duplicates"] == 3
    assert publisher.count() == 3


def test_first_source_in_list_wins_duplicates(make_importer):
    result = _run(make_importer(), [_source("first", "late_first"), _source("second", "shared")])
    assert len(result.accepted) == 1
    assert result.accepted[0].description == "from first"
    assert result.accepted[0].source_id == "first"
    assert result.source_stats["second"]["duplicates"] == 1


def test_unknown_source_type_is_a_configuration_error(make_importer):
    with pytest.raises(ConfigurationError, match="carrier_pigeon"):
        _run(make_importer(), [_source("x", "carrier_pigeon")])


def test_invalid_collaborator_config_is_raised_before_fetching(settings, clock, stub_session_factory, monkeypatch):
    from eventsync.sources.registry import default_registry

    monkeypatch.delenv("TICKETMASTER_API_KEY", raising=False)
    factory = stub_session_factory()
    importer = Importer(default_registry(), settings, clock=clock, session_factory=factory)
    with pytest.raises(ConfigurationError):
        _run(importer, [_source("tm", "ticketmaster", options={"classification": "music"})])
    assert factory.session.calls == []


def test_slow_source_times_out(make_importer):
    result = _run(make_importer(), [_source("s", "slow", timeout_seconds=0.05), _source("b", "three")])
    assert len(result.accepted) == 3
    assert "timed out" in str(result.errors[0].error)


def test_unexpected_exception_is_wrapped(make_importer):
    result = _run(make_importer(), [_source("c", "crashing")])
    error = result.errors[0].error
    assert isinstance(error, SourceFetchError)
    assert "RuntimeError: parser exploded" in str(error)


def test_disabled_sources_are_skipped(make_importer):
    result = _run(make_importer(), [_source("a", "failing", enabled=False), _source("b", "three")])
    assert result.errors == []
    assert "a" not in result.source_stats


class _BrokenResolver(VenueResolver):
    def resolve(self, name, location_hint="", structured_fields=None):
        raise VenueCreationError("database is locked")


def test_venue_failure_rejects_the_event(make_importer):
    result = _run(make_importer(venue_resolver=_BrokenResolver()), [_source("b", "three")])
    assert [event.title for event in result.accepted] == ["Sunday Jam"]
    assert all("venue resolution failed" in rejected.reason for rejected in result.rejected)
    assert len(result.rejected) == 2


def test_synchronous_entry_point(settings, clock, stub_session_factory):
    result = run_import(
        [_source("b", "three")],
        registry=_registry(),
        settings=settings,
        clock=clock,
        session_factory=stub_session_factory(),
    )
    assert len(result.accepted) == 3
    assert result.summary()["accepted"] == 3


def test_oversized_venue_capacity_does_not_abort_the_pass(make_importer):
    resolver = VenueResolver()
    result = _run(make_importer(venue_resolver=resolver), [_source("h", "huge_venue"), _source("b", "three")])

    assert [event.title for event in result.accepted][:2] == ["Stadium Show", "Club Show"]
    assert len(result.accepted) == 5
    assert result.errors == []
    stadium = resolver.get(result.venue_refs[result.accepted[0].identifier].venue_id)
    club = resolver.get(result.venue_refs[result.accepted[1].identifier].venue_id)
    assert stadium.capacity is None
    assert club.capacity == 1100


def test_one_bad_item_keeps_the_rest_of_a_function_source(make_importer):
    result = _run(make_importer(), [_source("h", "half_bad")])
    assert [event.title for event in result.accepted] == ["Good Show"]
    assert [rejected.reason for rejected in result.rejected] == ["raw event is not a mapping"]
    assert result.source_stats["h"]["fetched"] == 2
