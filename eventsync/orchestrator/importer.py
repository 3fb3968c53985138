"""Import orchestrator: fetch every source, standardize, deduplicate, resolve venues."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple, Union

import structlog

from eventsync.errors import ConfigurationError, EventSyncError, PublishError, SourceFetchError, ValidationError, VenueCreationError
from eventsync.fetch.session import create_fetch_session
from eventsync.normalize.standardize import map_fields, standardize
from eventsync.observability.metrics import MetricsRegistry, record_duration
from eventsync.observability.tracing import clear_context, clear_source, set_context, span
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.quality.dedup import Deduplicator
from eventsync.quality.quarantine import Quarantine
from eventsync.quality.validate import RawEventValidator
from eventsync.settings import ImportSettings
from eventsync.sources.base import RawEvent, SourceCollaborator, SourceContext, utc_now
from eventsync.sources.registry import SourceRegistry, default_registry
from eventsync.storage.models import PublishedRef, StandardizedEvent, VenueRef
from eventsync.storage.publisher import EventPublisher
from eventsync.storage.venues import VenueResolver

LOGGER = structlog.get_logger(__name__)


class RejectedEvent(NamedTuple):
    raw: RawEvent
    reason: str


class SourceError(NamedTuple):
    source: str
    error: EventSyncError


@dataclass
class ImportResult:
    """Everything one import pass produced; failures are reported, never raised."""

    accepted: List[StandardizedEvent] = field(default_factory=list)
    rejected: List[RejectedEvent] = field(default_factory=list)
    errors: List[SourceError] = field(default_factory=list)
    venue_refs: Dict[str, VenueRef] = field(default_factory=dict)
    duplicates: int = 0
    source_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    published: List[PublishedRef] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        actions: Dict[str, int] = {}
        for ref in self.published:
            actions[ref.action] = actions.get(ref.action, 0) + 1
        return {
            "accepted": len(self.accepted),
            "rejected": len(self.rejected),
            "errors": [{"source": error.source, "error": str(error.error)} for error in self.errors],
            "duplicates": self.duplicates,
            "venues_created": sum(1 for ref in self.venue_refs.values() if ref.created),
            "published": actions,
        }


def _new_stats() -> Dict[str, int]:
    return {"fetched": 0, "accepted": 0, "rejected": 0, "duplicates": 0, "errors": 0}


FetchOutcome = Union[List[Any], BaseException]


class Importer:
    """Runs import passes over a list of source configurations."""

    def __init__(
        self,
        registry: SourceRegistry,
        settings: Optional[ImportSettings] = None,
        *,
        venue_resolver: Optional[VenueResolver] = None,
        previously_published: Iterable[str] = (),
        publisher: Optional[EventPublisher] = None,
        metrics: Optional[MetricsRegistry] = None,
        quarantine: Optional[Quarantine] = None,
        validator: Optional[RawEventValidator] = None,
        session_factory: Callable[..., Any] = create_fetch_session,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._settings = settings or ImportSettings()
        self._venues = venue_resolver
        self._previously_published = set(previously_published)
        self._publisher = publisher
        self._metrics = metrics or MetricsRegistry()
        self._quarantine = quarantine
        self._validator = validator or RawEventValidator()
        self._session_factory = session_factory
        self._clock = clock

    def _published_identifiers(self) -> Set[str]:
        known = set(self._previously_published)
        if self._publisher is not None:
            known.update(self._publisher.published_identifiers())
        return known

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def run_import(self, sources: Sequence[SourceConfig], *, run_id: Optional[str] = None) -> ImportResult:
        """Fetch all sources concurrently, then process their events in source order.

        Raises :class:`ConfigurationError` for an unregistered source type or an
        unusable source configuration. Everything else lands in the result.
        """
        run_id = run_id or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        enabled = [config for config in sources if config.enabled]
        result = ImportResult()
        set_context(run_id=run_id)
        try:
            with record_duration(self._metrics, "run_duration_ms"):
                outcomes = await self._fetch_all(enabled, run_id)
                dedup = Deduplicator(self._published_identifiers())
                for config, outcome in zip(enabled, outcomes):
                    self._collect(config, outcome, result, dedup)
        finally:
            clear_context()
        LOGGER.info("import_finished", run_id=run_id, **{k: v for k, v in result.summary().items() if k != "errors"})
        return result

    async def _fetch_all(self, sources: Sequence[SourceConfig], run_id: str) -> List[FetchOutcome]:
        settings = self._settings
        async with self._session_factory(
            user_agent=settings.user_agent,
            timeout=settings.timeout_seconds,
            max_connections=settings.max_concurrency,
        ) as session:
            context = SourceContext(session=session, settings=settings, metrics=self._metrics, clock=self._clock)
            planned: List[Tuple[SourceConfig, SourceCollaborator]] = []
            for config in sources:
                collaborator = self._registry.create(config.source_type, context)
                collaborator.check_config(config)
                planned.append((config, collaborator))

            semaphore = asyncio.Semaphore(settings.max_concurrency)
            outcomes = await asyncio.gather(
                *(self._fetch_one(config, collaborator, semaphore, run_id) for config, collaborator in planned),
                return_exceptions=True,
            )
        for outcome in outcomes:
            if isinstance(outcome, ConfigurationError):
                raise outcome
        return list(outcomes)

    async def _fetch_one(
        self,
        config: SourceConfig,
        collaborator: SourceCollaborator,
        semaphore: asyncio.Semaphore,
        run_id: str,
    ) -> List[Any]:
        timeout = config.timeout_seconds or self._settings.timeout_seconds
        async with semaphore:
            set_context(run_id=run_id, source_id=config.source_id)
            try:
                with span(name="source_fetch", url=config.url):
                    events = await asyncio.wait_for(collaborator.fetch(config), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise SourceFetchError(f"fetch timed out after {timeout:g}s", source_id=config.source_id) from exc
            except (SourceFetchError, ConfigurationError):
                raise
            except Exception as exc:
                LOGGER.exception("source_crashed", source_id=config.source_id)
                raise SourceFetchError(f"{type(exc).__name__}: {exc}", source_id=config.source_id) from exc
            finally:
                clear_source()
        return list(events or [])

    def _collect(self, config: SourceConfig, outcome: FetchOutcome, result: ImportResult, dedup: Deduplicator) -> None:
        stats = result.source_stats.setdefault(config.source_id, _new_stats())
        if isinstance(outcome, BaseException):
            error = outcome if isinstance(outcome, SourceFetchError) else SourceFetchError(str(outcome), source_id=config.source_id)
            LOGGER.warning("source_failed", source_id=config.source_id, error=str(error))
            result.errors.append(SourceError(config.source_id, error))
            stats["errors"] += 1
            self._metrics.incr("source_errors")
            return
        for raw in outcome:
            self._process(raw, config, result, dedup, stats)

    def _process(
        self,
        raw: Any,
        config: SourceConfig,
        result: ImportResult,
        dedup: Deduplicator,
        stats: Dict[str, int],
    ) -> None:
        stats["fetched"] += 1
        self._metrics.incr("events_fetched")
        if not isinstance(raw, dict):
            self._reject({"value": repr(raw)}, "raw event is not a mapping", config, result, stats)
            return

        mapped = map_fields(raw)
        validation = self._validator.validate(mapped)
        if not validation.ok:
            self._reject(raw, validation.reason, config, result, stats)
            return
        try:
            event = standardize(mapped, source_id=config.source_id)
        except ValidationError as exc:
            self._reject(raw, str(exc), config, result, stats)
            return

        if dedup.is_duplicate(event.identifier):
            result.duplicates += 1
            stats["duplicates"] += 1
            self._metrics.incr("duplicates")
            LOGGER.debug("duplicate_dropped", source_id=config.source_id, identifier=event.identifier)
            return

        if self._venues is not None and event.venue_name:
            try:
                venue_ref = self._venues.resolve(
                    event.venue_name,
                    event.location_name,
                    {"address": event.address, **event.venue_metadata},
                )
            except VenueCreationError as exc:
                self._reject(raw, f"venue resolution failed: {exc}", config, result, stats)
                return
            if venue_ref.created:
                self._metrics.incr("venues_created")
            result.venue_refs[event.identifier] = venue_ref

        dedup.remember(event.identifier)
        result.accepted.append(event)
        stats["accepted"] += 1
        self._metrics.incr("events_accepted")

    def _reject(
        self,
        raw: RawEvent,
        reason: str,
        config: SourceConfig,
        result: ImportResult,
        stats: Dict[str, int],
    ) -> None:
        result.rejected.append(RejectedEvent(dict(raw), reason))
        stats["rejected"] += 1
        self._metrics.incr("events_rejected")
        LOGGER.info("event_rejected", source_id=config.source_id, reason=reason, title=raw.get("title"))
        if self._quarantine is not None:
            self._quarantine.reject(raw=dict(raw), reason=reason, source_id=config.source_id)


def publish_accepted(
    result: ImportResult,
    publisher: EventPublisher,
    metrics: Optional[MetricsRegistry] = None,
) -> ImportResult:
    """Publish every accepted event; failures are appended to ``result.errors``."""
    for event in result.accepted:
        try:
            ref = publisher.publish(event, result.venue_refs.get(event.identifier))
        except PublishError as exc:
            LOGGER.warning("publish_failed", identifier=event.identifier, error=str(exc))
            result.errors.append(SourceError(event.source_id, exc))
            if metrics is not None:
                metrics.incr("publish_failures")
            continue
        result.published.append(ref)
        if metrics is not None:
            metrics.incr("events_published")
    return result


def run_import(
    sources: Sequence[SourceConfig],
    *,
    registry: Optional[SourceRegistry] = None,
    settings: Optional[ImportSettings] = None,
    **kwargs: Any,
) -> ImportResult:
    """Synchronous entry point for one import pass."""
    importer = Importer(registry or default_registry(), settings, **kwargs)
    return asyncio.run(importer.run_import(sources))
