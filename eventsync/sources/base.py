"""Contract implemented by every event source."""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional

from eventsync.errors import ConfigurationError
from eventsync.fetch.fetcher import fetch_json, fetch_text
from eventsync.fetch.session import FetchSession
from eventsync.normalize.fields import resolve_timezone, to_local
from eventsync.observability.metrics import MetricsRegistry
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.settings import ImportSettings

RawEvent = Dict[str, object]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SourceContext:
    """Collaborators handed to each source when it is constructed."""

    session: FetchSession
    settings: ImportSettings = field(default_factory=ImportSettings)
    metrics: MetricsRegistry = field(default_factory=MetricsRegistry)
    clock: Callable[[], datetime] = utc_now


class SourceCollaborator(abc.ABC):
    """Yields raw event dictionaries for one configured source.

    ``fetch`` raises :class:`~eventsync.errors.SourceFetchError` when the source
    cannot be read. Missing fields are fine; the importer validates them.
    """

    source_type: str = ""

    def __init__(self, context: SourceContext) -> None:
        self.context = context

    @abc.abstractmethod
    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        """Return the raw events currently listed by the source."""

    def check_config(self, config: SourceConfig) -> None:
        """Raise :class:`ConfigurationError` when ``config`` cannot work."""

    def require_url(self, config: SourceConfig) -> str:
        if not config.url:
            raise ConfigurationError(f"Source {config.source_id} ({self.source_type}) needs a url")
        return config.url

    def zone(self, config: SourceConfig) -> Optional[tzinfo]:
        name = config.option("timezone", self.context.settings.timezone)
        zone = resolve_timezone(name)
        if zone is None:
            raise ConfigurationError(f"Source {config.source_id} has unknown timezone {name!r}")
        return zone

    def local_now(self, config: SourceConfig) -> datetime:
        """Naive wall-clock "now" in the source's timezone."""
        return to_local(self.context.clock(), self.zone(config))

    def _request_options(self, config: SourceConfig) -> Dict[str, Any]:
        settings = self.context.settings
        return {
            "timeout": config.timeout_seconds or settings.timeout_seconds,
            "retries": settings.retries,
            "metrics": self.context.metrics,
        }

    async def get_text(self, config: SourceConfig, url: str, **kwargs: Any) -> str:
        return await fetch_text(self.context.session, url, **self._request_options(config), **kwargs)

    async def get_json(self, config: SourceConfig, url: str, **kwargs: Any) -> Any:
        return await fetch_json(self.context.session, url, **self._request_options(config), **kwargs)
