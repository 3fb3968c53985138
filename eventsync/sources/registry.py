"""Explicit mapping from source type names to collaborator factories."""
from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Dict, Iterable, List, Union

from eventsync.errors import ConfigurationError
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.base import RawEvent, SourceCollaborator, SourceContext

SourceFactory = Callable[[SourceContext], SourceCollaborator]
LegacyFetcher = Callable[[SourceConfig], Union[Iterable[RawEvent], Awaitable[Iterable[RawEvent]]]]


class FunctionSource(SourceCollaborator):
    """Adapts a plain ``fetch(config)`` callable to the collaborator interface."""

    def __init__(self, context: SourceContext, func: LegacyFetcher, *, is_async: bool) -> None:
        super().__init__(context)
        self._func = func
        self._is_async = is_async

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        if self._is_async:
            result = await self._func(config)  # type: ignore[misc]
        else:
            result = self._func(config)
        return list(result)  # type: ignore[arg-type]


class SourceRegistry:
    """Populated once at startup and injected into the importer."""

    def __init__(self) -> None:
        self._factories: Dict[str, SourceFactory] = {}

    def register(self, source_type: str, factory: SourceFactory) -> None:
        if source_type in self._factories:
            raise ConfigurationError(f"Source type already registered: {source_type}")
        self._factories[source_type] = factory

    def register_function(self, source_type: str, func: LegacyFetcher) -> None:
        """Register a bare fetch function, sync or async, as a collaborator."""
        is_async = inspect.iscoroutinefunction(func)

        def factory(context: SourceContext) -> SourceCollaborator:
            source = FunctionSource(context, func, is_async=is_async)
            source.source_type = source_type
            return source

        self.register(source_type, factory)

    def create(self, source_type: str, context: SourceContext) -> SourceCollaborator:
        try:
            factory = self._factories[source_type]
        except KeyError:
            raise ConfigurationError(f"Unregistered source type: {source_type}") from None
        return factory(context)

    def __contains__(self, source_type: object) -> bool:
        return source_type in self._factories

    @property
    def types(self) -> List[str]:
        return sorted(self._factories)


def default_registry() -> SourceRegistry:
    """Registry with every built-in source family."""
    from eventsync.sources.dice import DiceSource
    from eventsync.sources.html_xpath import HtmlXPathSource
    from eventsync.sources.ical import ICalSource
    from eventsync.sources.jsonld import JsonLdSource
    from eventsync.sources.ticketmaster import TicketmasterSource

    registry = SourceRegistry()
    for source_cls in (HtmlXPathSource, JsonLdSource, ICalSource, TicketmasterSource, DiceSource):
        registry.register(source_cls.source_type, source_cls)
    return registry
