"""Error taxonomy for the import pipeline."""
from __future__ import annotations

from typing import Optional


class EventSyncError(Exception):
    """Base class for all pipeline errors."""


class SourceFetchError(EventSyncError):
    """A source could not be fetched or its payload could not be parsed."""

    def __init__(self, message: str, *, source_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.source_id = source_id


class ValidationError(EventSyncError):
    """A raw event is missing required fields or carries unusable values."""


class ConfigurationError(EventSyncError):
    """Unknown source type or a source configuration that cannot work."""


class VenueCreationError(EventSyncError):
    """Persisting or looking up a venue failed."""


class PublishError(EventSyncError):
    """Publishing a standardized event failed."""

    def __init__(self, message: str, *, identifier: Optional[str] = None) -> None:
        super().__init__(message)
        self.identifier = identifier
