"""Publish accepted events into the host's persisted representation."""
from __future__ import annotations

import abc
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional, Set, Union

import structlog

from eventsync.errors import PublishError
from eventsync.storage.models import PublishedRef, StandardizedEvent, VenueRef

LOGGER = structlog.get_logger(__name__)

COMPARED_FIELDS = (
    "title",
    "description",
    "start_date",
    "end_date",
    "start_time",
    "end_time",
    "venue_id",
    "venue_name",
    "address",
    "location_name",
    "ticket_url",
    "price",
)

_DDL = """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identifier TEXT NOT NULL UNIQUE,
        source_id TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL,
        description TEXT,
        start_date TEXT NOT NULL,
        end_date TEXT,
        start_time TEXT,
        end_time TEXT,
        venue_id INTEGER,
        venue_name TEXT NOT NULL DEFAULT '',
        address TEXT NOT NULL DEFAULT '',
        location_name TEXT NOT NULL DEFAULT '',
        ticket_url TEXT,
        price TEXT
    )
"""


def to_record(event: StandardizedEvent, venue_ref: Optional[VenueRef] = None) -> Dict[str, object]:
    """Map a standardized event onto one ``events`` row."""
    return {
        "identifier": event.identifier,
        "source_id": event.source_id,
        "title": event.title,
        "description": event.description,
        "start_date": event.start_date.isoformat(),
        "end_date": event.end_date.isoformat() if event.end_date else None,
        "start_time": event.start_time.strftime("%H:%M") if event.start_time else None,
        "end_time": event.end_time.strftime("%H:%M") if event.end_time else None,
        "venue_id": venue_ref.venue_id if venue_ref else None,
        "venue_name": venue_ref.name if venue_ref else event.venue_name,
        "address": event.address,
        "location_name": event.location_name,
        "ticket_url": event.ticket_url,
        "price": event.price,
    }


class EventPublisher(abc.ABC):
    """Boundary to whatever stores published events."""

    @abc.abstractmethod
    def publish(self, event: StandardizedEvent, venue_ref: Optional[VenueRef] = None) -> PublishedRef:
        """Create or update the record keyed on ``event.identifier``."""

    @abc.abstractmethod
    def published_identifiers(self) -> Set[str]:
        """Identifiers already published, used to seed deduplication."""


class SQLiteEventPublisher(EventPublisher):
    """Upserts events into SQLite; re-publishing an identifier never duplicates it."""

    def __init__(self, path: Union[Path, str] = ":memory:") -> None:
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(str(path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        with self._connection:
            self._connection.execute(_DDL)

    def publish(self, event: StandardizedEvent, venue_ref: Optional[VenueRef] = None) -> PublishedRef:
        record = to_record(event, venue_ref)
        with self._lock:
            try:
                row = self._connection.execute(
                    "SELECT * FROM events WHERE identifier = ?", (event.identifier,)
                ).fetchone()
                if row is None:
                    columns = list(record)
                    with self._connection:
                        cursor = self._connection.execute(
                            f"INSERT INTO events ({', '.join(columns)}) VALUES ({', '.join(':' + c for c in columns)})",
                            record,
                        )
                    return PublishedRef(event.identifier, int(cursor.lastrowid), "created")
                changed = [field for field in COMPARED_FIELDS if row[field] != record[field]]
                if not changed:
                    return PublishedRef(event.identifier, int(row["id"]), "no_change")
                assignments = ", ".join(f"{field} = :{field}" for field in changed)
                with self._connection:
                    self._connection.execute(
                        f"UPDATE events SET {assignments} WHERE identifier = :identifier",
                        record,
                    )
                LOGGER.debug("event_updated", identifier=event.identifier, fields=changed)
                return PublishedRef(event.identifier, int(row["id"]), "updated")
            except sqlite3.Error as exc:
                raise PublishError(f"could not publish {event.title!r}: {exc}", identifier=event.identifier) from exc

    def published_identifiers(self) -> Set[str]:
        with self._lock:
            rows = self._connection.execute("SELECT identifier FROM events").fetchall()
        return {row["identifier"] for row in rows}

    def get(self, identifier: str) -> Optional[Dict[str, object]]:
        with self._lock:
            row = self._connection.execute("SELECT * FROM events WHERE identifier = ?", (identifier,)).fetchone()
        return dict(row) if row is not None else None

    def count(self) -> int:
        with self._lock:
            return int(self._connection.execute("SELECT COUNT(*) FROM events").fetchone()[0])

    def close(self) -> None:
        self._connection.close()
