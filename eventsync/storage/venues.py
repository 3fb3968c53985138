"""SQLite-backed venue resolution."""
from __future__ import annotations

import re
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from eventsync.errors import VenueCreationError
from eventsync.normalize.fields import split_location
from eventsync.quality.merge import BackfillMerger
from eventsync.storage.models import VENUE_FIELDS, Venue, VenueRef

LOGGER = structlog.get_logger(__name__)

_DDL = """
    CREATE TABLE IF NOT EXISTS venues (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        street TEXT NOT NULL DEFAULT '',
        city TEXT NOT NULL DEFAULT '',
        state TEXT NOT NULL DEFAULT '',
        zip TEXT NOT NULL DEFAULT '',
        country TEXT NOT NULL DEFAULT '',
        phone TEXT NOT NULL DEFAULT '',
        website TEXT NOT NULL DEFAULT '',
        capacity INTEGER,
        latitude REAL,
        longitude REAL,
        description TEXT NOT NULL DEFAULT ''
    )
"""
_COLUMNS = ("street", "city", "state", "zip", "country", "phone", "website", "capacity", "latitude", "longitude", "description")
_FIELD_ALIASES = {"address": "street", "postal_code": "zip", "url": "website"}
_CAPACITY_RE = re.compile(r"(\d[\d,]*)(?:\.\d+)?")
MAX_CAPACITY = 1_000_000


def _coordinates(value: object) -> Optional[Tuple[float, float]]:
    if isinstance(value, (tuple, list)) and len(value) == 2:
        parts = list(value)
    elif isinstance(value, str) and "," in value:
        parts = value.split(",", 1)
    else:
        return None
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except (TypeError, ValueError):
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng


def _capacity(value: object) -> Optional[int]:
    """Whole-number capacity from ``1100``, ``"1,100 people"`` or ``"12.5"``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = int(value)
        except (OverflowError, ValueError):
            return None
    else:
        match = _CAPACITY_RE.search(str(value or ""))
        if not match:
            return None
        number = int(match.group(1).replace(",", ""))
    if not 0 < number <= MAX_CAPACITY:
        LOGGER.debug("venue_capacity_dropped", value=str(value))
        return None
    return number


def _candidate(name: str, location_hint: str, structured_fields: Mapping[str, object]) -> Dict[str, object]:
    fields: Dict[str, object] = {}
    for key, value in structured_fields.items():
        target = _FIELD_ALIASES.get(key, key)
        if target not in VENUE_FIELDS or value in (None, ""):
            continue
        if target == "coordinates":
            value = _coordinates(value)
        elif target == "capacity":
            value = _capacity(value)
        else:
            value = " ".join(str(value).split())
        if value not in (None, ""):
            fields.setdefault(target, value)
    city, state = split_location(location_hint)
    if city:
        fields.setdefault("city", city)
    if state:
        fields.setdefault("state", state)
    venue = Venue(name=name, **fields)
    return _to_row(venue)


def _to_row(venue: Venue) -> Dict[str, object]:
    row = venue.model_dump(exclude={"name", "coordinates"})
    lat, lng = venue.coordinates if venue.coordinates else (None, None)
    row["latitude"], row["longitude"] = lat, lng
    return row


class VenueResolver:
    """Finds venues by exact name or creates them; existing data is never overwritten.

    Later sources only fill fields that are still blank. Check-then-create is
    serialised with a lock so two sources naming the same new venue get one row.
    """

    def __init__(self, path: Union[Path, str] = ":memory:") -> None:
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._merger = BackfillMerger()
        self._connection = sqlite3.connect(str(path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        with self._connection:
            self._connection.execute(_DDL)

    def resolve(
        self,
        name: str,
        location_hint: str = "",
        structured_fields: Optional[Mapping[str, object]] = None,
    ) -> VenueRef:
        """Return the venue called ``name``, creating it on first sight."""
        name = name.strip()
        if not name:
            raise VenueCreationError("venue name is empty")
        try:
            candidate = _candidate(name, location_hint or "", structured_fields or {})
        except ValidationError as exc:
            raise VenueCreationError(f"invalid venue data for {name!r}: {exc}") from exc

        with self._lock:
            try:
                row = self._connection.execute("SELECT * FROM venues WHERE name = ?", (name,)).fetchone()
                if row is not None:
                    existing = {column: row[column] for column in _COLUMNS}
                    merged, mutated = self._merger.merge(existing, candidate)
                    if mutated:
                        assignments = ", ".join(f"{column} = :{column}" for column in _COLUMNS)
                        with self._connection:
                            self._connection.execute(
                                f"UPDATE venues SET {assignments} WHERE id = :id",
                                {**merged, "id": row["id"]},
                            )
                        LOGGER.debug("venue_backfilled", venue=name, venue_id=row["id"])
                    return VenueRef(venue_id=row["id"], name=name, created=False)

                columns = ("name",) + _COLUMNS
                placeholders = ", ".join(f":{column}" for column in columns)
                with self._connection:
                    cursor = self._connection.execute(
                        f"INSERT INTO venues ({', '.join(columns)}) VALUES ({placeholders})",
                        {**candidate, "name": name},
                    )
            except (sqlite3.Error, OverflowError) as exc:
                raise VenueCreationError(f"could not store venue {name!r}: {exc}") from exc
        LOGGER.info("venue_created", venue=name, venue_id=cursor.lastrowid)
        return VenueRef(venue_id=int(cursor.lastrowid), name=name, created=True)

    def get(self, venue_id: int) -> Optional[Venue]:
        with self._lock:
            row = self._connection.execute("SELECT * FROM venues WHERE id = ?", (venue_id,)).fetchone()
        if row is None:
            return None
        data = {key: row[key] for key in row.keys() if key not in ("id", "latitude", "longitude")}
        if row["latitude"] is not None and row["longitude"] is not None:
            data["coordinates"] = (row["latitude"], row["longitude"])
        return Venue(**data)

    def count(self) -> int:
        with self._lock:
            return int(self._connection.execute("SELECT COUNT(*) FROM venues").fetchone()[0])

    def close(self) -> None:
        self._connection.close()
