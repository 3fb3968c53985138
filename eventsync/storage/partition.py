"""Run exports of accepted events: JSONL per run and a CSV per day partition."""
from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import orjson

from eventsync.storage.models import StandardizedEvent, VenueRef
from eventsync.storage.publisher import to_record

CSV_FIELDS = [
    "identifier",
    "source_id",
    "title",
    "start_date",
    "start_time",
    "end_date",
    "end_time",
    "venue_id",
    "venue_name",
    "address",
    "location_name",
    "ticket_url",
    "price",
    "description",
]


def write_jsonl(entities: Iterable[Dict[str, object]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for entity in entities:
            handle.write(orjson.dumps(entity, default=str).decode())
            handle.write("\n")


def write_csv(entities: Iterable[Dict[str, object]], path: Path) -> None:
    rows = list(entities)
    if not rows:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_FIELDS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


class PartitionWriter:
    """Writes accepted events organised by run date partitions."""

    def __init__(self, base: Path) -> None:
        self._base = base
        self._base.mkdir(parents=True, exist_ok=True)

    def persist(
        self,
        *,
        events: List[StandardizedEvent],
        venue_refs: Dict[str, VenueRef],
        run_id: str,
    ) -> Dict[str, Path]:
        if not events:
            return {}
        rows = [self._row(event, venue_refs.get(event.identifier)) for event in events]
        run_dt = datetime.strptime(run_id[:8], "%Y%m%d")
        partition_dir = self._base / run_dt.strftime("%Y-%m-%d")
        csv_path = partition_dir / f"events-{run_id}.csv"
        jsonl_path = self._base / f"events-{run_id}.jsonl"
        write_jsonl(rows, jsonl_path)
        write_csv(rows, csv_path)
        return {"jsonl": jsonl_path, "csv": csv_path}

    @staticmethod
    def _row(event: StandardizedEvent, venue_ref: Optional[VenueRef]) -> Dict[str, object]:
        row = to_record(event, venue_ref)
        row["venue_metadata"] = dict(event.venue_metadata)
        return row
