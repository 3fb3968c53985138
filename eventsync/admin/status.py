"""Administrative status helpers: run manifests and quarantine summaries."""
from __future__ import annotations

import csv
import json
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional


def load_sources(path: Path) -> List[Dict[str, str]]:
    """Read the registered sources from CSV."""
    with path.open("r", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        return [row for row in reader if row.get("source_id")]


def load_manifests(manifest_dir: Path) -> List[Dict[str, object]]:
    """Newest first."""
    manifests: List[Dict[str, object]] = []
    if not manifest_dir.exists():
        return manifests
    for path in sorted(manifest_dir.glob("run-*.json"), reverse=True):
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            continue
        payload["__path__"] = str(path)
        manifests.append(payload)
    return manifests


def source_status(sources_csv: Path, manifest_dir: Path) -> List[Dict[str, object]]:
    """Latest per-source stats for every registered source."""
    manifests = load_manifests(manifest_dir)
    summary: List[Dict[str, object]] = []
    for source in load_sources(sources_csv):
        source_id = source["source_id"]
        stats: Dict[str, object] = {"fetched": 0, "accepted": 0, "rejected": 0, "duplicates": 0, "errors": 0, "last_run": None}
        for manifest in manifests:
            source_stats = manifest.get("source_stats", {})
            if source_id in source_stats:
                stats.update({key: value for key, value in source_stats[source_id].items() if key in stats})
                stats["last_run"] = manifest.get("run_id")
                break
        summary.append({"source_id": source_id, "source_type": source.get("source_type", ""), **stats})
    return summary


def _reject_timestamp(path: Path) -> Optional[datetime]:
    token = path.stem.split("_", 1)[-1].split("-")[0]
    try:
        return datetime.strptime(token, "%Y%m%dT%H%M%S%f").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def quarantine_reasons(quarantine_dir: Path, *, source_id: Optional[str] = None, days: int = 7) -> Dict[str, int]:
    """Count rejection reasons written in the last ``days`` days."""
    if not quarantine_dir.exists():
        return {}
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    counter: Counter[str] = Counter()
    for path in quarantine_dir.glob("reject_*.json"):
        written = _reject_timestamp(path)
        if written is not None and written < cutoff:
            continue
        payload = json.loads(path.read_text(encoding="utf-8"))
        if source_id and payload.get("source_id") != source_id:
            continue
        for reason in payload.get("reason", []):
            counter[reason] += 1
    return dict(counter.most_common())
