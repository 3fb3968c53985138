"""Path helpers for the data directory layout."""
from __future__ import annotations

from pathlib import Path


class DataLayout:
    """Computes structured output paths inside the data root."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.exports = root / "exports"
        self.manifests = root / "manifests"
        self.quarantine = root / "quarantine"
        self.metrics = root / "metrics"

    def ensure(self) -> "DataLayout":
        for path in (self.root, self.exports, self.manifests, self.quarantine, self.metrics):
            path.mkdir(parents=True, exist_ok=True)
        return self

    def database(self) -> Path:
        """Return the SQLite file shared by venues and published events."""
        return self.root / "events.db"

    def manifest(self, run_id: str) -> Path:
        return self.manifests / f"run-{run_id}.json"
