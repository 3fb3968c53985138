"""Backfill merge used when a venue is seen again."""
from __future__ import annotations

from typing import Dict, Tuple

EMPTY = (None, "", [], {})


class BackfillMerger:
    """First write wins: later values only fill fields that are still empty."""

    def merge(self, existing: Dict[str, object], candidate: Dict[str, object]) -> Tuple[Dict[str, object], bool]:
        """Return the merged record and whether anything was filled in."""
        merged = dict(existing)
        mutated = False
        for key, value in candidate.items():
            if value in EMPTY:
                continue
            if merged.get(key) in EMPTY:
                merged[key] = value
                mutated = True
        return merged, mutated
