"""Deduplication utilities for import passes."""
from __future__ import annotations

import threading
from typing import Iterable, Set


class Deduplicator:
    """Keeps track of identifiers seen in this pass or published before it."""

    def __init__(self, previously_published: Iterable[str] = ()) -> None:
        self._published: Set[str] = set(previously_published)
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def is_duplicate(self, identifier: str) -> bool:
        """Return True when the identifier was already accepted or published."""
        with self._lock:
            return identifier in self._seen or identifier in self._published

    def remember(self, identifier: str) -> bool:
        """Record the identifier; return False if it was already known."""
        with self._lock:
            if identifier in self._seen or identifier in self._published:
                return False
            self._seen.add(identifier)
            return True

    @property
    def seen(self) -> Set[str]:
        return set(self._seen)
