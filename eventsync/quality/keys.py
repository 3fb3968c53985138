"""Deterministic key builders for deduplication and identity."""
from __future__ import annotations

import hashlib

from eventsync.normalize.text import normalize


def generate(title: str, start_date: str, venue: str) -> str:
    """Return the 32-hex-digit identifier for an event.

    ``start_date`` must already be in ``YYYY-MM-DD`` form and is used verbatim.
    """
    payload = normalize(title) + start_date + normalize(venue)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
