"""Quarantine handling for rejected raw events."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Union

import orjson


class Quarantine:
    """Writes rejected raw events to a quarantine directory for inspection."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def reject(self, *, raw: Dict[str, object], reason: Union[str, List[str]], source_id: str = "") -> Path:
        """Persist the rejected payload with accompanying reasons."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self._root / f"reject_{timestamp}.json"
        index = 1
        while target.exists():
            target = self._root / f"reject_{timestamp}-{index}.json"
            index += 1
        reasons = [reason] if isinstance(reason, str) else list(reason)
        blob = {"source_id": source_id, "entity": raw, "reason": reasons}
        target.write_bytes(orjson.dumps(blob, option=orjson.OPT_INDENT_2, default=str))
        return target
