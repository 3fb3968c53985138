"""Runtime settings passed explicitly into the importer and every source."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

import tomllib

from eventsync.errors import ConfigurationError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


@dataclass(frozen=True)
class ImportSettings:
    """Knobs shared by one import pass."""

    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 30.0
    max_concurrency: int = 4
    retries: int = 2
    timezone: str = "America/Chicago"
    data_root: Path = Path("data")
    sources_csv: Path = Path("source_registry/sources.csv")

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "ImportSettings":
        """Build settings from the parsed ``settings.toml`` tables."""
        fetch: Dict[str, Any] = dict(settings.get("fetch", {}))
        app: Dict[str, Any] = dict(settings.get("app", {}))
        try:
            return cls(
                user_agent=str(fetch.get("user_agent", DEFAULT_USER_AGENT)),
                timeout_seconds=float(fetch.get("timeout_seconds", 30.0)),
                max_concurrency=max(1, int(fetch.get("max_concurrency", 4))),
                retries=max(0, int(fetch.get("retries", 2))),
                timezone=str(app.get("timezone", "America/Chicago")),
                data_root=Path(app.get("data_root", "data")),
                sources_csv=Path(app.get("sources_csv", "source_registry/sources.csv")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid settings: {exc}") from exc


def load_settings(path: Path) -> Dict[str, Any]:
    """Read the TOML configuration file; a missing file yields defaults."""
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid settings file {path}: {exc}") from exc
