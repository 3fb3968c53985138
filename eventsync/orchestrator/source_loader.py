"""Utilities for loading event sources from the registry CSV."""
from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from eventsync.sources.registry import SourceRegistry

KNOWN_COLUMNS = {"source_id", "source_type", "url", "credentials_env", "rules_path", "timeout_seconds", "enabled"}


class SourceConfig(BaseModel):
    """Validated configuration for a single event source.

    ``options`` holds everything source specific: the parsed rule file plus any
    extra CSV columns. The importer never looks inside it.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    source_type: str = Field(pattern=r"^[a-z][a-z0-9_]*$")
    url: Optional[str] = None
    credentials_env: Optional[str] = None
    rules_path: Optional[Path] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    enabled: bool = True

    @field_validator("url", "credentials_env", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def credential(self) -> Optional[str]:
        """Return the secret named by ``credentials_env``, if it is set."""
        if not self.credentials_env:
            return None
        value = os.environ.get(self.credentials_env, "").strip()
        return value or None

    def option(self, name: str, default: Any = None) -> Any:
        value = self.options.get(name)
        return default if value in (None, "") else value


def _coerce_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y"}


def _coerce_float(value: str | float | int | None) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def load_rules(path: Path) -> Dict[str, Any]:
    """Read a YAML rule file into a mapping."""
    if not path.exists():
        raise FileNotFoundError(f"Rule file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Rule file {path} must contain a mapping")
    return data


def _prepare_row(row: dict[str, str], base_dir: Path) -> dict[str, object]:
    mapped: dict[str, object] = {}
    options: Dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        name = key.strip()
        cleaned = value.strip() if isinstance(value, str) else value
        if name in KNOWN_COLUMNS:
            mapped[name] = cleaned
        elif cleaned not in (None, ""):
            options[name] = cleaned
    mapped["enabled"] = _coerce_bool(mapped.get("enabled"), default=True)
    mapped["timeout_seconds"] = _coerce_float(mapped.get("timeout_seconds"))
    rules_path = mapped.get("rules_path")
    if rules_path:
        mapped["rules_path"] = (base_dir / str(rules_path)).resolve()
    else:
        mapped["rules_path"] = None
    mapped["options"] = options
    return mapped


def _build(prepared: dict[str, object]) -> SourceConfig:
    config = SourceConfig(**prepared)
    if config.enabled and config.rules_path is not None:
        options = {**load_rules(config.rules_path), **config.options}
        config = config.model_copy(update={"options": options})
    return config


def _rows(csv_path: Path) -> List[dict[str, object]]:
    base_dir = csv_path.parent
    with csv_path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        return [_prepare_row(raw, base_dir) for raw in reader if raw and raw.get("source_id")]


def load_sources(csv_path: Path) -> List[SourceConfig]:
    """Load enabled sources from the registry CSV, validating each row."""
    configs: List[SourceConfig] = []
    for prepared in _rows(csv_path):
        try:
            config = _build(prepared)
        except (ValidationError, FileNotFoundError, ValueError, yaml.YAMLError) as exc:
            raise ValueError(f"Invalid source row {prepared.get('source_id')}: {exc}") from exc
        if not config.enabled:
            continue
        configs.append(config)
    return configs


def validate_sources(csv_path: Path, registry: Optional["SourceRegistry"] = None) -> List[Tuple[str, bool, str]]:
    """Validate all rows, returning results per source without raising."""
    results: List[Tuple[str, bool, str]] = []
    for prepared in _rows(csv_path):
        source_id = str(prepared.get("source_id"))
        try:
            config = _build(prepared)
        except (ValidationError, FileNotFoundError, ValueError, yaml.YAMLError) as exc:
            results.append((source_id, False, str(exc)))
            continue
        if not config.enabled:
            results.append((source_id, True, "disabled"))
        elif registry is not None and config.source_type not in registry:
            results.append((source_id, False, f"unregistered source type: {config.source_type}"))
        else:
            results.append((source_id, True, "ok"))
    return results
