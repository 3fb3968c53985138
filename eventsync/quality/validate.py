"""JSON Schema validation of alias-mapped raw events."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import jsonschema
import orjson

SCHEMA_ROOT = Path(__file__).resolve().parent / "schemas"


@dataclass
class ValidationResult:
    """Outcome of validating a single raw event."""

    ok: bool
    errors: List[str]

    @property
    def reason(self) -> str:
        return "; ".join(self.errors)


class RawEventValidator:
    """Checks the required fields every source must supply."""

    def __init__(self, schema_path: Optional[Path] = None) -> None:
        self._path = schema_path or SCHEMA_ROOT / "raw_event.schema.json"
        self._validator: Optional[jsonschema.Draft202012Validator] = None

    def _load(self) -> jsonschema.Draft202012Validator:
        if self._validator is None:
            if not self._path.exists():
                raise FileNotFoundError(f"Schema not found: {self._path}")
            schema: Dict = orjson.loads(self._path.read_bytes())
            self._validator = jsonschema.Draft202012Validator(schema)
        return self._validator

    def validate(self, payload: Dict[str, object]) -> ValidationResult:
        validator = self._load()
        errors = [
            f"{error.json_path}: {error.message}"
            for error in sorted(validator.iter_errors(payload), key=lambda e: e.json_path)
        ]
        return ValidationResult(ok=not errors, errors=errors)
