import json
from pathlib import Path

import pytest
import structlog

from eventsync.errors import ConfigurationError
from eventsync.observability.metrics import MetricsRegistry, record_duration
from eventsync.observability.tracing import clear_context, clear_source, set_context
from eventsync.settings import ImportSettings, load_settings


def test_shipped_settings_load():
    settings = ImportSettings.from_mapping(load_settings(Path("config/settings.toml")))
    assert settings.timezone == "America/New_York"
    assert settings.max_concurrency == 4
    assert settings.sources_csv == Path("source_registry/sources.csv")


def test_missing_settings_file_uses_defaults(tmp_path):
    assert load_settings(tmp_path / "absent.toml") == {}
    assert ImportSettings.from_mapping({}) == ImportSettings()


def test_bad_values_raise_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        ImportSettings.from_mapping({"fetch": {"timeout_seconds": "soon"}})
    broken = tmp_path / "broken.toml"
    broken.write_text("[app\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(broken)


def test_concurrency_and_retries_are_clamped():
    settings = ImportSettings.from_mapping({"fetch": {"max_concurrency": 0, "retries": -3}})
    assert settings.max_concurrency == 1
    assert settings.retries == 0


def test_metrics_export(tmp_path):
    metrics = MetricsRegistry()
    metrics.incr("events_accepted", 3)
    with record_duration(metrics, "run_duration_ms"):
        pass
    path = metrics.export(path=tmp_path / "metrics" / "run_x.json", run_id="x")
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["run_id"] == "x"
    assert payload["counters"]["events_accepted"] == 3
    assert payload["counters"]["publish_failures"] == 0
    assert metrics.get("unknown") == 0


def test_trace_context_binding():
    clear_context()
    set_context(run_id="r1", source_id="forte")
    assert structlog.contextvars.get_contextvars() == {"run_id": "r1", "source_id": "forte"}
    clear_source()
    assert structlog.contextvars.get_contextvars() == {"run_id": "r1"}
    clear_context()
    assert structlog.contextvars.get_contextvars() == {}
