from pathlib import Path

import pytest

from eventsync.orchestrator.source_loader import SourceConfig, load_rules, load_sources, validate_sources
from eventsync.sources.registry import default_registry

HEADER = "source_id,source_type,url,credentials_env,rules_path,timeout_seconds,enabled,city\n"


def _write(tmp_path: Path, rows: str) -> Path:
    rules = tmp_path / "rules"
    rules.mkdir()
    (rules / "club.yaml").write_text("list_item: //div\nfields:\n  title: .//h2\n  date: .//time\ncity: FromRules\n", encoding="utf-8")
    csv_path = tmp_path / "sources.csv"
    csv_path.write_text(HEADER + rows, encoding="utf-8")
    return csv_path


def test_load_sources_merges_rules_and_extra_columns(tmp_path):
    csv_path = _write(
        tmp_path,
        "club,html_xpath,https://club.example.com,,rules/club.yaml,12,true,Charleston\n"
        "off,ical,https://cal.example.com,,,,false,\n",
    )
    configs = load_sources(csv_path)
    assert [config.source_id for config in configs] == ["club"]
    club = configs[0]
    assert club.timeout_seconds == 12
    assert club.rules_path == (tmp_path / "rules" / "club.yaml").resolve()
    assert club.options["list_item"] == "//div"
    assert club.option("city") == "Charleston"
    assert club.credentials_env is None


def test_invalid_rows_raise_with_source_id(tmp_path):
    csv_path = _write(tmp_path, "broken,Not A Type,,,,,true,\n")
    with pytest.raises(ValueError, match="Invalid source row broken"):
        load_sources(csv_path)


def test_missing_rule_file_is_reported(tmp_path):
    csv_path = _write(tmp_path, "club,html_xpath,https://club.example.com,,rules/missing.yaml,,true,\n")
    with pytest.raises(ValueError, match="Rule file not found"):
        load_sources(csv_path)


def test_validate_sources_reports_each_row(tmp_path):
    csv_path = _write(
        tmp_path,
        "club,html_xpath,https://club.example.com,,rules/club.yaml,,true,\n"
        "off,ical,https://cal.example.com,,,,no,\n"
        "mystery,carrier_pigeon,,,,,true,\n"
        "bad,html_xpath,,,,-1,true,\n",
    )
    results = validate_sources(csv_path, default_registry())
    assert results[0] == ("club", True, "ok")
    assert results[1] == ("off", True, "disabled")
    assert results[2] == ("mystery", False, "unregistered source type: carrier_pigeon")
    assert results[3][0] == "bad"
    assert results[3][1] is False


def test_shipped_registry_is_valid():
    results = validate_sources(Path("source_registry/sources.csv"), default_registry())
    assert results
    assert all(ok for _, ok, _ in results)


def test_credential_and_option_helpers(monkeypatch):
    config = SourceConfig(source_id="x", source_type="dice_fm", credentials_env="X_KEY", options={"blank": ""})
    monkeypatch.delenv("X_KEY", raising=False)
    assert config.credential() is None
    monkeypatch.setenv("X_KEY", " k ")
    assert config.credential() == "k"
    assert config.option("blank", "fallback") == "fallback"


def test_load_rules_requires_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_rules(path)
