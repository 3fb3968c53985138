"""Command-line entrypoints for the event import pipeline."""
from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from eventsync.admin.status import quarantine_reasons, source_status
from eventsync.errors import ConfigurationError
from eventsync.observability.log import configure_logging
from eventsync.observability.metrics import MetricsRegistry
from eventsync.orchestrator.importer import Importer, publish_accepted
from eventsync.orchestrator.source_loader import load_sources, validate_sources
from eventsync.quality.quarantine import Quarantine
from eventsync.settings import ImportSettings, load_settings
from eventsync.sources.registry import default_registry
from eventsync.storage.layout import DataLayout
from eventsync.storage.partition import PartitionWriter
from eventsync.storage.publisher import SQLiteEventPublisher
from eventsync.storage.venues import VenueResolver

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="eventsync", description="Import event listings from configured sources")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS), help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("import", help="Run one import pass")
    run.add_argument("--source-id", default="all", help="Filter to a particular source ID")
    run.add_argument("--run-id", help="Override the generated run identifier")
    run.add_argument("--dry-run", action="store_true", help="Print planned sources without fetching")
    run.add_argument("--no-publish", action="store_true", help="Skip publishing accepted events")

    validate = sub.add_parser("validate-sources", help="Validate sources.csv and associated rule files")
    validate.add_argument("--sources", help="Path to sources CSV")

    status = sub.add_parser("status", help="Summarise sources and their latest run")
    status.add_argument("--sources", help="Path to sources CSV")
    status.add_argument("--manifests", help="Manifest directory")

    rejects = sub.add_parser("inspect-rejects", help="Count quarantine reasons")
    rejects.add_argument("--source-id", help="Only count rejects from this source")
    rejects.add_argument("--last", type=int, default=7, help="Look back this many days")

    return parser


def run_import_command(args: argparse.Namespace, settings: ImportSettings) -> None:
    """Execute the import command end-to-end."""
    try:
        sources = load_sources(settings.sources_csv)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Failed to load sources: {exc}")

    if args.source_id != "all":
        sources = [source for source in sources if source.source_id == args.source_id]

    if not sources:
        print("No matching sources found")
        return

    if args.dry_run:
        summary = [
            {
                "source_id": source.source_id,
                "source_type": source.source_type,
                "url": source.url,
                "rules_path": str(source.rules_path) if source.rules_path else None,
            }
            for source in sources
        ]
        print(json.dumps(summary, indent=2))
        return

    run_id = args.run_id or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    layout = DataLayout(settings.data_root).ensure()
    metrics = MetricsRegistry()
    publisher = SQLiteEventPublisher(layout.database())
    venues = VenueResolver(layout.database())
    try:
        importer = Importer(
            default_registry(),
            settings,
            venue_resolver=venues,
            publisher=publisher,
            metrics=metrics,
            quarantine=Quarantine(layout.quarantine),
        )
        try:
            result = asyncio.run(importer.run_import(sources, run_id=run_id))
        except ConfigurationError as exc:
            raise SystemExit(f"Configuration error: {exc}")
        if not args.no_publish:
            publish_accepted(result, publisher, metrics)
    finally:
        venues.close()
        publisher.close()

    exports = PartitionWriter(layout.exports).persist(
        events=result.accepted,
        venue_refs=result.venue_refs,
        run_id=run_id,
    )
    summary = {"run_id": run_id, **result.summary()}
    layout.manifest(run_id).write_text(
        json.dumps(
            {
                **summary,
                "paths": {kind: str(path) for kind, path in exports.items()},
                "source_stats": result.source_stats,
                "metrics": metrics.snapshot(),
                "exit_code": 0,
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    metrics.export(path=layout.metrics / f"run_{run_id}.json", run_id=run_id)
    print(json.dumps(summary, indent=2))


def run_validate_command(args: argparse.Namespace, settings: ImportSettings) -> None:
    csv_path = Path(args.sources) if args.sources else settings.sources_csv
    results = validate_sources(csv_path, default_registry())
    report = []
    success = True
    for source_id, ok, detail in results:
        status = "OK"
        if detail == "disabled":
            status = "DISABLED"
        elif not ok:
            status = "FAIL"
            success = False
        report.append({
            "source_id": source_id,
            "status": status,
            "detail": detail if status != "OK" else "",
        })
    print(json.dumps(report, indent=2))
    if not success:
        raise SystemExit(1)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(DEFAULT_LOGGING)
    try:
        settings = ImportSettings.from_mapping(load_settings(Path(args.settings)))
    except ConfigurationError as exc:
        raise SystemExit(str(exc))

    if args.command == "import":
        run_import_command(args, settings)
        return

    if args.command == "validate-sources":
        run_validate_command(args, settings)
        return

    if args.command == "status":
        sources = Path(args.sources) if args.sources else settings.sources_csv
        manifests = Path(args.manifests) if args.manifests else DataLayout(settings.data_root).manifests
        print(json.dumps(source_status(sources, manifests), indent=2))
        return

    if args.command == "inspect-rejects":
        layout = DataLayout(settings.data_root)
        reasons = quarantine_reasons(layout.quarantine, source_id=args.source_id, days=args.last)
        print(json.dumps(reasons, indent=2))


if __name__ == "__main__":
    main()
