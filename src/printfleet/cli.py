#!/usr/bin/env python3
"""printfleet command line.

Usage:
    printfleet apply MANIFEST [--settings FILE] [--dry-run] [--force] [--only NAME ...]
    printfleet plan MANIFEST [--settings FILE] [--only NAME ...]
    printfleet history [--device NAME] [--limit N]

MANIFEST is a local .yaml/.yml/.csv path or an http(s) URL.

Exit codes:
    0   All printers converged (or the manifest was already applied)
    1   Fatal error: manifest or settings could not be loaded
    3   The pass finished but at least one printer failed
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config.settings import ReconcileSettings, load_settings
from .devices import PrintStore, create_store
from .errors import PrintfleetError, ProbeFailure
from .manifest import load_manifest
from .reconcile import (
    EXIT_FATAL,
    EXIT_OK,
    Reconciler,
    RunReport,
    exit_code_for,
    summarize_plan,
)
from .state import MarkerStore
from .utils.audit_log import AuditTrail, get_recent_outcomes, setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger("printfleet.cli")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    common.add_argument(
        "--settings",
        type=Path,
        help="Settings YAML file (default: searched in ./configs, ., ~/.config/printfleet)",
    )

    parser = argparse.ArgumentParser(
        prog="printfleet",
        description="Reconcile installed printers with a declarative manifest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Preview what would change
    printfleet plan printers.yaml

    # Apply a manifest served from object storage
    printfleet apply https://bucket.example.com/site-a/printers.csv

    # Reapply even if this manifest version was already applied
    printfleet apply printers.yaml --force

Environment:
    PRINTFLEET_SETTINGS         Settings file path
    PRINTFLEET_MANIFEST_TOKEN   Bearer token for manifest downloads
    PRINTFLEET_LOG_LEVEL        Console log level (default: INFO)
""",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    apply_p = sub.add_parser("apply", parents=[common], help="Converge printers to the manifest")
    apply_p.add_argument("manifest", help="Manifest path or URL")
    apply_p.add_argument("--dry-run", action="store_true", help="Decide actions without changing anything")
    apply_p.add_argument("--force", action="store_true", help="Run even if this manifest version is already applied")
    apply_p.add_argument("--only", nargs="+", metavar="NAME", help="Only process these printers")
    apply_p.add_argument("--json", action="store_true", help="Print the run report as JSON")

    plan_p = sub.add_parser("plan", parents=[common], help="Show the actions a run would take")
    plan_p.add_argument("manifest", help="Manifest path or URL")
    plan_p.add_argument("--only", nargs="+", metavar="NAME", help="Only plan these printers")

    history_p = sub.add_parser("history", parents=[common], help="Show recorded outcomes from the audit log")
    history_p.add_argument("--device", help="Filter by printer name")
    history_p.add_argument("--limit", type=int, default=20, help="Maximum records (default: 20)")

    return parser


async def run_apply(
    args: argparse.Namespace,
    settings: ReconcileSettings,
    store: Optional[PrintStore] = None,
) -> int:
    manifest = await load_manifest(args.manifest)
    markers = MarkerStore(settings.marker_path)

    if not args.dry_run and not args.force and not args.only and markers.is_applied(manifest.version):
        logger.info(f"Manifest {manifest.version} already applied - nothing to do (use --force to rerun)")
        return EXIT_OK

    reconciler = Reconciler(
        store or create_store(settings),
        settings,
        listeners=[AuditTrail(manifest.version)],
    )
    only = set(args.only) if args.only else None
    report = await reconciler.run(manifest, dry_run=args.dry_run, only=only)

    if report.marker is not None:
        markers.write(report.marker)

    log_report(report)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))

    return exit_code_for(report.result)


async def run_plan(
    args: argparse.Namespace,
    settings: ReconcileSettings,
    store: Optional[PrintStore] = None,
) -> int:
    manifest = await load_manifest(args.manifest)
    reconciler = Reconciler(store or create_store(settings), settings)
    plan = await reconciler.plan(manifest, only=set(args.only) if args.only else None)
    print(summarize_plan(plan))
    return EXIT_OK


def run_history(args: argparse.Namespace, settings: ReconcileSettings) -> int:
    records = get_recent_outcomes(
        settings.audit_log_path, device_name=args.device, limit=args.limit
    )
    if not records:
        print("No recorded outcomes")
        return EXIT_OK

    for record in records:
        status = "OK" if record.success else f"FAIL ({record.error_kind})"
        dry = " [dry-run]" if record.dry_run else ""
        print(f"{record.timestamp}  {record.device_name:<24} {record.action:<11} {status}{dry}")
        if record.error_detail:
            print(f"    {record.error_detail}")
    return EXIT_OK


def log_report(report: RunReport) -> None:
    """Log a per-device summary of a finished pass."""
    logger.info("=" * 60)
    logger.info(f"{'DRY RUN ' if report.dry_run else ''}RESULTS for manifest {report.manifest_version}")
    logger.info("=" * 60)

    for outcome in report.result.outcomes:
        status = "OK" if outcome.success else "FAIL"
        logger.info(f"  {outcome.device_name}: {outcome.action.value} {status}")
        if outcome.error_detail:
            logger.info(f"    Error ({outcome.error_kind.value}): {outcome.error_detail}")
        for setting in outcome.settings:
            if not setting.applied:
                logger.info(f"    Setting {setting.key} not applied: {setting.error}")

    summary = report.result.to_dict()["summary"]
    logger.info(f"Total: {summary['total_devices']}  Succeeded: {summary['succeeded']}  Failed: {summary['failed']}")
    if report.any_failure:
        logger.error("RECONCILIATION FINISHED WITH FAILURES")
    else:
        logger.info("RECONCILIATION SUCCEEDED")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the printfleet CLI."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.settings)
    except PrintfleetError as e:
        print(f"printfleet: {e}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(verbose=args.verbose, default_dir=settings.state_dir)
    setup_audit_logging(settings.audit_log_path)

    try:
        if args.command == "apply":
            return asyncio.run(run_apply(args, settings))
        if args.command == "plan":
            return asyncio.run(run_plan(args, settings))
        return run_history(args, settings)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except ProbeFailure as e:
        logger.error(f"Cannot read print store: {e}")
        return EXIT_FATAL
    except PrintfleetError as e:
        logger.error(str(e))
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
