"""
Command line entry point for DirectoryVerify.

Validates uploaded directory files, runs the cross-source consistency check
and exports the cleaned provider directory.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from directory_verify.audit.audit_logger import AuditLogger
from directory_verify.config import (
    DEFAULT_CONFIG_PATH,
    EngineConfig,
    merge_configs,
    parse_setting,
    update_settings,
)
from directory_verify.enrichment.adapter import create_enrichment_adapter
from directory_verify.errors import ConfigurationError
from directory_verify.ingestion.row_mapper import load_rows
from directory_verify.merge.consistency_checker import ConsistencyChecker
from directory_verify.models import Source, UserContext
from directory_verify.pipeline.batch_orchestrator import BatchOrchestrator
from directory_verify.reporting.exporter import DirectoryExporter
from directory_verify.storage.record_store import SQLiteRecordStore

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def resolve_log_level(cli_level: Optional[str], logging_config: Dict[str, Any]) -> str:
    """Command line level first, then logging.level, then INFO."""
    level = cli_level or str(logging_config.get("level") or "INFO").upper()
    if level not in LOG_LEVELS:
        logger.warning(f"Unknown log level {level}, using INFO")
        return "INFO"
    return level


def setup_logging(log_level: str, log_file: Optional[str]):
    """Configure root logging with console and file handlers."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers
    )


def print_summary(title: str, lines: Dict[str, Any]):
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    for label, value in lines.items():
        print(f"{label}: {value}")
    print("=" * 50)


def run_validate(args: argparse.Namespace, config: EngineConfig, store: SQLiteRecordStore,
                 audit_logger: AuditLogger, user: UserContext):
    rows = load_rows(args.input)
    adapter = create_enrichment_adapter(config.raw.get("enrichment", {}))
    batch_name = args.batch_name or Path(args.input).stem

    with BatchOrchestrator(store, config, enrichment_adapter=adapter,
                           audit_logger=audit_logger, user=user) as orchestrator:
        summary = orchestrator.run_batch(rows, args.source, batch_name, file_name=Path(args.input).name)

    print_summary("VALIDATION SUMMARY", {
        "Batch": summary.batch_id,
        "Total Records": f"{summary.total:,}",
        "Validated": f"{summary.validated:,}",
        "Flagged": f"{summary.flagged:,}",
        "Failed": f"{summary.failed:,}",
        "Duration": f"{summary.duration:.2f} seconds",
    })


def run_reconcile(args: argparse.Namespace, config: EngineConfig, store: SQLiteRecordStore,
                  audit_logger: AuditLogger, user: UserContext):
    checker = ConsistencyChecker(config.reconciliation)
    report = checker.run_from_store(store, audit_logger=audit_logger, user=user)

    if args.report:
        report_file = Path(args.report)
        report_file.parent.mkdir(parents=True, exist_ok=True)
        with open(report_file, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)
        logger.info(f"Wrote reconciliation report to {report_file}")

    if args.output:
        DirectoryExporter(store, audit_logger, user).export_reconciled(report, args.output)

    print_summary("CONSISTENCY CHECK SUMMARY", {
        "Multi-source Providers": f"{report.total_checked:,}",
        "Consistent": f"{report.consistent_count:,}",
        "Inconsistent": f"{report.inconsistent_count:,}",
        "Consistency Score": f"{report.consistency_score}%",
    })


def run_export(args: argparse.Namespace, config: EngineConfig, store: SQLiteRecordStore,
               audit_logger: AuditLogger, user: UserContext):
    exporter = DirectoryExporter(store, audit_logger, user)
    exported = exporter.export_validated(args.output, source=args.source)
    stats = exporter.get_directory_statistics(source=args.source)

    print_summary("EXPORT SUMMARY", {
        "Original Records": f"{stats['original_records']:,}",
        "Exported Records": f"{exported:,}",
        "Avg Confidence": f"{stats['avg_confidence_after']}%",
        "Records Improved": f"{stats['records_improved']:,}",
        "Output": args.output,
    })


def run_settings(args: argparse.Namespace, config: EngineConfig, store: SQLiteRecordStore,
                 audit_logger: AuditLogger, user: UserContext):
    overrides: Dict[str, Any] = {}
    for assignment in args.set:
        overrides = merge_configs(overrides, parse_setting(assignment))

    changed = update_settings(args.config, overrides, audit_logger=audit_logger, user=user)

    print_summary("SETTINGS SUMMARY", {
        "Config": args.config,
        "Changed": ", ".join(changed) if changed else "nothing",
    })


def build_parser() -> argparse.ArgumentParser:
    sources = [s.value for s in Source]

    parser = argparse.ArgumentParser(description="DirectoryVerify Provider Validation and Reconciliation")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--db", help="SQLite database path (overrides storage.db_path)")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Overrides logging.level")
    parser.add_argument("--user-email", help="User recorded in audit entries")
    parser.add_argument("--user-role", help="Role recorded in audit entries")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate and score a directory CSV")
    validate_parser.add_argument("--input", required=True, help="Input CSV path")
    validate_parser.add_argument("--source", required=True, choices=sources, help="Directory source")
    validate_parser.add_argument("--batch-name", help="Batch name (defaults to the file name)")
    validate_parser.set_defaults(handler=run_validate)

    reconcile_parser = subparsers.add_parser("reconcile", help="Run the cross-source consistency check")
    reconcile_parser.add_argument("--output", help="Reconciled directory CSV path")
    reconcile_parser.add_argument("--report", help="Reconciliation report JSON path")
    reconcile_parser.set_defaults(handler=run_reconcile)

    export_parser = subparsers.add_parser("export", help="Export the validated directory")
    export_parser.add_argument("--output", required=True, help="Output CSV path")
    export_parser.add_argument("--source", choices=sources, help="Only export records from this source")
    export_parser.set_defaults(handler=run_export)

    settings_parser = subparsers.add_parser("settings", help="Update saved configuration settings")
    settings_parser.add_argument("--set", action="append", required=True, metavar="KEY=VALUE",
                                 help="Dotted setting to change, e.g. scoring.confidence_threshold=80")
    settings_parser.set_defaults(handler=run_settings)

    return parser


def main(argv=None):
    """Main entry point for DirectoryVerify."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig.load(args.config)
    except ConfigurationError as e:
        setup_logging(args.log_level or "INFO", None)
        logger.error(f"Invalid configuration in {args.config}: {e}")
        sys.exit(1)

    logging_config = config.raw.get("logging", {})
    log_level = resolve_log_level(args.log_level, logging_config)
    setup_logging(log_level, logging_config.get("file"))

    try:
        store = SQLiteRecordStore(args.db or config.raw["storage"]["db_path"])
        audit_logger = AuditLogger(store)
        user = UserContext(email=args.user_email, role=args.user_role)

        args.handler(args, config, store, audit_logger, user)

    except Exception as e:
        logger.error(f"DirectoryVerify {args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
