# =============================================================================
# flow_core/cli.py
# Command line entry point: flowtracker status | migrate | validate | backup
# =============================================================================

from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from flow_core.errors import FlowTrackerError, ConfigurationError
from flow_core.logging import setup_logging
from flow_core.offline import (
    EntityType,
    MigrationProgress,
    StorageContext,
    load_config,
)


def _print_progress(progress: MigrationProgress) -> None:
    print(f"  [{progress.percentage:3d}%] {progress.stage} ({progress.completed}/{progress.total})")


def _build_context(args: argparse.Namespace) -> StorageContext:
    config = load_config(secrets_path=args.secrets)
    setup_logging(
        level="DEBUG" if args.verbose else config.log_level,
        log_to_file=False,
        debug_storage=config.debug_storage,
    )
    return StorageContext(config).initialize()


def cmd_status(ctx: StorageContext, args: argparse.Namespace) -> int:
    status = ctx.get_status()
    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return 0

    print(f"\n{'='*60}")
    print("FlowTracker storage status")
    print(f"{'='*60}")
    print(f"Mode:                 {status['current_mode']}")
    print(f"Online:               {status['is_online']}")
    print(f"Remote configured:    {status['remote_configured']}")
    print(f"Remote available:     {status['remote_available']}")
    print(f"Consecutive failures: {status['consecutive_failures']}")
    print(f"Retry count:          {status['retry_count']}")
    print(f"Last switch:          {status['last_switch'] or 'never'}")
    print("Providers:")
    for provider in status["available_providers"]:
        state = "available" if provider["available"] else "unavailable"
        print(f"  - {provider['name']}: {state} (priority {provider['priority']})")
    if not status["config"]["valid"]:
        print("Configuration errors:")
        for error in status["config"]["errors"]:
            print(f"  - {error}")
    return 0


def cmd_migrate(ctx: StorageContext, args: argparse.Namespace) -> int:
    if not ctx.is_remote:
        print("Remote store is not available; staying in local mode. Nothing migrated.")
        return 2

    entity_types = [EntityType.parse(e) for e in args.entity] if args.entity else None
    ctx.migration.add_progress_listener(_print_progress)
    summary = ctx.migrate(entity_types)

    print(f"\nMigrated {summary.migrated_records}/{summary.total_records} records "
          f"in {summary.time_taken:.2f}s")
    for error in summary.errors:
        print(f"  ✗ {error.entity_type.value} {error.record_id}: {error.reason}")

    if args.validate:
        report = ctx.validate_migration(summary)
        print("Validation:", "ok" if report.is_valid else "issues found")
        for issue in report.issues:
            print(f"  - {issue}")

    return 0 if summary.success else 1


def cmd_validate(ctx: StorageContext, args: argparse.Namespace) -> int:
    report = ctx.validate_migration()
    for issue in report.issues:
        print(f"  - {issue}")
    print("Validation:", "ok" if report.is_valid else "issues found")
    return 0 if report.is_valid else 1


def cmd_backup(ctx: StorageContext, args: argparse.Namespace) -> int:
    document = ctx.backup()
    if args.output:
        Path(args.output).write_text(document, encoding="utf-8")
        print(f"Backup written to {args.output}")
    else:
        print(document)
    return 0


def cmd_retry(ctx: StorageContext, args: argparse.Namespace) -> int:
    mode = ctx.retry()
    print(f"Mode after retry: {mode.value}")
    return 0 if mode.prefers_remote else 2


def cmd_mode(ctx: StorageContext, args: argparse.Namespace) -> int:
    mode = ctx.force_mode(args.mode)
    print(f"Mode: {mode.value}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "migrate": cmd_migrate,
    "validate": cmd_validate,
    "backup": cmd_backup,
    "retry": cmd_retry,
    "mode": cmd_mode,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowtracker", description="FlowTracker storage tools")
    parser.add_argument("--secrets", help="Path to secrets.toml (default: .streamlit/secrets.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show the current storage mode and backend health")
    status.add_argument("--json", action="store_true", help="Print the raw status document")

    migrate = sub.add_parser("migrate", help="Upload the local cache to the remote store")
    migrate.add_argument("--validate", action="store_true", help="Compare counts afterwards")
    migrate.add_argument(
        "--entity",
        action="append",
        choices=[e.value for e in EntityType],
        help="Limit to an entity type (repeatable)",
    )

    sub.add_parser("validate", help="Compare local and remote record counts")

    backup = sub.add_parser("backup", help="Dump the local cache as JSON")
    backup.add_argument("-o", "--output", help="Write to a file instead of stdout")

    sub.add_parser("retry", help="Try to switch back to the remote store")

    mode = sub.add_parser("mode", help="Force a storage mode")
    mode.add_argument("mode", choices=["auto", "remote", "local", "hybrid"])

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        ctx = _build_context(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        for error in e.details.get("errors", []):
            print(f"  - {error}", file=sys.stderr)
        return 2

    try:
        return COMMANDS[args.command](ctx, args)
    except FlowTrackerError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
