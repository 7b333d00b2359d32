#!/usr/bin/env python3
"""
Run the POS ingestion service.

Settings come from a YAML file (``--config`` or $POS_INGESTION_CONFIG) plus
POS_* / DATABASE_URL environment overrides.

Usage:
    python3 scripts/run_ingestion.py [--config settings.yaml] [--once | --validate-only]

Examples:
    # Long-running scheduler (Ctrl-C / SIGTERM to stop)
    python3 scripts/run_ingestion.py --config config/ingestion.yaml

    # Single cycle, then exit
    python3 scripts/run_ingestion.py --once

    # Check the configuration tables and exit
    python3 scripts/run_ingestion.py --validate-only
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="POS transaction ingestion: fetch -> map -> insert on a fixed interval.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings YAML file (default: $POS_INGESTION_CONFIG).",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single ingestion cycle and exit.",
    )
    mode.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the configuration tables and exit.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if args.config is not None and not args.config.is_file():
        print(f"ERROR: Settings file not found: {args.config}", file=sys.stderr)
        return 2

    # Lazy imports so we fail fast on args first
    from pos_batch.runner import prepare, run_once, run_service
    from pos_config import load_settings
    from pos_kernel.exceptions import InvalidSettingsError
    from pos_kernel.logging_config import configure_logging
    from pos_kernel.runtime import RuntimeContext

    try:
        settings = load_settings(args.config)
    except InvalidSettingsError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.validate_only:
        configure_logging(level=settings.log_level)
        runtime = RuntimeContext.from_settings(settings)
        try:
            report = prepare(settings, runtime)
        finally:
            runtime.dispose()
        print("Configuration validation:", "PASSED" if report.is_valid else "FAILED")
        for table, count in sorted(report.table_counts.items()):
            print(f"  {table}: {count} rows")
        for table in report.missing_tables:
            print(f"  {table}: missing")
        print(f"  active configurations: {report.active_configurations}")
        if report.error:
            print(f"  error: {report.error}")
        return 0 if report.is_valid else 1

    if args.once:
        result = run_once(settings)
        if result is None:
            return 1
        print(
            f"Cycle {result.cycle_id}: {result.succeeded_count} succeeded, "
            f"{result.failed_count} failed"
        )
        return 1 if result.failed else 0

    return run_service(settings)


if __name__ == "__main__":
    sys.exit(main())
