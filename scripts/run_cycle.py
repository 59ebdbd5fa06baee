#!/usr/bin/env python
"""
OrgLens - Ingestion Cycle Runner
================================
CLI script to run one ingestion/resolution cycle over file snapshots.

This script:
1. Loads the engine configuration
2. Pulls each source snapshot from its CSV / Excel file
3. Normalizes, indexes and resolves cross-references
4. Prints a summary, cross-references and optionally a view

Usage:
    python scripts/run_cycle.py --snapshot ladder=data/ladder.csv --snapshot orgchart=data/org.xlsx
    python scripts/run_cycle.py --snapshot department=data/dept.csv --view department
    python scripts/run_cycle.py --snapshot ladder=data/ladder.csv --min-confidence 0.9 --json
"""

import sys
import os
import json
import argparse
import logging
from pathlib import Path
from datetime import datetime

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from orglens.config import DEFAULT_CONFIG_PATH, EngineConfig, load_engine_config
from orglens.errors import ConfigError, OrgLensError
from orglens.federation import HierarchyFederation
from orglens.ingestion.file_snapshots import FileSnapshotAdapter
from orglens.logging_config import setup_logging
from orglens.pipeline_tracking import SUCCESS

load_dotenv()

logger = logging.getLogger(__name__)


def print_banner():
    """Print the application banner."""
    print()
    print("=" * 70)
    print("  OrgLens - Natural Hierarchy Aggregation")
    print("  Ingestion & Cross-Reference Resolution Cycle")
    print("=" * 70)
    print()


def print_summary(report: dict, cross_references: list, elapsed_seconds: float):
    """Print a formatted summary of the cycle."""
    print()
    print("=" * 70)
    print("  INGESTION CYCLE SUMMARY")
    print("=" * 70)
    print()

    print("  SOURCES:")
    for source, stats in report['normalization'].items():
        print(f"    {source:<12} pulled {stats['total']:>6,}   skipped {stats['skipped']:>5,}")
    for source, error in report['failed_sources'].items():
        print(f"    {source:<12} FAILED: {error}")
    print()

    resolution = report['resolution']
    print("  RESOLUTION:")
    print(f"    Index version:       v{report['version']}")
    print(f"    Records indexed:     {report['build']['total_records']:,}")
    print(f"    Blocks:              {resolution['blocks']:,}")
    print(f"    Comparisons:         {resolution['comparisons']:,}")
    print(f"    Cross-references:    {resolution['clusters']:,}")
    print(f"    Likely same person:  {resolution['likely_clusters']:,}")
    print()

    if cross_references:
        print("  CROSS-REFERENCES:")
        for xref in cross_references:
            marker = '*' if xref.likely_same_person else ' '
            members = ', '.join(str(m) for m in xref.members)
            print(f"   {marker} {xref.confidence:.3f}  {members}")
        print()

    print(f"  ELAPSED TIME: {elapsed_seconds:.2f} seconds")
    print()
    print("=" * 70)
    print(f"  STATUS: {report['status']}")
    print("=" * 70)
    print()


def resolve_config(config_arg=None, workers=None):
    """
    Resolve the engine config from --config, $ORGLENS_CONFIG_PATH or the default path.

    Returns:
        (EngineConfig, path used)

    Raises:
        ConfigError: an explicitly named config file is missing or invalid
    """
    explicit = config_arg or os.getenv('ORGLENS_CONFIG_PATH')
    config_path = explicit or DEFAULT_CONFIG_PATH
    if Path(config_path).exists():
        config = load_engine_config(config_path)
    elif explicit:
        raise ConfigError(f"Configuration file not found: {config_path}")
    else:
        logger.warning(f"No config at {config_path}; using built-in defaults")
        config = EngineConfig()

    if workers is not None:
        config = config.with_overrides(resolver_workers=workers)
    return config, config_path


def parse_snapshot_args(values: list) -> dict:
    snapshots = {}
    for value in values:
        source, sep, path = value.partition('=')
        if not sep or not source or not path:
            raise argparse.ArgumentTypeError(f"Expected SOURCE=PATH, got '{value}'")
        snapshots[source.strip()] = path.strip()
    return snapshots


def main():
    """Main entry point for the cycle runner."""
    parser = argparse.ArgumentParser(
        description='OrgLens: run one ingestion/resolution cycle over snapshot files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --snapshot ladder=ladder.csv --snapshot orgchart=org.xlsx
  %(prog)s --snapshot ladder=ladder.csv --view source:ladder
  %(prog)s --snapshot ladder=ladder.csv --min-confidence 0.9 --json

The cycle will:
  1. Pull each snapshot file (CSV or Excel)
  2. Normalize records, skipping invalid ones
  3. Build a new index
  4. Resolve cross-references between source systems
  5. Publish the index and resolution together
        """
    )

    parser.add_argument(
        '--snapshot',
        action='append',
        default=[],
        metavar='SOURCE=PATH',
        help='Snapshot file for a source system (repeatable)'
    )

    parser.add_argument(
        '--config',
        default=None,
        help=f'Path to engine configuration (default: $ORGLENS_CONFIG_PATH or {DEFAULT_CONFIG_PATH})'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help='Wall-clock budget for the cycle in seconds'
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=None,
        help='Resolver worker threads (default: from config)'
    )

    parser.add_argument(
        '--min-confidence',
        type=float,
        default=None,
        help='Only list cross-references at or above this confidence, 0.0-1.0'
    )

    parser.add_argument(
        '--view',
        default=None,
        help='Materialize a view after the cycle (organizational, department, leadership, managers, contributors, source:<system>)'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the cycle report, cross-references and view as JSON'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity level (default: $ORGLENS_LOG_LEVEL or INFO)'
    )

    parser.add_argument(
        '--log-file',
        default=None,
        help='Also write logs to this file'
    )

    args = parser.parse_args()

    try:
        snapshots = parse_snapshot_args(args.snapshot)
    except argparse.ArgumentTypeError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not snapshots:
        print("Error: at least one --snapshot SOURCE=PATH is required")
        sys.exit(1)

    if args.workers is not None and args.workers < 1:
        print("Error: --workers must be positive")
        sys.exit(1)

    if args.min_confidence is not None and not 0.0 <= args.min_confidence <= 1.0:
        print("Error: --min-confidence must be between 0.0 and 1.0")
        sys.exit(1)

    setup_logging(log_file=args.log_file, log_level=args.log_level)
    if not args.json:
        print_banner()

    start_time = datetime.now()

    try:
        config, config_path = resolve_config(args.config, args.workers)

        logger.info("Configuration:")
        logger.info(f"  Engine config: {config_path}")
        logger.info(f"  Pair threshold: {config.pair_threshold}")
        logger.info(f"  Likely threshold: {config.likely_threshold}")
        logger.info(f"  Resolver workers: {config.resolver_workers}")
        for source, path in snapshots.items():
            logger.info(f"  Snapshot {source}: {path}")

        adapter = FileSnapshotAdapter(snapshots)
        with HierarchyFederation({s: adapter for s in snapshots}, config) as federation:
            report = federation.run_cycle(timeout_seconds=args.timeout).to_dict()
            cross_references = federation.list_cross_references(args.min_confidence)
            view = federation.materialize_view(args.view) if args.view else None
    except OrgLensError as e:
        logger.error(f"Cycle failed: {e}")
        elapsed = (datetime.now() - start_time).total_seconds()
        print()
        print("=" * 70)
        print("  INGESTION CYCLE FAILED")
        print(f"  Error: {e}")
        print(f"  Elapsed: {elapsed:.2f} seconds")
        print("=" * 70)
        sys.exit(1)

    elapsed = (datetime.now() - start_time).total_seconds()

    if args.json:
        output = {
            'report': report,
            'cross_references': [x.to_dict() for x in cross_references],
        }
        if view is not None:
            output['view'] = view.to_dict()
        print(json.dumps(output, indent=2, default=str))
    else:
        print_summary(report, cross_references, elapsed)
        if view is not None:
            print(json.dumps(view.to_dict(), indent=2, default=str))

    sys.exit(0 if report['status'] == SUCCESS else 1)


if __name__ == '__main__':
    main()
