"""Command line entry point: ``couchdb-versioning``."""

import argparse
import asyncio
import json
import sys

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config, to_fallbacks
from .logger import setup_logging
from .sync.driver import SyncDriver
from .sync.models import SyncReport
from .sync.reporter import format_sync_report, report_to_json


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="couchdb-versioning",
        description="Push a version-controlled tree of design documents and "
        "data documents into a CouchDB database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Layout of the source directory:
  _design/<name>/...      one directory per design document
  _design/<file>.json     or an object mapping design names to bodies
  docs/**/<id>.json       one file per data document
  .revTimestamps/         last pushed timestamps (keep under version control)

Examples:
  # Sync ./couchdb into a local database
  couchdb-versioning --url http://localhost:5984/app --source couchdb

  # First run against an existing database: pull its design documents
  couchdb-versioning --url http://localhost:5984/app --init-design

  # Design documents only, machine-readable report
  couchdb-versioning --no-docs --json
        """,
    )

    parser.add_argument(
        "--url",
        help="Database URL, e.g. http://localhost:5984/app "
        "(takes precedence over COUCHDB_URL and config files)",
    )
    parser.add_argument("--username", help="CouchDB username")
    parser.add_argument(
        "--password",
        help="CouchDB password (visible in process list -- prefer COUCHDB_PASSWORD)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--source",
        help="Directory holding _design/ and docs/ (default: current directory)",
    )
    parser.add_argument(
        "--init-design",
        action="store_true",
        default=None,
        help="Create local design directories from the database before syncing",
    )
    parser.add_argument(
        "--no-docs",
        dest="manage_docs",
        action="store_false",
        default=None,
        help="Do not synchronize the docs/ tree",
    )
    parser.add_argument(
        "--no-rebuild-indexes",
        dest="rebuild_indexes",
        action="store_false",
        default=None,
        help="Do not query design documents after syncing",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        help="Documents per bulk request (default: 5000)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Remove the run's temp directory after reporting",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter config file (if none exists) and exit",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also append log records to this file")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"couchdb-versioning version {__version__}",
    )
    return parser


def resolve_config(args: argparse.Namespace, unified: UnifiedConfig) -> Config:
    """Merge CLI args, environment, .env and the YAML *unified* config.

    Raises:
        ValueError: If any value is missing or invalid.
    """
    return load_config(
        url=args.url,
        username=args.username,
        password=args.password,
        source_dir=args.source,
        insecure=args.insecure,
        debug=args.debug,
        init_design=args.init_design,
        manage_docs=args.manage_docs,
        rebuild_indexes=args.rebuild_indexes,
        batch_size=args.batch_size,
        yaml_fallbacks=to_fallbacks(unified),
    )


def print_report(report: SyncReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report_to_json(report), indent=2))
        return
    print(format_sync_report(report))


async def main(config: Config, as_json: bool = False, cleanup: bool = False) -> int:
    """Run one synchronization pass and print its report.

    Returns:
        Process exit status: 1 when the run failed or any document
        errored, 0 otherwise.  Conflicts alone do not fail the run.
    """
    driver = SyncDriver(config)
    report = await driver.run()
    print_report(report, as_json)
    if cleanup:
        driver.cleanup()
    return 1 if report.failed or report.errors else 0


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    load_dotenv()

    if args.init_config:
        setup_logging(debug=args.debug)
        print(ensure_config())
        sys.exit(0)

    try:
        unified = build_config(load_hierarchical_config())
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format or unified.logging.format,
        level=unified.logging.level,
    )

    try:
        config = resolve_config(args, unified)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        status = asyncio.run(main(config, as_json=args.json, cleanup=args.cleanup))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)
    sys.exit(status)


if __name__ == "__main__":
    run()
