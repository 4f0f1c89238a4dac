#!/usr/bin/env python3
"""
Spanner Database Dumper - CLI Entry Point
=========================================
Exports Cloud Spanner databases as replayable DDL and bulk INSERT
statements, writing interleaved tables after their parents.
"""

import argparse
import logging
import sys

import yaml

from .config import ConfigLoader
from .database_dumper import STDOUT, DatabaseDumper
from .utils import print_dry_run_info, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Spanner Database Dumper - export databases as SQL statements'
    )
    parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be dumped without actually dumping'
    )
    parser.add_argument(
        '-d', '--database',
        help='Dump only the specified database (must be defined in config)'
    )
    parser.add_argument(
        '-i', '--instance',
        help='Dump only databases from the specified instance'
    )
    parser.add_argument(
        '--no-ddl',
        action='store_true',
        help='Do not write DDL statements'
    )
    parser.add_argument(
        '--timestamp',
        help='Read timestamp for the database snapshot, in RFC 3339 format'
    )
    parser.add_argument(
        '--bulk-size',
        type=int,
        help='Number of rows in a single INSERT statement (default: 100)'
    )
    parser.add_argument(
        '-o', '--output',
        help="Output directory, or '-' to write to stdout"
    )
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    if args.bulk_size is not None and args.bulk_size <= 0:
        print("Error: --bulk-size must be a positive integer", file=sys.stderr)
        sys.exit(1)

    # Load configuration
    try:
        config = ConfigLoader(args.config)
    except FileNotFoundError:
        print(f"Error: Configuration file '{args.config}' not found", file=sys.stderr)
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file: {e}", file=sys.stderr)
        sys.exit(1)

    config.override_defaults(
        bulk_size=args.bulk_size,
        timestamp=args.timestamp,
        ddl=False if args.no_ddl else None
    )
    config.override_output(directory=args.output)

    # Keep stdout clean for the dump itself
    log_settings = config.get_logging_settings()
    if args.verbose:
        log_settings['level'] = 'DEBUG'
    to_stdout = config.get_output_settings().get('directory') == STDOUT
    setup_logging(log_settings, stream=sys.stderr if to_stdout else sys.stdout)

    # Dry run mode
    if args.dry_run:
        logging.info("DRY RUN MODE - No data will be dumped")
        databases = config.get_databases()
        defaults = config.get_defaults()

        if args.database:
            databases = [db for db in databases if db['name'] == args.database]
        if args.instance:
            databases = [db for db in databases if db.get('instance', 'primary') == args.instance]

        print_dry_run_info(databases, defaults)
        sys.exit(0)

    # Run dump
    try:
        dumper = DatabaseDumper(config)
        stats = dumper.run(
            database_filter=args.database,
            instance_filter=args.instance
        )
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)

    # Print summary
    logging.info("=" * 50)
    logging.info("DUMP COMPLETE")
    logging.info(f"Databases: {len(stats.databases)}")
    logging.info(f"Tables: {stats.total_tables}")
    logging.info(f"Total Rows: {stats.total_rows}")

    if stats.errors:
        logging.warning(f"Errors: {len(stats.errors)}")
        for err in stats.errors:
            location = err['database'] if err['table'] is None else f"{err['database']}/{err['table']}"
            logging.warning(f"  - {location}: {err['error']}")
        sys.exit(1)


if __name__ == '__main__':
    main()
