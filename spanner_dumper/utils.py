"""
Utility functions for Spanner Database Dumper.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional, TextIO

from .models import DumpSettings
from .writer import BufferedWriter


def setup_logging(log_settings: dict[str, Any], stream: Optional[TextIO] = None) -> None:
    """Setup logging configuration.

    Args:
        log_settings: 'level' and optional 'file' from the config.
        stream: Console stream; stderr when the dump itself goes to stdout.
    """
    log_level = getattr(logging, str(log_settings.get('level', 'INFO')).upper())
    log_file = log_settings.get('file')

    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def print_dry_run_info(databases: list[dict[str, Any]], defaults: dict[str, Any]) -> None:
    """Log what would be dumped in dry-run mode."""
    for db in databases:
        logging.info(f"Would dump database: {db['name']} from instance: {db.get('instance', 'primary')}")

        settings = DumpSettings.from_configs(defaults, db)
        logging.info(f"  Settings: {', '.join(format_settings_display(settings))}")

        tables = db.get('tables', '*')
        if tables == '*':
            logging.info("  - All tables (parents before interleaved children)")
        else:
            for t in tables:
                logging.info(f"  - {t['name'] if isinstance(t, dict) else t}")

        for pattern in db.get('exclude_tables', []):
            logging.info(f"  Excluding: {pattern}")


def format_settings_display(settings: DumpSettings) -> list[str]:
    """Format settings for display in dry-run mode."""
    parts = [f"bulk_size={settings.bulk_size or BufferedWriter.DEFAULT_BULK_SIZE}"]
    if settings.timestamp:
        parts.append(f"timestamp={settings.timestamp}")
    parts.append("ddl=yes" if settings.ddl else "ddl=no")
    return parts
