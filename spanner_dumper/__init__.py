"""
Spanner Database Dumper
=======================
Exports Cloud Spanner databases as replayable SQL text:
- DDL passthrough
- Bulk INSERT statements with exact, round-trippable literals
- Interleaved tables written after their parents
- Consistent snapshot reads, optionally at a fixed timestamp
- Multiple databases and instances from one YAML config
- Compression support
"""

from .config import ConfigLoader
from .connection import SpannerConnection
from .database_dumper import DatabaseDumper
from .encoder import encode_row, encode_value
from .errors import DumpError, EncodeError, FetchError, VisitError
from .main import main
from .models import (
    ColumnType,
    ColumnValue,
    DatabaseStats,
    DumpSettings,
    DumpStats,
    Table,
    TableRow,
    TableStats,
    TypeCode,
)
from .table_dumper import TableDumper
from .tables import build_forest, iter_tables, parse_table_name_from_ddl, traverse
from .utils import format_settings_display, print_dry_run_info, setup_logging
from .writer import BufferedWriter

__version__ = "1.0.0"

__all__ = [
    # Main entry point
    "main",
    # Core classes
    "BufferedWriter",
    "ConfigLoader",
    "DatabaseDumper",
    "SpannerConnection",
    "TableDumper",
    # Encoding and table ordering
    "build_forest",
    "encode_row",
    "encode_value",
    "iter_tables",
    "parse_table_name_from_ddl",
    "traverse",
    # Errors
    "DumpError",
    "EncodeError",
    "FetchError",
    "VisitError",
    # Models
    "ColumnType",
    "ColumnValue",
    "DatabaseStats",
    "DumpSettings",
    "DumpStats",
    "Table",
    "TableRow",
    "TableStats",
    "TypeCode",
    # Utilities
    "format_settings_display",
    "print_dry_run_info",
    "setup_logging",
]
