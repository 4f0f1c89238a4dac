"""
Main database dumping orchestration for Spanner Database Dumper.
"""

import contextlib
import fnmatch
import gzip
import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, ContextManager, Optional, TextIO

from .config import ConfigLoader
from .connection import SpannerConnection
from .models import DatabaseStats, DumpSettings, DumpStats, Table, TableRow
from .table_dumper import TableDumper
from .tables import build_forest, parse_table_name_from_ddl, traverse

STDOUT = '-'


class DatabaseDumper:
    """Main class for database dumping operations."""

    def __init__(self, config: ConfigLoader):
        self.config = config
        self.output_settings = config.get_output_settings()
        self.defaults = config.get_defaults()
        self.stats = DumpStats()

    def _compile_exclusion_patterns(self, exclude_patterns: list[str]) -> list[re.Pattern]:
        """
        Pre-compile exclusion patterns to regex for faster matching.

        Converts fnmatch patterns to compiled regex patterns.
        """
        return [re.compile(fnmatch.translate(pattern)) for pattern in exclude_patterns]

    def _is_table_excluded(
        self,
        table_name: str,
        exclude_patterns: list[str],
        compiled_patterns: list[re.Pattern]
    ) -> bool:
        """
        Check if a table should be excluded based on patterns.

        ``compiled_patterns`` comes from ``_compile_exclusion_patterns`` and
        pairs up with ``exclude_patterns``.

        Supports:
        - Exact matches: 'users_backup'
        - Wildcard patterns: '*_old', 'tmp_*', '*_backup_*'
        """
        for pattern, compiled in zip(exclude_patterns, compiled_patterns):
            if compiled.match(table_name):
                logging.debug(f"Table '{table_name}' excluded by pattern '{pattern}'")
                return True
        return False

    def run(
        self,
        database_filter: Optional[str] = None,
        instance_filter: Optional[str] = None
    ) -> DumpStats:
        """Run the dump process for all configured databases.

        Args:
            database_filter: If specified, only dump this database name
            instance_filter: If specified, only dump databases from this instance
        """
        output_dir = self.output_settings.get('directory', './dumps')
        if output_dir != STDOUT:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        databases = self._filter_databases(database_filter, instance_filter)

        logging.info(f"Starting dump of {len(databases)} database(s)")

        for db_config in databases:
            self._dump_database(db_config, output_dir, timestamp)

        return self.stats

    def _filter_databases(
        self,
        database_filter: Optional[str],
        instance_filter: Optional[str]
    ) -> list[dict[str, Any]]:
        """Filter databases based on provided filters."""
        databases = self.config.get_databases()

        if database_filter:
            databases = [db for db in databases if db['name'] == database_filter]
            if not databases:
                logging.warning(f"No database named '{database_filter}' found in configuration")

        if instance_filter:
            databases = [db for db in databases if db.get('instance', 'primary') == instance_filter]
            if not databases:
                logging.warning(f"No databases found for instance '{instance_filter}'")

        return databases

    def _dump_database(
        self,
        db_config: dict[str, Any],
        output_dir: Path | str,
        timestamp: str
    ) -> None:
        """Dump a single database, recording the first error that stops it."""
        db_name = db_config['name']
        instance_name = db_config.get('instance', 'primary')

        db_stats = DatabaseStats(name=db_name, instance=instance_name)

        try:
            instance_config = self.config.get_instance(instance_name)
            settings = DumpSettings.from_configs(self.defaults, db_config)
            logging.debug(
                f"Database '{db_name}' effective settings: bulk_size={settings.bulk_size}, "
                f"timestamp={settings.timestamp}, ddl={settings.ddl}"
            )

            output_path, output = self._open_output_file(output_dir, db_name, timestamp)
            db_stats.file_path = output_path

            with output as out, SpannerConnection(
                project=instance_config['project'],
                instance=instance_config.get('instance', instance_name),
                database=db_name,
                read_timestamp=settings.read_timestamp
            ) as conn:
                self._dump_database_contents(conn, db_config, settings, out, db_stats)

            db_stats.success = True

        except Exception as e:
            failed_table = getattr(e, 'table', None)
            if failed_table:
                logging.error(f"Error dumping database '{db_name}' at table '{failed_table}': {e}")
            else:
                logging.error(f"Error dumping database '{db_name}': {e}")
            self.stats.errors.append({
                'database': db_name,
                'table': failed_table,
                'error': str(e)
            })

        self.stats.databases.append(db_stats)

    def _open_output_file(
        self,
        output_dir: Path | str,
        db_name: str,
        timestamp: str
    ) -> tuple[str, ContextManager[TextIO]]:
        """Open the dump file of a database, with optional compression."""
        if output_dir == STDOUT:
            return '<stdout>', contextlib.nullcontext(sys.stdout)

        if self.output_settings.get('timestamp_suffix', True):
            output_path = Path(output_dir) / f"{db_name}_{timestamp}.sql"
        else:
            output_path = Path(output_dir) / f"{db_name}.sql"

        if self.output_settings.get('compress', False):
            output_path = Path(str(output_path) + '.gz')
            return str(output_path), gzip.open(output_path, 'wt', encoding='utf-8')

        return str(output_path), open(output_path, 'w', encoding='utf-8')

    def _dump_database_contents(
        self,
        conn: SpannerConnection,
        db_config: dict[str, Any],
        settings: DumpSettings,
        out: TextIO,
        db_stats: DatabaseStats
    ) -> None:
        """Write DDL and then the rows of every selected table, parents first."""
        table_rows = conn.fetch_table_rows()
        selected_rows = self._select_tables(table_rows, db_config)
        selected_names = None
        if len(selected_rows) != len(table_rows):
            selected_names = {row.name for row in selected_rows}

        if settings.ddl:
            db_stats.ddl_statements = self._write_ddl(conn, out, selected_names)

        forest = build_forest(selected_rows)
        logging.info(f"Dumping {len(selected_rows)} table(s) from '{db_config['name']}'")

        dumper = TableDumper(conn, settings.bulk_size)

        def visit(table: Table) -> None:
            table_stats = dumper.dump_table(table, out)
            db_stats.tables.append(table_stats)
            db_stats.total_rows += table_stats.rows_dumped
            self.stats.total_tables += 1
            self.stats.total_rows += table_stats.rows_dumped
            logging.info(f"  ✓ {table_stats.table}: {table_stats.rows_dumped} rows")

        traverse(forest, visit)

    def _select_tables(
        self,
        table_rows: list[TableRow],
        db_config: dict[str, Any]
    ) -> list[TableRow]:
        """Apply the configured table list and exclusion patterns, keeping schema order."""
        tables_config = db_config.get('tables', '*')
        exclude_patterns = db_config.get('exclude_tables', [])
        compiled_patterns = self._compile_exclusion_patterns(exclude_patterns)

        selected = table_rows
        if tables_config != '*':
            wanted = {t['name'] if isinstance(t, dict) else t for t in tables_config}
            known = {row.name for row in table_rows}
            for name in sorted(wanted - known):
                logging.warning(f"Table '{name}' not found in database '{db_config['name']}'")
            selected = [row for row in table_rows if row.name in wanted]

        if exclude_patterns:
            original_count = len(selected)
            selected = [
                row for row in selected
                if not self._is_table_excluded(row.name, exclude_patterns, compiled_patterns)
            ]
            excluded_count = original_count - len(selected)
            if excluded_count > 0:
                logging.info(f"Excluded {excluded_count} table(s) matching exclusion patterns")

        return selected

    def _write_ddl(
        self,
        conn: SpannerConnection,
        out: TextIO,
        selected_names: Optional[set[str]] = None
    ) -> int:
        """Write DDL statements, restricted to selected tables when a subset is dumped."""
        written = 0
        for ddl in conn.get_ddl_statements():
            if selected_names is not None:
                table_name = parse_table_name_from_ddl(ddl)
                if table_name not in selected_names:
                    logging.debug(f"Skipping DDL for unselected table: {ddl[:80]}")
                    continue
            out.write(f"{ddl};\n")
            written += 1
        return written
