"""
Table dumping functionality for Spanner Database Dumper.
"""

import logging
from typing import Optional, TextIO

from .connection import SpannerConnection
from .encoder import encode_row, is_supported
from .models import ColumnValue, Table, TableStats
from .writer import BufferedWriter


class TableDumper:
    """Streams the rows of individual tables into bulk INSERT statements."""

    def __init__(self, connection: SpannerConnection, bulk_size: Optional[int] = None):
        self.connection = connection
        self.bulk_size = bulk_size or BufferedWriter.DEFAULT_BULK_SIZE

    def dump_table(self, table: Table, out: TextIO) -> TableStats:
        """
        Dump all rows of a table to the output stream.

        Rows are written in the order Spanner returns them. Any error stops
        the dump of the table after flushing the rows already encoded.

        Args:
            table: Table to dump.
            out: Text stream receiving the INSERT statements.

        Returns:
            TableStats with dump statistics.
        """
        stats = TableStats(table=table.name)

        if not table.columns:
            logging.debug(f"Table '{table.name}' has no columns, skipping")
            return stats

        query = self._build_select_query(table)
        logging.debug(f"Dumping table '{table.name}' with query: {query[:200]}")

        with BufferedWriter(table, out, self.bulk_size) as writer:
            for row in self.connection.stream_rows(query):
                if stats.rows_dumped == 0:
                    self._warn_unsupported_columns(table, row)
                writer.write(encode_row(row))
                stats.rows_dumped += 1

        # Includes the final flush done on leaving the writer
        stats.statements_written = writer.statements_written
        return stats

    def _build_select_query(self, table: Table) -> str:
        """Build SELECT query over the declared columns."""
        return f"SELECT {table.quoted_column_list()} FROM `{table.name}`"

    def _warn_unsupported_columns(self, table: Table, row: list[ColumnValue]) -> None:
        for column, value in zip(table.columns, row):
            if not is_supported(value.type):
                logging.warning(
                    f"Table '{table.name}': column '{column}' has type {value.type} "
                    f"without literal encoding, values are written as raw text"
                )
