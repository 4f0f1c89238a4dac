"""
Bulk INSERT statement writer for Spanner Database Dumper.
"""

import logging
from typing import Optional, TextIO

from .models import Table


class BufferedWriter:
    """Buffers encoded rows of one table and writes them as bulk INSERTs.

    Not thread-safe: use one instance per table dump.
    """

    # Keeps a statement well under Spanner's per-commit mutation limit
    DEFAULT_BULK_SIZE = 100

    def __init__(self, table: Table, out: TextIO, bulk_size: Optional[int] = None):
        if bulk_size is not None and bulk_size < 0:
            raise ValueError(f"Bulk size must not be negative: {bulk_size}")

        self.table = table
        self.out = out
        self.bulk_size = bulk_size or self.DEFAULT_BULK_SIZE
        self.buffer: list[str] = []
        self.rows_written = 0
        self.statements_written = 0

    def __enter__(self) -> "BufferedWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Flush whatever is buffered when the table is done."""
        self.flush()

    def write(self, values: list[str]) -> None:
        """Buffer one row of encoded values, flushing when the buffer is full."""
        self.buffer.append(f"({', '.join(values)})")
        if len(self.buffer) >= self.bulk_size:
            self.flush()

    def flush(self) -> None:
        """Write buffered rows as a single INSERT statement."""
        if not self.buffer:
            return

        statement = (
            f"INSERT INTO `{self.table.name}` ({self.table.quoted_column_list()}) "
            f"VALUES {', '.join(self.buffer)};\n"
        )
        self.out.write(statement)

        self.rows_written += len(self.buffer)
        self.statements_written += 1
        logging.debug(f"Wrote {len(self.buffer)} row(s) to `{self.table.name}`")
        self.buffer.clear()
