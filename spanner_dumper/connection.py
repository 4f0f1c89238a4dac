"""
Database connection management for Spanner Database Dumper.
"""

import base64
import binascii
import logging
from contextlib import ExitStack
from datetime import datetime
from typing import Any, Iterator, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import spanner
from google.cloud.spanner_v1 import RequestOptions

from .errors import EncodeError, FetchError
from .models import ColumnType, ColumnValue, TableRow, TypeCode


class SpannerConnection:
    """Holds a read-only snapshot of one Spanner database, with context manager support.

    Every query issued through the connection reads from the same snapshot,
    so DDL, schema and table rows are consistent with each other.
    """

    SCHEMA_QUERY = """
SELECT t.TABLE_NAME AS table_name, t.PARENT_TABLE_NAME AS parent_name, c.columns
FROM INFORMATION_SCHEMA.TABLES AS t
JOIN (
    SELECT c.TABLE_NAME AS table_name, ARRAY_AGG(c.COLUMN_NAME) AS columns
    FROM INFORMATION_SCHEMA.COLUMNS AS c
    WHERE c.TABLE_CATALOG = '' AND c.TABLE_SCHEMA = ''
    GROUP BY c.TABLE_NAME
) AS c
ON t.TABLE_NAME = c.table_name
WHERE t.TABLE_CATALOG = '' AND t.TABLE_SCHEMA = ''
ORDER BY t.TABLE_NAME ASC
"""

    def __init__(
        self,
        project: str,
        instance: str,
        database: str,
        read_timestamp: Optional[datetime] = None
    ):
        self.project = project
        self.instance = instance
        self.database = database
        self.read_timestamp = read_timestamp
        self.client = None
        self.database_handle = None
        self.snapshot = None
        self._exit_stack: Optional[ExitStack] = None

    def __enter__(self) -> "SpannerConnection":
        """Context manager entry - open the snapshot."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - release the snapshot session."""
        self.disconnect()

    @property
    def database_path(self) -> str:
        return f"projects/{self.project}/instances/{self.instance}/databases/{self.database}"

    def connect(self) -> None:
        """Create the client and check out a multi-use read-only snapshot."""
        snapshot_options: dict[str, Any] = {'multi_use': True}
        if self.read_timestamp is not None:
            snapshot_options['read_timestamp'] = self.read_timestamp

        try:
            self.client = spanner.Client(project=self.project)
            self.database_handle = self.client.instance(self.instance).database(self.database)
            self._exit_stack = ExitStack()
            self.snapshot = self._exit_stack.enter_context(
                self.database_handle.snapshot(**snapshot_options)
            )
            logging.info(f"Connected to {self.database_path}")
        except GoogleAPICallError as e:
            logging.error(f"Failed to connect to database: {e}")
            raise FetchError(f"Failed to open snapshot on {self.database_path}: {e}") from e

    def disconnect(self) -> None:
        """Release the snapshot and its session."""
        if self._exit_stack is not None:
            self._exit_stack.close()
            self._exit_stack = None
            self.snapshot = None
            logging.debug("Spanner snapshot closed")

    def get_ddl_statements(self) -> list[str]:
        """Get the database DDL, one statement per entry, without trailing ';'."""
        try:
            self.database_handle.reload()
        except GoogleAPICallError as e:
            raise FetchError(f"Failed to fetch DDL of {self.database_path}: {e}") from e
        return list(self.database_handle.ddl_statements)

    def execute_query(self, query: str, low_priority: bool = False) -> list[list[Any]]:
        """Execute a query in the snapshot and return all rows."""
        options = {}
        if low_priority:
            options['request_options'] = RequestOptions(
                priority=RequestOptions.Priority.PRIORITY_LOW
            )
        try:
            return [list(row) for row in self.snapshot.execute_sql(query, **options)]
        except GoogleAPICallError as e:
            raise FetchError(f"Query failed: {e}") from e

    def fetch_table_rows(self) -> list[TableRow]:
        """Get name, parent and columns of every table, ordered by name."""
        results = self.execute_query(self.SCHEMA_QUERY, low_priority=True)
        return [
            TableRow(
                name=table_name,
                parent_name=parent_name or "",
                columns=list(columns or [])
            )
            for table_name, parent_name, columns in results
        ]

    def stream_rows(self, query: str) -> Iterator[list[ColumnValue]]:
        """Stream the rows of a query, pairing each value with its column type."""
        try:
            results = self.snapshot.execute_sql(query)
            column_types: Optional[list[ColumnType]] = None
            for row in results:
                # Field metadata arrives with the first result chunk
                if column_types is None:
                    column_types = [ColumnType.from_pb(f.type_) for f in results.fields]
                yield [
                    ColumnValue(column_type, self._normalize_value(column_type, value))
                    for column_type, value in zip(column_types, row)
                ]
        except GoogleAPICallError as e:
            raise FetchError(f"Query failed: {e}") from e

    @staticmethod
    def _normalize_value(column_type: ColumnType, value: Any) -> Any:
        """Decode BYTES values, which the client returns base64-encoded."""
        if value is None:
            return None
        if column_type.code == TypeCode.BYTES:
            return _b64decode(value)
        element_type = column_type.array_element_type
        if element_type is not None and element_type.code == TypeCode.BYTES:
            return [None if v is None else _b64decode(v) for v in value]
        return value


def _b64decode(value: Any) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise EncodeError(f"Malformed BYTES value: {e}") from e
