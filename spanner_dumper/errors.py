"""
Exceptions raised while dumping a Spanner database.
"""

from typing import Optional


class DumpError(Exception):
    """Base class for dump failures.

    ``table`` names the table being dumped when the error was raised, if any.
    """

    table: Optional[str] = None


class EncodeError(DumpError):
    """A column value could not be rendered as a literal."""


class FetchError(DumpError):
    """Reading DDL, schema or rows from Spanner failed."""


class VisitError(DumpError):
    """Dumping a table failed while traversing the table forest."""

    def __init__(self, table: str, cause: Optional[BaseException] = None):
        self.table = table
        self.cause = cause
        message = f"Failed to dump table '{table}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
