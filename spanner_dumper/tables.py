"""
Table forest construction and traversal for Spanner Database Dumper.

Interleaved tables must be loaded after their parents, so tables are
arranged into a forest following ``PARENT_TABLE_NAME`` and visited
parent-first.
"""

import logging
import re
from collections import defaultdict
from typing import Callable, Iterator

from .errors import DumpError, VisitError
from .models import Table, TableRow

DDL_TABLE_NAME_PATTERN = re.compile(
    r'^\s*(?:'
    r'CREATE\s+TABLE\s+'
    r'|CREATE\s+(?:UNIQUE\s+)?(?:NULL_FILTERED\s+)?INDEX\s+`?\w+`?\s+ON\s+'
    r'|ALTER\s+TABLE\s+'
    r')`?(\w+)`?',
    re.IGNORECASE
)


def build_forest(rows: list[TableRow]) -> list[Table]:
    """
    Build the table forest from flat schema rows.

    Children keep the order of the input rows at every level. Rows whose
    parent is not part of ``rows`` are promoted to roots.
    """
    names = {row.name for row in rows}
    children_by_parent: dict[str, list[TableRow]] = defaultdict(list)

    for row in rows:
        parent = row.parent_name or ""
        if parent and parent not in names:
            logging.warning(
                f"Parent table '{parent}' of '{row.name}' is not in the dump, "
                f"treating '{row.name}' as a root table"
            )
            parent = ""
        children_by_parent[parent].append(row)

    def resolve(parent: str) -> list[Table]:
        return [
            Table(
                name=row.name,
                columns=list(row.columns),
                child_tables=resolve(row.name)
            )
            for row in children_by_parent.get(parent, [])
        ]

    return resolve("")


def iter_tables(forest: list[Table]) -> Iterator[Table]:
    """Yield tables depth-first, every parent before its children."""
    for table in forest:
        yield table
        yield from iter_tables(table.child_tables)


def traverse(forest: list[Table], visit: Callable[[Table], None]) -> None:
    """
    Call ``visit`` for each table in dependency order.

    Stops at the first failure. Dump errors keep their type and are tagged
    with the failing table; anything else is wrapped in a VisitError naming
    the table.
    """
    for table in iter_tables(forest):
        try:
            visit(table)
        except DumpError as e:
            if e.table is None:
                e.table = table.name
            raise
        except Exception as e:
            raise VisitError(table.name, e) from e


def parse_table_name_from_ddl(ddl: str) -> str:
    """Return the table a CREATE TABLE, CREATE INDEX or ALTER TABLE statement targets."""
    match = DDL_TABLE_NAME_PATTERN.match(ddl)
    return match.group(1) if match else ""
