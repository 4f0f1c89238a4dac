"""
Data models and enums for Spanner Database Dumper.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class TypeCode(Enum):
    """Spanner column type codes."""
    TYPE_CODE_UNSPECIFIED = 0
    BOOL = 1
    INT64 = 2
    FLOAT64 = 3
    TIMESTAMP = 4
    DATE = 5
    STRING = 6
    BYTES = 7
    ARRAY = 8
    STRUCT = 9
    NUMERIC = 10
    JSON = 11

    @classmethod
    def _missing_(cls, value: object) -> "TypeCode":
        return cls.TYPE_CODE_UNSPECIFIED


@dataclass(frozen=True)
class ColumnType:
    """Declared type of a result column."""
    code: TypeCode
    array_element_type: Optional["ColumnType"] = None

    @classmethod
    def scalar(cls, code: TypeCode) -> "ColumnType":
        return cls(code=code)

    @classmethod
    def array(cls, element_code: TypeCode) -> "ColumnType":
        return cls(code=TypeCode.ARRAY, array_element_type=cls(code=element_code))

    @classmethod
    def from_pb(cls, type_pb: Any) -> "ColumnType":
        """Build from a ``google.cloud.spanner_v1.Type`` message."""
        code = TypeCode(int(type_pb.code))
        element_type = None
        if code == TypeCode.ARRAY:
            element_type = cls.from_pb(type_pb.array_element_type)
        return cls(code=code, array_element_type=element_type)

    def __str__(self) -> str:
        if self.code == TypeCode.ARRAY and self.array_element_type is not None:
            return f"ARRAY<{self.array_element_type}>"
        return self.code.name


@dataclass
class ColumnValue:
    """A raw column value together with its declared type.

    ``None`` is SQL NULL. For arrays, ``value`` is a list whose elements
    may themselves be ``None``.
    """
    type: ColumnType
    value: Any = None

    @property
    def valid(self) -> bool:
        return self.value is not None


@dataclass
class Table:
    """A table and the tables interleaved in it."""
    name: str
    columns: list[str] = field(default_factory=list)
    child_tables: list["Table"] = field(default_factory=list)

    def quoted_column_list(self) -> str:
        return ', '.join(f'`{col}`' for col in self.columns)


@dataclass
class TableRow:
    """Flat schema row: a table, its parent (empty for roots) and its columns."""
    name: str
    parent_name: str = ""
    columns: list[str] = field(default_factory=list)


@dataclass
class TableStats:
    """Statistics for a single table dump."""
    table: str
    rows_dumped: int = 0
    statements_written: int = 0


@dataclass
class DatabaseStats:
    """Statistics for a single database dump."""
    name: str
    instance: str
    file_path: str = ""
    ddl_statements: int = 0
    tables: list[TableStats] = field(default_factory=list)
    total_rows: int = 0
    success: bool = False


@dataclass
class DumpStats:
    """Overall dump statistics."""
    databases: list[DatabaseStats] = field(default_factory=list)
    total_tables: int = 0
    total_rows: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DumpSettings:
    """Merged settings for dumping a database."""
    bulk_size: Optional[int] = None
    timestamp: Optional[str] = None
    ddl: bool = True

    SETTING_KEYS = ('bulk_size', 'timestamp', 'ddl')

    @classmethod
    def from_configs(
        cls,
        defaults: dict[str, Any],
        db_config: dict[str, Any]
    ) -> "DumpSettings":
        """
        Create DumpSettings by merging configs with priority: database > defaults.
        """
        settings = {}
        for key in cls.SETTING_KEYS:
            if key in defaults:
                settings[key] = defaults[key]
            if key in db_config:
                settings[key] = db_config[key]
        return cls(**settings)

    @property
    def read_timestamp(self) -> Optional[datetime]:
        """Snapshot read timestamp parsed from its RFC 3339 form.

        The value must carry a UTC offset (``Z`` or ``+HH:MM``); bare dates and
        local times are rejected.
        """
        if not self.timestamp:
            return None
        try:
            parsed = datetime.fromisoformat(str(self.timestamp))
        except ValueError:
            raise ValueError(f"Invalid RFC 3339 timestamp: '{self.timestamp}'") from None
        if parsed.tzinfo is None:
            raise ValueError(f"Invalid RFC 3339 timestamp: '{self.timestamp}'")
        return parsed
