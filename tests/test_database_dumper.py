"""
Unit tests for database_dumper.py
"""

import gzip
import io
import logging
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

import pytest

from spanner_dumper.database_dumper import DatabaseDumper
from spanner_dumper.errors import EncodeError, FetchError
from spanner_dumper.models import ColumnType, ColumnValue, DumpStats, TableRow, TypeCode

INT64 = ColumnType.scalar(TypeCode.INT64)
STRING = ColumnType.scalar(TypeCode.STRING)

SINGERS_DDL = (
    "CREATE TABLE Singers (\n"
    "  SingerId INT64 NOT NULL,\n"
    "  Name STRING(MAX),\n"
    ") PRIMARY KEY(SingerId)"
)
ALBUMS_DDL = (
    "CREATE TABLE Albums (\n"
    "  SingerId INT64 NOT NULL,\n"
    "  AlbumId INT64 NOT NULL,\n"
    ") PRIMARY KEY(SingerId, AlbumId),\n"
    "  INTERLEAVE IN PARENT Singers ON DELETE CASCADE"
)
ALBUMS_INDEX_DDL = "CREATE INDEX AlbumsByAlbumId ON Albums(AlbumId)"
VENUES_DDL = "CREATE TABLE Venues (\n  VenueId INT64 NOT NULL,\n) PRIMARY KEY(VenueId)"

# Schema rows come back ordered by table name, children before parents here
SCHEMA_ROWS = [
    TableRow(name="Albums", parent_name="Singers", columns=["SingerId", "AlbumId"]),
    TableRow(name="Singers", parent_name="", columns=["SingerId", "Name"]),
    TableRow(name="Venues", parent_name="", columns=["VenueId"]),
]

TABLE_DATA = {
    "Albums": [
        [ColumnValue(INT64, 1), ColumnValue(INT64, 10)],
        [ColumnValue(INT64, 1), ColumnValue(INT64, 11)],
    ],
    "Singers": [
        [ColumnValue(INT64, 1), ColumnValue(STRING, "Marc")],
        [ColumnValue(INT64, 2), ColumnValue(STRING, None)],
    ],
    "Venues": [],
}


def stream_table(query):
    table_name = re.search(r"FROM `(\w+)`$", query).group(1)
    return iter(TABLE_DATA[table_name])


def make_dumper(databases=None, output=None, defaults=None):
    config = mock.MagicMock()
    config.get_databases.return_value = databases or []
    config.get_output_settings.return_value = output or {}
    config.get_defaults.return_value = defaults or {}
    config.get_instance.return_value = {"project": "test-project"}
    return DatabaseDumper(config)


@pytest.fixture
def mock_conn():
    """A connection to a database with Singers, interleaved Albums and Venues."""
    conn = mock.MagicMock()
    conn.__enter__.return_value = conn
    conn.__exit__.return_value = False
    conn.fetch_table_rows.return_value = list(SCHEMA_ROWS)
    conn.get_ddl_statements.return_value = [SINGERS_DDL, ALBUMS_DDL, ALBUMS_INDEX_DDL, VENUES_DDL]
    conn.stream_rows.side_effect = stream_table
    return conn


@pytest.fixture
def mock_conn_class(mock_conn):
    with mock.patch('spanner_dumper.database_dumper.SpannerConnection') as conn_class:
        conn_class.return_value = mock_conn
        yield conn_class


class TestCompileExclusionPatterns:
    """Tests for _compile_exclusion_patterns method."""

    @pytest.fixture
    def dumper(self):
        """Create a DatabaseDumper with mocked config."""
        return make_dumper()

    def test_compile_simple_pattern(self, dumper):
        """Test compiling simple pattern."""
        compiled = dumper._compile_exclusion_patterns(["*_backup"])

        assert len(compiled) == 1
        assert isinstance(compiled[0], re.Pattern)

    def test_compiled_pattern_matches(self, dumper):
        """Test compiled patterns match correctly."""
        compiled = dumper._compile_exclusion_patterns(["*_backup", "tmp_*"])

        assert compiled[0].match("users_backup")
        assert compiled[1].match("tmp_data")

        assert not compiled[0].match("users")
        assert not compiled[1].match("data_tmp")

    def test_empty_patterns(self, dumper):
        """Test compiling empty pattern list."""
        assert dumper._compile_exclusion_patterns([]) == []


class TestIsTableExcluded:
    """Tests for _is_table_excluded method."""

    @pytest.fixture
    def dumper(self):
        """Create a DatabaseDumper with mocked config."""
        return make_dumper()

    @pytest.fixture
    def excluded(self, dumper):
        """Match a table name against patterns compiled the way _select_tables does."""
        def check(table_name, patterns):
            compiled = dumper._compile_exclusion_patterns(patterns)
            return dumper._is_table_excluded(table_name, patterns, compiled)
        return check

    def test_exact_match(self, excluded):
        """Test exact pattern match."""
        patterns = ["test_data"]
        assert excluded("test_data", patterns) is True
        assert excluded("test_data_2", patterns) is False

    def test_suffix_wildcard(self, excluded):
        """Test suffix wildcard pattern."""
        patterns = ["*_backup"]
        assert excluded("users_backup", patterns) is True
        assert excluded("backup_users", patterns) is False

    def test_prefix_wildcard(self, excluded):
        """Test prefix wildcard pattern."""
        patterns = ["tmp_*"]
        assert excluded("tmp_data", patterns) is True
        assert excluded("tmp_", patterns) is True
        assert excluded("data_tmp", patterns) is False

    def test_middle_wildcard(self, excluded):
        """Test middle wildcard pattern."""
        patterns = ["*_backup_*"]
        assert excluded("users_backup_2024", patterns) is True
        assert excluded("users_backup", patterns) is False

    def test_multiple_patterns(self, excluded):
        """Test multiple patterns."""
        patterns = ["*_backup", "tmp_*", "test_*"]
        assert excluded("users_backup", patterns) is True
        assert excluded("tmp_data", patterns) is True
        assert excluded("test_table", patterns) is True
        assert excluded("users", patterns) is False

    def test_with_compiled_patterns(self, dumper):
        """Test with pre-compiled patterns."""
        patterns = ["*_backup", "tmp_*"]
        compiled = dumper._compile_exclusion_patterns(patterns)

        assert dumper._is_table_excluded("users_backup", patterns, compiled) is True
        assert dumper._is_table_excluded("tmp_data", patterns, compiled) is True
        assert dumper._is_table_excluded("users", patterns, compiled) is False

    def test_matching_uses_compiled_patterns(self, dumper):
        """Test that matching goes through the compiled regexes."""
        compiled = [re.compile("^Singers$")]

        assert dumper._is_table_excluded("Singers", ["unused"], compiled) is True
        assert dumper._is_table_excluded("unused", ["unused"], compiled) is False

    def test_empty_patterns(self, dumper):
        """Test with no patterns."""
        assert dumper._is_table_excluded("any_table", [], []) is False


class TestFilterDatabases:
    """Tests for _filter_databases method."""

    @pytest.fixture
    def dumper(self):
        """Create a dumper with multiple databases."""
        return make_dumper(databases=[
            {"name": "db1", "instance": "primary"},
            {"name": "db2", "instance": "primary"},
            {"name": "db3", "instance": "secondary"},
        ])

    def test_no_filters(self, dumper):
        """Test with no filters returns all databases."""
        assert len(dumper._filter_databases(None, None)) == 3

    def test_database_filter(self, dumper):
        """Test filtering by database name."""
        result = dumper._filter_databases("db1", None)
        assert [db["name"] for db in result] == ["db1"]

    def test_instance_filter(self, dumper):
        """Test filtering by instance."""
        result = dumper._filter_databases(None, "primary")
        assert [db["name"] for db in result] == ["db1", "db2"]

    def test_both_filters(self, dumper):
        """Test filtering by both database and instance."""
        assert dumper._filter_databases("db3", "primary") == []
        assert len(dumper._filter_databases("db3", "secondary")) == 1

    def test_database_not_found(self, dumper, caplog):
        """Test filtering for non-existent database."""
        with caplog.at_level(logging.WARNING):
            result = dumper._filter_databases("nonexistent", None)

        assert result == []
        assert "No database named 'nonexistent'" in caplog.text

    def test_default_instance(self):
        """Test filtering uses 'primary' as default instance."""
        dumper = make_dumper(databases=[
            {"name": "db1"},
            {"name": "db2", "instance": "primary"},
        ])
        assert len(dumper._filter_databases(None, "primary")) == 2


class TestDatabaseDumperInit:
    """Tests for DatabaseDumper initialization."""

    def test_init(self):
        """Test DatabaseDumper initialization."""
        dumper = make_dumper(output={"directory": "./dumps"}, defaults={"bulk_size": 50})

        assert dumper.output_settings == {"directory": "./dumps"}
        assert dumper.defaults == {"bulk_size": 50}
        assert isinstance(dumper.stats, DumpStats)

    def test_stats_initialized_empty(self):
        """Test stats are initialized as empty."""
        dumper = make_dumper()

        assert dumper.stats.databases == []
        assert dumper.stats.total_tables == 0
        assert dumper.stats.total_rows == 0
        assert dumper.stats.errors == []


class TestSelectTables:
    """Tests for _select_tables method."""

    @pytest.fixture
    def dumper(self):
        return make_dumper()

    def test_all_tables(self, dumper):
        selected = dumper._select_tables(SCHEMA_ROWS, {"name": "db", "tables": "*"})
        assert selected == SCHEMA_ROWS

    def test_tables_default_to_all(self, dumper):
        assert dumper._select_tables(SCHEMA_ROWS, {"name": "db"}) == SCHEMA_ROWS

    def test_table_list_keeps_schema_order(self, dumper):
        """Selected tables follow the schema order, not the config order."""
        selected = dumper._select_tables(
            SCHEMA_ROWS, {"name": "db", "tables": ["Venues", {"name": "Albums"}]}
        )
        assert [row.name for row in selected] == ["Albums", "Venues"]

    def test_missing_table_warns(self, dumper, caplog):
        with caplog.at_level(logging.WARNING):
            selected = dumper._select_tables(
                SCHEMA_ROWS, {"name": "db", "tables": ["Singers", "Nope"]}
            )

        assert [row.name for row in selected] == ["Singers"]
        assert "Table 'Nope' not found in database 'db'" in caplog.text

    def test_exclusions(self, dumper, caplog):
        with caplog.at_level(logging.INFO):
            selected = dumper._select_tables(
                SCHEMA_ROWS, {"name": "db", "exclude_tables": ["Al*", "Venues"]}
            )

        assert [row.name for row in selected] == ["Singers"]
        assert "Excluded 2 table(s)" in caplog.text


class TestWriteDDL:
    """Tests for _write_ddl method."""

    def test_all_statements(self, mock_conn):
        out = io.StringIO()
        written = make_dumper()._write_ddl(mock_conn, out)

        assert written == 4
        assert out.getvalue() == (
            f"{SINGERS_DDL};\n{ALBUMS_DDL};\n{ALBUMS_INDEX_DDL};\n{VENUES_DDL};\n"
        )

    def test_selected_tables_only(self, mock_conn):
        """Statements for tables outside the selection are skipped, indexes included."""
        out = io.StringIO()
        written = make_dumper()._write_ddl(mock_conn, out, {"Singers", "Venues"})

        assert written == 2
        assert out.getvalue() == f"{SINGERS_DDL};\n{VENUES_DDL};\n"

    def test_no_statements(self, mock_conn):
        mock_conn.get_ddl_statements.return_value = []
        out = io.StringIO()

        assert make_dumper()._write_ddl(mock_conn, out) == 0
        assert out.getvalue() == ""


class TestRun:
    """Tests for run method."""

    DATABASES = [{"name": "testdb", "instance": "primary", "tables": "*"}]

    def test_run_creates_output_directory(self, mock_conn_class):
        """Test that run creates the output directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "new_dumps"
            dumper = make_dumper(self.DATABASES, {"directory": str(output_dir)})
            dumper.run()

            assert output_dir.exists()

    def test_run_writes_dump(self, mock_conn_class):
        """DDL comes first, then rows with every parent before its children."""
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(
                self.DATABASES, {"directory": tmpdir, "timestamp_suffix": False}
            )
            stats = dumper.run()
            content = (Path(tmpdir) / "testdb.sql").read_text(encoding="utf-8")

        assert content == (
            f"{SINGERS_DDL};\n"
            f"{ALBUMS_DDL};\n"
            f"{ALBUMS_INDEX_DDL};\n"
            f"{VENUES_DDL};\n"
            'INSERT INTO `Singers` (`SingerId`, `Name`) VALUES (1, "Marc"), (2, NULL);\n'
            "INSERT INTO `Albums` (`SingerId`, `AlbumId`) VALUES (1, 10), (1, 11);\n"
        )

        db_stats = stats.databases[0]
        assert db_stats.success is True
        assert db_stats.ddl_statements == 4
        assert [t.table for t in db_stats.tables] == ["Singers", "Albums", "Venues"]
        assert db_stats.total_rows == 4
        assert stats.total_tables == 3
        assert stats.total_rows == 4
        assert stats.errors == []

    def test_run_connects_with_instance_settings(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(self.DATABASES, {"directory": tmpdir})
            dumper.config.get_instance.return_value = {
                "project": "test-project",
                "instance": "prod-instance"
            }
            dumper.run()

        dumper.config.get_instance.assert_called_once_with("primary")
        mock_conn_class.assert_called_once_with(
            project="test-project",
            instance="prod-instance",
            database="testdb",
            read_timestamp=None
        )

    def test_run_instance_id_defaults_to_config_key(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            make_dumper(self.DATABASES, {"directory": tmpdir}).run()

        assert mock_conn_class.call_args.kwargs["instance"] == "primary"

    def test_run_with_read_timestamp(self, mock_conn_class):
        databases = [{"name": "testdb", "timestamp": "2020-01-23T03:00:00Z"}]
        with tempfile.TemporaryDirectory() as tmpdir:
            make_dumper(databases, {"directory": tmpdir}).run()

        assert mock_conn_class.call_args.kwargs["read_timestamp"] == datetime(
            2020, 1, 23, 3, 0, tzinfo=timezone.utc
        )

    def test_run_with_bulk_size(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(
                self.DATABASES,
                {"directory": tmpdir, "timestamp_suffix": False},
                defaults={"bulk_size": 1}
            )
            dumper.run()
            content = (Path(tmpdir) / "testdb.sql").read_text(encoding="utf-8")

        assert content.count("INSERT INTO `Singers`") == 2
        assert content.count("INSERT INTO `Albums`") == 2

    def test_run_without_ddl(self, mock_conn_class, mock_conn):
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(
                self.DATABASES,
                {"directory": tmpdir, "timestamp_suffix": False},
                defaults={"ddl": False}
            )
            stats = dumper.run()
            content = (Path(tmpdir) / "testdb.sql").read_text(encoding="utf-8")

        mock_conn.get_ddl_statements.assert_not_called()
        assert content.startswith("INSERT INTO `Singers`")
        assert stats.databases[0].ddl_statements == 0

    def test_run_table_subset(self, mock_conn_class):
        """A child dumped without its parent is written as a root table."""
        databases = [{"name": "testdb", "tables": ["Albums"]}]
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(databases, {"directory": tmpdir, "timestamp_suffix": False})
            stats = dumper.run()
            content = (Path(tmpdir) / "testdb.sql").read_text(encoding="utf-8")

        assert content == (
            f"{ALBUMS_DDL};\n"
            f"{ALBUMS_INDEX_DDL};\n"
            "INSERT INTO `Albums` (`SingerId`, `AlbumId`) VALUES (1, 10), (1, 11);\n"
        )
        assert stats.total_tables == 1

    def test_run_timestamped_file_name(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            stats = make_dumper(self.DATABASES, {"directory": tmpdir}).run()
            files = list(Path(tmpdir).glob("testdb_*.sql"))

        assert len(files) == 1
        assert re.fullmatch(r"testdb_\d{8}_\d{6}\.sql", files[0].name)
        assert stats.databases[0].file_path == str(files[0])

    def test_run_compressed(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper(
                self.DATABASES,
                {"directory": tmpdir, "timestamp_suffix": False, "compress": True}
            )
            stats = dumper.run()
            with gzip.open(Path(tmpdir) / "testdb.sql.gz", "rt", encoding="utf-8") as f:
                content = f.read()

        assert stats.databases[0].file_path.endswith("testdb.sql.gz")
        assert "INSERT INTO `Albums`" in content

    def test_run_to_stdout(self, mock_conn_class, capsys):
        dumper = make_dumper(self.DATABASES, {"directory": "-"})
        stats = dumper.run()

        captured = capsys.readouterr()
        assert captured.out.startswith(f"{SINGERS_DDL};\n")
        assert "INSERT INTO `Albums`" in captured.out
        assert stats.databases[0].file_path == "<stdout>"

    def test_run_with_filters(self):
        """Test run with database and instance filters."""
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper([], {"directory": tmpdir})
            result = dumper.run(
                database_filter="nonexistent",
                instance_filter="nonexistent"
            )

        assert result.databases == []


class TestRunErrors:
    """Tests for error handling during run."""

    DATABASES = [{"name": "db1"}, {"name": "db2"}]

    def test_error_stops_only_its_database(self, mock_conn_class, mock_conn):
        """A failing database is recorded and the next one is still dumped."""
        mock_conn.fetch_table_rows.side_effect = [FetchError("schema unavailable"), list(SCHEMA_ROWS)]

        with tempfile.TemporaryDirectory() as tmpdir:
            stats = make_dumper(self.DATABASES, {"directory": tmpdir}).run()

        assert [db.success for db in stats.databases] == [False, True]
        assert stats.errors == [
            {"database": "db1", "table": None, "error": "schema unavailable"}
        ]
        assert stats.total_tables == 3

    def test_first_table_error_stops_database(self, mock_conn_class, mock_conn):
        """Tables after the failing one are not dumped."""
        def failing_stream(query):
            if "`Albums`" in query:
                raise EncodeError("bad value")
            return stream_table(query)

        mock_conn.stream_rows.side_effect = failing_stream

        with tempfile.TemporaryDirectory() as tmpdir:
            stats = make_dumper([{"name": "db1"}], {"directory": tmpdir}).run()

        queried = [c.args[0] for c in mock_conn.stream_rows.call_args_list]
        assert not any("Venues" in q for q in queried)
        assert stats.databases[0].success is False
        assert stats.errors[0]["error"] == "bad value"

    def test_table_error_records_failing_table(self, mock_conn_class, mock_conn, caplog):
        """An encoding error in the middle of a table is recorded with that table."""
        def failing_stream(query):
            if "`Albums`" in query:
                raise EncodeError("invalid base64 BYTES value")
            return stream_table(query)

        mock_conn.stream_rows.side_effect = failing_stream

        with tempfile.TemporaryDirectory() as tmpdir:
            with caplog.at_level(logging.ERROR):
                stats = make_dumper([{"name": "db1"}], {"directory": tmpdir}).run()

        assert stats.errors == [
            {"database": "db1", "table": "Albums", "error": "invalid base64 BYTES value"}
        ]
        assert "Error dumping database 'db1' at table 'Albums'" in caplog.text

    def test_unexpected_error_names_table(self, mock_conn_class, mock_conn, caplog):
        mock_conn.stream_rows.side_effect = RuntimeError("socket closed")

        with tempfile.TemporaryDirectory() as tmpdir:
            with caplog.at_level(logging.ERROR):
                stats = make_dumper([{"name": "db1"}], {"directory": tmpdir}).run()

        assert stats.errors[0]["table"] == "Singers"
        assert "socket closed" in stats.errors[0]["error"]
        assert "Error dumping database 'db1'" in caplog.text

    def test_unknown_instance(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            dumper = make_dumper([{"name": "db1", "instance": "missing"}], {"directory": tmpdir})
            dumper.config.get_instance.side_effect = ValueError(
                "Instance 'missing' not found in configuration"
            )
            stats = dumper.run()

        mock_conn_class.assert_not_called()
        assert stats.errors[0]["error"] == "Instance 'missing' not found in configuration"

    def test_invalid_timestamp(self, mock_conn_class):
        with tempfile.TemporaryDirectory() as tmpdir:
            stats = make_dumper(
                [{"name": "db1", "timestamp": "yesterday"}], {"directory": tmpdir}
            ).run()

        assert stats.databases[0].success is False
        assert "Invalid RFC 3339 timestamp" in stats.errors[0]["error"]
