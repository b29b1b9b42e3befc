"""Tests for migration file parsing and statement splitting."""

from __future__ import annotations

import textwrap

import pytest

from schemashift.errors import ParseError
from schemashift.parser import (
    DOWN_MARKER,
    UP_MARKER,
    parse_migration_file,
    parse_sections,
    parse_version,
    split_statements,
)


def _doc(up: str, down: str = "") -> str:
    return f"-- Migration: test\n\n{UP_MARKER}\n{up}\n\n{DOWN_MARKER}\n{down}\n"


# ── Sections ──────────────────────────────────────────────────────────


class TestParseSections:
    def test_up_and_down(self):
        sections = parse_sections(
            _doc("CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        )
        assert sections.up == ("CREATE TABLE users (id INTEGER)",)
        assert sections.down == ("DROP TABLE users",)

    def test_header_before_up_is_ignored(self):
        sections = parse_sections(_doc("SELECT 1;"))
        assert sections.up == ("SELECT 1",)

    def test_empty_down(self):
        assert parse_sections(_doc("SELECT 1;")).down == ()

    def test_comment_only_sections_are_empty(self):
        sections = parse_sections(
            _doc("-- Add your migration SQL here", "-- Add your rollback SQL here")
        )
        assert sections.up == ()
        assert sections.down == ()

    def test_marker_whitespace_is_normalised(self):
        text = "--   +migrate   Up\nSELECT 1;\n  -- +migrate Down  \nSELECT 2;\n"
        sections = parse_sections(text)
        assert sections.up == ("SELECT 1",)
        assert sections.down == ("SELECT 2",)

    def test_missing_up(self):
        with pytest.raises(ParseError, match="Missing '-- \\+migrate Up'"):
            parse_sections("SELECT 1;\n")

    def test_missing_down(self):
        with pytest.raises(ParseError, match="Missing '-- \\+migrate Down'"):
            parse_sections(f"{UP_MARKER}\nSELECT 1;\n")

    def test_duplicate_up_reports_line(self):
        text = f"{UP_MARKER}\nSELECT 1;\n{UP_MARKER}\n{DOWN_MARKER}\n"
        with pytest.raises(ParseError) as exc_info:
            parse_sections(text)
        assert exc_info.value.line == 3

    def test_down_before_up(self):
        with pytest.raises(ParseError, match="Down marker appears before"):
            parse_sections(f"{DOWN_MARKER}\n{UP_MARKER}\n")

    def test_up_after_down_is_a_duplicate_up(self):
        text = f"{UP_MARKER}\nSELECT 1;\n{DOWN_MARKER}\n{UP_MARKER}\n"
        with pytest.raises(ParseError, match="Duplicate Up marker") as exc_info:
            parse_sections(text)
        assert exc_info.value.line == 4

    def test_duplicate_down(self):
        with pytest.raises(ParseError, match="Duplicate Down marker"):
            parse_sections(f"{UP_MARKER}\n{DOWN_MARKER}\n{DOWN_MARKER}\n")


# ── Statement splitting ──────────────────────────────────────────────


class TestSplitStatements:
    def test_simple(self):
        assert split_statements("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_trailing_statement_without_semicolon(self):
        assert split_statements("SELECT 1;\nSELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_in_string(self):
        sql = "INSERT INTO t VALUES ('a;b'); SELECT 1;"
        assert split_statements(sql) == ["INSERT INTO t VALUES ('a;b')", "SELECT 1"]

    def test_escaped_quote(self):
        sql = "INSERT INTO t VALUES ('it''s; fine');"
        assert split_statements(sql) == ["INSERT INTO t VALUES ('it''s; fine')"]

    def test_quoted_identifiers(self):
        sql = 'CREATE TABLE "a;b" (x INT); CREATE TABLE `c;d` (y INT);'
        assert split_statements(sql) == [
            'CREATE TABLE "a;b" (x INT)',
            "CREATE TABLE `c;d` (y INT)",
        ]

    def test_semicolon_in_comments(self):
        sql = textwrap.dedent("""\
            -- first; still a comment
            SELECT 1; /* block; comment */
            SELECT 2;
        """)
        assert split_statements(sql) == [
            "-- first; still a comment\nSELECT 1",
            "/* block; comment */\nSELECT 2",
        ]

    def test_comment_only_fragment_dropped(self):
        assert split_statements("SELECT 1;\n-- trailing note\n") == ["SELECT 1"]

    def test_dollar_quoted_function_body(self):
        sql = textwrap.dedent("""\
            CREATE FUNCTION bump() RETURNS trigger AS $$
            BEGIN
                NEW.n := NEW.n + 1;
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql;
            SELECT 1;
        """)
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[0].startswith("CREATE FUNCTION bump()")
        assert statements[0].endswith("LANGUAGE plpgsql")
        assert statements[1] == "SELECT 1"

    def test_tagged_dollar_quote(self):
        sql = "DO $body$ BEGIN PERFORM 1; END $body$; SELECT 2;"
        assert split_statements(sql) == ["DO $body$ BEGIN PERFORM 1; END $body$", "SELECT 2"]

    def test_positional_parameter_is_not_a_dollar_quote(self):
        sql = "PREPARE q AS SELECT $1; SELECT 2;"
        assert split_statements(sql) == ["PREPARE q AS SELECT $1", "SELECT 2"]

    def test_trigger_body_kept_whole(self):
        sql = textwrap.dedent("""\
            CREATE TRIGGER users_audit AFTER INSERT ON users
            BEGIN
                INSERT INTO audit (what) VALUES ('insert');
                UPDATE counters SET n = n + 1;
            END;
            DROP TABLE scratch;
        """)
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[0].startswith("CREATE TRIGGER users_audit")
        assert statements[0].endswith("END")
        assert statements[1] == "DROP TABLE scratch"

    def test_case_expression_inside_trigger(self):
        sql = (
            "CREATE TRIGGER t AFTER INSERT ON a BEGIN "
            "UPDATE b SET x = CASE WHEN NEW.y THEN 1 ELSE 2 END; END; SELECT 1;"
        )
        assert split_statements(sql) == [
            "CREATE TRIGGER t AFTER INSERT ON a BEGIN "
            "UPDATE b SET x = CASE WHEN NEW.y THEN 1 ELSE 2 END; END",
            "SELECT 1",
        ]

    def test_mysql_if_block_inside_trigger(self):
        sql = textwrap.dedent("""\
            CREATE TRIGGER clamp BEFORE INSERT ON scores FOR EACH ROW
            BEGIN
                IF NEW.points < 0 THEN
                    SET NEW.points = 0;
                END IF;
            END;
            SELECT 1;
        """)
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[0].endswith("END IF;\nEND")
        assert statements[1] == "SELECT 1"

    def test_case_expression_outside_trigger(self):
        sql = "SELECT CASE WHEN 1 THEN 'a' END; SELECT 2;"
        assert split_statements(sql) == ["SELECT CASE WHEN 1 THEN 'a' END", "SELECT 2"]

    def test_begin_transaction_is_split(self):
        assert split_statements("BEGIN; SELECT 1; COMMIT;") == ["BEGIN", "SELECT 1", "COMMIT"]

    def test_empty(self):
        assert split_statements("") == []
        assert split_statements("  ;  ; ") == []


# ── Versions and files ──────────────────────────────────────────────


class TestParseVersion:
    def test_valid(self):
        assert parse_version("20260115093000_add_users") == (
            "20260115093000_add_users",
            "add_users",
        )

    @pytest.mark.parametrize(
        "stem", ["add_users", "2026011509300_short", "20260115093000", "20260115093000_bad name"]
    )
    def test_invalid(self, stem):
        with pytest.raises(ParseError, match="not a migration version"):
            parse_version(stem)


class TestParseMigrationFile:
    def test_parses_file(self, tmp_path):
        path = tmp_path / "20260115093000_add_users.sql"
        path.write_text(
            _doc("CREATE TABLE users (id INTEGER);\nCREATE INDEX ix ON users (id);", "DROP TABLE users;"),
            encoding="utf-8",
        )
        migration = parse_migration_file(path)
        assert migration.version == "20260115093000_add_users"
        assert migration.name == "add_users"
        assert len(migration.up) == 2
        assert migration.reversible
        assert migration.source_path == path

    def test_error_carries_path_and_version(self, tmp_path):
        path = tmp_path / "20260115093000_broken.sql"
        path.write_text("CREATE TABLE x (id INTEGER);\n", encoding="utf-8")
        with pytest.raises(ParseError) as exc_info:
            parse_migration_file(path)
        assert exc_info.value.context.path == str(path)
        assert exc_info.value.version == "20260115093000_broken"

    def test_bad_name_carries_path(self, tmp_path):
        path = tmp_path / "notes.sql"
        path.write_text(_doc("SELECT 1;"), encoding="utf-8")
        with pytest.raises(ParseError) as exc_info:
            parse_migration_file(path)
        assert exc_info.value.context.path == str(path)

    def test_non_utf8(self, tmp_path):
        path = tmp_path / "20260115093000_latin.sql"
        path.write_bytes(b"-- +migrate Up\nSELECT '\xe9';\n-- +migrate Down\n")
        with pytest.raises(ParseError, match="not valid UTF-8"):
            parse_migration_file(path)
