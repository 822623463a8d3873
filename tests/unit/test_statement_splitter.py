"""Unit tests for SQL script splitting."""

import pytest

from sequelae_mcp.services.statement_splitter import split_statements


class TestSplitStatements:
    """Tests for split_statements()."""

    def test_simple_statements(self) -> None:
        sql = "CREATE TABLE t(id int); INSERT INTO t VALUES(1); INSERT INTO t VALUES('x');"

        assert split_statements(sql) == [
            "CREATE TABLE t(id int)",
            "INSERT INTO t VALUES(1)",
            "INSERT INTO t VALUES('x')",
        ]

    def test_final_statement_without_semicolon(self) -> None:
        assert split_statements("SELECT 1;\nSELECT 2") == ["SELECT 1", "SELECT 2"]

    @pytest.mark.parametrize(
        "sql",
        [
            "",
            "   \n\t",
            ";;;",
            "-- just a comment",
            "/* block */ ; -- line\n",
        ],
    )
    def test_nothing_to_run(self, sql: str) -> None:
        assert split_statements(sql) == []

    def test_semicolon_in_string_literal(self) -> None:
        sql = "INSERT INTO t VALUES ('a;b'); SELECT 'it''s; fine'"

        assert split_statements(sql) == [
            "INSERT INTO t VALUES ('a;b')",
            "SELECT 'it''s; fine'",
        ]

    def test_escape_string_with_backslash_quote(self) -> None:
        sql = r"SELECT E'a\';b'; SELECT 2"

        assert split_statements(sql) == [r"SELECT E'a\';b'", "SELECT 2"]

    def test_semicolon_in_quoted_identifier(self) -> None:
        sql = 'SELECT 1 AS "a;b"; SELECT 2'

        assert split_statements(sql) == ['SELECT 1 AS "a;b"', "SELECT 2"]

    def test_semicolon_in_comments(self) -> None:
        sql = "SELECT 1; -- first; second\nSELECT /* a; /* nested; */ b; */ 2;"

        assert split_statements(sql) == [
            "SELECT 1",
            "-- first; second\nSELECT /* a; /* nested; */ b; */ 2",
        ]

    def test_dollar_quoted_function_body(self) -> None:
        body = (
            "CREATE FUNCTION f() RETURNS int AS $$\n"
            "BEGIN\n  PERFORM 1;\n  RETURN 1;\nEND;\n"
            "$$ LANGUAGE plpgsql"
        )
        sql = f"{body};\nSELECT f();"

        assert split_statements(sql) == [body, "SELECT f()"]

    def test_tagged_dollar_quotes(self) -> None:
        sql = "DO $body$ BEGIN RAISE NOTICE '$$;'; END $body$; SELECT 1"

        assert split_statements(sql) == [
            "DO $body$ BEGIN RAISE NOTICE '$$;'; END $body$",
            "SELECT 1",
        ]

    def test_positional_parameter_is_not_a_dollar_quote(self) -> None:
        sql = "PREPARE p AS SELECT $1; EXECUTE p(1)"

        assert split_statements(sql) == ["PREPARE p AS SELECT $1", "EXECUTE p(1)"]

    def test_dollar_inside_identifier(self) -> None:
        assert split_statements("SELECT a$b$c FROM t; SELECT 2") == [
            "SELECT a$b$c FROM t",
            "SELECT 2",
        ]

    def test_unterminated_string_keeps_remainder(self) -> None:
        assert split_statements("SELECT 'oops; SELECT 2") == ["SELECT 'oops; SELECT 2"]

    def test_byte_order_mark_is_stripped(self) -> None:
        assert split_statements("\ufeffSELECT 1;") == ["SELECT 1"]
