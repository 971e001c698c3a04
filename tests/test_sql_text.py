"""Tests for the SQL text layout scanner and line lookup.

Tests cover:
- Comment, literal and quoted-identifier detection per dialect
- Statement spans and statement indexes
- Comment-stripped and comment-masked copies
- Line lookup that never lands on comments or string literals
"""
from sqldeps.extraction.sql_text import find_matching_paren, scan_sql, strip_comments
from sqldeps.extraction.text_search import LineLocator
from sqldeps.models.domain import SqlDialect, coerce_dialect


# =============================================================================
# Dialects
# =============================================================================

class TestDialects:
    """Test dialect coercion and lexical traits."""

    def test_coerce_accepts_display_and_sqlglot_names(self):
        """Should resolve display names, enum names and sqlglot names."""
        assert coerce_dialect("PostgreSQL") is SqlDialect.POSTGRESQL
        assert coerce_dialect("postgres") is SqlDialect.POSTGRESQL
        assert coerce_dialect("TRANSACTSQL") is SqlDialect.TRANSACTSQL
        assert coerce_dialect(SqlDialect.HIVE) is SqlDialect.HIVE

    def test_unknown_dialect_falls_back_to_default(self):
        """Should fall back to MySQL for unknown names."""
        assert coerce_dialect("cobol") is SqlDialect.MYSQL
        assert coerce_dialect(None) is SqlDialect.MYSQL

    def test_sqlglot_names(self):
        """Should map every dialect to a sqlglot dialect name."""
        assert SqlDialect.MARIADB.sqlglot_name == "mysql"
        assert SqlDialect.TRANSACTSQL.sqlglot_name == "tsql"
        assert all(d.sqlglot_name for d in SqlDialect)


# =============================================================================
# Layout Scanning
# =============================================================================

class TestLayout:
    """Test the single-pass lexical scan."""

    def test_line_and_block_comments(self):
        """Should mark -- and /* */ comments."""
        sql = "SELECT 1 -- trailing\n/* block\ncomment */ FROM t"
        layout = scan_sql(sql)
        assert layout.in_comment(sql.index("trailing"))
        assert layout.in_comment(sql.index("block"))
        assert not layout.in_comment(sql.index("FROM"))

    def test_hash_comments_only_for_mysql(self):
        """Should treat # as a comment in MySQL but not in PostgreSQL."""
        sql = "SELECT 1 # FROM fake_table\n"
        offset = sql.index("FROM")
        assert scan_sql(sql, SqlDialect.MYSQL).in_comment(offset)
        assert not scan_sql(sql, SqlDialect.POSTGRESQL).in_comment(offset)

    def test_literals_are_not_code_but_quoted_identifiers_are(self):
        """Should exclude string literals from code but keep quoted names."""
        sql = "SELECT 'FROM fake' FROM \"Orders\""
        layout = scan_sql(sql)
        assert not layout.is_code(sql.index("fake"))
        assert layout.is_code(sql.index("Orders"))

    def test_comment_markers_inside_literals(self):
        """Should not start a comment inside a string literal."""
        sql = "SELECT '--not a comment' FROM orders"
        layout = scan_sql(sql)
        assert layout.comment_spans == []
        assert layout.is_code(sql.index("orders"))

    def test_doubled_and_backslash_quotes(self):
        """Should honor '' doubling everywhere and backslash escapes in MySQL."""
        sql = "SELECT 'it''s', 'a\\'b' FROM orders"
        layout = scan_sql(sql, SqlDialect.MYSQL)
        assert layout.is_code(sql.index("orders"))
        assert len(layout.literal_spans) == 2

    def test_dollar_quoted_bodies(self):
        """Should treat $$ bodies as literals in PostgreSQL."""
        sql = "SELECT $$ FROM fake_table $$; SELECT 1"
        layout = scan_sql(sql, SqlDialect.POSTGRESQL)
        assert not layout.is_code(sql.index("fake_table"))

    def test_bracket_identifiers_in_tsql(self):
        """Should not split statements on a semicolon inside brackets."""
        sql = "SELECT * FROM [odd;name]; SELECT 2"
        layout = scan_sql(sql, SqlDialect.TRANSACTSQL)
        assert len(layout.statement_spans()) == 2

    def test_statement_spans_skip_empty_segments(self):
        """Should ignore segments holding only whitespace or comments."""
        sql = "SELECT 1;\n-- only a comment\n;\nSELECT 2;"
        layout = scan_sql(sql)
        assert len(layout.statement_spans()) == 2
        assert layout.statement_index_at(sql.index("SELECT 2")) == 1

    def test_semicolons_in_literals_do_not_split(self):
        """Should only count top-level semicolons."""
        layout = scan_sql("SELECT ';' FROM a; SELECT 2")
        assert len(layout.semicolons) == 1

    def test_line_at(self):
        """Should map offsets to 1-based lines."""
        sql = "a\nbb\nccc"
        layout = scan_sql(sql)
        assert layout.line_at(0) == 1
        assert layout.line_at(sql.index("bb")) == 2
        assert layout.line_at(sql.index("ccc")) == 3
        assert layout.line_count == 3

    def test_masked_preserves_offsets(self):
        """Should blank comments without moving any character."""
        sql = "SELECT 1 /* x\ny */ FROM t -- z\n"
        masked = scan_sql(sql).masked()
        assert len(masked) == len(sql)
        assert masked.count("\n") == sql.count("\n")
        assert "x" not in masked and "z" not in masked
        assert masked.index("FROM") == sql.index("FROM")

    def test_strip_comments(self):
        """Should remove comments and keep block comment newlines."""
        stripped = strip_comments("SELECT 1 /* a\nb */ FROM t -- c")
        assert "a" not in stripped.replace("FROM", "")
        assert stripped.count("\n") == 1

    def test_comment_line(self):
        """Should report lines holding nothing but comments."""
        layout = scan_sql("-- note\nSELECT 1 -- trailing\n")
        assert layout.is_comment_line(1)
        assert not layout.is_comment_line(2)

    def test_find_matching_paren(self):
        """Should skip parentheses inside literals."""
        text = "(a (b) ')' c) tail"
        assert find_matching_paren(text, 0) == text.index(" tail") - 1
        assert find_matching_paren("(unclosed", 0) == -1


# =============================================================================
# Line Lookup
# =============================================================================

class TestLineLocator:
    """Test clause-aware line lookup over the original source."""

    def test_skips_commented_occurrences(self):
        """Should never report a line inside a comment."""
        sql = "-- SELECT * FROM orders\nSELECT *\nFROM orders"
        locator = LineLocator(scan_sql(sql))
        assert locator.line_for("from", "orders", None, (0, len(sql))) == 3

    def test_successive_occurrences(self):
        """Should walk forward through repeated lookups of the same name."""
        sql = "SELECT * FROM orders\nUNION ALL\nSELECT * FROM orders"
        locator = LineLocator(scan_sql(sql))
        span = (0, len(sql))
        assert locator.line_for("from", "orders", None, span) == 1
        assert locator.line_for("from", "orders", None, span) == 3

    def test_quoted_and_qualified_names(self):
        """Should match quoted, schema-qualified occurrences."""
        sql = "SELECT 1\nFROM `sales`.`orders`"
        locator = LineLocator(scan_sql(sql))
        assert locator.line_for("from", "orders", "sales", (0, len(sql))) == 2

    def test_create_clause_anchor(self):
        """Should anchor CREATE lookups on the CREATE keyword."""
        sql = "\n\nCREATE TABLE IF NOT EXISTS\n  orders (id INT)"
        locator = LineLocator(scan_sql(sql))
        assert locator.line_for("create", "orders", None, (0, len(sql)), anchor="clause") == 3

    def test_column_line(self):
        """Should find the first code occurrence of a qualified column."""
        sql = "SELECT o.id\nFROM orders o\nWHERE o.total > 10"
        locator = LineLocator(scan_sql(sql))
        assert locator.column_line("total", "o", (0, len(sql))) == 3
        assert locator.column_line("missing", None, (0, len(sql))) is None
