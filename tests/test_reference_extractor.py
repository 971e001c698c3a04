"""Tests for table reference extraction.

Tests cover:
- SELECT, JOIN, INSERT, UPDATE, DELETE and MERGE references with contexts
- CTE names and derived-table aliases never reported as tables
- Nested subqueries, set operations and the subquery depth limit
- Statement indexes, line numbers and deduplication
- Column usages attributed through aliases
- The regex fallback used when a file cannot be parsed
"""
from sqldeps.extraction.options import ExtractionOptions
from sqldeps.extraction.reference_extractor import (
    FileScope,
    ReferenceExtractor,
    scan_cte_names,
    scan_update_from_aliases,
)
from sqldeps.models.domain import ColumnUsage, ReferenceType


def names(references):
    return [r.table_name for r in references]


def by_name(references):
    return {r.table_name: r for r in references}


# =============================================================================
# Statement Types
# =============================================================================

class TestStatementTypes:
    """Test reference types and contexts per statement kind."""

    def test_select_from(self, reference_extractor):
        """Should report a plain FROM as a select reference."""
        refs = reference_extractor.extract_references("SELECT id FROM orders WHERE total > 10", "q.sql")

        assert len(refs) == 1
        assert refs[0].table_name == "orders"
        assert refs[0].reference_type == ReferenceType.SELECT
        assert refs[0].context == "FROM"
        assert refs[0].file_path == "q.sql"
        assert refs[0].line_number == 1
        assert refs[0].statement_index == 0

    def test_joins_and_lines(self, reference_extractor):
        """Should classify joined tables as join references with their qualifier."""
        sql = (
            "SELECT o.id, c.name\n"
            "FROM orders o\n"
            "LEFT JOIN customers c ON c.id = o.customer_id"
        )
        refs = by_name(reference_extractor.extract_references(sql, "q.sql"))

        assert refs["orders"].reference_type == ReferenceType.SELECT
        assert refs["orders"].alias == "o"
        assert refs["orders"].line_number == 2
        assert refs["customers"].reference_type == ReferenceType.JOIN
        assert refs["customers"].context == "LEFT JOIN"
        assert refs["customers"].line_number == 3

    def test_insert_select(self, reference_extractor):
        """Should report the INSERT target and the tables it reads."""
        sql = "INSERT INTO orders (id, total)\nSELECT id, total FROM orders_staging"
        refs = by_name(reference_extractor.extract_references(sql, "etl.sql"))

        assert refs["orders"].reference_type == ReferenceType.INSERT
        assert refs["orders"].context == "INSERT INTO"
        assert refs["orders"].line_number == 1
        assert refs["orders_staging"].reference_type == ReferenceType.SELECT
        assert refs["orders_staging"].line_number == 2

    def test_update_and_delete(self, reference_extractor):
        """Should report UPDATE and DELETE targets in their own statements."""
        sql = "UPDATE orders SET total = 0 WHERE id = 1;\nDELETE FROM customers WHERE id = 2;"
        refs = reference_extractor.extract_references(sql, "dml.sql")

        assert [(r.table_name, r.reference_type, r.statement_index) for r in refs] == [
            ("orders", ReferenceType.UPDATE, 0),
            ("customers", ReferenceType.DELETE, 1),
        ]
        assert refs[1].context == "DELETE FROM"
        assert refs[1].line_number == 2

    def test_delete_using(self):
        """Should report USING sources of a PostgreSQL DELETE."""
        extractor = ReferenceExtractor(ExtractionOptions(dialect="PostgreSQL"))
        sql = "DELETE FROM orders USING customers WHERE orders.customer_id = customers.id"
        refs = by_name(extractor.extract_references(sql, "d.sql"))

        assert refs["orders"].reference_type == ReferenceType.DELETE
        assert refs["customers"].reference_type == ReferenceType.SELECT
        assert refs["customers"].context == "USING"

    def test_merge(self):
        """Should report the MERGE target and its USING source."""
        extractor = ReferenceExtractor(ExtractionOptions(dialect="Snowflake"))
        sql = (
            "MERGE INTO dim_customer t\n"
            "USING stg_customer s ON t.id = s.id\n"
            "WHEN MATCHED THEN UPDATE SET t.name = s.name\n"
            "WHEN NOT MATCHED THEN INSERT (id, name) VALUES (s.id, s.name)"
        )
        refs = by_name(extractor.extract_references(sql, "m.sql"))

        assert refs["dim_customer"].reference_type == ReferenceType.MERGE
        assert refs["dim_customer"].context == "MERGE INTO"
        assert refs["stg_customer"].reference_type == ReferenceType.SELECT
        assert refs["stg_customer"].context == "USING"
        assert refs["stg_customer"].line_number == 2

    def test_create_view_as_select(self, reference_extractor):
        """Should report the tables read by a view body."""
        sql = "CREATE VIEW v_orders AS\nSELECT * FROM orders"
        refs = reference_extractor.extract_references(sql, "v.sql")
        assert names(refs) == ["orders"]
        assert refs[0].line_number == 2

    def test_schema_qualified_and_bracketed(self):
        """Should split schema from name and strip bracket quoting."""
        extractor = ReferenceExtractor(ExtractionOptions(dialect="TransactSQL"))
        refs = extractor.extract_references("SELECT * FROM [dbo].[Orders]", "t.sql")
        assert refs[0].table_name == "Orders"
        assert refs[0].schema_name == "dbo"

    def test_comment_only_file(self, reference_extractor):
        """Should return nothing for a file holding only comments."""
        assert reference_extractor.extract_references("-- SELECT * FROM orders\n/* nothing */", "c.sql") == []


# =============================================================================
# CTEs and Aliases
# =============================================================================

class TestCteAndAliasExclusion:
    """Test that CTE names and derived-table aliases never become tables."""

    def test_cte_name_excluded(self, reference_extractor):
        """Should report the CTE body's tables but not the CTE itself."""
        sql = (
            "WITH recent AS (SELECT * FROM orders WHERE total > 10)\n"
            "SELECT * FROM recent"
        )
        assert names(reference_extractor.extract_references(sql, "q.sql")) == ["orders"]

    def test_multiple_and_chained_ctes(self, reference_extractor):
        """Should exclude every comma-separated CTE, including ones read by later CTEs."""
        sql = (
            "WITH a_cte AS (SELECT id FROM orders),\n"
            "     b_cte AS (SELECT id FROM a_cte)\n"
            "SELECT * FROM b_cte JOIN customers ON customers.id = b_cte.id"
        )
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert sorted(names(refs)) == ["customers", "orders"]

    def test_recursive_cte(self):
        """Should not report a recursive CTE that reads itself."""
        extractor = ReferenceExtractor(ExtractionOptions(dialect="PostgreSQL"))
        sql = (
            "WITH RECURSIVE tree AS (\n"
            "  SELECT id, parent_id FROM categories WHERE parent_id IS NULL\n"
            "  UNION ALL\n"
            "  SELECT c.id, c.parent_id FROM categories c JOIN tree t ON c.parent_id = t.id\n"
            ")\n"
            "SELECT * FROM tree"
        )
        assert set(names(extractor.extract_references(sql, "q.sql"))) == {"categories"}

    def test_cte_inside_insert(self, reference_extractor):
        """Should exclude CTEs declared before an INSERT source."""
        sql = (
            "INSERT INTO totals\n"
            "WITH sums AS (SELECT customer_id, SUM(total) AS s FROM orders GROUP BY customer_id)\n"
            "SELECT * FROM sums"
        )
        refs = by_name(reference_extractor.extract_references(sql, "q.sql"))
        assert set(refs) == {"totals", "orders"}

    def test_schema_qualified_name_is_not_a_cte(self, reference_extractor):
        """Should keep archive.recent even when a CTE named recent exists."""
        sql = "WITH recent AS (SELECT 1 AS n)\nSELECT * FROM archive.recent"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.schema_name, r.table_name) for r in refs] == [("archive", "recent")]

    def test_update_from_subquery_alias(self):
        """Should never report the alias of an UPDATE ... FROM (subquery)."""
        extractor = ReferenceExtractor(ExtractionOptions(dialect="PostgreSQL"))
        sql = (
            "UPDATE orders\n"
            "SET total = sums.amount\n"
            "FROM (SELECT order_id, SUM(amount) AS amount FROM order_items GROUP BY order_id) AS sums\n"
            "WHERE orders.id = sums.order_id"
        )
        refs = by_name(extractor.extract_references(sql, "u.sql"))

        assert set(refs) == {"orders", "order_items"}
        assert refs["orders"].reference_type == ReferenceType.UPDATE
        assert refs["order_items"].reference_type == ReferenceType.SELECT

    def test_scan_cte_names(self):
        """Should find comma-separated and column-listed CTE names."""
        text = "WITH RECURSIVE a1 (x) AS (SELECT (1)), b1 AS (SELECT 2) SELECT * FROM a1, b1"
        assert scan_cte_names(text) == {"a1", "b1"}

    def test_scan_update_from_aliases(self):
        """Should collect derived-table aliases inside UPDATE statements only."""
        text = (
            "UPDATE t1 SET x = d.x FROM (SELECT (1) AS x) AS derived WHERE 1 = 1;\n"
            "SELECT * FROM (SELECT 1) AS other_alias;"
        )
        assert scan_update_from_aliases(text) == {"derived"}

    def test_file_scope_excludes_bare_cte_names(self):
        """Should exclude registered names unless the reference is schema-qualified."""
        scope = FileScope(excluded=frozenset({"staging", "tmp_cte"}))
        assert scope.is_excluded("Staging", None)
        assert scope.is_excluded("TMP_CTE", None)
        assert not scope.is_excluded("tmp_cte", "etl")
        assert not scope.is_excluded("orders", None)


# =============================================================================
# Nesting and Set Operations
# =============================================================================

class TestNesting:
    """Test subqueries, unions and depth limiting."""

    def test_union_branches(self, reference_extractor):
        """Should report every branch of a UNION."""
        sql = "SELECT id FROM orders_2023\nUNION ALL\nSELECT id FROM orders_2024"
        refs = reference_extractor.extract_references(sql, "u.sql")
        assert [(r.table_name, r.line_number) for r in refs] == [("orders_2023", 1), ("orders_2024", 3)]

    def test_where_and_select_list_subqueries(self, reference_extractor):
        """Should find tables in WHERE and scalar subqueries."""
        sql = (
            "SELECT o.id, (SELECT MAX(amount) FROM payments p WHERE p.order_id = o.id) AS paid\n"
            "FROM orders o\n"
            "WHERE o.customer_id IN (SELECT id FROM customers WHERE active = 1)"
        )
        refs = by_name(reference_extractor.extract_references(sql, "q.sql"))
        assert set(refs) == {"orders", "payments", "customers"}
        assert refs["customers"].line_number == 3

    def test_derived_table_alias_not_reported(self, reference_extractor):
        """Should report the inner table of a derived table, not its alias."""
        sql = "SELECT x.id FROM (SELECT id FROM orders) AS x_orders_alias"
        assert names(reference_extractor.extract_references(sql, "q.sql")) == ["orders"]

    def test_depth_limit(self):
        """Should stop descending past the configured depth."""
        sql = "SELECT * FROM (SELECT * FROM (SELECT * FROM deep_table) a1) b1"
        shallow = ReferenceExtractor(ExtractionOptions(max_subquery_depth=1))
        deep = ReferenceExtractor(ExtractionOptions())
        assert shallow.extract_references(sql, "q.sql") == []
        assert names(deep.extract_references(sql, "q.sql")) == ["deep_table"]


# =============================================================================
# Statement Indexes and Deduplication
# =============================================================================

class TestIndexesAndDedup:
    """Test statement grouping and duplicate suppression."""

    def test_statement_indexes(self, reference_extractor):
        """Should number statements from zero in file order."""
        sql = "SELECT * FROM a_table;\n\nSELECT * FROM b_table;\nSELECT * FROM c_table;"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.table_name, r.statement_index, r.line_number) for r in refs] == [
            ("a_table", 0, 1),
            ("b_table", 1, 3),
            ("c_table", 2, 4),
        ]

    def test_same_table_same_line_deduplicated(self, reference_extractor):
        """Should keep one reference per name, type and line."""
        sql = "SELECT * FROM orders WHERE id IN (SELECT parent_id FROM orders)"
        assert len(reference_extractor.extract_references(sql, "q.sql")) == 1

    def test_same_table_different_lines_kept(self, reference_extractor):
        """Should keep separate references on separate lines."""
        sql = "SELECT * FROM orders\nWHERE id IN (\n  SELECT parent_id FROM orders)"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [r.line_number for r in refs] == [1, 3]

    def test_sorted_by_line(self, reference_extractor):
        """Should order references by line."""
        sql = "SELECT *\nFROM z_last\nJOIN a_first ON a_first.id = z_last.id"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [r.line_number for r in refs] == sorted(r.line_number for r in refs)


# =============================================================================
# Column Usages
# =============================================================================

class TestColumnUsages:
    """Test column-level usages attached to references."""

    def test_qualified_columns_follow_aliases(self, reference_extractor):
        """Should attribute alias-qualified columns to the aliased table."""
        sql = (
            "SELECT o.id, c.name\n"
            "FROM orders o\n"
            "JOIN customers c ON c.id = o.customer_id\n"
            "WHERE o.status = 'open'"
        )
        refs = by_name(reference_extractor.extract_references(sql, "q.sql"))

        orders_columns = {(c.column_name, c.used_in) for c in refs["orders"].columns}
        assert ("id", ColumnUsage.SELECT) in orders_columns
        assert ("customer_id", ColumnUsage.JOIN) in orders_columns
        assert ("status", ColumnUsage.WHERE) in orders_columns
        assert ("name", ColumnUsage.SELECT) not in orders_columns

        customer_columns = {(c.column_name, c.used_in) for c in refs["customers"].columns}
        assert ("name", ColumnUsage.SELECT) in customer_columns

        status = next(c for c in refs["orders"].columns if c.column_name == "status")
        assert status.table_alias == "o"
        assert status.line_number == 4

    def test_unqualified_columns_with_single_table(self, reference_extractor):
        """Should attribute unqualified columns when only one table is in scope."""
        sql = "SELECT id, total FROM orders WHERE total > 0 ORDER BY id"
        ref = reference_extractor.extract_references(sql, "q.sql")[0]
        usages = {(c.column_name, c.used_in) for c in ref.columns}
        assert usages == {
            ("id", ColumnUsage.SELECT),
            ("total", ColumnUsage.SELECT),
            ("total", ColumnUsage.WHERE),
            ("id", ColumnUsage.ORDER),
        }

    def test_insert_columns(self, reference_extractor):
        """Should record the INSERT column list on the target."""
        sql = "INSERT INTO orders (id, total) SELECT id, total FROM orders_staging"
        refs = by_name(reference_extractor.extract_references(sql, "q.sql"))
        assert [c.column_name for c in refs["orders"].columns] == ["id", "total"]
        assert all(c.used_in == ColumnUsage.INSERT for c in refs["orders"].columns)

    def test_columns_disabled(self):
        """Should leave columns unset when column extraction is off."""
        extractor = ReferenceExtractor(ExtractionOptions(extract_columns=False))
        ref = extractor.extract_references("SELECT id FROM orders", "q.sql")[0]
        assert ref.columns is None

    def test_column_budget(self):
        """Should stop attaching columns at the per-query limit."""
        extractor = ReferenceExtractor(ExtractionOptions(max_columns_per_query=2))
        ref = extractor.extract_references("SELECT a1, b1, c1, d1 FROM orders", "q.sql")[0]
        assert len(ref.columns) == 2


# =============================================================================
# Regex Fallback
# =============================================================================

class TestRegexFallback:
    """Test references recovered when the whole file fails to parse."""

    def test_hash_comments_never_produce_references(self, reference_extractor, fail_parser):
        """Should ignore a FROM inside a MySQL # comment."""
        sql = "SELECT * FROM orders # FROM fake_table\nLEFT JOIN customers ON customers.id = orders.customer_id"
        refs = reference_extractor.extract_references(sql, "q.sql")

        assert [(r.table_name, r.reference_type, r.line_number) for r in refs] == [
            ("orders", ReferenceType.SELECT, 1),
            ("customers", ReferenceType.JOIN, 2),
        ]
        assert refs[1].context == "LEFT JOIN"

    def test_lines_from_original_source(self, reference_extractor, fail_parser):
        """Should report lines of the code occurrence, not of a commented copy."""
        sql = "/* SELECT *\n   FROM orders */\nSELECT *\nFROM orders"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.table_name, r.line_number) for r in refs] == [("orders", 4)]

    def test_function_from_arguments_skipped(self, reference_extractor, fail_parser):
        """Should not treat EXTRACT(... FROM col) as a table clause."""
        sql = "SELECT EXTRACT(YEAR FROM created_at) FROM orders"
        assert names(reference_extractor.extract_references(sql, "q.sql")) == ["orders"]

    def test_write_statements_and_indexes(self, reference_extractor, fail_parser):
        """Should find write targets and group them by statement."""
        sql = (
            "INSERT INTO audit_log SELECT * FROM orders;\n"
            "DELETE FROM orders WHERE id = 1;\n"
            "UPDATE customers SET active = 0;"
        )
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.table_name, r.reference_type, r.statement_index) for r in refs] == [
            ("audit_log", ReferenceType.INSERT, 0),
            ("orders", ReferenceType.SELECT, 0),
            ("orders", ReferenceType.DELETE, 1),
            ("customers", ReferenceType.UPDATE, 2),
        ]

    def test_cte_names_excluded(self, reference_extractor, fail_parser):
        """Should apply the file-level CTE registry on the fallback path too."""
        sql = "WITH recent AS (SELECT * FROM orders)\nSELECT * FROM recent"
        assert names(reference_extractor.extract_references(sql, "q.sql")) == ["orders"]

    def test_cte_name_excluded_when_file_creates_same_name(self, reference_extractor, fail_parser):
        """Should never report a CTE name, even if the file also creates a table with it."""
        sql = "CREATE TABLE foo (id int);\nWITH foo AS (SELECT 1 FROM bar) SELECT * FROM foo;"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.table_name, r.line_number) for r in refs] == [("bar", 2)]

    def test_keywords_numbers_and_short_names_skipped(self, reference_extractor, fail_parser):
        """Should drop reserved words, functions, numbers and one-letter names."""
        sql = "SELECT * FROM count;\nSELECT * FROM 123 JOIN true ON 1=1;\nSELECT * FROM t;"
        assert reference_extractor.extract_references(sql, "q.sql") == []

    def test_trigger_update_not_a_table(self, reference_extractor, fail_parser):
        """Should skip UPDATE used as a trigger event."""
        sql = "CREATE TRIGGER trg_audit AFTER UPDATE ON orders FOR EACH ROW INSERT INTO audit_log VALUES (1)"
        refs = reference_extractor.extract_references(sql, "q.sql")
        assert [(r.table_name, r.reference_type) for r in refs] == [("audit_log", ReferenceType.INSERT)]
