"""Tests for table-level lineage and impact analysis.

Tests cover:
- Data-flow edges from INSERT ... SELECT, UPDATE ... FROM, MERGE and views
- Upstream, downstream and full lineage traversal
- Cycle-safe traversal
- Impact reports, severity and suggestions
- Object search and statistics
"""
import pytest

from sqldeps.models.graph import ChangeType, NodeType, Severity
from sqldeps.services.lineage_engine import TableLineageEngine, impact_severity


@pytest.fixture
def engine(make_index, sample_workspace):
    return TableLineageEngine(make_index(sample_workspace))


def dependency_triples(engine):
    return sorted((d.source_id, d.target_id, d.dependency_type) for d in engine.get_dependencies())


# =============================================================================
# Dependencies
# =============================================================================

class TestDependencies:
    """Test how statements become data-flow edges."""

    def test_sample_workspace_edges(self, engine):
        """Should link staging to its target and base tables to the view."""
        assert dependency_triples(engine) == [
            ("customers", "order_summary", "VIEW"),
            ("orders", "order_summary", "VIEW"),
            ("orders_staging", "orders", "INSERT_SELECT"),
        ]

    def test_objects_include_external_tables(self, engine):
        """Should register defined tables, views and external tables."""
        objects = engine.get_all_objects()
        assert objects["orders"].type == NodeType.TABLE
        assert objects["orders"].file_path == "schema/orders.sql"
        assert objects["order_summary"].type == NodeType.VIEW
        assert objects["orders_staging"].type == NodeType.EXTERNAL
        assert objects["orders_staging"].file_path is None

    def test_update_from_and_merge(self, make_index):
        """Should type edges by the writing statement."""
        index = make_index({
            "update.sql": (
                "UPDATE orders SET total = s.total\n"
                "FROM staging_totals s WHERE s.id = orders.id;"
            ),
            "merge.sql": (
                "MERGE INTO customers t USING customer_feed f ON t.id = f.id\n"
                "WHEN MATCHED THEN UPDATE SET name = f.name;"
            ),
        }, dialect="PostgreSQL")
        assert dependency_triples(TableLineageEngine(index)) == [
            ("customer_feed", "customers", "MERGE"),
            ("staging_totals", "orders", "UPDATE_FROM"),
        ]

    def test_create_table_as_select(self, make_index):
        """Should treat CREATE TABLE ... AS SELECT as a CTAS edge."""
        index = make_index({"ctas.sql": "CREATE TABLE order_copy AS SELECT * FROM orders;"})
        assert dependency_triples(TableLineageEngine(index)) == [("orders", "order_copy", "CTAS")]

    def test_reads_in_other_statements_do_not_feed_writes(self, make_index):
        """Should only connect reads and writes of the same statement."""
        index = make_index({
            "etl.sql": "SELECT * FROM audit_source;\nINSERT INTO audit_log VALUES (1);",
        })
        assert TableLineageEngine(index).get_dependencies() == []


# =============================================================================
# Traversal
# =============================================================================

class TestTraversal:
    """Test lineage traversal in both directions."""

    def test_forward_lineage(self, engine):
        """Should walk downstream up to the requested depth."""
        result = engine.get_forward_lineage("orders_staging", depth=3)
        assert set(result.nodes) == {"orders_staging", "orders", "order_summary"}
        assert len(result.edges) == 2

        shallow = engine.get_forward_lineage("orders_staging", depth=1)
        assert set(shallow.nodes) == {"orders_staging", "orders"}
        assert shallow.has_more_downstream["orders"]

    def test_backward_lineage(self, engine):
        """Should walk upstream and flag unexplored parents."""
        result = engine.get_backward_lineage("order_summary", depth=1)
        assert set(result.nodes) == {"order_summary", "orders", "customers"}
        assert result.has_more_upstream["orders"]
        assert not result.has_more_upstream["customers"]

    def test_full_lineage(self, engine):
        """Should merge upstream and downstream without duplicate edges."""
        result = engine.get_full_lineage("orders")
        assert set(result.nodes) == {"orders_staging", "orders", "order_summary"}
        pairs = [(e.source_id, e.target_id) for e in result.edges]
        assert len(pairs) == len(set(pairs)) == 2

    def test_cycles_terminate(self, make_index):
        """Should stop at visited tables when data flows in a loop."""
        index = make_index({
            "a.sql": "INSERT INTO a_tab SELECT * FROM b_tab;",
            "b.sql": "INSERT INTO b_tab SELECT * FROM a_tab;",
        })
        result = TableLineageEngine(index).get_forward_lineage("a_tab", depth=10)
        assert set(result.nodes) == {"a_tab", "b_tab"}
        assert len(result.edges) == 2

    def test_unknown_start(self, engine):
        """Should return an empty result for unknown ids."""
        result = engine.get_forward_lineage("nothing_here")
        assert result.nodes == {}
        assert result.edges == []

    def test_resolve_object_id(self, make_index):
        """Should resolve dotted ids and fall back to unqualified definitions."""
        index = make_index({
            "schema.sql": "CREATE TABLE orders (id INT);",
            "etl.sql": "INSERT INTO raw.feed_log SELECT * FROM orders;",
        })
        engine = TableLineageEngine(index)
        assert engine.resolve_object_id("sales.orders") == "orders"
        assert engine.resolve_object_id("feed_log", "raw") == "raw.feed_log"
        assert engine.resolve_object_id("missing_table") is None


# =============================================================================
# Impact Analysis
# =============================================================================

class TestImpact:
    """Test impact reports."""

    def test_direct_and_transitive(self, engine):
        """Should split impacts by depth and collect affected files."""
        report = engine.analyze_impact("orders_staging")

        assert report.target.id == "orders_staging"
        assert [t.id for t in report.direct_impacts] == ["orders"]
        assert [(t.id, t.depth) for t in report.transitive_impacts] == [("order_summary", 2)]
        assert report.summary == {
            "total_affected": 2,
            "tables_affected": 1,
            "views_affected": 1,
            "files_affected": 3,
        }
        assert report.affected_files == [
            "etl/load_orders.sql",
            "reports/top_customers.sql",
            "views/order_summary.sql",
        ]
        assert report.severity == Severity.LOW

    def test_drop_suggestions(self, engine):
        """Should suggest deprecation and notification for drops."""
        report = engine.analyze_impact("orders", change_type="drop")
        assert report.change_type == ChangeType.DROP
        assert report.suggestions == [
            "Consider marking table 'orders' as deprecated instead of dropping immediately",
            "Notify all affected teams about this change",
        ]

    def test_rename_suggestions(self, engine):
        """Should suggest updating references before a rename."""
        report = engine.analyze_impact("customers", change_type=ChangeType.RENAME)
        assert report.suggestions[0] == "Update all references to table 'customers' before renaming"

    def test_unknown_table(self, engine):
        """Should return None for tables the workspace never mentions."""
        assert engine.analyze_impact("nothing_here") is None

    @pytest.mark.parametrize("count,expected", [
        (0, Severity.LOW),
        (2, Severity.LOW),
        (3, Severity.MEDIUM),
        (10, Severity.HIGH),
        (19, Severity.HIGH),
        (20, Severity.CRITICAL),
    ])
    def test_severity_thresholds(self, count, expected):
        """Should grade severity by the number of affected tables."""
        assert impact_severity(count) == expected


# =============================================================================
# Search and Statistics
# =============================================================================

class TestSearch:
    """Test object search and statistics."""

    def test_search_by_name(self, engine):
        """Should match substrings case-insensitively in id order."""
        assert [o.id for o in engine.search("ORDER")] == ["order_summary", "orders", "orders_staging"]

    def test_search_filters(self, engine):
        """Should filter by object type and limit results."""
        assert [o.id for o in engine.search("order", type_filter="view")] == ["order_summary"]
        assert [o.id for o in engine.search("order", type_filter="external")] == ["orders_staging"]
        assert engine.search("order", type_filter="nonsense") == []
        assert len(engine.search("order", limit=1)) == 1

    def test_statistics(self, engine):
        """Should count objects by type and dependencies."""
        assert engine.get_statistics() == {
            "total_objects": 4,
            "total_dependencies": 3,
            "tables": 2,
            "views": 1,
            "external": 1,
        }
