"""Shared pytest fixtures for all tests."""
from pathlib import Path

import pytest

from sqldeps.extraction.options import ExtractionOptions
from sqldeps.extraction.reference_extractor import ReferenceExtractor
from sqldeps.extraction.schema_extractor import SchemaExtractor
from sqldeps.services.cache_store import IndexCache
from sqldeps.services.index_manager import IndexManager
from sqldeps.services.scanner import WorkspaceScanner
from sqldeps.services.workspace_index import build_workspace_index


@pytest.fixture
def schema_extractor():
    return SchemaExtractor(ExtractionOptions(dialect="MySQL"))


@pytest.fixture
def reference_extractor():
    return ReferenceExtractor(ExtractionOptions(dialect="MySQL"))


@pytest.fixture
def fail_parser(monkeypatch):
    """Make every sqlglot parse fail so the regex fallbacks run."""
    def _raise(*args, **kwargs):
        raise ValueError("Invalid expression / Unexpected token")

    monkeypatch.setattr("sqldeps.extraction.parser.sqlglot.parse", _raise)


@pytest.fixture
def write_files(tmp_path):
    """Write {relative path: content} under tmp_path/workspace and return the root."""
    root = tmp_path / "workspace"
    root.mkdir()

    def _write(files, base: Path = root) -> Path:
        for relative, content in files.items():
            path = base / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return base

    return _write


@pytest.fixture
def make_index():
    """Build a WorkspaceIndex from {path: sql} without touching the filesystem."""
    def _make(files, dialect="MySQL"):
        scanner = WorkspaceScanner(".", dialect=dialect)
        analyses = [scanner.analyze_content(path, sql) for path, sql in files.items()]
        return build_workspace_index(analyses)

    return _make


@pytest.fixture
def make_manager(tmp_path):
    """IndexManager over a workspace root with a cache file under tmp_path."""
    def _make(root, ttl_hours=24, **scanner_kwargs):
        scanner = WorkspaceScanner(root, **scanner_kwargs)
        cache = IndexCache(tmp_path / "cache" / "index.json", ttl_hours=ttl_hours)
        return IndexManager(scanner, cache=cache)

    return _make


@pytest.fixture
def sample_workspace():
    """A small warehouse: base tables, an ETL file, a view and a report."""
    return {
        "schema/orders.sql": (
            "CREATE TABLE orders (\n"
            "    id INT PRIMARY KEY,\n"
            "    customer_id INT NOT NULL,\n"
            "    total DECIMAL(10, 2)\n"
            ");\n"
        ),
        "schema/customers.sql": (
            "CREATE TABLE customers (\n"
            "    id INT PRIMARY KEY,\n"
            "    name VARCHAR(100)\n"
            ");\n"
        ),
        "etl/load_orders.sql": (
            "INSERT INTO orders (id, customer_id, total)\n"
            "SELECT id, customer_id, total FROM orders_staging;\n"
        ),
        "views/order_summary.sql": (
            "CREATE VIEW order_summary AS\n"
            "SELECT c.name, SUM(o.total) AS revenue\n"
            "FROM orders o\n"
            "JOIN customers c ON c.id = o.customer_id\n"
            "GROUP BY c.name;\n"
        ),
        "reports/top_customers.sql": (
            "SELECT name, revenue\n"
            "FROM order_summary\n"
            "ORDER BY revenue DESC;\n"
        ),
    }
