#!/usr/bin/env python3
"""
Build the workspace dependency index for a directory of SQL files.

Scans the directory, writes the cache snapshot and optionally the
dependency graph as JSON, then prints a summary.

Usage:
    python build_index.py --root ./sql --dialect PostgreSQL --cache index.json --graph graph.json
"""
import argparse
import json
import logging
from pathlib import Path

from sqldeps.config import settings
from sqldeps.extraction.options import ExtractionOptions
from sqldeps.models.domain import SqlDialect
from sqldeps.models.graph import GraphMode
from sqldeps.services.cache_store import IndexCache
from sqldeps.services.index_manager import IndexManager
from sqldeps.services.scanner import WorkspaceScanner

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def print_progress(current: int, total: int, file_name: str) -> None:
    if current == total or current % 100 == 0:
        print(f"  [{current}/{total}] {file_name}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Build the SQL workspace dependency index")
    parser.add_argument("--root", default=settings.WORKSPACE_ROOT, help="Workspace directory to scan")
    parser.add_argument(
        "--dialect",
        default=settings.DIALECT,
        choices=[d.value for d in SqlDialect],
        help="SQL dialect of the workspace",
    )
    parser.add_argument("--cache", default=settings.CACHE_FILE_PATH, help="Where to write the index snapshot")
    parser.add_argument("--graph", help="Also write the dependency graph to this JSON file")
    parser.add_argument(
        "--mode",
        default=GraphMode.FILES.value,
        choices=[m.value for m in GraphMode],
        help="Graph mode for --graph",
    )
    parser.add_argument("--extensions", nargs="*", default=settings.ADDITIONAL_FILE_EXTENSIONS,
                        help="Extra file extensions to treat as SQL")
    parser.add_argument("--no-columns", action="store_true", help="Skip column usage extraction")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    root = Path(args.root)
    if not root.is_dir():
        print(f"Workspace directory not found: {root}")
        return 1

    options = ExtractionOptions(
        dialect=args.dialect,
        extract_columns=not args.no_columns,
        max_subquery_depth=settings.MAX_SUBQUERY_DEPTH,
        max_columns_per_query=settings.MAX_COLUMNS_PER_QUERY,
    )
    scanner = WorkspaceScanner(
        root,
        max_file_size=settings.MAX_FILE_SIZE,
        additional_extensions=args.extensions,
        exclude_dirs=settings.EXCLUDE_DIRS,
        options=options,
    )
    # Always write the snapshot, whatever the configured TTL
    cache = IndexCache(args.cache, ttl_hours=max(settings.CACHE_TTL_HOURS, 1))
    manager = IndexManager(scanner, cache=cache, prominent_table_min_files=settings.PROMINENT_TABLE_MIN_FILES)

    print("=" * 60)
    print(f"Indexing {root.resolve()} ({options.dialect.value})")
    print("=" * 60)
    manager.build_index(progress_callback=print_progress)

    graph = manager.build_graph(GraphMode(args.mode))
    if args.graph:
        with open(args.graph, "w") as f:
            json.dump(graph.model_dump(mode="json", by_alias=True), f, indent=2)

    stats = graph.stats
    errors = sum(1 for f in manager.get_index().files.values() if f.parse_error)
    print(f"Files:      {stats.total_files} ({errors} with errors)")
    print(f"Tables:     {stats.total_tables}")
    print(f"Views:      {stats.total_views}")
    print(f"References: {stats.total_references}")
    print(f"Missing:    {len(stats.missing_definitions)}")
    print(f"Orphaned:   {len(stats.orphaned_definitions)}")
    print(f"Cycles:     {len(stats.cycles)}")
    for label in stats.circular_dependencies:
        print(f"  {label}")
    print(f"Saved index to: {args.cache}")
    if args.graph:
        print(f"Saved {args.mode} graph to: {args.graph}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
