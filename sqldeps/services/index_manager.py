"""
Index manager: owns the workspace index and serializes every mutation.

Singleton access through get_index_manager(), mirroring the cache loader
used by the HTTP layer.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple

from sqldeps.config import settings
from sqldeps.models.domain import FileAnalysis, SchemaDefinition, TableReference, WorkspaceIndex
from sqldeps.models.graph import DependencyGraph, GraphMode

from . import workspace_index
from .cache_store import IndexCache
from .dependency_graph import build_dependency_graph
from .lineage_engine import TableLineageEngine
from .scanner import ProgressCallback, ScanCancelled, WorkspaceScanner

logger = logging.getLogger(__name__)

IndexListener = Callable[[Optional[WorkspaceIndex]], None]

_UPDATE = "update"
_REMOVE = "remove"


class IndexManager:
    """
    Keeps one WorkspaceIndex consistent with the files on disk.

    All mutating calls hold one re-entrant lock. File-change events can be
    queued with queue_update/queue_removal and applied together by
    flush_updates(), which notifies listeners once.
    """

    def __init__(
        self,
        scanner: WorkspaceScanner,
        cache: Optional[IndexCache] = None,
        prominent_table_min_files: int = 3,
    ):
        self.scanner = scanner
        self.cache = cache
        self.prominent_table_min_files = prominent_table_min_files
        self._index: Optional[WorkspaceIndex] = None
        self._engine: Optional[TableLineageEngine] = None
        self._lock = threading.RLock()
        self._listeners: List[IndexListener] = []
        self._pending: "OrderedDict[str, str]" = OrderedDict()

    @classmethod
    def from_settings(cls, app_settings=None) -> "IndexManager":
        app_settings = app_settings or settings
        return cls(
            WorkspaceScanner.from_settings(app_settings),
            cache=IndexCache.from_settings(app_settings),
            prominent_table_min_files=app_settings.PROMINENT_TABLE_MIN_FILES,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, auto_index_threshold: int = 50) -> Tuple[bool, int]:
        """
        Load the cached index; build automatically for small workspaces.

        Returns:
            (auto_indexed, file_count)
        """
        with self._lock:
            cached = self.cache.load() if self.cache else None
            if cached is not None:
                self._set_index(cached)
                return False, cached.file_count

            file_count = self.scanner.get_file_count()
            if 0 < file_count < auto_index_threshold:
                logger.info(f"No usable cache; auto-indexing {file_count} files")
                self.build_index()
                return True, file_count

            logger.info(f"No usable cache; {file_count} SQL files found, waiting for an explicit build")
            return False, file_count

    def build_index(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[WorkspaceIndex]:
        """
        Re-analyze every file and replace the index wholesale.

        Args:
            progress_callback: Called with (current, total, file name)
            cancellation: Checked between files

        Returns:
            The new index, or None if cancelled (the previous index is kept)
        """
        with self._lock:
            started = time.time()
            try:
                analyses = self.scanner.analyze_workspace(
                    progress_callback,
                    cancellation.is_set if cancellation is not None else None,
                )
            except ScanCancelled as e:
                logger.info(f"{e}; keeping the previous index")
                return None

            index = workspace_index.build_workspace_index(analyses)
            self._set_index(index)
            self._save()
            logger.info(
                f"Index built in {time.time() - started:.2f}s: {index.file_count} files, "
                f"{len(index.definition_map)} tables, "
                f"{sum(len(refs) for refs in index.reference_map.values())} references"
            )
            return index

    def update_file(self, file_path: str) -> bool:
        """
        Re-analyze one file.

        Returns:
            False when the content hash is unchanged (nothing is touched)
        """
        with self._lock:
            if self._index is None:
                self.build_index()
                return True
            changed = self._apply_update(file_path)
            if changed:
                self._after_mutation()
            return changed

    def remove_file(self, file_path: str) -> bool:
        with self._lock:
            if self._index is None:
                return False
            removed = workspace_index.remove_file(self._index, self.scanner.relative_path(file_path))
            if removed:
                self._after_mutation()
            return removed

    def queue_update(self, file_path: str) -> None:
        with self._lock:
            relative = self.scanner.relative_path(file_path)
            self._pending.pop(relative, None)
            self._pending[relative] = _UPDATE

    def queue_removal(self, file_path: str) -> None:
        with self._lock:
            relative = self.scanner.relative_path(file_path)
            self._pending.pop(relative, None)
            self._pending[relative] = _REMOVE

    def pending_count(self) -> int:
        return len(self._pending)

    def flush_updates(self) -> int:
        """
        Apply queued changes in one serialized pass.

        Returns:
            Number of files whose index entries changed
        """
        with self._lock:
            pending, self._pending = self._pending, OrderedDict()
            if not pending:
                return 0
            if self._index is None:
                self.build_index()
                return len(pending)

            changed = 0
            for file_path, action in pending.items():
                if action == _REMOVE:
                    changed += workspace_index.remove_file(self._index, file_path)
                else:
                    changed += self._apply_update(file_path)
            if changed:
                self._after_mutation()
            logger.debug(f"Flushed {len(pending)} queued changes, {changed} applied")
            return changed

    def _apply_update(self, file_path: str) -> bool:
        relative = self.scanner.relative_path(file_path)
        if not self.scanner.absolute_path(relative).exists():
            return workspace_index.remove_file(self._index, relative)

        analysis = self.scanner.analyze_file(relative)
        existing = self._index.files.get(relative)
        if existing is not None and analysis.content_hash and existing.content_hash == analysis.content_hash:
            return False
        workspace_index.add_file(self._index, analysis)
        return True

    def _after_mutation(self) -> None:
        self._engine = None
        self._save()
        self._notify()

    def _set_index(self, index: Optional[WorkspaceIndex]) -> None:
        self._index = index
        self._engine = None
        self._notify()

    def _save(self) -> None:
        if self.cache is not None and self._index is not None:
            self.cache.save(self._index)

    # ------------------------------------------------------------------
    # Listeners and settings
    # ------------------------------------------------------------------

    def add_listener(self, listener: IndexListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: IndexListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._index)
            except Exception as e:
                logger.warning(f"Index listener {listener!r} failed: {e}")

    def set_dialect(self, dialect) -> bool:
        """Switch dialect; a real change drops the cache and the index."""
        with self._lock:
            if not self.scanner.set_dialect(dialect):
                return False
            logger.info(f"Dialect changed to {self.scanner.dialect.value}; index cleared")
            self.clear_cache()
            self._set_index(None)
            return True

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def is_index_stale(self) -> bool:
        """True when files were added, removed or modified since indexing."""
        with self._lock:
            if self._index is None:
                return True
            files = self.scanner.find_sql_files()
            if set(files) != set(self._index.files):
                return True
            for file_path in files:
                try:
                    modified = self.scanner.absolute_path(file_path).stat().st_mtime
                except OSError:
                    return True
                if modified > self._index.files[file_path].last_modified:
                    return True
            return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_index(self) -> Optional[WorkspaceIndex]:
        return self._index

    def has_index(self) -> bool:
        return self._index is not None

    def get_file(self, file_path: str) -> Optional[FileAnalysis]:
        if self._index is None:
            return None
        return self._index.files.get(self.scanner.relative_path(file_path)) or self._index.files.get(file_path)

    def find_definition(self, name: str, schema: Optional[str] = None) -> Optional[SchemaDefinition]:
        if self._index is None:
            return None
        return workspace_index.find_definition(self._index, name, schema)

    def find_definitions(self, name: str, schema: Optional[str] = None) -> List[SchemaDefinition]:
        if self._index is None:
            return []
        return workspace_index.find_definitions(self._index, name, schema)

    def find_references(self, name: str, schema: Optional[str] = None) -> List[TableReference]:
        if self._index is None:
            return []
        return workspace_index.find_references(self._index, name, schema)

    def get_dependent_files(self, name: str, schema: Optional[str] = None) -> List[str]:
        if self._index is None:
            return []
        return workspace_index.get_dependent_files(self._index, name, schema)

    def get_missing_definitions(self) -> List[str]:
        if self._index is None:
            return []
        return workspace_index.get_missing_definitions(self._index)

    def get_orphaned_definitions(self) -> List[str]:
        if self._index is None:
            return []
        return workspace_index.get_orphaned_definitions(self._index)

    def get_external_references(self, file_path: str) -> List[TableReference]:
        if self._index is None:
            return []
        return workspace_index.get_external_references(self._index, file_path)

    def get_defined_tables(self) -> List[str]:
        if self._index is None:
            return []
        return workspace_index.get_defined_tables(self._index)

    def get_referenced_tables(self) -> List[str]:
        if self._index is None:
            return []
        return workspace_index.get_referenced_tables(self._index)

    def build_graph(self, mode: GraphMode = GraphMode.FILES) -> DependencyGraph:
        index = self._index or WorkspaceIndex()
        return build_dependency_graph(index, mode, self.prominent_table_min_files)

    @property
    def lineage(self) -> TableLineageEngine:
        """Lineage engine for the current index, rebuilt after each change."""
        with self._lock:
            if self._engine is None:
                self._engine = TableLineageEngine(self._index or WorkspaceIndex())
            return self._engine


# Global instance
_index_manager: Optional[IndexManager] = None


def get_index_manager() -> IndexManager:
    """Get the singleton index manager; also the FastAPI dependency."""
    global _index_manager
    if _index_manager is None:
        _index_manager = IndexManager.from_settings()
    return _index_manager
