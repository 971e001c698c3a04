"""
Workspace scanner: finds SQL files under a root and analyzes them.

This is the only place that touches the filesystem during indexing.
File paths recorded in analyses are POSIX paths relative to the root.
"""
import hashlib
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from sqldeps.extraction.options import ExtractionOptions
from sqldeps.extraction.parser import parse_sql_file
from sqldeps.extraction.reference_extractor import ReferenceExtractor
from sqldeps.extraction.schema_extractor import SchemaExtractor
from sqldeps.models.domain import FileAnalysis, coerce_dialect

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_DIRS = ["node_modules", ".git", "dist", "build"]

ProgressCallback = Callable[[int, int, str], None]


class ScanCancelled(Exception):
    """Raised when a workspace scan is cancelled between files."""


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _normalize_extension(extension: str) -> str:
    return extension.strip().lstrip(".").lower()


class WorkspaceScanner:
    """
    Discovers and analyzes the SQL files of one workspace.

    Read failures and oversized files become a FileAnalysis with a
    parse_error; they never stop a scan.
    """

    def __init__(
        self,
        root,
        dialect=None,
        max_file_size: int = 10 * 1024 * 1024,
        additional_extensions: Optional[Iterable[str]] = None,
        exclude_dirs: Optional[Iterable[str]] = None,
        options: Optional[ExtractionOptions] = None,
    ):
        self.root = Path(root).resolve()
        self.options = options or ExtractionOptions()
        if dialect is not None:
            self.options.dialect = coerce_dialect(dialect)
        self.max_file_size = max_file_size
        self.extensions = {"sql"} | {_normalize_extension(e) for e in (additional_extensions or []) if e.strip()}
        self.exclude_dirs = set(DEFAULT_EXCLUDE_DIRS if exclude_dirs is None else exclude_dirs)
        self.schema_extractor = SchemaExtractor(self.options)
        self.reference_extractor = ReferenceExtractor(self.options)

    @classmethod
    def from_settings(cls, settings, root=None) -> "WorkspaceScanner":
        return cls(
            root or settings.WORKSPACE_ROOT,
            max_file_size=settings.MAX_FILE_SIZE,
            additional_extensions=settings.ADDITIONAL_FILE_EXTENSIONS,
            exclude_dirs=settings.EXCLUDE_DIRS,
            options=ExtractionOptions.from_settings(settings),
        )

    @property
    def dialect(self):
        return self.options.dialect

    def set_dialect(self, dialect) -> bool:
        """Switch dialect; returns True when it actually changed."""
        new_dialect = coerce_dialect(dialect)
        if new_dialect == self.options.dialect:
            return False
        self.options.dialect = new_dialect
        return True

    def relative_path(self, path) -> str:
        path = Path(path)
        if not path.is_absolute():
            path = self.root / path
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def absolute_path(self, file_path: str) -> Path:
        path = Path(file_path)
        return path if path.is_absolute() else self.root / path

    def find_sql_files(self) -> List[str]:
        """Relative paths of every SQL file under the root, sorted."""
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.exclude_dirs)
            for filename in filenames:
                if _normalize_extension(Path(filename).suffix) in self.extensions:
                    found.append(self.relative_path(Path(dirpath) / filename))
        return sorted(found)

    def get_file_count(self) -> int:
        return len(self.find_sql_files())

    def analyze_file(self, file_path: str) -> FileAnalysis:
        """Stat, size-gate, read and analyze one file."""
        relative = self.relative_path(file_path)
        path = self.absolute_path(relative)
        try:
            stat = path.stat()
        except OSError as e:
            logger.warning(f"Cannot stat {relative}: {e}")
            return self._failed(relative, 0.0, f"Failed to read file: {e}")

        if stat.st_size > self.max_file_size:
            size_mb = stat.st_size / (1024 * 1024)
            limit_mb = self.max_file_size / (1024 * 1024)
            logger.warning(f"Skipping {relative}: {size_mb:.1f} MB exceeds {limit_mb:.1f} MB")
            return self._failed(relative, stat.st_mtime, f"File too large ({size_mb:.1f} MB, limit {limit_mb:.1f} MB)")

        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"Cannot read {relative}: {e}")
            return self._failed(relative, stat.st_mtime, f"Failed to read file: {e}")

        return self.analyze_content(relative, content, stat.st_mtime)

    def analyze_content(self, file_path: str, content: str, last_modified: float = 0.0) -> FileAnalysis:
        """Analyze already-read content; both extractors share one parse."""
        parsed = parse_sql_file(content, self.options.dialect)
        warnings = []
        if parsed.failed:
            logger.warning(f"Parser fallback for {file_path} ({self.options.dialect.value}): {parsed.error}")
            warnings.append(f"Parse failed, used text fallback: {parsed.error}")
        warnings.extend(
            f"Statement {s.index + 1} skipped: {s.error}" for s in parsed.statements if s.error
        )

        return FileAnalysis(
            file_path=file_path,
            file_name=Path(file_path).name,
            last_modified=last_modified,
            content_hash=content_hash(content),
            definitions=self.schema_extractor.extract_definitions(content, file_path, parsed=parsed),
            references=self.reference_extractor.extract_references(content, file_path, parsed=parsed),
            parse_warnings=warnings,
        )

    def analyze_workspace(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> List[FileAnalysis]:
        """
        Analyze every SQL file.

        Raises:
            ScanCancelled: if is_cancelled() turns true between two files
        """
        files = self.find_sql_files()
        analyses = []
        for position, file_path in enumerate(files, start=1):
            if is_cancelled is not None and is_cancelled():
                raise ScanCancelled(f"Scan cancelled after {position - 1} of {len(files)} files")
            if progress_callback is not None:
                progress_callback(position, len(files), Path(file_path).name)
            analyses.append(self.analyze_file(file_path))
        return analyses

    def _failed(self, file_path: str, last_modified: float, message: str) -> FileAnalysis:
        return FileAnalysis(
            file_path=file_path,
            file_name=Path(file_path).name,
            last_modified=last_modified,
            content_hash="",
            parse_error=message,
        )
