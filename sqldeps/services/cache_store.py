"""
JSON cache for the workspace index, with version and TTL validation.

A cache that is missing, unreadable, of another version or older than the
TTL is never partially trusted: load() returns None and the caller rebuilds.
"""
import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from sqldeps.models.domain import INDEX_VERSION, SerializedWorkspaceIndex, WorkspaceIndex

logger = logging.getLogger(__name__)


def to_snapshot(index: WorkspaceIndex) -> SerializedWorkspaceIndex:
    """Flatten the index maps into key/value arrays."""
    return SerializedWorkspaceIndex(
        version=index.version,
        last_updated=index.last_updated,
        file_count=index.file_count,
        files_array=list(index.files.items()),
        file_hashes_array=list(index.file_hashes.items()),
        definition_array=list(index.definition_map.items()),
        reference_array=list(index.reference_map.items()),
    )


def from_snapshot(snapshot: SerializedWorkspaceIndex) -> WorkspaceIndex:
    return WorkspaceIndex(
        version=snapshot.version,
        last_updated=snapshot.last_updated,
        file_count=snapshot.file_count,
        files=dict(snapshot.files_array),
        file_hashes=dict(snapshot.file_hashes_array),
        definition_map=dict(snapshot.definition_array),
        reference_map=dict(snapshot.reference_array),
    )


def _wrap_legacy_definitions(cache_data: dict) -> None:
    """Older caches stored one definition object per key instead of a list."""
    entries = cache_data.get("definition_array")
    if not isinstance(entries, list):
        return
    wrapped = []
    for entry in entries:
        if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[1], dict):
            entry = [entry[0], [entry[1]]]
        wrapped.append(entry)
    cache_data["definition_array"] = wrapped


class IndexCache:
    """
    Loads and saves the serialized index.

    A TTL of 0 disables caching entirely: nothing is loaded or written.
    """

    def __init__(self, cache_path, ttl_hours: float = 24, clear_on_startup: bool = False):
        self.cache_path = Path(cache_path)
        self.ttl_hours = ttl_hours
        if clear_on_startup:
            self.clear()

    @classmethod
    def from_settings(cls, settings) -> "IndexCache":
        return cls(
            settings.CACHE_FILE_PATH,
            ttl_hours=settings.CACHE_TTL_HOURS,
            clear_on_startup=settings.CLEAR_CACHE_ON_STARTUP,
        )

    @property
    def enabled(self) -> bool:
        return self.ttl_hours > 0

    def load(self) -> Optional[WorkspaceIndex]:
        """Load the cached index, or None if there is no usable cache."""
        if not self.enabled:
            return None
        if not self.cache_path.exists():
            logger.info(f"No index cache at {self.cache_path}")
            return None

        try:
            with open(self.cache_path, "r") as f:
                cache_data = json.load(f)
        except (OSError, ValueError) as e:
            logger.info(f"Discarding unreadable index cache {self.cache_path}: {e}")
            return None

        if not isinstance(cache_data, dict):
            logger.info("Discarding index cache: unexpected structure")
            return None

        version = cache_data.get("version")
        if version != INDEX_VERSION:
            logger.info(f"Discarding index cache: version {version} != {INDEX_VERSION}")
            return None

        _wrap_legacy_definitions(cache_data)
        try:
            snapshot = SerializedWorkspaceIndex.model_validate(cache_data)
        except ValidationError as e:
            logger.info(f"Discarding invalid index cache: {e.error_count()} validation errors")
            return None

        age_hours = (time.time() - snapshot.last_updated) / 3600
        if age_hours > self.ttl_hours:
            logger.info(f"Discarding index cache: {age_hours:.1f}h old, TTL {self.ttl_hours}h")
            return None

        index = from_snapshot(snapshot)
        logger.info(f"Index cache loaded: {index.file_count} files")
        return index

    def save(self, index: WorkspaceIndex) -> bool:
        if not self.enabled:
            return False
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            payload = to_snapshot(index).model_dump(mode="json", by_alias=True)
            with open(self.cache_path, "w") as f:
                json.dump(payload, f)
        except OSError as e:
            logger.warning(f"Failed to write index cache {self.cache_path}: {e}")
            return False
        logger.info(f"Index cache saved: {index.file_count} files -> {self.cache_path}")
        return True

    def clear(self) -> None:
        if self.cache_path.exists():
            self.cache_path.unlink(missing_ok=True)
            logger.info(f"Index cache cleared: {self.cache_path}")
