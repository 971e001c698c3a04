"""
Operations over a WorkspaceIndex.

The index keeps `definition_map` / `reference_map` consistent with `files`:
every entry in either map is owned by exactly one analyzed file, and a key
never maps to an empty list.
"""
import logging
import time
from typing import Dict, List, Optional, Set

from sqldeps.extraction.identifiers import KeyResolver, parse_qualified_key, qualified_key
from sqldeps.models.domain import FileAnalysis, SchemaDefinition, TableReference, WorkspaceIndex

logger = logging.getLogger(__name__)


def definition_key(definition: SchemaDefinition) -> str:
    return qualified_key(definition.name, definition.schema_name)


def reference_key(reference: TableReference) -> str:
    return qualified_key(reference.table_name, reference.schema_name)


def add_file(index: WorkspaceIndex, analysis: FileAnalysis) -> None:
    """Add (or replace) one file's contributions."""
    if analysis.file_path in index.files:
        remove_file(index, analysis.file_path)

    index.files[analysis.file_path] = analysis
    index.file_hashes[analysis.file_path] = analysis.content_hash
    for definition in analysis.definitions:
        index.definition_map.setdefault(definition_key(definition), []).append(definition)
    for reference in analysis.references:
        index.reference_map.setdefault(reference_key(reference), []).append(reference)

    index.file_count = len(index.files)
    index.last_updated = time.time()


def remove_file(index: WorkspaceIndex, file_path: str) -> bool:
    """
    Purge one file's contributions.

    Entries are matched by owning file path, so another file's entries under
    the same key survive. Keys left empty are deleted.

    Returns:
        False when the file was not indexed
    """
    analysis = index.files.pop(file_path, None)
    index.file_hashes.pop(file_path, None)
    if analysis is None:
        return False

    _purge(index.definition_map, {definition_key(d) for d in analysis.definitions}, file_path)
    _purge(index.reference_map, {reference_key(r) for r in analysis.references}, file_path)

    index.file_count = len(index.files)
    index.last_updated = time.time()
    return True


def _purge(mapping: Dict[str, list], keys: Set[str], file_path: str) -> None:
    for key in keys:
        remaining = [entry for entry in mapping.get(key, []) if entry.file_path != file_path]
        if remaining:
            mapping[key] = remaining
        else:
            mapping.pop(key, None)


def build_workspace_index(analyses: List[FileAnalysis]) -> WorkspaceIndex:
    index = WorkspaceIndex()
    for analysis in analyses:
        add_file(index, analysis)
    index.last_updated = time.time()
    return index


# ----------------------------------------------------------------------
# Lookups
# ----------------------------------------------------------------------

def find_definition(index: WorkspaceIndex, name: str, schema: Optional[str] = None) -> Optional[SchemaDefinition]:
    """First registered definition under the resolved key."""
    key = KeyResolver(index.definition_map).resolve(name, schema)
    return index.definition_map[key][0] if key else None


def find_definitions(index: WorkspaceIndex, name: str, schema: Optional[str] = None) -> List[SchemaDefinition]:
    """Every definition a lookup could mean, best match first."""
    definitions = []
    for key in KeyResolver(index.definition_map).candidates(name, schema):
        definitions.extend(index.definition_map[key])
    return definitions


def find_references(index: WorkspaceIndex, name: str, schema: Optional[str] = None) -> List[TableReference]:
    key = KeyResolver(index.reference_map).resolve(name, schema)
    return list(index.reference_map[key]) if key else []


def get_dependent_files(index: WorkspaceIndex, name: str, schema: Optional[str] = None) -> List[str]:
    """Files that reference a table, sorted."""
    return sorted({reference.file_path for reference in find_references(index, name, schema)})


def get_missing_definitions(index: WorkspaceIndex) -> List[str]:
    """Referenced keys with no definition under the qualified key or the bare name."""
    resolver = KeyResolver(index.definition_map)
    missing = []
    for key in index.reference_map:
        schema, name = parse_qualified_key(key)
        if resolver.resolve(name, schema) is None:
            missing.append(key)
    return sorted(missing)


def get_orphaned_definitions(index: WorkspaceIndex) -> List[str]:
    """Defined keys that no reference resolves to, by qualified key or bare name."""
    referenced_bare = {parse_qualified_key(key)[1] for key in index.reference_map}
    orphaned = []
    for key in index.definition_map:
        schema, name = parse_qualified_key(key)
        if key in index.reference_map:
            continue
        if schema is None and name in referenced_bare:
            continue
        if schema is not None and name in index.reference_map:
            continue
        orphaned.append(key)
    return sorted(orphaned)


def get_external_references(index: WorkspaceIndex, file_path: str) -> List[TableReference]:
    """A file's references to tables it does not define itself."""
    analysis = index.files.get(file_path)
    if analysis is None:
        return []
    own = {definition_key(d) for d in analysis.definitions}
    return [r for r in analysis.references if reference_key(r) not in own]


def get_defined_tables(index: WorkspaceIndex) -> List[str]:
    return sorted(index.definition_map)


def get_referenced_tables(index: WorkspaceIndex) -> List[str]:
    return sorted(index.reference_map)
