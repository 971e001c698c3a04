"""
Dependency graph construction over a WorkspaceIndex.

Three modes share one index:
- files:  one node per file, file -> file edges through table definitions
- tables: one node per defined or external table, view -> source edges
- hybrid: file nodes plus nodes for tables referenced from many files
"""
import logging
from typing import Dict, List, Optional, Set, Tuple

from sqldeps.extraction.identifiers import KeyResolver, display_name, parse_qualified_key
from sqldeps.models.domain import DefinitionKind, ReferenceType, TableReference, WorkspaceIndex
from sqldeps.models.graph import (
    DependencyCycle,
    DependencyGraph,
    GraphMode,
    NodeType,
    WorkspaceEdge,
    WorkspaceNode,
    WorkspaceStats,
)

from .workspace_index import get_missing_definitions, get_orphaned_definitions, reference_key

logger = logging.getLogger(__name__)

# Writes surface before reads
REFERENCE_PRIORITY = [
    ReferenceType.INSERT,
    ReferenceType.UPDATE,
    ReferenceType.DELETE,
    ReferenceType.MERGE,
    ReferenceType.JOIN,
    ReferenceType.SELECT,
    ReferenceType.SUBQUERY,
    ReferenceType.CTE,
]

FILE_NODE_WIDTH = 200
FILE_NODE_BASE_HEIGHT = 80
TABLE_NODE_WIDTH = 160
TABLE_NODE_HEIGHT = 60


def _priority(reference_type: ReferenceType) -> int:
    return REFERENCE_PRIORITY.index(reference_type)


class _EdgeAccumulator:
    """Aggregates parallel references between one source/target pair."""

    def __init__(self):
        self._edges: Dict[Tuple[str, str], List[TableReference]] = {}

    def add(self, source: str, target: str, reference: TableReference) -> None:
        self._edges.setdefault((source, target), []).append(reference)

    def pairs(self) -> List[Tuple[str, str]]:
        return sorted(self._edges)

    def build(self) -> List[WorkspaceEdge]:
        edges = []
        for (source, target), references in sorted(self._edges.items()):
            types = sorted({r.reference_type for r in references}, key=_priority)
            edges.append(WorkspaceEdge(
                id=f"{source}->{target}",
                source=source,
                target=target,
                reference_type=types[0],
                count=len(references),
                tables=sorted({display_name(r.table_name, r.schema_name) for r in references}),
                reference_types=types,
            ))
        return edges


def file_adjacency(index: WorkspaceIndex) -> Dict[str, Set[str]]:
    """A -> {B, ...} when a reference in file A resolves to a definition in file B (A != B)."""
    adjacency: Dict[str, Set[str]] = {path: set() for path in index.files}
    for source, target, _ in _file_links(index):
        adjacency[source].add(target)
    return adjacency


def _file_links(index: WorkspaceIndex):
    resolver = KeyResolver(index.definition_map)
    for path in sorted(index.files):
        for reference in index.files[path].references:
            key = resolver.resolve(reference.table_name, reference.schema_name)
            if key is None:
                continue
            for target in sorted({d.file_path for d in index.definition_map[key]}):
                if target != path:
                    yield path, target, reference


def _file_node(index: WorkspaceIndex, path: str) -> WorkspaceNode:
    analysis = index.files[path]
    return WorkspaceNode(
        id=path,
        type=NodeType.FILE,
        label=analysis.file_name,
        file_path=path,
        definitions=list(analysis.definitions),
        references=list(analysis.references),
        definition_count=len(analysis.definitions),
        reference_count=len(analysis.references),
        width=FILE_NODE_WIDTH,
        height=FILE_NODE_BASE_HEIGHT + min(len(analysis.definitions) * 15, 60),
    )


def _referencing_files(index: WorkspaceIndex) -> Dict[str, Set[str]]:
    """Resolved table key -> distinct files referencing it."""
    resolver = KeyResolver(index.definition_map)
    files: Dict[str, Set[str]] = {}
    for key, references in index.reference_map.items():
        schema, name = parse_qualified_key(key)
        resolved = resolver.resolve(name, schema) or key
        files.setdefault(resolved, set()).update(r.file_path for r in references)
    return files


def _table_node(index: WorkspaceIndex, key: str, referencing: int, node_id: Optional[str] = None) -> WorkspaceNode:
    definitions = index.definition_map.get(key)
    if definitions:
        first = definitions[0]
        node_type = NodeType.VIEW if first.kind == DefinitionKind.VIEW else NodeType.TABLE
        label = display_name(first.name, first.schema_name)
        file_path = first.file_path
    else:
        node_type = NodeType.EXTERNAL
        references = index.reference_map.get(key, [])
        label = display_name(references[0].table_name, references[0].schema_name) if references else key
        file_path = None
    return WorkspaceNode(
        id=node_id or key,
        type=node_type,
        label=label,
        file_path=file_path,
        definitions=list(definitions) if definitions else None,
        definition_count=len(definitions or []),
        reference_count=len(index.reference_map.get(key, [])),
        referencing_files=referencing,
        width=TABLE_NODE_WIDTH,
        height=TABLE_NODE_HEIGHT,
    )


# ----------------------------------------------------------------------
# Modes
# ----------------------------------------------------------------------

def build_dependency_graph(
    index: WorkspaceIndex,
    mode: GraphMode = GraphMode.FILES,
    prominent_min_files: int = 3,
) -> DependencyGraph:
    mode = GraphMode(mode)
    if mode == GraphMode.TABLES:
        nodes, edges = _build_tables_graph(index)
    elif mode == GraphMode.HYBRID:
        nodes, edges = _build_hybrid_graph(index, prominent_min_files)
    else:
        nodes, edges = _build_files_graph(index)

    logger.debug(f"Built {mode.value} graph: {len(nodes)} nodes, {len(edges)} edges")
    return DependencyGraph(mode=mode, nodes=nodes, edges=edges, stats=compute_stats(index))


def _build_files_graph(index: WorkspaceIndex) -> Tuple[List[WorkspaceNode], List[WorkspaceEdge]]:
    nodes = [_file_node(index, path) for path in sorted(index.files)]
    edges = _EdgeAccumulator()
    for source, target, reference in _file_links(index):
        edges.add(source, target, reference)
    return nodes, edges.build()


def _build_tables_graph(index: WorkspaceIndex) -> Tuple[List[WorkspaceNode], List[WorkspaceEdge]]:
    referencing = _referencing_files(index)
    keys = sorted(index.definition_map) + get_missing_definitions(index)
    nodes = [_table_node(index, key, len(referencing.get(key, ()))) for key in keys]

    # Only views are walked: each view points at what its own statement reads
    resolver = KeyResolver(index.definition_map)
    edges = _EdgeAccumulator()
    for key in sorted(index.definition_map):
        for definition in index.definition_map[key]:
            if definition.kind != DefinitionKind.VIEW:
                continue
            analysis = index.files.get(definition.file_path)
            if analysis is None:
                continue
            for reference in analysis.references:
                if reference.statement_index != definition.statement_index:
                    continue
                if reference.reference_type not in (ReferenceType.SELECT, ReferenceType.JOIN):
                    continue
                target = resolver.resolve(reference.table_name, reference.schema_name) or reference_key(reference)
                if target != key:
                    edges.add(key, target, reference)
    return nodes, edges.build()


def _build_hybrid_graph(index: WorkspaceIndex, prominent_min_files: int) -> Tuple[List[WorkspaceNode], List[WorkspaceEdge]]:
    nodes, file_edges = _build_files_graph(index)

    referencing = _referencing_files(index)
    prominent = sorted(key for key, files in referencing.items() if len(files) >= prominent_min_files)
    resolver = KeyResolver(index.definition_map)
    table_edges = _EdgeAccumulator()
    for key in prominent:
        nodes.append(_table_node(index, key, len(referencing[key]), node_id=f"table:{key}"))
    prominent_set = set(prominent)
    for path in sorted(index.files):
        for reference in index.files[path].references:
            key = resolver.resolve(reference.table_name, reference.schema_name) or reference_key(reference)
            if key in prominent_set:
                table_edges.add(path, f"table:{key}", reference)

    return nodes, file_edges + table_edges.build()


# ----------------------------------------------------------------------
# Stats and cycles
# ----------------------------------------------------------------------

def compute_stats(index: WorkspaceIndex) -> WorkspaceStats:
    tables = views = 0
    for definitions in index.definition_map.values():
        if definitions[0].kind == DefinitionKind.VIEW:
            views += 1
        else:
            tables += 1
    cycles = detect_cycles(index)
    return WorkspaceStats(
        total_files=len(index.files),
        total_tables=tables,
        total_views=views,
        total_references=sum(len(refs) for refs in index.reference_map.values()),
        orphaned_definitions=get_orphaned_definitions(index),
        missing_definitions=get_missing_definitions(index),
        circular_dependencies=[cycle.label for cycle in cycles],
        cycles=cycles,
    )


def detect_cycles(index: WorkspaceIndex) -> List[DependencyCycle]:
    """One entry per group of files that can all reach each other."""
    adjacency = file_adjacency(index)
    cycles = []
    for component in strongly_connected_components(adjacency):
        if len(component) < 2:
            continue
        files = sorted(component)
        cycles.append(DependencyCycle(files=files, label=_cycle_label(files, adjacency)))
    return sorted(cycles, key=lambda c: c.files)


def _cycle_label(files: List[str], adjacency: Dict[str, Set[str]]) -> str:
    if len(files) == 2:
        return f"{files[0]} <-> {files[1]}"

    # Try to spell out a simple loop through every member
    members = set(files)
    path = [files[0]]
    while len(path) < len(files):
        nxt = sorted(n for n in adjacency[path[-1]] if n in members and n not in path)
        if not nxt:
            break
        path.append(nxt[0])
    if len(path) == len(files) and files[0] in adjacency[path[-1]]:
        return " -> ".join(path + [files[0]])
    return "{" + ", ".join(files) + "}"


def strongly_connected_components(adjacency: Dict[str, Set[str]]) -> List[List[str]]:
    """Tarjan's algorithm, iterative so large workspaces cannot hit the recursion limit."""
    counter = 0
    indexes: Dict[str, int] = {}
    lowlinks: Dict[str, int] = {}
    stack: List[str] = []
    on_stack: Set[str] = set()
    components: List[List[str]] = []

    for root in sorted(adjacency):
        if root in indexes:
            continue
        work = [(root, iter(sorted(adjacency[root])))]
        indexes[root] = lowlinks[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, neighbors = work[-1]
            advanced = False
            for neighbor in neighbors:
                if neighbor not in indexes:
                    indexes[neighbor] = lowlinks[neighbor] = counter
                    counter += 1
                    stack.append(neighbor)
                    on_stack.add(neighbor)
                    work.append((neighbor, iter(sorted(adjacency.get(neighbor, ())))))
                    advanced = True
                    break
                if neighbor in on_stack:
                    lowlinks[node] = min(lowlinks[node], indexes[neighbor])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlinks[parent] = min(lowlinks[parent], lowlinks[node])
            if lowlinks[node] == indexes[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components
