"""
Table-level lineage over an indexed workspace.

Data-flow edges are derived per statement: every table a statement reads
feeds every table it writes. Traversal uses pre-built adjacency sets in both
directions, so neighbor lookups are O(1).
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from sqldeps.extraction.identifiers import KeyResolver, display_name, parse_qualified_key, qualified_key
from sqldeps.models.domain import DefinitionKind, ReferenceType, SchemaDefinition, TableReference, WorkspaceIndex
from sqldeps.models.graph import (
    ChangeType,
    ImpactedTable,
    ImpactReport,
    NodeType,
    Severity,
    TableDependency,
    TableObject,
)

logger = logging.getLogger(__name__)

READ_TYPES = (ReferenceType.SELECT, ReferenceType.JOIN)

WRITE_DEPENDENCY_TYPES = {
    ReferenceType.INSERT: "INSERT_SELECT",
    ReferenceType.UPDATE: "UPDATE_FROM",
    ReferenceType.DELETE: "DELETE_USING",
    ReferenceType.MERGE: "MERGE",
}


@dataclass
class LineageResult:
    """Result of a lineage traversal."""
    nodes: Dict[str, TableObject]
    edges: List[TableDependency]
    has_more_upstream: Dict[str, bool]
    has_more_downstream: Dict[str, bool]


def impact_severity(total_affected: int) -> Severity:
    if total_affected >= 20:
        return Severity.CRITICAL
    if total_affected >= 10:
        return Severity.HIGH
    if total_affected >= 3:
        return Severity.MEDIUM
    return Severity.LOW


class TableLineageEngine:
    """
    Graph engine for table lineage traversal.

    1. Objects are the index's defined tables/views plus external tables
    2. Forward (downstream) and backward (upstream) edges are stored separately
    3. A visited set makes every traversal cycle-safe
    """

    def __init__(self, index: WorkspaceIndex):
        self.index = index
        self._resolver = KeyResolver(index.definition_map)
        self._objects: Dict[str, TableObject] = {}
        self._forward_edges: Dict[str, Set[str]] = {}  # source -> targets (downstream)
        self._backward_edges: Dict[str, Set[str]] = {}  # target -> sources (upstream)
        self._edge_map: Dict[Tuple[str, str], TableDependency] = {}
        self._dependencies: List[TableDependency] = []
        self._by_type: Dict[NodeType, Set[str]] = {}

        self._load_objects()
        self._load_dependencies()

    def _load_objects(self) -> None:
        for key, definitions in self.index.definition_map.items():
            first = definitions[0]
            self._add_object(TableObject(
                id=key,
                name=first.name,
                schema_name=first.schema_name,
                type=NodeType.VIEW if first.kind == DefinitionKind.VIEW else NodeType.TABLE,
                file_path=first.file_path,
                line_number=first.line_number,
            ))
        for key, references in self.index.reference_map.items():
            if self._resolve(references[0]) == key and key not in self._objects:
                self._add_object(TableObject(
                    id=key,
                    name=references[0].table_name,
                    schema_name=references[0].schema_name,
                    type=NodeType.EXTERNAL,
                ))

    def _add_object(self, obj: TableObject) -> None:
        self._objects[obj.id] = obj
        self._by_type.setdefault(obj.type, set()).add(obj.id)

    def _resolve(self, reference: TableReference) -> str:
        key = self._resolver.resolve(reference.table_name, reference.schema_name)
        return key or qualified_key(reference.table_name, reference.schema_name)

    def _load_dependencies(self) -> None:
        for path in sorted(self.index.files):
            analysis = self.index.files[path]
            statements: Dict[int, Tuple[List[TableReference], List[TableReference], List[SchemaDefinition]]] = {}
            for reference in analysis.references:
                reads, writes, _ = statements.setdefault(reference.statement_index, ([], [], []))
                if reference.reference_type in READ_TYPES:
                    reads.append(reference)
                elif reference.reference_type in WRITE_DEPENDENCY_TYPES:
                    writes.append(reference)
            for definition in analysis.definitions:
                statements.setdefault(definition.statement_index, ([], [], []))[2].append(definition)

            for statement_index, (reads, writes, created) in sorted(statements.items(), key=lambda item: item[0]):
                targets = [(self._resolve(w), WRITE_DEPENDENCY_TYPES[w.reference_type]) for w in writes]
                targets += [
                    (qualified_key(d.name, d.schema_name), "VIEW" if d.kind == DefinitionKind.VIEW else "CTAS")
                    for d in created
                ]
                for read in reads:
                    source = self._resolve(read)
                    for target, dependency_type in targets:
                        if source != target:
                            self._add_dependency(TableDependency(
                                source_id=source,
                                target_id=target,
                                dependency_type=dependency_type,
                                reference_type=read.reference_type,
                                file_path=path,
                                statement_index=statement_index,
                            ))

    def _add_dependency(self, dependency: TableDependency) -> None:
        source, target = dependency.source_id, dependency.target_id
        if (source, target) in self._edge_map:
            return
        self._dependencies.append(dependency)
        self._forward_edges.setdefault(source, set()).add(target)
        self._backward_edges.setdefault(target, set()).add(source)
        self._edge_map[(source, target)] = dependency

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def resolve_object_id(self, name: str, schema: Optional[str] = None) -> Optional[str]:
        """Resolve a table name (or `schema.name` id) to an object id."""
        if schema is None and "." in name:
            schema, name = parse_qualified_key(name)
        key = self._resolver.resolve(name, schema)
        if key is not None:
            return key
        key = qualified_key(name, schema)
        return key if key in self._objects else None

    def get_object(self, object_id: str) -> Optional[TableObject]:
        return self._objects.get(object_id)

    def get_all_objects(self) -> Dict[str, TableObject]:
        return self._objects

    def get_dependencies(self) -> List[TableDependency]:
        return self._dependencies

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def get_forward_lineage(
        self,
        object_id: str,
        depth: int = 1,
        visited: Optional[Set[str]] = None,
    ) -> LineageResult:
        """
        Get downstream dependencies (tables fed by this one).

        Args:
            object_id: Starting object ID
            depth: How many levels to traverse (default 1)
            visited: Already visited nodes (for incremental expansion)
        """
        return self._traverse(object_id, depth, direction="forward", visited=visited)

    def get_backward_lineage(
        self,
        object_id: str,
        depth: int = 1,
        visited: Optional[Set[str]] = None,
    ) -> LineageResult:
        """Get upstream dependencies (tables this one is built from)."""
        return self._traverse(object_id, depth, direction="backward", visited=visited)

    def get_full_lineage(
        self,
        object_id: str,
        upstream_depth: int = 3,
        downstream_depth: int = 3,
    ) -> LineageResult:
        upstream = self.get_backward_lineage(object_id, upstream_depth)
        downstream = self.get_forward_lineage(object_id, downstream_depth)

        all_nodes = {**upstream.nodes, **downstream.nodes}
        seen_edges = set()
        unique_edges = []
        for edge in upstream.edges + downstream.edges:
            key = (edge.source_id, edge.target_id)
            if key not in seen_edges:
                seen_edges.add(key)
                unique_edges.append(edge)

        return LineageResult(
            nodes=all_nodes,
            edges=unique_edges,
            has_more_upstream={**downstream.has_more_upstream, **upstream.has_more_upstream},
            has_more_downstream={**upstream.has_more_downstream, **downstream.has_more_downstream},
        )

    def _traverse(
        self,
        start_id: str,
        depth: int,
        direction: str,
        visited: Optional[Set[str]] = None,
    ) -> LineageResult:
        """BFS in one direction; O(V + E) over the visited subgraph."""
        if visited is None:
            visited = set()

        edges_map = self._forward_edges if direction == "forward" else self._backward_edges

        result_nodes: Dict[str, TableObject] = {}
        result_edges: List[TableDependency] = []
        has_more_upstream: Dict[str, bool] = {}
        has_more_downstream: Dict[str, bool] = {}

        queue: deque = deque([(start_id, 0)])
        visited.add(start_id)

        while queue:
            current_id, current_depth = queue.popleft()
            if current_id not in self._objects:
                continue
            result_nodes[current_id] = self._objects[current_id]

            has_more_downstream[current_id] = any(n not in visited for n in self._forward_edges.get(current_id, ()))
            has_more_upstream[current_id] = any(n not in visited for n in self._backward_edges.get(current_id, ()))

            if current_depth < depth:
                for neighbor_id in sorted(edges_map.get(current_id, ())):
                    if direction == "forward":
                        edge = self._edge_map.get((current_id, neighbor_id))
                    else:
                        edge = self._edge_map.get((neighbor_id, current_id))
                    if edge:
                        result_edges.append(edge)

                    # Cycle-safe
                    if neighbor_id not in visited:
                        visited.add(neighbor_id)
                        queue.append((neighbor_id, current_depth + 1))

        return LineageResult(
            nodes=result_nodes,
            edges=result_edges,
            has_more_upstream=has_more_upstream,
            has_more_downstream=has_more_downstream,
        )

    def downstream_depths(self, object_id: str) -> Dict[str, int]:
        """Every table reachable downstream, with its shortest distance."""
        depths: Dict[str, int] = {}
        queue: deque = deque([(object_id, 0)])
        seen = {object_id}
        while queue:
            current_id, current_depth = queue.popleft()
            for neighbor_id in sorted(self._forward_edges.get(current_id, ())):
                if neighbor_id not in seen:
                    seen.add(neighbor_id)
                    depths[neighbor_id] = current_depth + 1
                    queue.append((neighbor_id, current_depth + 1))
        return depths

    # ------------------------------------------------------------------
    # Impact analysis
    # ------------------------------------------------------------------

    def analyze_impact(
        self,
        name: str,
        schema: Optional[str] = None,
        change_type: ChangeType = ChangeType.MODIFY,
    ) -> Optional[ImpactReport]:
        """
        Report what a change to one table would break downstream.

        Returns:
            None if the table is unknown
        """
        change_type = ChangeType(change_type)
        object_id = self.resolve_object_id(name, schema)
        if object_id is None:
            return None
        target = self._objects[object_id]

        direct, transitive = [], []
        for impacted_id, depth in sorted(self.downstream_depths(object_id).items(), key=lambda item: (item[1], item[0])):
            obj = self._objects.get(impacted_id)
            if obj is None:
                continue
            impacted = ImpactedTable(id=obj.id, name=obj.name, type=obj.type, depth=depth, file_path=obj.file_path)
            (direct if depth == 1 else transitive).append(impacted)

        affected_files = set()
        for key in [object_id] + [t.id for t in direct + transitive]:
            schema_name, table_name = parse_qualified_key(key)
            ref_key = KeyResolver(self.index.reference_map).resolve(table_name, schema_name)
            if ref_key:
                affected_files.update(r.file_path for r in self.index.reference_map[ref_key])

        impacted_all = direct + transitive
        summary = {
            "total_affected": len(impacted_all),
            "tables_affected": sum(1 for t in impacted_all if t.type == NodeType.TABLE),
            "views_affected": sum(1 for t in impacted_all if t.type == NodeType.VIEW),
            "files_affected": len(affected_files),
        }
        severity = impact_severity(summary["total_affected"])

        return ImpactReport(
            target=target,
            change_type=change_type,
            direct_impacts=direct,
            transitive_impacts=transitive,
            affected_files=sorted(affected_files),
            severity=severity,
            suggestions=self._suggestions(display_name(target.name, target.schema_name), change_type, severity),
            summary=summary,
        )

    def _suggestions(self, name: str, change_type: ChangeType, severity: Severity) -> List[str]:
        suggestions = []
        if change_type == ChangeType.DROP:
            suggestions.append(f"Consider marking table '{name}' as deprecated instead of dropping immediately")
            audience = "users" if severity == Severity.CRITICAL else "affected teams"
            suggestions.append(f"Notify all {audience} about this change")
        elif change_type == ChangeType.RENAME:
            suggestions.append(f"Update all references to table '{name}' before renaming")
            suggestions.append("Consider creating a synonym or alias for backward compatibility")
        if severity in (Severity.CRITICAL, Severity.HIGH):
            suggestions.append("High impact: Schedule this change during a maintenance window")
            suggestions.append("Create a rollback plan in case of issues")
        return suggestions

    # ------------------------------------------------------------------
    # Search and statistics
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 50,
        schema_filter: Optional[str] = None,
        type_filter: Optional[str] = None,
    ) -> List[TableObject]:
        """Case-insensitive substring match on name, schema or id."""
        query_lower = query.lower()
        if type_filter:
            wanted = type_filter.lower()
            candidates = {oid for node_type, ids in self._by_type.items() if node_type.value == wanted for oid in ids}
        else:
            candidates = set(self._objects)

        results = []
        for obj_id in sorted(candidates):
            obj = self._objects[obj_id]
            if schema_filter and (obj.schema_name or "").lower() != schema_filter.lower():
                continue
            if (
                query_lower in obj.name.lower()
                or query_lower in (obj.schema_name or "").lower()
                or query_lower in obj_id
            ):
                results.append(obj)
                if len(results) >= limit:
                    break
        return results

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_objects": len(self._objects),
            "total_dependencies": len(self._dependencies),
            "tables": len(self._by_type.get(NodeType.TABLE, set())),
            "views": len(self._by_type.get(NodeType.VIEW, set())),
            "external": len(self._by_type.get(NodeType.EXTERNAL, set())),
        }
