"""
Models for the workspace dependency graph and table lineage.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .domain import ReferenceType, SchemaDefinition, TableReference


class GraphMode(str, Enum):
    FILES = "files"
    TABLES = "tables"
    HYBRID = "hybrid"


class NodeType(str, Enum):
    FILE = "file"
    TABLE = "table"
    VIEW = "view"
    EXTERNAL = "external"


class WorkspaceNode(BaseModel):
    id: str
    type: NodeType
    label: str
    file_path: Optional[str] = None
    definitions: Optional[List[SchemaDefinition]] = None
    references: Optional[List[TableReference]] = None
    definition_count: int = 0
    reference_count: int = 0
    referencing_files: int = 0

    # Layout; positions are assigned by the renderer
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class WorkspaceEdge(BaseModel):
    id: str
    source: str
    target: str
    reference_type: ReferenceType  # highest priority type among aggregated references
    count: int
    tables: List[str]
    reference_types: List[ReferenceType] = []


class DependencyCycle(BaseModel):
    """One strongly connected group of files."""
    files: List[str]
    label: str


class WorkspaceStats(BaseModel):
    total_files: int = 0
    total_tables: int = 0
    total_views: int = 0
    total_references: int = 0
    orphaned_definitions: List[str] = []
    missing_definitions: List[str] = []
    circular_dependencies: List[str] = []
    cycles: List[DependencyCycle] = []


class DependencyGraph(BaseModel):
    mode: GraphMode
    nodes: List[WorkspaceNode]
    edges: List[WorkspaceEdge]
    stats: WorkspaceStats


class TableObject(BaseModel):
    """A table-level node in the lineage graph."""
    id: str  # qualified key
    name: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    type: NodeType
    file_path: Optional[str] = None  # defining file, None for external tables
    line_number: Optional[int] = None

    class Config:
        populate_by_name = True


class TableDependency(BaseModel):
    """Data flows from source_id into target_id."""
    source_id: str
    target_id: str
    dependency_type: str  # VIEW, CTAS, INSERT_SELECT, UPDATE_FROM, DELETE_USING, MERGE
    reference_type: ReferenceType
    file_path: str
    statement_index: int


class ChangeType(str, Enum):
    MODIFY = "modify"
    RENAME = "rename"
    DROP = "drop"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImpactedTable(BaseModel):
    id: str
    name: str
    type: NodeType
    depth: int
    file_path: Optional[str] = None


class ImpactReport(BaseModel):
    target: TableObject
    change_type: ChangeType
    direct_impacts: List[ImpactedTable]
    transitive_impacts: List[ImpactedTable]
    affected_files: List[str]
    severity: Severity
    suggestions: List[str]
    summary: Dict[str, int]
