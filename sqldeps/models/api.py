"""
Pydantic models for API request/response schemas.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .domain import SchemaDefinition, TableReference
from .graph import TableDependency, TableObject


class LineageResponse(BaseModel):
    """Response for lineage queries."""
    root_object: TableObject
    nodes: Dict[str, TableObject]
    edges: List[TableDependency]
    has_more_upstream: Dict[str, bool]
    has_more_downstream: Dict[str, bool]


class FileSummary(BaseModel):
    file_path: str
    file_name: str
    definitions: int
    references: int
    parse_error: Optional[str] = None
    parse_warnings: List[str] = []


class FileListResponse(BaseModel):
    """Paginated list of indexed files."""
    items: List[FileSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class TableDetailResponse(BaseModel):
    key: str
    display_name: str
    definition: SchemaDefinition
    candidates: List[SchemaDefinition]
    reference_count: int


class ReferenceListResponse(BaseModel):
    key: str
    references: List[TableReference]


class DependentFilesResponse(BaseModel):
    key: str
    files: List[str]


class SearchResult(BaseModel):
    """Single search result."""
    id: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    name: str
    type: str
    file_path: Optional[str] = None

    class Config:
        populate_by_name = True


class StatisticsResponse(BaseModel):
    """Index statistics."""
    total_files: int
    total_tables: int
    total_views: int
    total_references: int
    total_dependencies: int
    missing_definitions: int
    orphaned_definitions: int
    files_with_errors: int
    index_updated_at: Optional[float] = None


class RebuildResponse(BaseModel):
    file_count: int
    definitions: int
    references: int
    updated_at: float
