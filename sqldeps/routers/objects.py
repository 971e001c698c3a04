"""
API endpoints for indexed files and tables.
"""
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query

from sqldeps.extraction.identifiers import display_name, qualified_key, split_dotted_name
from sqldeps.models.api import (
    DependentFilesResponse,
    FileListResponse,
    FileSummary,
    ReferenceListResponse,
    TableDetailResponse,
)
from sqldeps.models.domain import FileAnalysis, TableReference
from sqldeps.services.index_manager import IndexManager, get_index_manager

router = APIRouter(tags=["objects"])


def split_table_name(name: str, schema: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Accept `orders` plus ?schema=sales, or `sales.orders`."""
    if schema:
        return name, schema
    parts = split_dotted_name(name)
    if len(parts) > 1:
        return parts[-1], parts[-2]
    return (parts[0] if parts else name), None


@router.get("/files", response_model=FileListResponse)
async def list_files(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    List indexed files with pagination.
    """
    index = manager.get_index()
    paths = sorted(index.files) if index else []
    total = len(paths)
    start = (page - 1) * page_size

    items = []
    for path in paths[start:start + page_size]:
        analysis = index.files[path]
        items.append(FileSummary(
            file_path=analysis.file_path,
            file_name=analysis.file_name,
            definitions=len(analysis.definitions),
            references=len(analysis.references),
            parse_error=analysis.parse_error,
            parse_warnings=analysis.parse_warnings,
        ))

    return FileListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/files/{file_path:path}/external-references", response_model=List[TableReference])
async def get_external_references(
    file_path: str,
    manager: IndexManager = Depends(get_index_manager),
):
    """
    References in a file to tables the file does not define.
    """
    analysis = manager.get_file(file_path)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"File not indexed: {file_path}")
    return manager.get_external_references(analysis.file_path)


@router.get("/files/{file_path:path}", response_model=FileAnalysis)
async def get_file(
    file_path: str,
    manager: IndexManager = Depends(get_index_manager),
):
    analysis = manager.get_file(file_path)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"File not indexed: {file_path}")
    return analysis


@router.get("/tables/{name}/references", response_model=ReferenceListResponse)
async def get_table_references(
    name: str,
    schema: Optional[str] = Query(default=None),
    manager: IndexManager = Depends(get_index_manager),
):
    table, schema = split_table_name(name, schema)
    return ReferenceListResponse(
        key=qualified_key(table, schema),
        references=manager.find_references(table, schema),
    )


@router.get("/tables/{name}/dependents", response_model=DependentFilesResponse)
async def get_table_dependents(
    name: str,
    schema: Optional[str] = Query(default=None),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Files that reference a table.
    """
    table, schema = split_table_name(name, schema)
    return DependentFilesResponse(
        key=qualified_key(table, schema),
        files=manager.get_dependent_files(table, schema),
    )


@router.get("/tables/{name}", response_model=TableDetailResponse)
async def get_table(
    name: str,
    schema: Optional[str] = Query(default=None),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Definition of a table or view, with every same-named candidate.
    """
    table, schema = split_table_name(name, schema)
    definition = manager.find_definition(table, schema)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Table not defined: {display_name(table, schema)}")

    return TableDetailResponse(
        key=qualified_key(definition.name, definition.schema_name),
        display_name=display_name(definition.name, definition.schema_name),
        definition=definition,
        candidates=manager.find_definitions(table, schema),
        reference_count=len(manager.find_references(table, schema)),
    )
