"""
API endpoints for search, statistics, the dependency graph and rebuilds.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from sqldeps.models.api import RebuildResponse, SearchResult, StatisticsResponse
from sqldeps.models.graph import DependencyGraph, GraphMode
from sqldeps.services.index_manager import IndexManager, get_index_manager

router = APIRouter(tags=["search"])


@router.get("/search", response_model=List[SearchResult])
async def search_tables(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
    schema: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Search tables and views by name, schema, or ID.
    """
    results = manager.lineage.search(
        query=q,
        limit=limit,
        schema_filter=schema,
        type_filter=type,
    )

    return [
        SearchResult(
            id=obj.id,
            schema=obj.schema_name,
            name=obj.name,
            type=obj.type.value,
            file_path=obj.file_path,
        )
        for obj in results
    ]


@router.get("/statistics", response_model=StatisticsResponse)
async def get_statistics(
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Get index statistics.
    """
    graph = manager.build_graph(GraphMode.FILES)
    index = manager.get_index()

    return StatisticsResponse(
        total_files=graph.stats.total_files,
        total_tables=graph.stats.total_tables,
        total_views=graph.stats.total_views,
        total_references=graph.stats.total_references,
        total_dependencies=manager.lineage.get_statistics()["total_dependencies"],
        missing_definitions=len(graph.stats.missing_definitions),
        orphaned_definitions=len(graph.stats.orphaned_definitions),
        files_with_errors=sum(1 for f in index.files.values() if f.parse_error) if index else 0,
        index_updated_at=index.last_updated if index else None,
    )


@router.get("/graph", response_model=DependencyGraph)
async def get_graph(
    mode: GraphMode = Query(default=GraphMode.FILES),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Get the workspace dependency graph in files, tables or hybrid mode.
    """
    return manager.build_graph(mode)


@router.post("/index/rebuild", response_model=RebuildResponse)
def rebuild_index(
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Re-scan the workspace and replace the index.
    """
    index = manager.build_index()
    return RebuildResponse(
        file_count=index.file_count,
        definitions=sum(len(defs) for defs in index.definition_map.values()),
        references=sum(len(refs) for refs in index.reference_map.values()),
        updated_at=index.last_updated,
    )
