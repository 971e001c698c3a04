"""
API endpoints for table lineage traversal and impact analysis.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from sqldeps.models.api import LineageResponse
from sqldeps.models.graph import ChangeType, ImpactReport
from sqldeps.services.index_manager import IndexManager, get_index_manager
from sqldeps.services.lineage_engine import LineageResult, TableLineageEngine

router = APIRouter(prefix="/lineage", tags=["lineage"])


def _resolve(engine: TableLineageEngine, object_id: str) -> str:
    resolved = engine.resolve_object_id(object_id)
    if resolved is None:
        raise HTTPException(status_code=404, detail=f"Table not found: {object_id}")
    return resolved


def _response(engine: TableLineageEngine, object_id: str, result: LineageResult) -> LineageResponse:
    return LineageResponse(
        root_object=engine.get_object(object_id),
        nodes=result.nodes,
        edges=result.edges,
        has_more_upstream=result.has_more_upstream,
        has_more_downstream=result.has_more_downstream,
    )


@router.get("/{object_id:path}/full", response_model=LineageResponse)
async def get_full_lineage(
    object_id: str,
    upstream_depth: int = Query(default=2, ge=0, le=10),
    downstream_depth: int = Query(default=2, ge=0, le=10),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Get the full lineage graph for a table (both upstream and downstream).
    """
    engine = manager.lineage
    resolved = _resolve(engine, object_id)
    result = engine.get_full_lineage(
        resolved,
        upstream_depth=upstream_depth,
        downstream_depth=downstream_depth,
    )
    return _response(engine, resolved, result)


@router.get("/{object_id:path}/downstream", response_model=LineageResponse)
async def get_downstream_lineage(
    object_id: str,
    depth: int = Query(default=1, ge=1, le=5),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Get downstream dependencies - tables fed by this one.
    """
    engine = manager.lineage
    resolved = _resolve(engine, object_id)
    return _response(engine, resolved, engine.get_forward_lineage(resolved, depth))


@router.get("/{object_id:path}/upstream", response_model=LineageResponse)
async def get_upstream_lineage(
    object_id: str,
    depth: int = Query(default=1, ge=1, le=5),
    manager: IndexManager = Depends(get_index_manager),
):
    """
    Get upstream dependencies - tables this one is built from.
    """
    engine = manager.lineage
    resolved = _resolve(engine, object_id)
    return _response(engine, resolved, engine.get_backward_lineage(resolved, depth))


@router.get("/{object_id:path}/impact", response_model=ImpactReport)
async def get_impact(
    object_id: str,
    change_type: ChangeType = Query(default=ChangeType.MODIFY),
    manager: IndexManager = Depends(get_index_manager),
):
    engine = manager.lineage
    report = engine.analyze_impact(_resolve(engine, object_id), change_type=change_type)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Table not found: {object_id}")
    return report
