"""Nodes router: add/update/delete nodes, connect/delete edges, bulk UI changes."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from canvas_engine.models.requests import EdgeCreate, GraphChanges, NodeCreate, NodeUpdate
from canvas_engine.workspace import CanvasWorkspace, get_workspace

router = APIRouter(prefix="/api/clients/{client_id}", tags=["nodes"])
logger = logging.getLogger(__name__)


@router.post("/nodes")
async def add_node(body: NodeCreate, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        node_id = ws.store.add_node(body.kind, body.position, body.data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    return ws.store.get_node(node_id).to_json()


@router.get("/nodes/{node_id}")
async def get_node(node_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    node = ws.store.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node.to_json()


@router.patch("/nodes/{node_id}")
async def update_node(node_id: str, body: NodeUpdate, ws: CanvasWorkspace = Depends(get_workspace)):
    """Shallow-merge into the node's data."""
    if ws.store.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail="Node not found")
    try:
        ws.store.update_node(node_id, body.data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    return ws.store.get_node(node_id).to_json()


@router.delete("/nodes/{node_id}")
async def delete_node(node_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    """Delete node and cascade to connected edges."""
    if ws.store.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return ws.store.delete_node(node_id)


@router.post("/edges")
async def connect(body: EdgeCreate, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        edge_id = ws.store.connect(body.source, body.target, body.source_handle, body.target_handle)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ws.store.get_edge(edge_id).to_json()


@router.delete("/edges/{edge_id}")
async def delete_edge(edge_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    if ws.store.get_edge(edge_id) is None:
        raise HTTPException(status_code=404, detail="Edge not found")
    ws.store.delete_edge(edge_id)
    return {"status": "deleted", "edge_id": edge_id}


@router.post("/changes")
async def apply_changes(body: GraphChanges, ws: CanvasWorkspace = Depends(get_workspace)):
    """Bulk position/remove changes coming from the canvas UI."""
    ws.store.apply_node_changes(body.node_changes)
    ws.store.apply_edge_changes(body.edge_changes)
    return ws.store.snapshot()
