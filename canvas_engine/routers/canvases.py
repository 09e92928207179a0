"""Canvases router: list/load/save/rename/delete saved canvases, state, templates."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from canvas_engine.models.requests import CanvasRename, CanvasSave
from canvas_engine.pipelines.templates import CANVAS_TEMPLATES
from canvas_engine.services.canvas_repository import RepositoryError
from canvas_engine.workspace import CanvasWorkspace, get_workspace

router = APIRouter(prefix="/api/clients/{client_id}", tags=["canvases"])
logger = logging.getLogger(__name__)


@router.get("/state")
async def get_state(ws: CanvasWorkspace = Depends(get_workspace)):
    """Current graph, canvas id/name and autosave status."""
    return ws.state()


@router.get("/canvases")
async def list_canvases(ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        canvases = await ws.autosaver.list_canvases()
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [c.model_dump() for c in canvases]


@router.post("/canvases")
async def save_canvas(body: CanvasSave, ws: CanvasWorkspace = Depends(get_workspace)):
    """Save the open canvas now (upsert; the first save allocates the id)."""
    try:
        row = await ws.autosaver.save(body.name)
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=f"Failed to save canvas: {e}")
    return {"id": row.id, "name": row.name, "updated_at": row.updated_at}


@router.post("/canvases/new")
async def new_canvas(ws: CanvasWorkspace = Depends(get_workspace)):
    ws.autosaver.new_canvas()
    return ws.state()


@router.post("/canvases/latest")
async def load_latest_canvas(ws: CanvasWorkspace = Depends(get_workspace)):
    """Open the most recently updated canvas if nothing is open yet."""
    try:
        await ws.autosaver.load_latest()
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ws.state()


@router.post("/canvases/{canvas_id}/load")
async def load_canvas(canvas_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        await ws.autosaver.load(canvas_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Canvas not found")
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ws.state()


@router.patch("/canvas/name")
async def rename_canvas(body: CanvasRename, ws: CanvasWorkspace = Depends(get_workspace)):
    ws.autosaver.rename(body.name)
    return {"name": ws.autosaver.name, "autosave_status": ws.autosaver.status.value}


@router.delete("/canvases/{canvas_id}")
async def delete_canvas(canvas_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        await ws.autosaver.delete(canvas_id)
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "deleted", "canvas_id": canvas_id}


@router.get("/templates")
async def list_templates(client_id: str):
    return [t.summary() for t in CANVAS_TEMPLATES]


@router.post("/templates/{template_id}")
async def apply_canvas_template(template_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    """Replace the graph with a fresh copy of a starter template."""
    try:
        ids = ws.apply_template(template_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Template not found")
    return {"node_ids": ids, **ws.state()}
