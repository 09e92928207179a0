"""Generation router: generate/regenerate/edit-image, plus output editing and planning hand-off."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from canvas_engine.models.requests import (
    ApprovalUpdate,
    CommentCreate,
    CommentResolve,
    ContentUpdate,
    GenerationOut,
)
from canvas_engine.pipelines import outputs
from canvas_engine.pipelines.generation import GenerationOutcome, GenerationResult
from canvas_engine.services.canvas_repository import RepositoryError
from canvas_engine.workspace import CanvasWorkspace, get_workspace

router = APIRouter(prefix="/api/clients/{client_id}", tags=["generation"])
logger = logging.getLogger(__name__)

_VALIDATION_OUTCOMES = {
    GenerationOutcome.CONNECTIONS_REQUIRED,
    GenerationOutcome.CONTENT_REQUIRED,
    GenerationOutcome.IMAGE_REQUIRED,
    GenerationOutcome.INSTRUCTION_REQUIRED,
}


def _respond(result: GenerationResult) -> GenerationOut:
    """Map a non-success outcome to its HTTP status."""
    if result.outcome == GenerationOutcome.QUOTA_EXCEEDED:
        raise HTTPException(status_code=402, detail={"code": "TOKENS_EXHAUSTED", "message": result.error})
    if result.outcome in _VALIDATION_OUTCOMES:
        raise HTTPException(status_code=422, detail={"code": result.outcome.value, "message": result.error})
    if result.outcome == GenerationOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.error)
    if result.outcome == GenerationOutcome.FAILED:
        raise HTTPException(status_code=502, detail=result.error or "Generation failed")
    return GenerationOut(
        outcome=result.outcome.value,
        output_node_ids=result.output_node_ids,
        completed=result.completed,
        total=result.total,
        error=result.error,
    )


@router.post("/generators/{generator_id}/generate", response_model=GenerationOut)
async def generate(generator_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    return _respond(await ws.orchestrator.generate(generator_id))


@router.post("/outputs/{output_id}/regenerate", response_model=GenerationOut)
async def regenerate(output_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    """Delete the output and run its generator again."""
    return _respond(await ws.orchestrator.regenerate(output_id))


@router.post("/editors/{editor_id}/edit", response_model=GenerationOut)
async def edit_image(editor_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    return _respond(await ws.orchestrator.edit_image(editor_id))


@router.put("/outputs/{output_id}/content")
async def update_content(output_id: str, body: ContentUpdate, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        versions = outputs.update_content(ws.store, output_id, body.content, body.label)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    return {"versions": [v.to_json() for v in versions]}


@router.post("/outputs/{output_id}/versions/{version_id}/restore")
async def restore_version(output_id: str, version_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        versions = outputs.restore_version(ws.store, output_id, version_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"versions": [v.to_json() for v in versions]}


@router.delete("/outputs/{output_id}/versions")
async def clear_versions(output_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        outputs.clear_versions(ws.store, output_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    return {"versions": []}


@router.post("/outputs/{output_id}/comments")
async def add_comment(output_id: str, body: CommentCreate, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        comment = outputs.add_comment(ws.store, output_id, body.text)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return comment.to_json()


@router.patch("/outputs/{output_id}/comments/{comment_id}")
async def resolve_comment(
    output_id: str, comment_id: str, body: CommentResolve, ws: CanvasWorkspace = Depends(get_workspace)
):
    try:
        outputs.resolve_comment(ws.store, output_id, comment_id, body.resolved)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"comment_id": comment_id, "resolved": body.resolved}


@router.delete("/outputs/{output_id}/comments/{comment_id}")
async def delete_comment(output_id: str, comment_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        outputs.delete_comment(ws.store, output_id, comment_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    return {"status": "deleted", "comment_id": comment_id}


@router.put("/outputs/{output_id}/approval")
async def set_approval(output_id: str, body: ApprovalUpdate, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        outputs.set_approval_status(ws.store, output_id, body.status)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    return {"approval_status": body.status.value}


@router.post("/outputs/{output_id}/planning")
async def send_to_planning(output_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    """Create a draft planning item from the output."""
    try:
        return await outputs.send_to_planning(ws.store, ws.repository, ws.client_id, output_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Output not found")
    except RepositoryError as e:
        raise HTTPException(status_code=502, detail=f"Failed to send to planning: {e}")
