"""Extraction router: URL/text extraction, file transcription, image analysis and OCR."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from canvas_engine.models.requests import BatchAnalyzeRequest, ExtractRequest, ImageRequest
from canvas_engine.pipelines import extraction, image_analysis
from canvas_engine.pipelines.extraction import ExtractionError
from canvas_engine.pipelines.image_analysis import AnalysisTarget, ImageAnalysisError
from canvas_engine.services.functions import QuotaExceededError, RemoteCallError
from canvas_engine.workspace import CanvasWorkspace, get_workspace

router = APIRouter(prefix="/api/clients/{client_id}", tags=["extraction"])
logger = logging.getLogger(__name__)


def _raise_remote(e: Exception) -> None:
    if isinstance(e, QuotaExceededError):
        raise HTTPException(status_code=402, detail={"code": "TOKENS_EXHAUSTED", "message": str(e)})
    if isinstance(e, ExtractionError):
        raise HTTPException(status_code=422, detail=str(e))
    raise HTTPException(status_code=502, detail=str(e))


def _image_url(ws: CanvasWorkspace, node_id: str, image_id: str, url: str | None) -> str:
    if url:
        return url
    node = ws.store.get_node(node_id)
    images = getattr(node.data, "images", None) if node else None
    image = next((img for img in images or [] if img.id == image_id), None)
    if image is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return image.url


@router.post("/nodes/{node_id}/extract")
async def extract(node_id: str, body: ExtractRequest, ws: CanvasWorkspace = Depends(get_workspace)):
    """Extract a URL (YouTube, Instagram, article) or store plain text on a source/attachment node."""
    node = ws.store.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    value = body.value or getattr(node.data, "url", None) or getattr(node.data, "value", None)
    if not value:
        raise HTTPException(status_code=422, detail="Nothing to extract")
    try:
        result = await extraction.extract_source(ws.store, ws.cache, node_id, value)
    except (ExtractionError, RemoteCallError) as e:
        _raise_remote(e)
    return {"node_id": result.node_id, "title": result.title, "from_cache": result.from_cache}


@router.post("/nodes/{node_id}/files/{file_id}/transcribe")
async def transcribe_file(node_id: str, file_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        text = await extraction.transcribe_file(ws.store, ws.cache, node_id, file_id)
    except (ExtractionError, RemoteCallError) as e:
        _raise_remote(e)
    return {"node_id": node_id, "file_id": file_id, "transcription": text}


@router.post("/nodes/{node_id}/files/{file_id}/analyze-style")
async def analyze_file_style(node_id: str, file_id: str, ws: CanvasWorkspace = Depends(get_workspace)):
    try:
        style = await image_analysis.analyze_source_file_style(ws.store, node_id, file_id)
    except ImageAnalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return style.to_json()


@router.post("/nodes/{node_id}/images/{image_id}/analyze")
async def analyze_image(
    node_id: str, image_id: str, body: ImageRequest, ws: CanvasWorkspace = Depends(get_workspace)
):
    url = _image_url(ws, node_id, image_id, body.url)
    try:
        style = await image_analysis.analyze_image(ws.store, node_id, image_id, url)
    except ImageAnalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return style.to_json()


@router.post("/nodes/{node_id}/images/{image_id}/ocr")
async def ocr_image(node_id: str, image_id: str, body: ImageRequest, ws: CanvasWorkspace = Depends(get_workspace)):
    url = _image_url(ws, node_id, image_id, body.url)
    try:
        text = await image_analysis.ocr_image(ws.store, node_id, image_id, url)
    except ImageAnalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"node_id": node_id, "image_id": image_id, "ocr_text": text}


@router.post("/images/analyze-batch")
async def analyze_batch(body: BatchAnalyzeRequest, ws: CanvasWorkspace = Depends(get_workspace)):
    """Analyze many images, three at a time; individual failures are counted, not raised."""
    targets = [
        AnalysisTarget(t.node_id, t.image_id, _image_url(ws, t.node_id, t.image_id, t.url))
        for t in body.targets
    ]
    result = await image_analysis.analyze_images_in_parallel(ws.store, targets)
    return {"succeeded": result.succeeded, "failed": result.failed, "total": result.total}
