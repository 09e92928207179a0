"""
File Upload Router

Handles media uploads for canvas nodes. Files go to object storage when it is
configured; otherwise they are kept locally and referenced as ``blob:<name>``.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from canvas_engine.models.canvas import (
    MAX_SOURCE_IMAGES,
    AttachmentNodeData,
    CanvasImage,
    ImageMetadata,
    ImageSourceNodeData,
    SourceFile,
    SourceNodeData,
)
from canvas_engine.services import storage
from canvas_engine.utils.ids import generate_asset_id
from canvas_engine.workspace import CanvasWorkspace, get_workspace

router = APIRouter(prefix="/api", tags=["files"])
logger = logging.getLogger(__name__)

ALLOWED_TYPES = ("image/", "video/", "audio/", "application/pdf", "text/")


def _file_kind(content_type: str) -> str:
    for kind in ("image", "audio", "video"):
        if content_type.startswith(f"{kind}/"):
            return kind
    return "document"


async def _store_upload(file: UploadFile) -> Dict[str, Any]:
    if not file.content_type:
        raise HTTPException(status_code=400, detail="File type could not be determined")
    if not file.content_type.startswith(ALLOWED_TYPES):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}. Only images, video, audio and documents are allowed.",
        )
    content = await file.read()
    url = await storage.upload(content, file.filename or "file", file.content_type)
    dimensions = storage.probe_dimensions(content) if file.content_type.startswith("image/") else None
    return {
        "url": url,
        "filename": file.filename or url.rsplit("/", 1)[-1],
        "content_type": file.content_type,
        "size": len(content),
        "dimensions": dimensions.to_json() if dimensions else None,
    }


@router.post("/upload")
async def upload_file(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Upload a media file.

    Returns:
        Dict with 'url' (public URL or blob: reference), filename, content type,
        size and, for images, pixel dimensions
    """
    return await _store_upload(file)


@router.get("/upload/{filename}")
async def get_file(filename: str) -> FileResponse:
    """
    Serve a locally kept upload over HTTP.
    """
    try:
        file_path = storage.resolve_ephemeral(f"{storage.EPHEMERAL_PREFIX}{filename}")
    except storage.ImageReferenceError:
        raise HTTPException(status_code=400, detail="Invalid filename")
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(str(file_path))


@router.delete("/upload/{filename}")
async def delete_file(filename: str) -> Dict[str, str]:
    """
    Delete a locally kept upload.

    Args:
        filename: Name of the file to delete
    """
    try:
        file_path = storage.resolve_ephemeral(f"{storage.EPHEMERAL_PREFIX}{filename}")
    except storage.ImageReferenceError:
        raise HTTPException(status_code=400, detail="Invalid filename")
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")
    file_path.unlink()
    return {"status": "deleted", "filename": filename}


@router.post("/clients/{client_id}/nodes/{node_id}/uploads")
async def upload_to_node(
    node_id: str,
    file: UploadFile = File(...),
    ws: CanvasWorkspace = Depends(get_workspace),
) -> Dict[str, Any]:
    """
    Upload a file and attach it to a node.

    Images go to an image-source node's images (at most 10) or an attachment
    node's images; everything else becomes a file of a source or attachment node.
    """
    node = ws.store.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    data = node.data
    is_image = (file.content_type or "").startswith("image/")
    if isinstance(data, ImageSourceNodeData):
        if not is_image:
            raise HTTPException(status_code=400, detail="Image source nodes only accept images")
        if len(data.images) >= MAX_SOURCE_IMAGES:
            raise HTTPException(status_code=422, detail=f"At most {MAX_SOURCE_IMAGES} images per node")
    elif not isinstance(data, (SourceNodeData, AttachmentNodeData)):
        raise HTTPException(status_code=400, detail=f"Cannot upload files to a {node.type.value} node")

    uploaded = await _store_upload(file)
    if is_image and isinstance(data, (ImageSourceNodeData, AttachmentNodeData)):
        image = CanvasImage(
            id=generate_asset_id("image"),
            url=uploaded["url"],
            name=uploaded["filename"],
            metadata=ImageMetadata(dimensions=uploaded["dimensions"], is_primary=not data.images),
        )
        ws.store.update_node(node_id, {"images": [*data.images, image]})
        return {"node_id": node_id, "image": image.to_json()}

    source_file = SourceFile(
        id=generate_asset_id("file"),
        name=uploaded["filename"],
        type=_file_kind(uploaded["content_type"]),
        url=uploaded["url"],
        size=uploaded["size"],
        mime_type=uploaded["content_type"],
        metadata=ImageMetadata(dimensions=uploaded["dimensions"], is_primary=not data.files) if is_image else None,
    )
    ws.store.update_node(node_id, {"files": [*data.files, source_file]})
    return {"node_id": node_id, "file": source_file.to_json()}
