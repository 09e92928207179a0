"""Object storage for uploaded media, with a local ephemeral fallback."""
import base64
import io
import logging
import mimetypes
from pathlib import Path

import httpx
from PIL import Image, UnidentifiedImageError

from canvas_engine.config import settings
from canvas_engine.models.canvas import Dimensions
from canvas_engine.utils.ids import generate_upload_name

logger = logging.getLogger(__name__)

EPHEMERAL_PREFIX = "blob:"


class ImageReferenceError(Exception):
    """An image reference could not be turned into something a backend function can fetch."""


def upload_dir() -> Path:
    path = Path(settings.upload_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_ephemeral(ref: str) -> bool:
    return ref.startswith(EPHEMERAL_PREFIX)


def _safe_resolve(name: str) -> Path:
    base = upload_dir().resolve()
    resolved = (base / name).resolve()
    if resolved.parent != base:
        raise ImageReferenceError(f"Invalid ephemeral reference: {name}")
    return resolved


def resolve_ephemeral(ref: str) -> Path:
    """Local path behind a ``blob:<name>`` reference."""
    return _safe_resolve(ref[len(EPHEMERAL_PREFIX):])


def save_ephemeral(content: bytes, filename: str) -> str:
    """Keep an upload on local disk and return its ``blob:`` reference."""
    name = generate_upload_name(Path(filename or "file").suffix)
    _safe_resolve(name).write_bytes(content)
    return f"{EPHEMERAL_PREFIX}{name}"


async def upload(content: bytes, filename: str, content_type: str | None = None) -> str:
    """Upload to object storage and return the public URL.

    When storage is not configured or the upload fails, the file is kept
    locally and an ephemeral reference is returned instead.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logger.info("Object storage not configured, keeping %s locally", filename)
        return save_ephemeral(content, filename)
    object_path = generate_upload_name(Path(filename or "file").suffix)
    base = settings.supabase_url.rstrip("/")
    try:
        async with httpx.AsyncClient(timeout=60.0) as client:
            r = await client.post(
                f"{base}/storage/v1/object/{settings.storage_bucket}/{object_path}",
                headers={
                    "Authorization": f"Bearer {settings.supabase_key}",
                    "apikey": settings.supabase_key,
                    "Content-Type": content_type or "application/octet-stream",
                },
                content=content,
            )
        if r.is_success:
            return f"{base}/storage/v1/object/public/{settings.storage_bucket}/{object_path}"
        logger.warning("Storage upload failed with status %s: %s", r.status_code, r.text[:200])
    except httpx.HTTPError as e:
        logger.warning("Storage upload failed: %s", e)
    return save_ephemeral(content, filename)


def to_data_url(path: Path, mime_type: str | None = None) -> str:
    mime = mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def to_fetchable(ref: str, mime_type: str | None = None) -> str:
    """Data and http(s) references pass through; ephemeral ones are inlined as base64."""
    if ref.startswith(("data:", "http://", "https://")):
        return ref
    if is_ephemeral(ref):
        try:
            return to_data_url(resolve_ephemeral(ref), mime_type)
        except OSError as e:
            raise ImageReferenceError(f"Failed to read {ref}: {e}") from e
    return ref


def probe_dimensions(content: bytes) -> Dimensions | None:
    """Pixel size of an uploaded image, or None when it is not a readable image."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            width, height = img.size
        return Dimensions(width=width, height=height)
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Could not read image dimensions: %s", e)
        return None
