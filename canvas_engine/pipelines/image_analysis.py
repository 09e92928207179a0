"""Image analysis pipeline: style JSON and OCR per image, with timeouts and bounded batches."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from canvas_engine.config import settings
from canvas_engine.graph_state import GraphStore
from canvas_engine.models.canvas import CanvasImage, ImageMetadata, StyleAnalysis
from canvas_engine.services import functions, storage
from canvas_engine.services.functions import RemoteCallError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ImageAnalysisError(Exception):
    """Analysis or OCR of one image failed or timed out."""


@dataclass(frozen=True)
class AnalysisTarget:
    node_id: str
    image_id: str
    url: str


@dataclass
class BatchResult:
    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


def _dig(raw: dict[str, Any], *path: str) -> Any:
    cur: Any = raw
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _first(*values: Any, default: Any = None) -> Any:
    return next((v for v in values if v), default)


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v) or None
    return str(value)


def _texts(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)]


def normalize_style_analysis(raw: dict[str, Any] | None, generation_prompt: str = "") -> StyleAnalysis:
    """Coalesce the field variants of both analyzer schemas into one fixed shape.

    Analyzers are loose about types: lists where a word is expected are joined,
    a single string where a list is expected is wrapped.
    """
    raw = raw if isinstance(raw, dict) else {}
    return StyleAnalysis(
        dominant_colors=_texts(
            _first(_dig(raw, "colors", "dominant"), _dig(raw, "color_palette", "dominant_colors"))
        ),
        color_mood=_text(
            _first(_dig(raw, "colors", "mood_from_colors"), _dig(raw, "color_palette", "color_mood"))
        ) or "neutral",
        visual_style=_text(_first(_dig(raw, "style", "art_style"), _dig(raw, "style", "photography_style")))
        or "general",
        art_direction=_text(
            _first(_dig(raw, "style", "visual_treatment"), _dig(raw, "style", "illustration_technique"))
        ) or "mixed",
        composition=_text(_dig(raw, "composition", "layout")) or "centered",
        has_text=bool(_dig(raw, "text_elements", "has_text")),
        text_style=_text(
            _first(
                _dig(raw, "text_elements", "typography_style"),
                _dig(raw, "text_elements", "text_style"),
                _dig(raw, "text_elements", "font_characteristics"),
            )
        ),
        mood=_text(
            _first(_dig(raw, "mood_atmosphere", "primary_mood"), _dig(raw, "mood_atmosphere", "overall_mood"))
        ) or "neutral",
        lighting=_text(_dig(raw, "lighting", "type")) or "natural",
        prompt_description=_text(_first(generation_prompt, raw.get("description"))) or "",
    )


def _now() -> str:
    return datetime.utcnow().isoformat()


def _find_image(store: GraphStore, node_id: str, image_id: str) -> CanvasImage | None:
    node = store.get_node(node_id)
    images = getattr(node.data, "images", None) if node else None
    return next((img for img in images or [] if img.id == image_id), None)


def _metadata(store: GraphStore, node_id: str, image_id: str) -> ImageMetadata:
    img = _find_image(store, node_id, image_id)
    return img.metadata if img else ImageMetadata()


def _record_failure(store: GraphStore, node_id: str, image_id: str, message: str) -> None:
    meta = _metadata(store, node_id, image_id).model_copy(update={"last_error": message})
    store.update_image_in_node(
        node_id, image_id, {"is_processing": False, "processing_type": None, "metadata": meta}
    )


async def _call_with_timeout(coro_factory: Callable[[str], Any], url: str, timeout: float | None) -> dict[str, Any]:
    ref = await asyncio.to_thread(storage.to_fetchable, url)
    return await asyncio.wait_for(coro_factory(ref), timeout=timeout or settings.analysis_timeout_seconds)


async def analyze_image(
    store: GraphStore, node_id: str, image_id: str, url: str, timeout: float | None = None
) -> StyleAnalysis:
    """Full style analysis of one image of an image-source or attachment node."""
    store.update_image_in_node(node_id, image_id, {"is_processing": True, "processing_type": "json"})
    try:
        data = await _call_with_timeout(functions.analyze_image_complete, url, timeout)
        raw = data.get("imageAnalysis") or {}
        if not isinstance(raw, dict):
            raise ValueError(f"imageAnalysis is a {type(raw).__name__}, expected an object")
        generation_prompt = str(data.get("generationPrompt") or "")
        style = normalize_style_analysis(raw, generation_prompt)
    except asyncio.TimeoutError as e:
        _record_failure(store, node_id, image_id, "Timeout: analysis took too long")
        raise ImageAnalysisError(f"Analysis of {image_id} timed out") from e
    except (RemoteCallError, storage.ImageReferenceError) as e:
        _record_failure(store, node_id, image_id, str(e))
        raise ImageAnalysisError(f"Analysis of {image_id} failed: {e}") from e
    except Exception as e:
        logger.error("Unexpected analysis response for image %s: %s", image_id, e)
        _record_failure(store, node_id, image_id, f"Invalid analysis response: {e}")
        raise ImageAnalysisError(f"Analysis of {image_id} failed: {e}") from e

    meta = _metadata(store, node_id, image_id).model_copy(
        update={
            "analyzed": True,
            "analyzed_at": _now(),
            "last_error": None,
            "image_analysis": {**raw, "generation_prompt": generation_prompt},
            "style_analysis": style,
        }
    )
    store.update_image_in_node(
        node_id, image_id, {"analyzed": True, "is_processing": False, "processing_type": None, "metadata": meta}
    )
    return style


async def ocr_image(store: GraphStore, node_id: str, image_id: str, url: str, timeout: float | None = None) -> str:
    """Extract the text printed on one image."""
    store.update_image_in_node(node_id, image_id, {"is_processing": True, "processing_type": "ocr"})

    def _transcribe(ref: str):
        return functions.transcribe_images([ref], start_index=1)

    try:
        data = await _call_with_timeout(_transcribe, url, timeout)
        transcriptions = data.get("transcriptions") or []
        text = _text(data.get("transcription") or (transcriptions[0] if transcriptions else "")) or ""
    except asyncio.TimeoutError as e:
        _record_failure(store, node_id, image_id, "Timeout: OCR took too long")
        raise ImageAnalysisError(f"OCR of {image_id} timed out") from e
    except (RemoteCallError, storage.ImageReferenceError) as e:
        _record_failure(store, node_id, image_id, str(e))
        raise ImageAnalysisError(f"OCR of {image_id} failed: {e}") from e
    except Exception as e:
        logger.error("Unexpected OCR response for image %s: %s", image_id, e)
        _record_failure(store, node_id, image_id, f"Invalid OCR response: {e}")
        raise ImageAnalysisError(f"OCR of {image_id} failed: {e}") from e

    meta = _metadata(store, node_id, image_id).model_copy(
        update={"ocr_text": text, "ocr_at": _now(), "last_error": None}
    )
    store.update_image_in_node(
        node_id, image_id, {"is_processing": False, "processing_type": None, "metadata": meta}
    )
    return text


async def analyze_source_file_style(
    store: GraphStore, node_id: str, file_id: str, timeout: float | None = None
) -> StyleAnalysis:
    """Style analysis for an image file uploaded to a source node."""
    node = store.get_node(node_id)
    if node is None or node.data.type != "source":
        raise ImageAnalysisError(f"Node {node_id} is not a source node")
    file = next((f for f in node.data.files if f.id == file_id), None)
    if file is None:
        raise ImageAnalysisError(f"File {file_id} not found on node {node_id}")

    store.update_file_in_node(node_id, file_id, {"is_processing": True})
    try:
        data = await _call_with_timeout(functions.analyze_image_complete, file.url, timeout)
        raw = data.get("imageAnalysis") or {}
        if not isinstance(raw, dict):
            raise ValueError(f"imageAnalysis is a {type(raw).__name__}, expected an object")
        generation_prompt = str(data.get("generationPrompt") or "")
        style = normalize_style_analysis(raw, generation_prompt)
    except Exception as e:
        if not isinstance(e, (asyncio.TimeoutError, RemoteCallError, storage.ImageReferenceError)):
            logger.error("Unexpected style analysis response for file %s: %s", file_id, e)
        store.update_file_in_node(node_id, file_id, {"is_processing": False})
        raise ImageAnalysisError(f"Style analysis of {file.name} failed: {str(e) or 'timeout'}") from e

    previous = file.metadata or ImageMetadata()
    meta = previous.model_copy(
        update={
            "analyzed": True,
            "analyzed_at": _now(),
            "image_analysis": {**raw, "generation_prompt": generation_prompt},
            "style_analysis": style,
        }
    )
    summary = {
        "colors": style.dominant_colors + list(_dig(raw, "color_palette", "accent_colors") or []),
        "mood": style.mood,
        "style": style.visual_style,
        "fonts": [style.text_style] if style.text_style else [],
        "description": generation_prompt or raw.get("description") or "Visual style analysis",
    }
    store.update_file_in_node(
        node_id, file_id, {"style_analysis": summary, "metadata": meta, "is_processing": False}
    )
    return style


async def analyze_images_in_parallel(
    store: GraphStore,
    targets: list[AnalysisTarget],
    on_progress: ProgressCallback | None = None,
    on_batch: ProgressCallback | None = None,
    batch_size: int | None = None,
) -> BatchResult:
    """Analyze images in groups of ``batch_size`` running concurrently.

    ``on_progress(completed, total)`` fires after every image and
    ``on_batch(completed, total)`` after every group. A failed image is
    counted and logged; it never stops the remaining ones.
    """
    size = batch_size or settings.analysis_batch_size
    total = len(targets)
    result = BatchResult()
    completed = 0

    async def _one(target: AnalysisTarget) -> None:
        nonlocal completed
        try:
            await analyze_image(store, target.node_id, target.image_id, target.url)
            result.succeeded += 1
        except ImageAnalysisError as e:
            logger.warning("Failed to analyze image %s: %s", target.image_id, e)
            result.failed += 1
        completed += 1
        if on_progress:
            on_progress(completed, total)

    for i in range(0, total, size):
        batch = targets[i:i + size]
        await asyncio.gather(*(_one(t) for t in batch), return_exceptions=True)
        if on_batch:
            on_batch(min(i + size, total), total)
    return result
