"""Extraction pipeline: classify a source, call the matching extractor, cache and store the result."""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from canvas_engine.graph_state import GraphStore
from canvas_engine.services import functions, storage
from canvas_engine.services.content_cache import ContentCache, content_hash, file_cache_key, url_cache_key
from canvas_engine.services.functions import RemoteCallError

logger = logging.getLogger(__name__)

TRANSCRIBABLE_FILE_TYPES = ("audio", "video")


class SourceKind(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    URL = "url"
    TEXT = "text"


class ExtractionError(Exception):
    """Extraction produced no usable content."""


@dataclass
class ExtractionResult:
    node_id: str
    title: str | None
    from_cache: bool = False
    data: dict[str, Any] = field(default_factory=dict)


def classify_source(value: str) -> SourceKind:
    """YouTube, then Instagram post/reel, then any http(s) URL, else plain text."""
    v = value.strip()
    if "youtube.com" in v or "youtu.be" in v:
        return SourceKind.YOUTUBE
    if "instagram.com/p/" in v or "instagram.com/reel/" in v or "instagr.am" in v:
        return SourceKind.INSTAGRAM
    if v.startswith(("http://", "https://")):
        return SourceKind.URL
    return SourceKind.TEXT


def is_reel(url: str) -> bool:
    return "/reel/" in url


def word_count(text: str) -> int:
    return len(text.split())


def _domain(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.replace("www.", "", 1)


async def _extract_youtube(url: str) -> dict[str, Any]:
    data = await functions.extract_youtube(url)
    transcript = data.get("content") or data.get("transcript") or ""
    has_transcript = data.get("hasTranscript") is not False and bool(transcript)
    meta = data.get("metadata") or {}
    return {
        "extracted_content": transcript,
        "title": data.get("title") or url,
        "thumbnail": data.get("thumbnail") or "",
        "url_type": "youtube",
        "content_metadata": {
            "channel": data.get("channel") or data.get("author") or meta.get("author"),
            "duration": data.get("duration") or meta.get("duration"),
            "views": data.get("views"),
            "wordCount": word_count(transcript),
            "sourceUrl": url,
            "source": "YouTube",
            "transcriptUnavailable": not has_transcript,
        },
    }


async def _transcribe_instagram(images: list[str], reel: bool) -> str:
    """Secondary transcription; failures are logged and yield an empty string."""
    if reel:
        try:
            data = await functions.transcribe_media(url=images[0], file_name="reels.mp4")
            return data.get("text") or ""
        except RemoteCallError as e:
            logger.warning("Failed to transcribe Reels audio: %s", e)
            return ""
    try:
        data = await functions.transcribe_images(images, start_index=1)
        return data.get("transcription") or ""
    except RemoteCallError as e:
        logger.warning("Failed to transcribe Instagram images: %s", e)
        return ""


async def _extract_instagram(url: str) -> dict[str, Any]:
    reel = is_reel(url)
    data = await functions.extract_instagram(url)
    images: list[str] = data.get("images") or []
    caption: str = data.get("caption") or ""
    if not images:
        raise ExtractionError("No media found in the post")

    transcription = await _transcribe_instagram(images, reel)
    sections = []
    if transcription:
        label = "Video transcription:" if reel else "Image transcription:"
        sections.append(f"{label}\n\n{transcription}")
    if caption:
        sections.append(f"Original caption:\n\n{caption}")
    body = "\n\n".join(sections)

    content_type = "Reels" if reel else ("Carousel" if len(images) > 1 else "Post")
    if caption:
        title = caption[:60] + ("..." if len(caption) > 60 else "")
    else:
        title = f"Instagram {content_type}"
    return {
        "extracted_content": body or "Content extracted from Instagram",
        "extracted_images": images,
        "title": title,
        "thumbnail": images[0],
        "url_type": "instagram",
        "content_metadata": {
            "wordCount": word_count(body),
            "sourceUrl": url,
            "source": f"Instagram {content_type}",
        },
    }


async def _extract_article(url: str) -> dict[str, Any]:
    data = await functions.fetch_reference_content(url)
    if not data.get("success"):
        raise ExtractionError(data.get("error") or "Failed to extract content")
    text = data.get("content") or data.get("markdown") or ""
    if not text.strip():
        raise ExtractionError(f"No content extracted from {url}")
    return {
        "extracted_content": text,
        "extracted_images": data.get("images") or [],
        "title": data.get("title") or url,
        "thumbnail": data.get("thumbnail") or "",
        "url_type": "newsletter" if data.get("type") == "newsletter" else "article",
        "content_metadata": {
            "author": data.get("author"),
            "publishDate": data.get("publishDate") or data.get("date"),
            "wordCount": word_count(text),
            "sourceUrl": url,
            "source": _domain(url),
        },
    }


async def extract_url_content(store: GraphStore, cache: ContentCache, node_id: str, url: str) -> ExtractionResult:
    """Extract a URL into a source/attachment node.

    A cache hit updates the node without any remote call. On failure the
    node's extracting flag is cleared, nothing else is written, and the
    error propagates.
    """
    store.update_node(node_id, {"is_extracting": True})
    key = url_cache_key(url)
    cached = cache.get(key)
    if cached:
        logger.info("Using cached content for %s", url)
        store.update_node(node_id, {**cached, "is_extracting": False})
        return ExtractionResult(node_id=node_id, title=cached.get("title"), from_cache=True, data=cached)

    kind = classify_source(url)
    try:
        if kind == SourceKind.YOUTUBE:
            data = await _extract_youtube(url)
        elif kind == SourceKind.INSTAGRAM:
            data = await _extract_instagram(url)
        else:
            data = await _extract_article(url)
    except (ExtractionError, RemoteCallError) as e:
        logger.warning("Extraction failed for %s: %s", url, e)
        store.update_node(node_id, {"is_extracting": False})
        raise

    cache.set(key, data, content_hash(url))
    store.update_node(node_id, {**data, "is_extracting": False})
    logger.info("Extracted %s (%s, %d words)", url, kind.value, data["content_metadata"]["wordCount"])
    return ExtractionResult(node_id=node_id, title=data.get("title"), data=data)


async def extract_source(store: GraphStore, cache: ContentCache, node_id: str, value: str) -> ExtractionResult:
    """URLs go through the extractors; plain text is stored as the extracted content directly."""
    if classify_source(value) != SourceKind.TEXT:
        return await extract_url_content(store, cache, node_id, value.strip())
    data = {
        "extracted_content": value,
        "content_metadata": {"wordCount": word_count(value), "source": "text"},
    }
    store.update_node(node_id, data)
    return ExtractionResult(node_id=node_id, title=None, data=data)


async def transcribe_file(store: GraphStore, cache: ContentCache, node_id: str, file_id: str) -> str:
    """Transcribe an audio/video file of a source or attachment node."""
    node = store.get_node(node_id)
    files = getattr(node.data, "files", None) if node else None
    file = next((f for f in files or [] if f.id == file_id), None)
    if file is None:
        raise ExtractionError(f"File {file_id} not found on node {node_id}")
    if file.type not in TRANSCRIBABLE_FILE_TYPES:
        raise ExtractionError("Only audio and video files can be transcribed")

    key = file_cache_key(file.name, file.size)
    cached = cache.get(key)
    if cached and cached.get("transcription"):
        logger.info("Using cached transcription for %s", file.name)
        store.update_file_in_node(node_id, file_id, {"transcription": cached["transcription"]})
        return cached["transcription"]

    store.update_file_in_node(node_id, file_id, {"is_processing": True})
    try:
        if storage.is_ephemeral(file.url):
            encoded = await asyncio.to_thread(storage.to_fetchable, file.url, file.mime_type)
            data = await functions.transcribe_media(base64=encoded, file_name=file.name, mime_type=file.mime_type)
        else:
            data = await functions.transcribe_media(url=file.url, file_name=file.name, mime_type=file.mime_type)
    except (RemoteCallError, storage.ImageReferenceError) as e:
        logger.warning("Transcription failed for %s: %s", file.name, e)
        store.update_file_in_node(node_id, file_id, {"is_processing": False})
        raise

    transcription = data.get("text") or "Transcription unavailable"
    cache.set(key, {"transcription": transcription}, content_hash(f"{file.name}_{file.size}"))
    store.update_file_in_node(node_id, file_id, {"transcription": transcription, "is_processing": False})
    return transcription
