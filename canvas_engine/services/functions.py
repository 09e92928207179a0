"""Remote backend functions: extraction, transcription, analysis and generation endpoints."""
import logging
from typing import Any, AsyncIterator

import httpx

from canvas_engine.config import settings

logger = logging.getLogger(__name__)

QUOTA_ERROR_CODE = "TOKENS_EXHAUSTED"


class RemoteCallError(Exception):
    """A backend function failed or answered with a non-2xx status."""

    def __init__(self, function: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{function}: {message}")
        self.function = function
        self.status = status


class QuotaExceededError(RemoteCallError):
    """HTTP 402 or a TOKENS_EXHAUSTED error code: the tenant is out of credits."""

    def __init__(self, function: str, message: str = "Insufficient credits") -> None:
        super().__init__(function, message, status=402)
        self.code = QUOTA_ERROR_CODE


def _url(name: str) -> str:
    if not settings.functions_url:
        raise RemoteCallError(name, "FUNCTIONS_URL not configured")
    return f"{settings.functions_url.rstrip('/')}/{name}"


def _headers() -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.supabase_key:
        headers["Authorization"] = f"Bearer {settings.supabase_key}"
        headers["apikey"] = settings.supabase_key
    return headers


def _raise_for_payload(name: str, data: Any) -> None:
    if isinstance(data, dict) and data.get("error"):
        if data.get("code") == QUOTA_ERROR_CODE:
            raise QuotaExceededError(name, str(data["error"]))
        raise RemoteCallError(name, str(data["error"]))


async def invoke(name: str, body: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
    """Call a backend function and return its JSON body."""
    url = _url(name)
    try:
        async with httpx.AsyncClient(timeout=timeout or settings.remote_timeout_seconds) as client:
            r = await client.post(url, headers=_headers(), json=body)
    except httpx.HTTPError as e:
        raise RemoteCallError(name, f"request failed: {e}") from e
    if r.status_code == 402:
        raise QuotaExceededError(name)
    if not r.is_success:
        logger.warning("Function %s failed: %s - %s", name, r.status_code, r.text[:300])
        raise RemoteCallError(name, r.text[:300] or "request failed", status=r.status_code)
    try:
        data = r.json()
    except ValueError as e:
        raise RemoteCallError(name, "invalid JSON response", status=r.status_code) from e
    _raise_for_payload(name, data)
    return data if isinstance(data, dict) else {"data": data}


async def stream_text(name: str, body: dict[str, Any], timeout: float | None = None) -> AsyncIterator[str]:
    """POST to a streaming function and yield decoded text chunks as they arrive."""
    url = _url(name)
    try:
        async with httpx.AsyncClient(timeout=timeout or settings.generation_timeout_seconds) as client:
            async with client.stream("POST", url, headers=_headers(), json=body) as r:
                if r.status_code == 402:
                    raise QuotaExceededError(name)
                if not r.is_success:
                    text = (await r.aread()).decode("utf-8", errors="replace")
                    logger.warning("Stream %s failed: %s - %s", name, r.status_code, text[:300])
                    raise RemoteCallError(name, text[:300] or "request failed", status=r.status_code)
                async for chunk in r.aiter_text():
                    yield chunk
    except httpx.HTTPError as e:
        raise RemoteCallError(name, f"stream failed: {e}") from e


# Named extractors and generators


async def extract_youtube(url: str) -> dict[str, Any]:
    return await invoke("extract-youtube", {"url": url})


async def extract_instagram(url: str) -> dict[str, Any]:
    return await invoke("extract-instagram", {"url": url})


async def fetch_reference_content(url: str) -> dict[str, Any]:
    return await invoke("fetch-reference-content", {"url": url})


async def transcribe_media(
    url: str | None = None,
    base64: str | None = None,
    file_name: str = "media",
    mime_type: str | None = None,
) -> dict[str, Any]:
    """Audio/video to text. Either a fetchable URL or inline base64 content."""
    body: dict[str, Any] = {"fileName": file_name}
    if base64:
        body["base64"] = base64
    else:
        body["url"] = url
    if mime_type:
        body["mimeType"] = mime_type
    return await invoke("transcribe-media", body)


async def transcribe_images(image_urls: list[str], start_index: int = 1) -> dict[str, Any]:
    return await invoke("transcribe-images", {"imageUrls": image_urls, "startIndex": start_index})


async def analyze_image_complete(image_url: str) -> dict[str, Any]:
    return await invoke("analyze-image-complete", {"imageUrl": image_url})


async def generate_image(body: dict[str, Any]) -> dict[str, Any]:
    return await invoke("generate-image", body, timeout=settings.generation_timeout_seconds)


def stream_content(body: dict[str, Any]) -> AsyncIterator[str]:
    return stream_text("kai-content-agent", body)
