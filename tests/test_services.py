"""Tests for the remote service clients: backend functions, storage and the canvas repository.

Mocking strategy:
- Every outgoing httpx request is mocked with ``respx``; the PostgREST
  repository is pointed at ``https://db.test/rest/v1``.
"""
from __future__ import annotations

import json

import httpx
import pytest
import respx

from canvas_engine.config import settings
from canvas_engine.services import functions, storage
from canvas_engine.services.canvas_repository import CanvasRepository, RepositoryError
from canvas_engine.services.functions import QuotaExceededError, RemoteCallError

REST = "https://db.test/rest/v1"


# ---------------------------------------------------------------------------
# Backend functions
# ---------------------------------------------------------------------------


class TestInvoke:
    @respx.mock
    async def test_returns_json_body(self, fn_url):
        route = respx.post(fn_url("extract-youtube")).mock(return_value=httpx.Response(200, json={"title": "T"}))
        assert await functions.extract_youtube("https://youtu.be/x") == {"title": "T"}
        assert json.loads(route.calls.last.request.content) == {"url": "https://youtu.be/x"}

    @respx.mock
    async def test_402_is_quota(self, fn_url):
        respx.post(fn_url("generate-image")).mock(return_value=httpx.Response(402))
        with pytest.raises(QuotaExceededError) as exc:
            await functions.generate_image({"prompt": "x"})
        assert exc.value.code == "TOKENS_EXHAUSTED"

    @respx.mock
    async def test_error_code_in_body_is_quota(self, fn_url):
        respx.post(fn_url("extract-instagram")).mock(
            return_value=httpx.Response(200, json={"error": "out of tokens", "code": "TOKENS_EXHAUSTED"})
        )
        with pytest.raises(QuotaExceededError):
            await functions.extract_instagram("https://instagram.com/p/x")

    @respx.mock
    async def test_error_in_body(self, fn_url):
        respx.post(fn_url("transcribe-images")).mock(return_value=httpx.Response(200, json={"error": "bad image"}))
        with pytest.raises(RemoteCallError) as exc:
            await functions.transcribe_images(["https://cdn.test/a.png"])
        assert not isinstance(exc.value, QuotaExceededError)

    @respx.mock
    async def test_server_error_carries_status(self, fn_url):
        respx.post(fn_url("transcribe-media")).mock(return_value=httpx.Response(503, text="busy"))
        with pytest.raises(RemoteCallError) as exc:
            await functions.transcribe_media(url="https://cdn.test/a.mp3")
        assert exc.value.status == 503

    @respx.mock
    async def test_network_error(self, fn_url):
        respx.post(fn_url("fetch-reference-content")).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(RemoteCallError):
            await functions.fetch_reference_content("https://example.com")

    async def test_unconfigured_functions_url(self, monkeypatch):
        monkeypatch.setattr(settings, "functions_url", "")
        with pytest.raises(RemoteCallError):
            await functions.extract_youtube("https://youtu.be/x")

    @respx.mock
    async def test_stream_yields_chunks(self, fn_url, sse):
        respx.post(fn_url("kai-content-agent")).mock(return_value=httpx.Response(200, text=sse("a", "b")))
        chunks = [c async for c in functions.stream_content({"request": "x"})]
        assert "".join(chunks).endswith("data: [DONE]\n\n")

    @respx.mock
    async def test_stream_quota(self, fn_url):
        respx.post(fn_url("kai-content-agent")).mock(return_value=httpx.Response(402))
        with pytest.raises(QuotaExceededError):
            async for _ in functions.stream_content({"request": "x"}):
                pass


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class TestStorage:
    async def test_upload_without_storage_is_ephemeral(self):
        ref = await storage.upload(b"data", "clip.mp4", "video/mp4")
        assert storage.is_ephemeral(ref)
        assert storage.resolve_ephemeral(ref).read_bytes() == b"data"

    @respx.mock
    async def test_upload_to_object_storage(self, monkeypatch):
        monkeypatch.setattr(settings, "supabase_url", "https://db.test")
        monkeypatch.setattr(settings, "supabase_key", "key")
        route = respx.post(url__startswith="https://db.test/storage/v1/object/content-media/").mock(
            return_value=httpx.Response(200, json={"Key": "x"})
        )
        url = await storage.upload(b"data", "photo.png", "image/png")
        assert route.called
        assert url.startswith("https://db.test/storage/v1/object/public/content-media/")
        assert url.endswith(".png")

    @respx.mock
    async def test_failed_upload_falls_back_to_ephemeral(self, monkeypatch):
        monkeypatch.setattr(settings, "supabase_url", "https://db.test")
        monkeypatch.setattr(settings, "supabase_key", "key")
        respx.post(url__startswith="https://db.test/storage/").mock(return_value=httpx.Response(500))
        assert storage.is_ephemeral(await storage.upload(b"data", "photo.png", "image/png"))

    def test_traversal_is_rejected(self):
        with pytest.raises(storage.ImageReferenceError):
            storage.resolve_ephemeral("blob:../etc/passwd")

    def test_to_fetchable(self):
        assert storage.to_fetchable("https://cdn.test/a.png") == "https://cdn.test/a.png"
        ref = storage.save_ephemeral(b"abc", "a.txt")
        assert storage.to_fetchable(ref) == "data:text/plain;base64,YWJj"
        with pytest.raises(storage.ImageReferenceError):
            storage.to_fetchable("blob:missing.png")

    def test_probe_dimensions_of_non_image(self):
        assert storage.probe_dimensions(b"not an image") is None


# ---------------------------------------------------------------------------
# PostgREST repository
# ---------------------------------------------------------------------------


class TestCanvasRepository:
    @pytest.fixture()
    def repo(self):
        return CanvasRepository(REST, "key")

    @respx.mock
    async def test_list_filters_by_client_newest_first(self, repo):
        route = respx.get(url__startswith=f"{REST}/content_canvas").mock(
            return_value=httpx.Response(200, json=[{"id": "c1", "client_id": "cl", "name": "A", "nodes": [], "edges": []}])
        )
        canvases = await repo.list_canvases("cl")
        assert [c.id for c in canvases] == ["c1"]
        params = route.calls.last.request.url.params
        assert params["client_id"] == "eq.cl"
        assert params["order"] == "updated_at.desc"
        assert route.calls.last.request.headers["apikey"] == "key"

    @respx.mock
    async def test_upsert_omits_missing_id(self, repo):
        route = respx.post(f"{REST}/content_canvas").mock(
            return_value=httpx.Response(201, json=[{"id": "new", "client_id": "cl", "name": "A"}])
        )
        row = await repo.upsert_canvas({"id": None, "client_id": "cl", "name": "A", "nodes": [], "edges": []})
        assert row.id == "new"
        request = route.calls.last.request
        assert "id" not in json.loads(request.content)
        assert "merge-duplicates" in request.headers["Prefer"]

    @respx.mock
    async def test_get_missing_canvas(self, repo):
        respx.get(url__startswith=f"{REST}/content_canvas").mock(return_value=httpx.Response(200, json=[]))
        assert await repo.get_canvas("nope") is None

    @respx.mock
    async def test_http_error_becomes_repository_error(self, repo):
        respx.delete(url__startswith=f"{REST}/content_canvas").mock(return_value=httpx.Response(500, text="db down"))
        with pytest.raises(RepositoryError):
            await repo.delete_canvas("c1")

    @respx.mock
    async def test_planning_item(self, repo):
        respx.post(f"{REST}/planning_items").mock(
            return_value=httpx.Response(201, json=[{"id": "p1", "title": "Post - 01/01/2026"}])
        )
        assert (await repo.create_planning_item({"title": "Post - 01/01/2026"}))["id"] == "p1"
