"""Document store for saved canvases and planning items (PostgREST over httpx)."""
import logging
import uuid
from datetime import datetime
from typing import Any, Protocol

import httpx

from canvas_engine.config import settings
from canvas_engine.models.canvas import SavedCanvas

logger = logging.getLogger(__name__)

CANVAS_TABLE = "content_canvas"
PLANNING_TABLE = "planning_items"

_instance: "CanvasStore | None" = None


class RepositoryError(Exception):
    """The document store rejected a request or could not be reached."""


class CanvasStore(Protocol):
    async def list_canvases(self, client_id: str) -> list[SavedCanvas]: ...

    async def get_canvas(self, canvas_id: str) -> SavedCanvas | None: ...

    async def upsert_canvas(self, row: dict[str, Any]) -> SavedCanvas: ...

    async def delete_canvas(self, canvas_id: str) -> None: ...

    async def create_planning_item(self, item: dict[str, Any]) -> dict[str, Any]: ...


class CanvasRepository:
    """Row store reachable over PostgREST. Every call is one request/response."""

    def __init__(self, rest_url: str, api_key: str, timeout: float = 30.0) -> None:
        self._rest_url = rest_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                r = await client.request(
                    method,
                    f"{self._rest_url}/{table}",
                    params=params,
                    json=json,
                    headers=self._headers(prefer),
                )
        except httpx.HTTPError as e:
            raise RepositoryError(f"{method} {table} failed: {e}") from e
        if not r.is_success:
            raise RepositoryError(f"{method} {table} failed: {r.status_code} - {r.text[:200]}")
        return r.json() if r.content else None

    async def list_canvases(self, client_id: str) -> list[SavedCanvas]:
        rows = await self._request(
            "GET",
            CANVAS_TABLE,
            params={"select": "*", "client_id": f"eq.{client_id}", "order": "updated_at.desc"},
        )
        return [SavedCanvas.model_validate(r) for r in rows or []]

    async def get_canvas(self, canvas_id: str) -> SavedCanvas | None:
        rows = await self._request("GET", CANVAS_TABLE, params={"select": "*", "id": f"eq.{canvas_id}"})
        return SavedCanvas.model_validate(rows[0]) if rows else None

    async def upsert_canvas(self, row: dict[str, Any]) -> SavedCanvas:
        payload = {k: v for k, v in row.items() if v is not None}
        rows = await self._request(
            "POST",
            CANVAS_TABLE,
            json=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise RepositoryError("upsert returned no row")
        return SavedCanvas.model_validate(rows[0])

    async def delete_canvas(self, canvas_id: str) -> None:
        await self._request("DELETE", CANVAS_TABLE, params={"id": f"eq.{canvas_id}"})

    async def create_planning_item(self, item: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", PLANNING_TABLE, json=item, prefer="return=representation")
        return rows[0] if rows else item


class InMemoryCanvasRepository:
    """Process-local store used when no document store is configured."""

    def __init__(self) -> None:
        self.canvases: dict[str, dict[str, Any]] = {}
        self.planning_items: list[dict[str, Any]] = []

    async def list_canvases(self, client_id: str) -> list[SavedCanvas]:
        rows = [r for r in self.canvases.values() if r.get("client_id") == client_id]
        rows.sort(key=lambda r: r.get("updated_at") or "", reverse=True)
        return [SavedCanvas.model_validate(r) for r in rows]

    async def get_canvas(self, canvas_id: str) -> SavedCanvas | None:
        row = self.canvases.get(canvas_id)
        return SavedCanvas.model_validate(row) if row else None

    async def upsert_canvas(self, row: dict[str, Any]) -> SavedCanvas:
        canvas_id = row.get("id") or str(uuid.uuid4())
        stored = {**self.canvases.get(canvas_id, {}), **{k: v for k, v in row.items() if v is not None}}
        stored["id"] = canvas_id
        stored["updated_at"] = datetime.utcnow().isoformat()
        self.canvases[canvas_id] = stored
        return SavedCanvas.model_validate(stored)

    async def delete_canvas(self, canvas_id: str) -> None:
        self.canvases.pop(canvas_id, None)

    async def create_planning_item(self, item: dict[str, Any]) -> dict[str, Any]:
        stored = {"id": str(uuid.uuid4()), **item}
        self.planning_items.append(stored)
        return stored


def get_repository() -> CanvasStore:
    """Return the process-wide store: PostgREST when configured, in-memory otherwise."""
    global _instance
    if _instance is None:
        if settings.rest_url and settings.supabase_key:
            _instance = CanvasRepository(settings.rest_url, settings.supabase_key)
            logger.info("Canvas repository using %s", settings.rest_url)
        else:
            logger.warning("Document store not configured: set SUPABASE_URL and SUPABASE_KEY")
            _instance = InMemoryCanvasRepository()
    return _instance
