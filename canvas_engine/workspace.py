"""Per-client workspaces (graph, cache, autosave, generation) + WebSocket ConnectionManager."""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Coroutine

from canvas_engine.config import settings
from canvas_engine.graph_state import GraphStore
from canvas_engine.pipelines.autosave import AutosaveStatus, CanvasAutosaver
from canvas_engine.pipelines.generation import GenerationOrchestrator
from canvas_engine.pipelines.templates import apply_template, get_template
from canvas_engine.services.canvas_repository import CanvasStore, get_repository
from canvas_engine.services.content_cache import ContentCache

logger = logging.getLogger(__name__)

_workspaces: dict[str, "CanvasWorkspace"] = {}
_cache: ContentCache | None = None
_background: set[asyncio.Task] = set()


@dataclass
class ConnectionManager:
    """Manages canvas WebSocket connections, grouped by client."""

    connections: dict[str, set[Any]] = field(default_factory=lambda: defaultdict(set))
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def connect(self, client_id: str, websocket: Any) -> None:
        async with self._lock:
            self.connections[client_id].add(websocket)

    async def disconnect(self, client_id: str, websocket: Any) -> None:
        async with self._lock:
            self.connections[client_id].discard(websocket)

    async def broadcast(self, client_id: str, message: dict[str, Any]) -> None:
        dead: set[Any] = set()
        async with self._lock:
            conns = set(self.connections.get(client_id, ()))
        for ws in conns:
            try:
                await ws.send_json(message)
            except Exception:
                dead.add(ws)
        for ws in dead:
            async with self._lock:
                self.connections[client_id].discard(ws)


connection_manager = ConnectionManager()


def _spawn(coro: Coroutine[Any, Any, None]) -> None:
    """Fire-and-forget on the running loop; dropped when called outside one."""
    try:
        task = asyncio.get_running_loop().create_task(coro)
    except RuntimeError:
        coro.close()
        return
    _background.add(task)
    task.add_done_callback(_background.discard)


async def broadcast_graph_update(client_id: str, action: str, payload: dict[str, Any]) -> None:
    msg = {
        "type": "graph_update",
        "action": action,
        "payload": payload,
        "timestamp": datetime.utcnow().isoformat(),
    }
    await connection_manager.broadcast(client_id, msg)


def get_cache() -> ContentCache:
    """Extraction cache shared by every workspace of the process."""
    global _cache
    if _cache is None:
        _cache = ContentCache(path=settings.cache_path or None)
    return _cache


class CanvasWorkspace:
    """Everything one client's canvas needs: graph store, cache, autosaver and orchestrator."""

    def __init__(
        self,
        client_id: str,
        repository: CanvasStore | None = None,
        cache: ContentCache | None = None,
        autosave_delay: float | None = None,
        saved_display: float | None = None,
    ) -> None:
        self.client_id = client_id
        self.store = GraphStore()
        self.repository = repository or get_repository()
        self.cache = cache or get_cache()
        self.autosaver = CanvasAutosaver(
            self.store,
            self.repository,
            client_id,
            delay=autosave_delay,
            saved_display=saved_display,
            on_status=self._on_autosave_status,
        )
        self.orchestrator = GenerationOrchestrator(self.store, client_id)
        self._unsubscribe = self.store.subscribe(self._on_graph_change)

    def _on_graph_change(self, action: str, payload: dict[str, Any]) -> None:
        _spawn(broadcast_graph_update(self.client_id, action, payload))

    def _on_autosave_status(self, status: AutosaveStatus) -> None:
        _spawn(connection_manager.broadcast(self.client_id, {"type": "autosave_status", "status": status.value}))

    def state(self) -> dict[str, Any]:
        snap = self.store.snapshot()
        return {
            "client_id": self.client_id,
            "canvas_id": self.autosaver.canvas_id,
            "name": self.autosaver.name,
            "autosave_status": self.autosaver.status.value,
            "nodes": snap["nodes"],
            "edges": snap["edges"],
        }

    def apply_template(self, template_id: str) -> dict[str, str]:
        ids = apply_template(self.store, template_id)
        self.autosaver.rename(get_template(template_id).name)
        return ids

    async def close(self) -> None:
        await self.autosaver.flush()
        self.autosaver.close()
        self._unsubscribe()


def get_workspace(client_id: str) -> CanvasWorkspace:
    ws = _workspaces.get(client_id)
    if ws is None:
        ws = CanvasWorkspace(client_id)
        _workspaces[client_id] = ws
        logger.info("Workspace created for client %s", client_id)
    return ws


def workspace_count() -> int:
    return len(_workspaces)


async def close_workspaces() -> None:
    for client_id, ws in list(_workspaces.items()):
        try:
            await ws.close()
        except Exception as e:
            logger.warning("Closing workspace %s failed: %s", client_id, e)
    _workspaces.clear()
