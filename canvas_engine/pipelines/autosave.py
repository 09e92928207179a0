"""Debounced autosave of the whole canvas snapshot, plus manual save/load/delete."""
import asyncio
import json
import logging
from datetime import date
from enum import Enum
from typing import Any, Callable

from canvas_engine.config import settings
from canvas_engine.graph_state import GraphStore
from canvas_engine.models.canvas import SavedCanvas
from canvas_engine.services.canvas_repository import CanvasStore, RepositoryError

logger = logging.getLogger(__name__)

DEFAULT_CANVAS_NAME = "New canvas"


class AutosaveStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class CanvasAutosaver:
    """Saves the graph a fixed delay after the last mutation, when it actually changed.

    Change detection compares the sorted-key JSON of ``{nodes, edges, name}``
    with the last successfully saved serialization. ``saved`` reverts to
    ``idle`` after a short display window; ``error`` stays until the next
    save attempt.
    """

    def __init__(
        self,
        store: GraphStore,
        repository: CanvasStore,
        client_id: str,
        delay: float | None = None,
        saved_display: float | None = None,
        on_status: Callable[[AutosaveStatus], None] | None = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.client_id = client_id
        self.delay = settings.autosave_delay_seconds if delay is None else delay
        self.saved_display = settings.saved_display_seconds if saved_display is None else saved_display
        self.canvas_id: str | None = None
        self.name = DEFAULT_CANVAS_NAME
        self.status = AutosaveStatus.IDLE
        self._on_status = on_status
        self._last_saved = ""
        self._loading = False
        self._timer: asyncio.Task | None = None
        # bumped by every reset; a save started under an older value is discarded
        self._generation = 0
        self._save_lock = asyncio.Lock()
        self._revert: asyncio.Task | None = None
        self._unsubscribe = store.subscribe(self._on_graph_change)

    # -- state -------------------------------------------------------------

    def serialize(self) -> str:
        snap = self.store.snapshot()
        return json.dumps({"nodes": snap["nodes"], "edges": snap["edges"], "name": self.name}, sort_keys=True)

    def _set_status(self, status: AutosaveStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status:
            try:
                self._on_status(status)
            except Exception as e:
                logger.warning("Autosave status listener failed: %s", e)

    def _cancel(self, task: asyncio.Task | None) -> None:
        if task is not None and not task.done():
            task.cancel()

    def _schedule(self, coro_fn: Callable[[], Any]) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, autosave not scheduled")
            return None
        return loop.create_task(coro_fn())

    # -- change tracking ---------------------------------------------------

    def _on_graph_change(self, action: str, payload: dict[str, Any]) -> None:
        if self._loading:
            return
        self.notify_change()

    def notify_change(self) -> None:
        """Restart the debounce window if the graph differs from the last save."""
        if self.store.is_empty():
            self._cancel(self._timer)
            self._set_status(AutosaveStatus.IDLE)
            return
        if self.serialize() == self._last_saved:
            return
        self._set_status(AutosaveStatus.PENDING)
        self._cancel(self._timer)
        self._timer = self._schedule(self._debounced)

    async def _debounced(self) -> None:
        await asyncio.sleep(self.delay)
        # mutations during the save open a new window rather than cancel this one
        self._timer = None
        await self._autosave()

    async def _autosave(self) -> None:
        async with self._save_lock:
            await self._autosave_locked()

    async def _autosave_locked(self) -> None:
        current = self.serialize()
        if self.store.is_empty() or current == self._last_saved:
            if self.status == AutosaveStatus.PENDING:
                self._set_status(AutosaveStatus.IDLE)
            return
        generation = self._generation
        self._set_status(AutosaveStatus.SAVING)
        try:
            row = await self._upsert(self.name)
        except RepositoryError as e:
            if generation != self._generation:
                return
            logger.error("Auto-save error for %s: %s", self.client_id, e)
            self._set_status(AutosaveStatus.ERROR)
            return
        if generation != self._generation:
            logger.info("Discarding auto-save of canvas %s, a different canvas is open", row.id)
            return
        self.canvas_id = row.id
        self._last_saved = current
        # a mutation during the save already moved the status back to pending
        if self.status == AutosaveStatus.SAVING:
            self._mark_saved()

    def _mark_saved(self) -> None:
        self._set_status(AutosaveStatus.SAVED)
        self._cancel(self._revert)
        self._revert = self._schedule(self._revert_to_idle)

    async def _revert_to_idle(self) -> None:
        await asyncio.sleep(self.saved_display)
        if self.status == AutosaveStatus.SAVED:
            self._set_status(AutosaveStatus.IDLE)

    async def _upsert(self, name: str) -> SavedCanvas:
        snap = self.store.snapshot()
        return await self.repository.upsert_canvas(
            {
                "id": self.canvas_id,
                "client_id": self.client_id,
                "name": name,
                "nodes": snap["nodes"],
                "edges": snap["edges"],
            }
        )

    async def flush(self) -> None:
        """Run a pending autosave now instead of waiting for the timer."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            await self._autosave()

    # -- explicit operations -------------------------------------------------

    async def save(self, name: str | None = None) -> SavedCanvas:
        self._cancel(self._timer)
        name = name or self.name or f"Canvas {date.today().strftime('%d/%m/%Y')}"
        # waits for an in-flight auto-save so the first row's id is reused
        async with self._save_lock:
            generation = self._generation
            self._set_status(AutosaveStatus.SAVING)
            try:
                row = await self._upsert(name)
            except RepositoryError:
                if generation == self._generation:
                    self._set_status(AutosaveStatus.ERROR)
                raise
        if generation != self._generation:
            logger.info("Canvas %s saved after a different canvas was opened", row.id)
            return row
        self.canvas_id = row.id
        self.name = row.name
        self._last_saved = self.serialize()
        self._mark_saved()
        logger.info("Canvas %s saved as %r", row.id, row.name)
        return row

    def rename(self, name: str) -> None:
        self.name = name
        self.notify_change()

    def _reset(self, canvas: SavedCanvas | None = None) -> None:
        """Empty the graph, then load ``canvas`` into it, without flagging anything as pending."""
        self._generation += 1
        self._cancel(self._timer)
        self._cancel(self._revert)
        self._loading = True
        try:
            self.store.clear()
            if canvas is not None:
                self.store.replace(canvas.nodes, canvas.edges)
        finally:
            self._loading = False
        self.canvas_id = canvas.id if canvas else None
        self.name = canvas.name if canvas else DEFAULT_CANVAS_NAME
        self._last_saved = self.serialize() if canvas else ""
        self._set_status(AutosaveStatus.IDLE)

    async def load(self, canvas_id: str) -> SavedCanvas:
        canvas = await self.repository.get_canvas(canvas_id)
        if canvas is None:
            raise KeyError(f"Canvas {canvas_id} not found")
        self._reset(canvas)
        logger.info("Canvas %s loaded (%d nodes)", canvas.id, len(canvas.nodes))
        return canvas

    async def load_latest(self) -> SavedCanvas | None:
        """Load the most recently updated canvas when nothing is open yet."""
        if self.canvas_id or not self.store.is_empty():
            return None
        canvases = await self.repository.list_canvases(self.client_id)
        if not canvases:
            return None
        self._reset(canvases[0])
        return canvases[0]

    def switch_client(self, client_id: str) -> None:
        if client_id == self.client_id:
            return
        logger.info("Client changed: %s -> %s", self.client_id, client_id)
        self.client_id = client_id
        self._reset()

    def new_canvas(self) -> None:
        self._reset()

    async def delete(self, canvas_id: str) -> None:
        async with self._save_lock:
            await self.repository.delete_canvas(canvas_id)
            if canvas_id == self.canvas_id:
                self._reset()

    async def list_canvases(self) -> list[SavedCanvas]:
        return await self.repository.list_canvases(self.client_id)

    def close(self) -> None:
        self._cancel(self._timer)
        self._cancel(self._revert)
        self._unsubscribe()
