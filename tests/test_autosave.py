"""Tests for canvas_engine.pipelines.autosave.CanvasAutosaver.

Mocking strategy:
- The repository is ``InMemoryCanvasRepository`` (or a subclass that counts
  or fails upserts). Delays are shrunk to tens of milliseconds and the tests
  sleep past them.
"""
from __future__ import annotations

import asyncio

import pytest

from canvas_engine.pipelines.autosave import AutosaveStatus, CanvasAutosaver
from canvas_engine.services.canvas_repository import InMemoryCanvasRepository, RepositoryError

DELAY = 0.1
SAVED_DISPLAY = 0.05


class CountingRepository(InMemoryCanvasRepository):
    def __init__(self) -> None:
        super().__init__()
        self.upserts = 0

    async def upsert_canvas(self, row):
        self.upserts += 1
        return await super().upsert_canvas(row)


class FailingRepository(InMemoryCanvasRepository):
    async def upsert_canvas(self, row):
        raise RepositoryError("POST content_canvas failed: 500")


@pytest.fixture()
def repo():
    return CountingRepository()


@pytest.fixture()
def statuses():
    return []


@pytest.fixture()
async def saver(store, repo, statuses):
    s = CanvasAutosaver(store, repo, "client-1", delay=DELAY, saved_display=SAVED_DISPLAY, on_status=statuses.append)
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------------


class TestDebounce:
    async def test_burst_of_mutations_saves_once(self, store, repo, saver):
        node_id = store.add_node("prompt")
        await asyncio.sleep(DELAY / 2)
        store.update_node(node_id, {"briefing": "first"})
        await asyncio.sleep(DELAY / 2)
        store.update_node(node_id, {"briefing": "second"})
        await asyncio.sleep(DELAY * 0.7)
        assert repo.upserts == 0

        await asyncio.sleep(DELAY)
        assert repo.upserts == 1
        saved = repo.canvases[saver.canvas_id]
        assert saved["nodes"][0]["data"]["briefing"] == "second"
        assert saved["client_id"] == "client-1"

    async def test_status_cycle(self, store, saver, statuses):
        store.add_node("prompt")
        await asyncio.sleep(DELAY + SAVED_DISPLAY + 0.1)
        assert statuses == [
            AutosaveStatus.PENDING,
            AutosaveStatus.SAVING,
            AutosaveStatus.SAVED,
            AutosaveStatus.IDLE,
        ]

    async def test_no_save_without_change(self, store, repo, saver):
        store.add_node("prompt")
        await asyncio.sleep(DELAY * 2)
        assert repo.upserts == 1

        saver.notify_change()
        await asyncio.sleep(DELAY * 2)
        assert repo.upserts == 1
        assert saver.status == AutosaveStatus.IDLE

    async def test_second_save_reuses_canvas_id(self, store, repo, saver):
        node_id = store.add_node("prompt")
        await asyncio.sleep(DELAY * 2)
        first_id = saver.canvas_id
        store.update_node(node_id, {"briefing": "changed"})
        await asyncio.sleep(DELAY * 2)
        assert repo.upserts == 2
        assert saver.canvas_id == first_id
        assert list(repo.canvases) == [first_id]

    async def test_emptied_graph_is_not_saved(self, store, repo, saver):
        node_id = store.add_node("prompt")
        assert saver.status == AutosaveStatus.PENDING
        store.delete_node(node_id)
        assert saver.status == AutosaveStatus.IDLE
        await asyncio.sleep(DELAY * 2)
        assert repo.upserts == 0

    async def test_flush_saves_immediately(self, store, repo, saver):
        store.add_node("prompt")
        await saver.flush()
        assert repo.upserts == 1


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    async def test_error_status_is_sticky(self, store):
        saver = CanvasAutosaver(store, FailingRepository(), "client-1", delay=DELAY, saved_display=SAVED_DISPLAY)
        store.add_node("prompt")
        await asyncio.sleep(DELAY + SAVED_DISPLAY * 3)
        assert saver.status == AutosaveStatus.ERROR

        store.add_node("prompt")
        assert saver.status == AutosaveStatus.PENDING
        saver.close()

    async def test_manual_save_failure_raises(self, store):
        saver = CanvasAutosaver(store, FailingRepository(), "client-1", delay=DELAY)
        store.add_node("prompt")
        with pytest.raises(RepositoryError):
            await saver.save("Mine")
        assert saver.status == AutosaveStatus.ERROR
        saver.close()


# ---------------------------------------------------------------------------
# Explicit operations
# ---------------------------------------------------------------------------


class TestExplicitOperations:
    async def test_manual_save_sets_name_and_id(self, store, repo, saver):
        store.add_node("prompt")
        row = await saver.save("Launch week")
        assert row.name == "Launch week"
        assert saver.canvas_id == row.id
        assert saver.status == AutosaveStatus.SAVED

        await asyncio.sleep(DELAY * 2)
        # the pending debounce was cancelled by the manual save
        assert repo.upserts == 1

    async def test_load_does_not_mark_pending(self, store, repo, saver):
        other = CanvasAutosaver(type(store)(), repo, "client-1", delay=DELAY)
        other.store.add_node("prompt", data={"briefing": "saved one"})
        row = await other.save("Stored")
        other.close()
        upserts = repo.upserts

        await saver.load(row.id)

        assert saver.status == AutosaveStatus.IDLE
        assert saver.canvas_id == row.id
        assert saver.name == "Stored"
        assert store.nodes[0].data.briefing == "saved one"
        await asyncio.sleep(DELAY * 2)
        assert repo.upserts == upserts

    async def test_load_unknown_canvas(self, saver):
        with pytest.raises(KeyError):
            await saver.load("missing")

    async def test_load_latest_only_when_nothing_open(self, store, repo, saver):
        await repo.upsert_canvas({"client_id": "client-1", "name": "Old", "nodes": [], "edges": []})
        loaded = await saver.load_latest()
        assert loaded.name == "Old"
        assert await saver.load_latest() is None

    async def test_rename_triggers_save(self, store, repo, saver):
        store.add_node("prompt")
        await saver.flush()
        saver.rename("Renamed")
        assert saver.status == AutosaveStatus.PENDING
        await asyncio.sleep(DELAY * 2)
        assert repo.canvases[saver.canvas_id]["name"] == "Renamed"

    async def test_switch_client_resets(self, store, saver):
        store.add_node("prompt")
        await saver.save("Mine")
        saver.switch_client("client-2")
        assert store.is_empty()
        assert saver.canvas_id is None
        assert saver.client_id == "client-2"
        assert saver.status == AutosaveStatus.IDLE

    async def test_delete_open_canvas_resets(self, store, repo, saver):
        store.add_node("prompt")
        row = await saver.save("Doomed")
        await saver.delete(row.id)
        assert row.id not in repo.canvases
        assert store.is_empty()
        assert saver.canvas_id is None


# ---------------------------------------------------------------------------
# Saves in flight
# ---------------------------------------------------------------------------


class GatedRepository(CountingRepository):
    """Upserts block until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()

    async def upsert_canvas(self, row):
        await self.gate.wait()
        return await super().upsert_canvas(row)


def _briefings(repo, canvas_id):
    return [n["data"].get("briefing") for n in repo.canvases[canvas_id]["nodes"]]


class TestSavesInFlight:
    @pytest.fixture()
    def gated(self):
        return GatedRepository()

    async def _stored(self, store, repo, briefing):
        other = CanvasAutosaver(type(store)(), repo, "client-1", delay=DELAY)
        other.store.add_node("prompt", data={"briefing": briefing})
        row = await other.save(briefing)
        other.close()
        return row

    async def test_load_during_autosave_keeps_loaded_canvas(self, store, gated):
        row_b = await self._stored(store, gated, "B")
        saver = CanvasAutosaver(store, gated, "client-1", delay=DELAY, saved_display=SAVED_DISPLAY)
        gated.gate.clear()
        store.add_node("prompt", data={"briefing": "A"})
        await asyncio.sleep(DELAY * 1.5)
        assert saver.status == AutosaveStatus.SAVING

        await saver.load(row_b.id)
        gated.gate.set()
        await asyncio.sleep(0.02)

        assert saver.canvas_id == row_b.id
        assert saver.status == AutosaveStatus.IDLE
        row_a = next(cid for cid in gated.canvases if cid != row_b.id)
        assert _briefings(gated, row_a) == ["A"]

        store.update_node(store.nodes[0].id, {"briefing": "B edited"})
        await asyncio.sleep(DELAY * 2)
        assert _briefings(gated, row_b.id) == ["B edited"]
        assert _briefings(gated, row_a) == ["A"]
        saver.close()

    async def test_switch_client_during_autosave(self, store, gated):
        saver = CanvasAutosaver(store, gated, "client-1", delay=DELAY, saved_display=SAVED_DISPLAY)
        gated.gate.clear()
        store.add_node("prompt", data={"briefing": "first client"})
        await asyncio.sleep(DELAY * 1.5)

        saver.switch_client("client-2")
        gated.gate.set()
        await asyncio.sleep(0.02)
        assert saver.canvas_id is None

        store.add_node("prompt", data={"briefing": "second client"})
        await asyncio.sleep(DELAY * 2)
        assert gated.canvases[saver.canvas_id]["client_id"] == "client-2"
        assert len(gated.canvases) == 2
        saver.close()

    async def test_delete_during_autosave_does_not_reopen_canvas(self, store, gated):
        saver = CanvasAutosaver(store, gated, "client-1", delay=DELAY, saved_display=SAVED_DISPLAY)
        node_id = store.add_node("prompt", data={"briefing": "v1"})
        await saver.flush()
        canvas_id = saver.canvas_id

        gated.gate.clear()
        store.update_node(node_id, {"briefing": "v2"})
        await asyncio.sleep(DELAY * 1.5)
        deleting = asyncio.create_task(saver.delete(canvas_id))
        await asyncio.sleep(0.02)
        gated.gate.set()
        await deleting

        assert canvas_id not in gated.canvases
        assert saver.canvas_id is None
        assert store.is_empty()
        saver.close()

    async def test_manual_save_during_first_autosave_reuses_row(self, store, gated):
        saver = CanvasAutosaver(store, gated, "client-1", delay=DELAY, saved_display=SAVED_DISPLAY)
        gated.gate.clear()
        store.add_node("prompt")
        await asyncio.sleep(DELAY * 1.5)

        manual = asyncio.create_task(saver.save("X"))
        await asyncio.sleep(0.02)
        gated.gate.set()
        row = await manual

        assert len(gated.canvases) == 1
        assert row.id == saver.canvas_id
        assert gated.canvases[row.id]["name"] == "X"
        saver.close()
