"""Tests for canvas_engine.pipelines.outputs.

Mocking strategy:
- Planning items go to ``InMemoryCanvasRepository``; nothing leaves the process.
"""
from __future__ import annotations

from datetime import date

import pytest

from canvas_engine.models.canvas import MAX_VERSIONS, ApprovalStatus
from canvas_engine.pipelines import outputs


@pytest.fixture()
def output_id(store):
    return store.add_node("output", data={"content": "v0", "format": "thread", "platform": "twitter"})


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


class TestVersions:
    def test_edit_keeps_previous_content(self, store, output_id):
        versions = outputs.update_content(store, output_id, "v1", label="Manual edit")
        data = store.get_node(output_id).data
        assert data.content == "v1"
        assert [v.content for v in versions] == ["v0"]
        assert versions[0].label == "Manual edit"

    def test_unchanged_content_adds_no_version(self, store, output_id):
        outputs.update_content(store, output_id, "v0")
        assert store.get_node(output_id).data.versions == []

    def test_history_is_capped_newest_first(self, store, output_id):
        for i in range(1, 8):
            outputs.update_content(store, output_id, f"v{i}")
        versions = store.get_node(output_id).data.versions
        assert len(versions) == MAX_VERSIONS
        assert [v.content for v in versions] == ["v6", "v5", "v4", "v3", "v2"]

    def test_restore_pushes_current_content(self, store, output_id):
        outputs.update_content(store, output_id, "v1")
        old = store.get_node(output_id).data.versions[0]

        versions = outputs.restore_version(store, output_id, old.id)

        assert store.get_node(output_id).data.content == "v0"
        assert versions[0].content == "v1"
        assert versions[0].label == "Before restore"

    def test_restore_unknown_version(self, store, output_id):
        with pytest.raises(KeyError):
            outputs.restore_version(store, output_id, "version-missing")

    def test_clear_versions(self, store, output_id):
        outputs.update_content(store, output_id, "v1")
        outputs.clear_versions(store, output_id)
        assert store.get_node(output_id).data.versions == []

    def test_non_output_node(self, store):
        prompt = store.add_node("prompt")
        with pytest.raises(KeyError):
            outputs.update_content(store, prompt, "x")


# ---------------------------------------------------------------------------
# Comments and approval
# ---------------------------------------------------------------------------


class TestReview:
    def test_comment_lifecycle(self, store, output_id):
        comment = outputs.add_comment(store, output_id, "  Shorter hook please ")
        assert comment.text == "Shorter hook please"

        outputs.resolve_comment(store, output_id, comment.id)
        assert store.get_node(output_id).data.comments[0].resolved is True

        outputs.delete_comment(store, output_id, comment.id)
        assert store.get_node(output_id).data.comments == []

    def test_blank_comment_rejected(self, store, output_id):
        with pytest.raises(ValueError):
            outputs.add_comment(store, output_id, "   ")

    def test_resolve_unknown_comment(self, store, output_id):
        with pytest.raises(KeyError):
            outputs.resolve_comment(store, output_id, "comment-missing")

    def test_approval_status(self, store, output_id):
        outputs.set_approval_status(store, output_id, "approved")
        assert store.get_node(output_id).data.approval_status == ApprovalStatus.APPROVED


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestSendToPlanning:
    async def test_creates_draft_item_and_flags_output(self, store, repository, output_id):
        item = await outputs.send_to_planning(store, repository, "client-1", output_id)

        assert item["title"] == f"Thread - {date.today().strftime('%d/%m/%Y')}"
        assert item["content"] == "v0"
        assert item["platform"] == "twitter"
        assert item["status"] == "draft"
        assert item["client_id"] == "client-1"
        assert repository.planning_items == [item]
        assert store.get_node(output_id).data.added_to_planning is True
