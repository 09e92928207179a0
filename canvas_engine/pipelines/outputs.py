"""Output node editing: content versions, comments, approval and hand-off to planning."""
import logging
from datetime import date
from typing import Any

from canvas_engine.graph_state import GraphStore
from canvas_engine.models.canvas import (
    MAX_VERSIONS,
    ApprovalStatus,
    Comment,
    ContentFormat,
    ContentVersion,
    OutputNodeData,
)
from canvas_engine.services.canvas_repository import CanvasStore
from canvas_engine.utils.ids import generate_comment_id, generate_version_id

logger = logging.getLogger(__name__)

FORMAT_LABELS = {
    ContentFormat.CAROUSEL: "Carousel",
    ContentFormat.THREAD: "Thread",
    ContentFormat.REEL_SCRIPT: "Reel Script",
    ContentFormat.POST: "Post",
    ContentFormat.STORIES: "Stories",
    ContentFormat.NEWSLETTER: "Newsletter",
    ContentFormat.IMAGE: "Image",
}


def _output(store: GraphStore, output_id: str) -> OutputNodeData:
    node = store.get_node(output_id)
    if node is None or not isinstance(node.data, OutputNodeData):
        raise KeyError(f"Output {output_id} not found")
    return node.data


def _push_version(versions: list[ContentVersion], content: str, label: str | None = None) -> list[ContentVersion]:
    """New version at the head; the oldest falls off past the cap."""
    return [ContentVersion(id=generate_version_id(), content=content, label=label), *versions][:MAX_VERSIONS]


def update_content(store: GraphStore, output_id: str, content: str, label: str | None = None) -> list[ContentVersion]:
    """Replace the content, keeping the previous content as a version."""
    data = _output(store, output_id)
    if content == data.content:
        return data.versions
    versions = _push_version(data.versions, data.content, label) if data.content else data.versions
    store.update_node(output_id, {"content": content, "versions": versions})
    return versions


def restore_version(store: GraphStore, output_id: str, version_id: str) -> list[ContentVersion]:
    data = _output(store, output_id)
    version = next((v for v in data.versions if v.id == version_id), None)
    if version is None:
        raise KeyError(f"Version {version_id} not found")
    versions = _push_version(data.versions, data.content, "Before restore")
    store.update_node(output_id, {"content": version.content, "versions": versions})
    logger.info("Restored version %s on %s", version_id, output_id)
    return versions


def clear_versions(store: GraphStore, output_id: str) -> None:
    _output(store, output_id)
    store.update_node(output_id, {"versions": []})


def add_comment(store: GraphStore, output_id: str, text: str) -> Comment:
    data = _output(store, output_id)
    if not text.strip():
        raise ValueError("Comment text is empty")
    comment = Comment(id=generate_comment_id(), text=text.strip())
    store.update_node(output_id, {"comments": [*data.comments, comment]})
    return comment


def resolve_comment(store: GraphStore, output_id: str, comment_id: str, resolved: bool = True) -> None:
    data = _output(store, output_id)
    if not any(c.id == comment_id for c in data.comments):
        raise KeyError(f"Comment {comment_id} not found")
    comments = [c.model_copy(update={"resolved": resolved}) if c.id == comment_id else c for c in data.comments]
    store.update_node(output_id, {"comments": comments})


def delete_comment(store: GraphStore, output_id: str, comment_id: str) -> None:
    data = _output(store, output_id)
    store.update_node(output_id, {"comments": [c for c in data.comments if c.id != comment_id]})


def set_approval_status(store: GraphStore, output_id: str, status: ApprovalStatus | str) -> None:
    _output(store, output_id)
    store.update_node(output_id, {"approval_status": ApprovalStatus(status)})


async def send_to_planning(
    store: GraphStore, repository: CanvasStore, client_id: str, output_id: str
) -> dict[str, Any]:
    """Create a draft planning item from an output and flag the output as sent."""
    data = _output(store, output_id)
    label = FORMAT_LABELS.get(data.format, data.format.value)
    item = {
        "title": f"{label} - {date.today().strftime('%d/%m/%Y')}",
        "content": data.content,
        "content_type": data.format.value,
        "platform": data.platform.value,
        "client_id": client_id,
        "status": "draft",
        "labels": [label],
    }
    created = await repository.create_planning_item(item)
    store.update_node(output_id, {"added_to_planning": True})
    logger.info("Output %s sent to planning as %s", output_id, created.get("id"))
    return created
