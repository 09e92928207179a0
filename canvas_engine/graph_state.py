"""In-memory canvas graph: nodes, edges and the mutation primitives every pipeline goes through."""
import logging
from typing import Any, Callable, Iterable

from canvas_engine.models.canvas import (
    GENERATOR_INPUT_SLOTS,
    CanvasEdge,
    CanvasNode,
    NodeKind,
    Position,
    node_data_adapter,
)
from canvas_engine.utils.ids import generate_edge_id, generate_node_id

logger = logging.getLogger(__name__)

GraphListener = Callable[[str, dict[str, Any]], None]


def _field_names(model_cls: type) -> dict[str, str]:
    """Map every accepted key (alias or attribute name) to the attribute name."""
    names: dict[str, str] = {}
    for name, info in model_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


class GraphStore:
    """Owns the node and edge lists of one canvas.

    Every mutation rebuilds the affected list; nodes and edges that are not
    touched keep their identity. Listeners are called synchronously after each
    mutation with an action name and a JSON payload.
    """

    def __init__(self) -> None:
        self.nodes: list[CanvasNode] = []
        self.edges: list[CanvasEdge] = []
        self._listeners: list[GraphListener] = []

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, action: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(action, payload)
            except Exception as e:
                logger.warning("Graph listener failed on %s: %s", action, e)

    # -- reads -------------------------------------------------------------

    def get_node(self, node_id: str) -> CanvasNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def get_edge(self, edge_id: str) -> CanvasEdge | None:
        return next((e for e in self.edges if e.id == edge_id), None)

    def incoming_edges(self, node_id: str) -> list[CanvasEdge]:
        return [e for e in self.edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> list[CanvasEdge]:
        return [e for e in self.edges if e.source == node_id]

    def input_nodes(self, node_id: str) -> list[CanvasNode]:
        """Source nodes of the incoming edges, in edge order."""
        by_id = {n.id: n for n in self.nodes}
        return [by_id[e.source] for e in self.incoming_edges(node_id) if e.source in by_id]

    def is_empty(self) -> bool:
        return not self.nodes and not self.edges

    def snapshot(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_json() for n in self.nodes],
            "edges": [e.to_json() for e in self.edges],
        }

    # -- node mutations ----------------------------------------------------

    def add_node(
        self,
        kind: NodeKind | str,
        position: Position | dict[str, float] | None = None,
        data: dict[str, Any] | None = None,
        node_id: str | None = None,
    ) -> str:
        kind = NodeKind(kind)
        payload = dict(data or {})
        payload["type"] = kind.value
        node = CanvasNode(
            id=node_id or generate_node_id(kind.value),
            type=kind,
            position=position if isinstance(position, Position) else Position(**(position or {})),
            data=node_data_adapter.validate_python(payload),
        )
        self.nodes = [*self.nodes, node]
        logger.debug("Added %s node %s", kind.value, node.id)
        self._notify("add_node", node.to_json())
        return node.id

    def update_node(self, node_id: str, updates: dict[str, Any]) -> None:
        """Shallow-merge ``updates`` into the node's data. Unknown ids are ignored."""
        node = self.get_node(node_id)
        if node is None:
            logger.debug("update_node ignored for missing node %s", node_id)
            return
        data_cls = type(node.data)
        names = _field_names(data_cls)
        merged: dict[str, Any] = {name: getattr(node.data, name) for name in data_cls.model_fields}
        for key, value in updates.items():
            name = names.get(key)
            if name is None or name == "type":
                continue
            merged[name] = value
        new_node = node.model_copy(update={"data": data_cls.model_validate(merged)})
        self.nodes = [new_node if n.id == node_id else n for n in self.nodes]
        self._notify("update_node", {"id": node_id, "data": new_node.data.to_json()})

    def move_node(self, node_id: str, position: Position | dict[str, float]) -> None:
        node = self.get_node(node_id)
        if node is None:
            return
        pos = position if isinstance(position, Position) else Position(**position)
        self.nodes = [n.model_copy(update={"position": pos}) if n.id == node_id else n for n in self.nodes]
        self._notify("move_node", {"id": node_id, "position": pos.to_json()})

    def delete_node(self, node_id: str) -> dict[str, Any]:
        """Delete node and cascade to connected edges."""
        edges_to_delete = [e for e in self.edges if e.source == node_id or e.target == node_id]
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]
        result = {
            "deleted_node": node_id,
            "deleted_edges": len(edges_to_delete),
            "edge_ids": [e.id for e in edges_to_delete],
        }
        self._notify("delete_node", result)
        return result

    def update_image_in_node(self, node_id: str, image_id: str, updates: dict[str, Any]) -> None:
        """Shallow-merge into one image of an image-source or attachment node."""
        node = self.get_node(node_id)
        images = getattr(node.data, "images", None) if node else None
        if images is None:
            return
        new_images = [
            img.model_validate({**dict(img), **_translate(type(img), updates)}) if img.id == image_id else img
            for img in images
        ]
        self.update_node(node_id, {"images": new_images})

    def update_file_in_node(self, node_id: str, file_id: str, updates: dict[str, Any]) -> None:
        """Shallow-merge into one file sub-record of a source or attachment node."""
        node = self.get_node(node_id)
        files = getattr(node.data, "files", None) if node else None
        if files is None:
            return
        new_files = [
            f.model_validate({**dict(f), **_translate(type(f), updates)}) if f.id == file_id else f
            for f in files
        ]
        self.update_node(node_id, {"files": new_files})

    # -- edge mutations ----------------------------------------------------

    def connect(
        self,
        source: str,
        target: str,
        source_handle: str | None = "output",
        target_handle: str | None = "input",
        edge_id: str | None = None,
    ) -> str:
        if self.get_node(source) is None or self.get_node(target) is None:
            raise ValueError(f"Cannot connect {source} -> {target}: node not found")
        target_node = self.get_node(target)
        if target_node.type == NodeKind.GENERATOR and len(self.incoming_edges(target)) >= GENERATOR_INPUT_SLOTS:
            raise ValueError(f"Generator {target} already has {GENERATOR_INPUT_SLOTS} inputs")
        for e in self.edges:
            if e.source == source and e.target == target and e.source_handle == source_handle and e.target_handle == target_handle:
                return e.id
        edge = CanvasEdge(
            id=edge_id or generate_edge_id(source, target),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        return self.add_edge(edge)

    def add_edge(self, edge: CanvasEdge) -> str:
        self.edges = [*self.edges, edge]
        self._notify("add_edge", edge.to_json())
        return edge.id

    def delete_edge(self, edge_id: str) -> None:
        if self.get_edge(edge_id) is None:
            return
        self.edges = [e for e in self.edges if e.id != edge_id]
        self._notify("delete_edge", {"id": edge_id})

    # -- bulk changes from the UI -----------------------------------------

    def apply_node_changes(self, changes: Iterable[dict[str, Any]]) -> None:
        """Apply React Flow style node changes (position, remove; others pass through)."""
        for change in changes:
            kind = change.get("type")
            node_id = change.get("id", "")
            if kind == "position" and change.get("position"):
                self.move_node(node_id, change["position"])
            elif kind == "remove":
                self.delete_node(node_id)

    def apply_edge_changes(self, changes: Iterable[dict[str, Any]]) -> None:
        for change in changes:
            if change.get("type") == "remove":
                self.delete_edge(change.get("id", ""))

    # -- whole-graph operations --------------------------------------------

    def replace(self, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> None:
        """Load a saved snapshot wholesale. Edges pointing at missing nodes are dropped."""
        loaded = [CanvasNode.model_validate(n) for n in nodes]
        ids = {n.id for n in loaded}
        loaded_edges = []
        for raw in edges:
            edge = CanvasEdge.model_validate(raw)
            if edge.source in ids and edge.target in ids:
                loaded_edges.append(edge)
            else:
                logger.warning("Dropping dangling edge %s on load", edge.id)
        self.nodes = loaded
        self.edges = loaded_edges
        self._notify("replace", {"nodes": len(loaded), "edges": len(loaded_edges)})

    def clear(self) -> None:
        self.nodes = []
        self.edges = []
        self._notify("clear", {})


def _translate(model_cls: type, updates: dict[str, Any]) -> dict[str, Any]:
    names = _field_names(model_cls)
    return {names[k]: v for k, v in updates.items() if k in names}
