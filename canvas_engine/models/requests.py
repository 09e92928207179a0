"""Request/response bodies for the HTTP surface."""
from typing import Any, Optional

from pydantic import BaseModel, Field

from canvas_engine.models.canvas import ApprovalStatus, NodeKind, Position


class CanvasSave(BaseModel):
    name: Optional[str] = None


class CanvasRename(BaseModel):
    name: str = Field(min_length=1)


class NodeCreate(BaseModel):
    kind: NodeKind
    position: Position = Field(default_factory=Position)
    data: dict[str, Any] = Field(default_factory=dict)


class NodeUpdate(BaseModel):
    data: dict[str, Any]


class EdgeCreate(BaseModel):
    source: str
    target: str
    source_handle: Optional[str] = "output"
    target_handle: Optional[str] = "input"


class GraphChanges(BaseModel):
    """React Flow style change lists."""
    node_changes: list[dict[str, Any]] = Field(default_factory=list)
    edge_changes: list[dict[str, Any]] = Field(default_factory=list)


class ExtractRequest(BaseModel):
    value: Optional[str] = None  # defaults to the node's own url/value


class ImageRequest(BaseModel):
    url: Optional[str] = None  # defaults to the image's stored url


class AnalysisTargetIn(BaseModel):
    node_id: str
    image_id: str
    url: Optional[str] = None


class BatchAnalyzeRequest(BaseModel):
    targets: list[AnalysisTargetIn]


class ContentUpdate(BaseModel):
    content: str
    label: Optional[str] = None


class CommentCreate(BaseModel):
    text: str


class CommentResolve(BaseModel):
    resolved: bool = True


class ApprovalUpdate(BaseModel):
    status: ApprovalStatus


class GenerationOut(BaseModel):
    outcome: str
    output_node_ids: list[str] = Field(default_factory=list)
    completed: int = 0
    total: int = 0
    error: Optional[str] = None
