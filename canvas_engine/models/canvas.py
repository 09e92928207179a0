"""Canvas node/edge models: one data variant per node kind, discriminated by ``type``."""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

MAX_VERSIONS = 5
MAX_SOURCE_IMAGES = 10
GENERATOR_INPUT_SLOTS = 5


class NodeKind(str, Enum):
    SOURCE = "source"
    ATTACHMENT = "attachment"
    LIBRARY = "library"
    PROMPT = "prompt"
    GENERATOR = "generator"
    OUTPUT = "output"
    IMAGE_EDITOR = "image-editor"
    IMAGE_SOURCE = "image-source"


class ContentFormat(str, Enum):
    CAROUSEL = "carousel"
    THREAD = "thread"
    REEL_SCRIPT = "reel_script"
    POST = "post"
    STORIES = "stories"
    NEWSLETTER = "newsletter"
    IMAGE = "image"


class Platform(str, Enum):
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    OTHER = "other"


class GenerationStatus(str, Enum):
    IDLE = "idle"
    AGGREGATING = "aggregating"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"


class ApprovalStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ImageState(str, Enum):
    """Derived per-image analysis state."""
    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


def _now() -> str:
    return datetime.utcnow().isoformat()


class CanvasModel(BaseModel):
    """camelCase on the wire (matches saved front-end rows), snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Position(CanvasModel):
    x: float = 0.0
    y: float = 0.0


class Dimensions(CanvasModel):
    width: int
    height: int


class StyleAnalysis(CanvasModel):
    """Normalized visual-style description, whichever analyzer produced it."""

    dominant_colors: list[str] = Field(default_factory=list)
    color_mood: str = "neutral"
    visual_style: str = "general"
    art_direction: str = "mixed"
    composition: str = "centered"
    has_text: bool = False
    text_style: Optional[str] = None
    mood: str = "neutral"
    lighting: str = "natural"
    prompt_description: str = ""


class ImageMetadata(CanvasModel):
    uploaded_at: str = Field(default_factory=_now)
    dimensions: Optional[Dimensions] = None
    analyzed: bool = False
    analyzed_at: Optional[str] = None
    is_primary: bool = False
    reference_type: str = "general"
    image_analysis: Optional[dict[str, Any]] = None
    style_analysis: Optional[StyleAnalysis] = None
    ocr_text: Optional[str] = None
    ocr_at: Optional[str] = None
    last_error: Optional[str] = None


class CanvasImage(CanvasModel):
    """One image held by an image-source or attachment node."""

    id: str
    url: str
    name: str = ""
    analyzed: bool = False
    is_processing: bool = False
    processing_type: Optional[Literal["ocr", "json"]] = None
    metadata: ImageMetadata = Field(default_factory=ImageMetadata)

    @property
    def state(self) -> ImageState:
        if self.is_processing:
            return ImageState.PROCESSING
        if self.metadata.last_error:
            return ImageState.ERROR
        if self.analyzed or self.metadata.analyzed or self.metadata.ocr_text:
            return ImageState.DONE
        return ImageState.IDLE


class SourceFile(CanvasModel):
    """Uploaded file attached to a source or attachment node."""

    id: str
    name: str
    type: Literal["image", "audio", "video", "document"] = "document"
    url: str = ""
    size: int = 0
    mime_type: Optional[str] = None
    transcription: Optional[str] = None
    style_analysis: Optional[dict[str, Any]] = None
    metadata: Optional[ImageMetadata] = None
    is_processing: bool = False


class ContentVersion(CanvasModel):
    id: str
    content: str
    created_at: str = Field(default_factory=_now)
    label: Optional[str] = None


class Comment(CanvasModel):
    id: str
    text: str
    created_at: str = Field(default_factory=_now)
    resolved: bool = False


class SourceNodeData(CanvasModel):
    type: Literal["source"] = "source"
    source_type: Literal["url", "text", "file"] = "url"
    value: str = ""
    extracted_content: Optional[str] = None
    extracted_images: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    url_type: Optional[str] = None
    content_metadata: dict[str, Any] = Field(default_factory=dict)
    files: list[SourceFile] = Field(default_factory=list)
    is_extracting: bool = False


class AttachmentNodeData(CanvasModel):
    type: Literal["attachment"] = "attachment"
    active_tab: Literal["link", "text", "file", "image"] = "link"
    url: str = ""
    text_content: str = ""
    extracted_content: Optional[str] = None
    extracted_images: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    url_type: Optional[str] = None
    content_metadata: dict[str, Any] = Field(default_factory=dict)
    files: list[SourceFile] = Field(default_factory=list)
    images: list[CanvasImage] = Field(default_factory=list)
    is_extracting: bool = False


class LibraryNodeData(CanvasModel):
    type: Literal["library"] = "library"
    item_id: Optional[str] = None
    item_title: Optional[str] = None
    item_content: Optional[str] = None
    item_type: Optional[str] = None


class PromptNodeData(CanvasModel):
    type: Literal["prompt"] = "prompt"
    briefing: str = ""


class GeneratorNodeData(CanvasModel):
    type: Literal["generator"] = "generator"
    format: ContentFormat = ContentFormat.CAROUSEL
    platform: Platform = Platform.INSTAGRAM
    is_generating: bool = False
    status: GenerationStatus = GenerationStatus.IDLE
    progress: int = 0
    current_step: Optional[str] = None
    quantity: int = Field(default=1, ge=1, le=10)
    generated_count: int = 0
    error_kind: Optional[Literal["quota", "failed"]] = None
    image_style: Optional[str] = None
    aspect_ratio: Optional[str] = None
    image_type: Optional[str] = None
    no_text: bool = False
    preserve_person: bool = False
    image_prompt: Optional[str] = None


class OutputNodeData(CanvasModel):
    type: Literal["output"] = "output"
    content: str = ""
    format: ContentFormat = ContentFormat.CAROUSEL
    platform: Platform = Platform.INSTAGRAM
    is_image: bool = False
    is_editing: bool = False
    added_to_planning: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.DRAFT
    versions: list[ContentVersion] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)

    @field_validator("versions")
    @classmethod
    def _cap_versions(cls, v: list[ContentVersion]) -> list[ContentVersion]:
        return v[:MAX_VERSIONS]


class ImageEditorNodeData(CanvasModel):
    type: Literal["image-editor"] = "image-editor"
    base_image_url: Optional[str] = None
    edit_instruction: str = ""
    aspect_ratio: str = "1:1"
    is_processing: bool = False
    progress: int = 0
    current_step: Optional[str] = None


class ImageSourceNodeData(CanvasModel):
    type: Literal["image-source"] = "image-source"
    images: list[CanvasImage] = Field(default_factory=list, max_length=MAX_SOURCE_IMAGES)


NodeData = Annotated[
    Union[
        SourceNodeData,
        AttachmentNodeData,
        LibraryNodeData,
        PromptNodeData,
        GeneratorNodeData,
        OutputNodeData,
        ImageEditorNodeData,
        ImageSourceNodeData,
    ],
    Field(discriminator="type"),
]

node_data_adapter: TypeAdapter[NodeData] = TypeAdapter(NodeData)


class CanvasNode(CanvasModel):
    id: str
    type: NodeKind
    position: Position = Field(default_factory=Position)
    data: NodeData


class CanvasEdge(CanvasModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = "output"
    target_handle: Optional[str] = "input"


class SavedCanvas(CanvasModel):
    """One row of the content_canvas table."""

    id: str
    client_id: Optional[str] = None
    name: str = "New canvas"
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    updated_at: Optional[str] = None

    model_config = ConfigDict(alias_generator=None, populate_by_name=True, extra="ignore")
