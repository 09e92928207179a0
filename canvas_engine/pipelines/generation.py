"""Generation orchestrator: aggregate a generator's inputs and produce text or image outputs."""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from canvas_engine.graph_state import GraphStore
from canvas_engine.models.canvas import (
    AttachmentNodeData,
    CanvasNode,
    ContentFormat,
    GenerationStatus,
    GeneratorNodeData,
    ImageEditorNodeData,
    ImageSourceNodeData,
    NodeKind,
    OutputNodeData,
    Platform,
    Position,
    SourceNodeData,
)
from canvas_engine.pipelines.aggregation import GenerationContext, aggregate_inputs
from canvas_engine.pipelines.image_analysis import AnalysisTarget, analyze_images_in_parallel
from canvas_engine.pipelines.image_formats import effective_aspect_ratio, resolve_image_format
from canvas_engine.pipelines.stream_parser import iter_deltas
from canvas_engine.services import functions, storage
from canvas_engine.services.functions import QuotaExceededError, RemoteCallError

logger = logging.getLogger(__name__)

OUTPUT_OFFSET_X = 350
OUTPUT_SPACING_Y = 180
MAX_IMAGE_REFERENCES = 2
IMAGE_PROMPT_CONTEXT_CHARS = 1000


class GenerationOutcome(str, Enum):
    SUCCESS = "success"
    CONNECTIONS_REQUIRED = "connections_required"
    CONTENT_REQUIRED = "content_required"
    IMAGE_REQUIRED = "image_required"
    INSTRUCTION_REQUIRED = "instruction_required"
    QUOTA_EXCEEDED = "quota_exceeded"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass
class GenerationResult:
    outcome: GenerationOutcome
    output_node_ids: list[str] = field(default_factory=list)
    completed: int = 0
    total: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == GenerationOutcome.SUCCESS


def variation_suffix(index: int, quantity: int) -> str:
    if quantity <= 1:
        return ""
    return f"\n\nIMPORTANT: This is variation {index + 1} of {quantity}. Create a DIFFERENT and UNIQUE version."


def build_request(ctx: GenerationContext, suffix: str = "") -> str:
    if ctx.briefing:
        return f"{ctx.briefing}\n\nReference material:\n{ctx.context}{suffix}"
    return f"Create content based on the following material:\n{ctx.context}{suffix}"


def _image_url(response: dict) -> str:
    url = response.get("imageUrl") or response.get("url") or ""
    if not url:
        raise RemoteCallError("generate-image", "response carried no image URL")
    return url


class GenerationOrchestrator:
    """Runs generation for the generators and image editors of one canvas.

    Progress is written onto the node (``status``, ``progress``,
    ``current_step``, ``generated_count``) as the run advances; the caller
    only gets the final ``GenerationResult``.
    """

    def __init__(self, store: GraphStore, client_id: str) -> None:
        self.store = store
        self.client_id = client_id

    # -- text and image generation -----------------------------------------

    async def generate(self, generator_id: str) -> GenerationResult:
        node = self.store.get_node(generator_id)
        if node is None or not isinstance(node.data, GeneratorNodeData):
            return GenerationResult(GenerationOutcome.NOT_FOUND, error=f"Generator {generator_id} not found")
        if not self.store.incoming_edges(generator_id):
            return GenerationResult(
                GenerationOutcome.CONNECTIONS_REQUIRED, error="Connect at least one source to the generator"
            )

        self.store.update_node(generator_id, {"status": GenerationStatus.AGGREGATING, "error_kind": None})
        ctx = await aggregate_inputs(self.store, generator_id)
        data: GeneratorNodeData = node.data
        is_image = data.format == ContentFormat.IMAGE

        if is_image:
            has_input = bool(ctx.briefing.strip() or (data.image_prompt or "").strip() or ctx.context.strip() or ctx.image_refs)
        else:
            has_input = ctx.has_text()
        if not has_input:
            self.store.update_node(generator_id, {"status": GenerationStatus.IDLE})
            return GenerationResult(
                GenerationOutcome.CONTENT_REQUIRED, error="Add content or a briefing to the connected sources"
            )

        self.store.update_node(
            generator_id,
            {
                "is_generating": True,
                "status": GenerationStatus.GENERATING,
                "progress": 0,
                "current_step": "Preparing..." if is_image else "Researching...",
            },
        )
        created: list[str] = []
        total = 1 if is_image else data.quantity
        try:
            if is_image:
                return await self._generate_image(node, ctx, created)
            return await self._generate_text(node, ctx, created)
        except QuotaExceededError as e:
            logger.warning("Generation for %s stopped: quota exhausted", generator_id)
            self._mark_failed(generator_id, "quota")
            return GenerationResult(GenerationOutcome.QUOTA_EXCEEDED, created, len(created), total, str(e))
        except (RemoteCallError, storage.ImageReferenceError) as e:
            logger.error("Generation for %s failed: %s", generator_id, e)
            self._mark_failed(generator_id, "failed")
            return GenerationResult(GenerationOutcome.FAILED, created, len(created), total, str(e))

    def _mark_failed(self, generator_id: str, kind: str) -> None:
        self.store.update_node(
            generator_id,
            {
                "is_generating": False,
                "status": GenerationStatus.ERROR,
                "current_step": "Error",
                "generated_count": 0,
                "error_kind": kind,
            },
        )

    def _add_output(self, parent: CanvasNode, index: int, content: str, fmt: ContentFormat, platform: Platform, is_image: bool) -> str:
        position = Position(x=parent.position.x + OUTPUT_OFFSET_X, y=parent.position.y + OUTPUT_SPACING_Y * index)
        output_id = self.store.add_node(
            NodeKind.OUTPUT,
            position,
            {"content": content, "format": fmt, "platform": platform, "is_image": is_image},
        )
        self.store.connect(parent.id, output_id, "output", "input")
        return output_id

    async def _stream_variation(self, generator_id: str, request: str, data: GeneratorNodeData) -> str:
        body = {
            "clientId": self.client_id,
            "request": request,
            "format": data.format.value,
            "platform": data.platform.value,
        }
        parts: list[str] = []
        async for delta in iter_deltas(functions.stream_content(body)):
            parts.append(delta)
            if data.quantity == 1 and len(parts) % 10 == 0:
                self.store.update_node(
                    generator_id,
                    {"current_step": "Generating content...", "progress": min(90, 20 + len(parts) // 5)},
                )
        return "".join(parts).strip()

    async def _generate_text(self, node: CanvasNode, ctx: GenerationContext, created: list[str]) -> GenerationResult:
        data: GeneratorNodeData = node.data
        quantity = data.quantity
        for i in range(quantity):
            self.store.update_node(
                node.id,
                {
                    "current_step": f"Generating {i + 1}/{quantity}..." if quantity > 1 else "Researching...",
                    "progress": round(i / quantity * 100),
                    "generated_count": i,
                },
            )
            content = await self._stream_variation(node.id, build_request(ctx, variation_suffix(i, quantity)), data)
            if not content:
                logger.info("Variation %d/%d for %s came back empty", i + 1, quantity, node.id)
                continue
            created.append(self._add_output(node, i, content, data.format, data.platform, is_image=False))

        self.store.update_node(
            node.id,
            {
                "is_generating": False,
                "status": GenerationStatus.SUCCESS,
                "progress": 100,
                "current_step": "Done",
                "generated_count": quantity,
            },
        )
        logger.info("Generated %d/%d outputs for %s", len(created), quantity, node.id)
        return GenerationResult(GenerationOutcome.SUCCESS, created, quantity, quantity)

    def _images_to_analyze(self, generator_id: str) -> list[AnalysisTarget]:
        targets = []
        for n in self.store.input_nodes(generator_id):
            if isinstance(n.data, (AttachmentNodeData, ImageSourceNodeData)):
                targets.extend(
                    AnalysisTarget(n.id, img.id, img.url)
                    for img in n.data.images
                    if img.url and not img.metadata.image_analysis
                )
        return targets

    async def _generate_image(self, node: CanvasNode, ctx: GenerationContext, created: list[str]) -> GenerationResult:
        data: GeneratorNodeData = node.data
        targets = self._images_to_analyze(node.id)
        if targets:
            self.store.update_node(
                node.id, {"current_step": f"Analyzing {len(targets)} reference(s)...", "progress": 10}
            )

            def _on_batch(done: int, total: int) -> None:
                self.store.update_node(
                    node.id,
                    {"current_step": f"Analyzing reference {done}/{total}...", "progress": 10 + round(done / total * 30)},
                )

            result = await analyze_images_in_parallel(self.store, targets, on_batch=_on_batch)
            if result.failed:
                logger.warning("%d reference image(s) could not be analyzed for %s", result.failed, node.id)
            # pick up the fresh analyses
            ctx = await aggregate_inputs(self.store, node.id)

        self.store.update_node(node.id, {"current_step": "Generating image...", "progress": 50})
        image_format = resolve_image_format(data.image_type)
        body = {
            "prompt": data.image_prompt or ctx.briefing or ctx.context[:IMAGE_PROMPT_CONTEXT_CHARS],
            "clientId": self.client_id,
            "aspectRatio": effective_aspect_ratio(data.aspect_ratio, data.image_type),
            "imageFormat": data.image_style or "photographic",
            "imageType": data.image_type or image_format.key,
            "preservePerson": data.preserve_person,
            "noText": data.no_text,
            "formatInstructions": image_format.instructions,
            "imageReferences": ctx.image_refs[:MAX_IMAGE_REFERENCES],
            "styleAnalysis": ctx.style_text,
        }
        url = _image_url(await functions.generate_image(body))

        self.store.update_node(
            node.id,
            {
                "is_generating": False,
                "status": GenerationStatus.SUCCESS,
                "progress": 100,
                "current_step": "Done",
                "generated_count": 1,
            },
        )
        created.append(self._add_output(node, 0, url, ContentFormat.IMAGE, data.platform, is_image=True))
        return GenerationResult(GenerationOutcome.SUCCESS, created, 1, 1)

    # -- regeneration ---------------------------------------------------------

    async def regenerate(self, output_id: str) -> GenerationResult:
        """Delete an output and run its upstream generator again."""
        node = self.store.get_node(output_id)
        if node is None or not isinstance(node.data, OutputNodeData):
            return GenerationResult(GenerationOutcome.NOT_FOUND, error=f"Output {output_id} not found")
        edge = next(iter(self.store.incoming_edges(output_id)), None)
        generator = self.store.get_node(edge.source) if edge else None
        if generator is None or not isinstance(generator.data, GeneratorNodeData):
            return GenerationResult(GenerationOutcome.NOT_FOUND, error="Could not find the connected generator")
        self.store.delete_node(output_id)
        return await self.generate(generator.id)

    # -- image editing --------------------------------------------------------

    def _resolve_base_image(self, editor: CanvasNode) -> str | None:
        data: ImageEditorNodeData = editor.data
        if data.base_image_url:
            return data.base_image_url
        edge = next(iter(self.store.incoming_edges(editor.id)), None)
        upstream = self.store.get_node(edge.source) if edge else None
        base = None
        if upstream is not None and isinstance(upstream.data, SourceNodeData):
            image_file = next((f for f in upstream.data.files if f.type == "image"), None)
            base = image_file.url if image_file else None
        elif upstream is not None and isinstance(upstream.data, OutputNodeData) and upstream.data.is_image:
            base = upstream.data.content or None
        if base:
            self.store.update_node(editor.id, {"base_image_url": base})
        return base

    async def edit_image(self, editor_id: str) -> GenerationResult:
        editor = self.store.get_node(editor_id)
        if editor is None or not isinstance(editor.data, ImageEditorNodeData):
            return GenerationResult(GenerationOutcome.NOT_FOUND, error=f"Image editor {editor_id} not found")
        base = self._resolve_base_image(editor)
        if not base:
            return GenerationResult(GenerationOutcome.IMAGE_REQUIRED, error="Connect a source with an image to the editor")
        data: ImageEditorNodeData = editor.data
        if not data.edit_instruction.strip():
            return GenerationResult(GenerationOutcome.INSTRUCTION_REQUIRED, error="Type an edit instruction")

        self.store.update_node(editor_id, {"is_processing": True, "progress": 0, "current_step": "Editing image..."})
        try:
            ref = await asyncio.to_thread(storage.to_fetchable, base)
            response = await functions.generate_image(
                {
                    "prompt": data.edit_instruction,
                    "clientId": self.client_id,
                    "aspectRatio": data.aspect_ratio or "1:1",
                    "referenceImages": [{"url": ref, "isPrimary": True}],
                }
            )
            url = _image_url(response)
        except QuotaExceededError as e:
            self.store.update_node(editor_id, {"is_processing": False, "current_step": "Error"})
            return GenerationResult(GenerationOutcome.QUOTA_EXCEEDED, total=1, error=str(e))
        except (RemoteCallError, storage.ImageReferenceError) as e:
            logger.error("Image edit for %s failed: %s", editor_id, e)
            self.store.update_node(editor_id, {"is_processing": False, "current_step": "Error"})
            return GenerationResult(GenerationOutcome.FAILED, total=1, error=str(e))

        self.store.update_node(editor_id, {"is_processing": False, "progress": 100, "current_step": "Done"})
        output_id = self._add_output(editor, 0, url, ContentFormat.IMAGE, Platform.INSTAGRAM, is_image=True)
        return GenerationResult(GenerationOutcome.SUCCESS, [output_id], 1, 1)
