"""Input aggregation: walk a generator's incoming edges and build its generation context."""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from canvas_engine.graph_state import GraphStore
from canvas_engine.models.canvas import (
    AttachmentNodeData,
    CanvasImage,
    CanvasNode,
    ImageSourceNodeData,
    LibraryNodeData,
    OutputNodeData,
    PromptNodeData,
    SourceFile,
    SourceNodeData,
)
from canvas_engine.services import storage

logger = logging.getLogger(__name__)

PRIMARY_STYLE_HINT = "Use the visual style of this image as the primary reference"


@dataclass
class GenerationContext:
    """Everything a generator's inputs contribute, merged in edge order."""

    text_blocks: list[str] = field(default_factory=list)
    briefing: str = ""
    image_refs: list[str] = field(default_factory=list)
    style_hints: list[str] = field(default_factory=list)

    @property
    def context(self) -> str:
        return "\n\n".join(self.text_blocks)

    @property
    def style_text(self) -> str:
        return "\n\n".join(self.style_hints)

    def has_text(self) -> bool:
        return bool(self.context.strip() or self.briefing.strip())


@dataclass
class _Contribution:
    text_blocks: list[str] = field(default_factory=list)
    briefing: str | None = None
    image_refs: list[str] = field(default_factory=list)
    style_hints: list[str] = field(default_factory=list)


def _primary_first(items: list[Any]) -> list[Any]:
    # sorted() is stable, so non-primary items keep their order
    return sorted(items, key=lambda i: not (i.metadata is not None and i.metadata.is_primary))


async def _fetchable(refs: list[tuple[str, str | None]]) -> list[str]:
    """Convert references concurrently; one failed conversion drops only that image."""
    results = await asyncio.gather(
        *(asyncio.to_thread(storage.to_fetchable, url, mime) for url, mime in refs),
        return_exceptions=True,
    )
    converted = []
    for (url, _), result in zip(refs, results):
        if isinstance(result, BaseException):
            logger.warning("Failed to process image reference %s: %s", url[:80], result)
            continue
        converted.append(result)
    return converted


def _transcription_blocks(files: list[SourceFile]) -> list[str]:
    return [f"### Transcription ({f.name}):\n{f.transcription}" for f in files if f.transcription]


def _image_hints(img: CanvasImage, analysis_label: str, prompt_label: str) -> list[str]:
    meta = img.metadata
    if meta.image_analysis:
        hints = [f"{analysis_label}: {json.dumps(meta.image_analysis)}"]
        prompt = meta.image_analysis.get("generation_prompt")
        if prompt:
            hints.append(f"{prompt_label}: {prompt}")
        return hints
    if meta.style_analysis and meta.style_analysis.prompt_description:
        return [meta.style_analysis.prompt_description]
    return []


async def _from_source(data: SourceNodeData) -> _Contribution:
    c = _Contribution()
    if data.extracted_content:
        c.text_blocks.append(f"### Extracted content:\n{data.extracted_content}")
    elif data.value and data.source_type == "text":
        c.text_blocks.append(f"### Text:\n{data.value}")
    files = _primary_first(list(data.files))
    images = [f for f in files if f.type == "image"]
    c.image_refs = await _fetchable([(f.url, f.mime_type) for f in images if f.url])
    for f in images:
        if f.metadata and f.metadata.style_analysis and f.metadata.style_analysis.prompt_description:
            c.style_hints.append(f.metadata.style_analysis.prompt_description)
        elif f.style_analysis:
            c.style_hints.append(json.dumps(f.style_analysis))
    c.text_blocks.extend(_transcription_blocks(files))
    return c


async def _from_library(data: LibraryNodeData) -> _Contribution:
    c = _Contribution()
    if data.item_content:
        c.text_blocks.append(f"### Reference ({data.item_title or 'library'}):\n{data.item_content}")
    return c


async def _from_prompt(data: PromptNodeData) -> _Contribution:
    return _Contribution(briefing=data.briefing)


async def _from_output(data: OutputNodeData) -> _Contribution:
    c = _Contribution()
    if data.is_image and data.content:
        c.image_refs = await _fetchable([(data.content, None)])
        c.style_hints.append(PRIMARY_STYLE_HINT)
    elif data.content:
        c.text_blocks.append(f"### Previously generated content:\n{data.content}")
    return c


async def _from_image_source(data: ImageSourceNodeData) -> _Contribution:
    c = _Contribution()
    c.image_refs = await _fetchable([(img.url, None) for img in data.images if img.url])
    for img in data.images:
        c.style_hints.extend(_image_hints(img, "Full analysis", "Suggested prompt"))
    return c


async def _from_attachment(data: AttachmentNodeData) -> _Contribution:
    c = _Contribution()
    if data.active_tab == "link" and data.extracted_content:
        c.text_blocks.append(f"### Content from {data.title or 'Link'}:\n{data.extracted_content}")
    if data.active_tab == "text" and data.text_content:
        c.text_blocks.append(f"### Text:\n{data.text_content}")
    c.text_blocks.extend(_transcription_blocks(data.files))
    images = _primary_first(list(data.images))
    c.image_refs = await _fetchable([(img.url, None) for img in images if img.url])
    for img in images:
        c.style_hints.extend(_image_hints(img, "Analysis", "Prompt"))
        if img.metadata.ocr_text:
            c.text_blocks.append(f"### Image text ({img.name or 'image'}):\n{img.metadata.ocr_text}")
    return c


async def _contribution(node: CanvasNode) -> _Contribution:
    data = node.data
    if isinstance(data, SourceNodeData):
        return await _from_source(data)
    if isinstance(data, LibraryNodeData):
        return await _from_library(data)
    if isinstance(data, PromptNodeData):
        return await _from_prompt(data)
    if isinstance(data, OutputNodeData):
        return await _from_output(data)
    if isinstance(data, ImageSourceNodeData):
        return await _from_image_source(data)
    if isinstance(data, AttachmentNodeData):
        return await _from_attachment(data)
    # generators and image editors contribute nothing
    return _Contribution()


async def aggregate_inputs(store: GraphStore, generator_id: str) -> GenerationContext:
    """Gather every input node's contribution concurrently and merge them in edge order.

    When several prompt nodes are connected the last one (by edge order) wins.
    """
    inputs = store.input_nodes(generator_id)
    contributions = await asyncio.gather(*(_contribution(n) for n in inputs))
    ctx = GenerationContext()
    for c in contributions:
        ctx.text_blocks.extend(c.text_blocks)
        ctx.image_refs.extend(c.image_refs)
        ctx.style_hints.extend(c.style_hints)
        if c.briefing is not None:
            ctx.briefing = c.briefing
    logger.debug(
        "Aggregated %d inputs for %s: %d text blocks, %d images",
        len(inputs), generator_id, len(ctx.text_blocks), len(ctx.image_refs),
    )
    return ctx
