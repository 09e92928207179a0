"""Tests for canvas_engine.pipelines.aggregation.

Mocking strategy:
- No remote calls; ephemeral images are real files under the patched
  upload directory so inlining to data URLs is exercised for real.
"""
from __future__ import annotations

from canvas_engine.models.canvas import CanvasImage, ImageMetadata, StyleAnalysis
from canvas_engine.pipelines.aggregation import PRIMARY_STYLE_HINT, aggregate_inputs
from canvas_engine.services import storage


def _generator_with(store, *input_ids: str) -> str:
    g = store.add_node("generator")
    for node_id in input_ids:
        store.connect(node_id, g)
    return g


class TestTextContributions:
    async def test_source_library_and_prompt(self, store):
        src = store.add_node("source", data={"extracted_content": "ABC"})
        lib = store.add_node("library", data={"item_title": "Guide", "item_content": "Tone: playful"})
        prompt = store.add_node("prompt", data={"briefing": "Summarize"})
        g = _generator_with(store, src, lib, prompt)

        ctx = await aggregate_inputs(store, g)

        assert ctx.context == "### Extracted content:\nABC\n\n### Reference (Guide):\nTone: playful"
        assert ctx.briefing == "Summarize"
        assert ctx.has_text()

    async def test_plain_text_source_without_extraction(self, store):
        src = store.add_node("source", data={"source_type": "text", "value": "raw notes"})
        g = _generator_with(store, src)
        assert (await aggregate_inputs(store, g)).context == "### Text:\nraw notes"

    async def test_last_prompt_wins(self, store):
        first = store.add_node("prompt", data={"briefing": "first"})
        second = store.add_node("prompt", data={"briefing": "second"})
        g = _generator_with(store, first, second)
        assert (await aggregate_inputs(store, g)).briefing == "second"

    async def test_transcriptions_are_appended(self, store):
        src = store.add_node(
            "source",
            data={"source_type": "file", "files": [{"id": "f1", "name": "talk.mp3", "type": "audio", "transcription": "said"}]},
        )
        g = _generator_with(store, src)
        assert "### Transcription (talk.mp3):\nsaid" in (await aggregate_inputs(store, g)).context

    async def test_text_output_feeds_back_as_context(self, store):
        out = store.add_node("output", data={"content": "Earlier post"})
        g = _generator_with(store, out)
        assert (await aggregate_inputs(store, g)).context == "### Previously generated content:\nEarlier post"

    async def test_attachment_tabs(self, store):
        link = store.add_node("attachment", data={"active_tab": "link", "title": "Blog", "extracted_content": "body", "text_content": "ignored"})
        text = store.add_node("attachment", data={"active_tab": "text", "text_content": "typed"})
        g = _generator_with(store, link, text)
        assert (await aggregate_inputs(store, g)).context == "### Content from Blog:\nbody\n\n### Text:\ntyped"

    async def test_empty_inputs_have_no_text(self, store):
        prompt = store.add_node("prompt")
        g = _generator_with(store, prompt)
        assert not (await aggregate_inputs(store, g)).has_text()


class TestImageContributions:
    async def test_image_output_is_a_primary_style_reference(self, store):
        out = store.add_node("output", data={"content": "https://cdn.test/gen.png", "is_image": True, "format": "image"})
        g = _generator_with(store, out)
        ctx = await aggregate_inputs(store, g)
        assert ctx.image_refs == ["https://cdn.test/gen.png"]
        assert ctx.style_hints == [PRIMARY_STYLE_HINT]
        assert ctx.context == ""

    async def test_image_source_refs_and_hints(self, store):
        analyzed = CanvasImage(
            id="a",
            url="https://cdn.test/a.png",
            metadata=ImageMetadata(image_analysis={"mood": "calm", "generation_prompt": "calm beach"}),
        )
        described = CanvasImage(
            id="b",
            url="https://cdn.test/b.png",
            metadata=ImageMetadata(style_analysis=StyleAnalysis(prompt_description="neon city")),
        )
        node = store.add_node("image-source", data={"images": [analyzed, described]})
        g = _generator_with(store, node)

        ctx = await aggregate_inputs(store, g)

        assert ctx.image_refs == ["https://cdn.test/a.png", "https://cdn.test/b.png"]
        assert ctx.style_hints[0].startswith("Full analysis: ")
        assert ctx.style_hints[1] == "Suggested prompt: calm beach"
        assert ctx.style_hints[2] == "neon city"

    async def test_attachment_images_primary_first_with_ocr(self, store):
        images = [
            CanvasImage(id="x", url="https://cdn.test/x.png", name="x.png", metadata=ImageMetadata(ocr_text="50% OFF")),
            CanvasImage(id="y", url="https://cdn.test/y.png", metadata=ImageMetadata(is_primary=True)),
        ]
        node = store.add_node("attachment", data={"active_tab": "image", "images": images})
        g = _generator_with(store, node)

        ctx = await aggregate_inputs(store, g)

        assert ctx.image_refs == ["https://cdn.test/y.png", "https://cdn.test/x.png"]
        assert "### Image text (x.png):\n50% OFF" in ctx.context

    async def test_ephemeral_images_are_inlined_and_broken_ones_dropped(self, store):
        ref = storage.save_ephemeral(b"\x89PNG fake", "photo.png")
        images = [
            CanvasImage(id="ok", url=ref),
            CanvasImage(id="gone", url="blob:missing.png"),
        ]
        node = store.add_node("image-source", data={"images": images})
        g = _generator_with(store, node)

        ctx = await aggregate_inputs(store, g)

        assert len(ctx.image_refs) == 1
        assert ctx.image_refs[0].startswith("data:image/png;base64,")
