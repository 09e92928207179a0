"""Starter canvases: small attachment + prompt + generator graphs."""
import logging
from dataclasses import dataclass, field
from typing import Any

from canvas_engine.graph_state import GraphStore
from canvas_engine.utils.ids import generate_edge_id, generate_node_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateNode:
    key: str
    kind: str
    x: float
    y: float
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanvasTemplate:
    id: str
    label: str
    description: str
    name: str
    nodes: tuple[TemplateNode, ...]
    # (source key, target key, target handle)
    edges: tuple[tuple[str, str, str], ...]

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "description": self.description, "name": self.name}


def _link(key: str, x: float, y: float) -> TemplateNode:
    return TemplateNode(key, "attachment", x, y, {"activeTab": "link", "url": ""})


def _text(key: str, x: float, y: float) -> TemplateNode:
    return TemplateNode(key, "attachment", x, y, {"activeTab": "text", "textContent": ""})


def _prompt(key: str, x: float, y: float, briefing: str) -> TemplateNode:
    return TemplateNode(key, "prompt", x, y, {"briefing": briefing})


def _generator(key: str, x: float, y: float, fmt: str, platform: str) -> TemplateNode:
    return TemplateNode(key, "generator", x, y, {"format": fmt, "platform": platform, "quantity": 1})


def _source_and_prompt(tid: str, label: str, description: str, name: str, source: TemplateNode,
                       briefing: str, fmt: str, platform: str, y: float = 150) -> CanvasTemplate:
    return CanvasTemplate(
        id=tid,
        label=label,
        description=description,
        name=name,
        nodes=(
            source,
            _prompt("prompt", 100, y + 200, briefing),
            _generator("generator", 450, y + 100, fmt, platform),
        ),
        edges=(("source", "generator", "input-1"), ("prompt", "generator", "input-2")),
    )


_SUITE_GENERATORS = (
    ("generator-carousel", "carousel", "instagram"),
    ("generator-reels", "reel_script", "instagram"),
    ("generator-thread", "thread", "twitter"),
    ("generator-linkedin", "post", "linkedin"),
    ("generator-newsletter", "newsletter", "other"),
)

CANVAS_TEMPLATES: tuple[CanvasTemplate, ...] = (
    _source_and_prompt(
        "carousel_from_url", "Instagram carousel", "Source to a 7-10 slide carousel", "Instagram carousel",
        _link("source", 100, 150),
        "Turn this content into a 7-10 slide Instagram carousel",
        "carousel", "instagram",
    ),
    _source_and_prompt(
        "reel_script", "Reel script", "Hook, scenes and CTA", "Reel script",
        _text("source", 100, 180),
        "Write a short script with a HOOK, scenes, spoken lines, visual cues and a CTA.",
        "reel_script", "instagram", y=180,
    ),
    _source_and_prompt(
        "thread_from_url", "Twitter thread", "Source to a 7-12 tweet thread", "Thread from URL",
        _link("source", 100, 150),
        "Create a thread of 7-12 tweets, each up to 280 characters, with a clear progression and a CTA at the end.",
        "thread", "twitter",
    ),
    _source_and_prompt(
        "tweet_single", "Single tweet", "One short post (280 chars)", "Tweet (1 post)",
        _text("source", 100, 150),
        "Write 1 tweet (max 280 characters) with a strong hook, clarity and a light CTA.",
        "post", "twitter",
    ),
    _source_and_prompt(
        "linkedin_article", "LinkedIn", "Post or article with insights", "LinkedIn article",
        _link("source", 100, 150),
        "Turn this into a LinkedIn post with clarity, authority and actionable insights. Include a professional CTA.",
        "post", "linkedin",
    ),
    CanvasTemplate(
        id="newsletter_curated",
        label="Newsletter",
        description="Compile sources into a newsletter",
        name="Curated newsletter",
        nodes=(
            _link("source-1", 100, 120),
            _link("source-2", 100, 300),
            _prompt(
                "prompt", 100, 500,
                "Compile these sources into a curated newsletter with analysis. Include a title, sections and a CTA.",
            ),
            _generator("generator", 450, 300, "newsletter", "other"),
        ),
        edges=(
            ("source-1", "generator", "input-1"),
            ("source-2", "generator", "input-2"),
            ("prompt", "generator", "input-3"),
        ),
    ),
    CanvasTemplate(
        id="creator_suite",
        label="Creator suite",
        description="1 source to 5 pieces (IG/Reels/Twitter/LinkedIn/Newsletter)",
        name="Creator suite",
        nodes=(
            _link("source", 100, 220),
            _prompt(
                "prompt", 100, 420,
                "Use the source as the base and produce pieces consistent with each other "
                "(same thesis and angle), varying only the language per channel.",
            ),
            *(_generator(key, 520, 60 + 160 * i, fmt, platform) for i, (key, fmt, platform) in enumerate(_SUITE_GENERATORS)),
        ),
        edges=(
            *(("source", key, "input-1") for key, _, _ in _SUITE_GENERATORS),
            *(("prompt", key, "input-2") for key, _, _ in _SUITE_GENERATORS),
        ),
    ),
)


def get_template(template_id: str) -> CanvasTemplate | None:
    return next((t for t in CANVAS_TEMPLATES if t.id == template_id), None)


def apply_template(store: GraphStore, template_id: str) -> dict[str, str]:
    """Replace the graph with a fresh copy of a template; returns template key -> new node id."""
    template = get_template(template_id)
    if template is None:
        raise KeyError(f"Template {template_id} not found")
    ids = {n.key: generate_node_id(n.kind) for n in template.nodes}
    nodes = [
        {
            "id": ids[n.key],
            "type": n.kind,
            "position": {"x": n.x, "y": n.y},
            "data": {**n.data, "type": n.kind},
        }
        for n in template.nodes
    ]
    edges = [
        {
            "id": generate_edge_id(ids[src], ids[tgt]),
            "source": ids[src],
            "target": ids[tgt],
            "sourceHandle": "output",
            "targetHandle": handle,
        }
        for src, tgt, handle in template.edges
    ]
    store.replace(nodes, edges)
    logger.info("Applied template %s (%d nodes)", template_id, len(nodes))
    return ids
