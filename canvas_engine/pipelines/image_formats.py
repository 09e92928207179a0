"""Image sub-type lookup: default aspect ratio, size and composition instructions."""
from dataclasses import dataclass


@dataclass(frozen=True)
class ImageFormatSpec:
    key: str
    aspect_ratio: str
    width: int
    height: int
    instructions: str


DEFAULT_IMAGE_TYPE = "general"

IMAGE_FORMATS: dict[str, ImageFormatSpec] = {
    "feed": ImageFormatSpec(
        key="feed",
        aspect_ratio="1:1",
        width=1080,
        height=1080,
        instructions=(
            "FEED POST (1080x1080, square):\n"
            "- Keep the focal element in the center; leave a 5% safe margin on every edge.\n"
            "- At most 15 words of on-image text, large and bold, with high contrast.\n"
            "- One strong focal element, saturated colors, no critical detail in the footer."
        ),
    ),
    "carousel": ImageFormatSpec(
        key="carousel",
        aspect_ratio="1:1",
        width=1080,
        height=1080,
        instructions=(
            "CAROUSEL SLIDE (1080x1080):\n"
            "- Design as one slide of a consistent series: same palette, type and margins.\n"
            "- One idea per slide, headline at the top, supporting text below.\n"
            "- Leave a visual cue that invites swiping to the next slide."
        ),
    ),
    "thumbnail": ImageFormatSpec(
        key="thumbnail",
        aspect_ratio="16:9",
        width=1280,
        height=720,
        instructions=(
            "THUMBNAIL (1280x720):\n"
            "- Must read at very small sizes: few words, ultra bold type, strong outline.\n"
            "- High contrast between subject and background."
        ),
    ),
    "stories": ImageFormatSpec(
        key="stories",
        aspect_ratio="9:16",
        width=1080,
        height=1920,
        instructions=(
            "STORY (1080x1920, vertical):\n"
            "- Keep the top 15% and bottom 20% free of text; they are covered by the app UI.\n"
            "- Main content in the central band, short text blocks of at most 3 lines.\n"
            "- Extreme text contrast, one clear message per story."
        ),
    ),
    "youtube_thumbnail": ImageFormatSpec(
        key="youtube_thumbnail",
        aspect_ratio="16:9",
        width=1920,
        height=1080,
        instructions=(
            "YOUTUBE THUMBNAIL (1920x1080):\n"
            "- Giant text, 5 to 7 words at most, placed on the left or right third.\n"
            "- If a face is shown, the expression is strong and occupies 30-50% of the frame.\n"
            "- Saturated colors and a clear contrast between text, subject and background."
        ),
    ),
    "quote": ImageFormatSpec(
        key="quote",
        aspect_ratio="1:1",
        width=1080,
        height=1080,
        instructions=(
            "QUOTE CARD (1080x1080):\n"
            "- The quote is the hero: elegant type, generous spacing, attribution below.\n"
            "- Minimal background that never competes with the text."
        ),
    ),
    "data_viz": ImageFormatSpec(
        key="data_viz",
        aspect_ratio="4:5",
        width=1080,
        height=1350,
        instructions=(
            "INFOGRAPHIC (1080x1350):\n"
            "- Present the data with a clear hierarchy: title, key figure, supporting details.\n"
            "- Use simple charts or icons, a limited palette and readable labels."
        ),
    ),
    "general": ImageFormatSpec(
        key="general",
        aspect_ratio="1:1",
        width=1080,
        height=1080,
        instructions=(
            "GENERAL ARTWORK (1080x1080):\n"
            "- Clear focal point, balanced composition, consistent palette.\n"
            "- Prefer clarity over complexity."
        ),
    ),
}


def resolve_image_format(image_type: str | None) -> ImageFormatSpec:
    """Format settings for an image sub-type; unknown or empty types fall back to general artwork."""
    return IMAGE_FORMATS.get(image_type or DEFAULT_IMAGE_TYPE, IMAGE_FORMATS[DEFAULT_IMAGE_TYPE])


def effective_aspect_ratio(explicit: str | None, image_type: str | None) -> str:
    """An explicit aspect ratio wins over the sub-type default."""
    return explicit or resolve_image_format(image_type).aspect_ratio
