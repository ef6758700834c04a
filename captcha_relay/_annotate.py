"""Numbered grid overlays and caption banners for relayed challenges.

The human sees the challenge as a plain image in a chat, so every grid
cell gets a numbered badge they can reply with.  Cells are laid out by
integer division of the image size: ``cell_w = W // columns`` and
``cell_h = H // rows``.  Remainder pixels on the right and bottom edges
belong to no cell (truncation), which keeps every badge centered on a
cell of identical size.

Everything here is a pure function of its inputs: no clock, no
randomness, so the same image and spec always encode to the same bytes.

Requires ``Pillow>=10.1`` (sized default font).
"""

import io
import logging
from dataclasses import dataclass, field
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger("captcha_relay")

TEXT_BANNER_HEIGHT = 30
PROMPT_BANNER_HEIGHT = 44
TEXT_BANNER_MESSAGE = "Reply with the text you see in the image"

_TEXT_BANNER_FILL = (0, 0, 0, 255)
_TEXT_BANNER_COLOR = "#FFD700"
_PROMPT_BANNER_FILL = (66, 133, 244, 255)  # #4285F4
_PROMPT_BANNER_COLOR = "#FFFFFF"


@dataclass(frozen=True)
class AnnotationStyle:
    """Badge appearance."""

    label_color: str | tuple = "#FFFFFF"
    font_size: int = 22
    badge_background: str | tuple = (0, 0, 0, 166)
    stroke_color: str | tuple = "#000000"

    @property
    def badge_radius(self) -> int:
        return max(self.font_size + 8, 28) // 2


@dataclass(frozen=True)
class AnnotationSpec:
    """Grid dimensions plus badge style.  Defaults to 3x3."""

    columns: int = 3
    rows: int = 3
    style: AnnotationStyle = field(default_factory=AnnotationStyle)

    def __post_init__(self):
        if self.columns < 1 or self.rows < 1:
            raise ValueError(
                f"Grid must be at least 1x1, got {self.columns}x{self.rows}"
            )

    @property
    def cell_count(self) -> int:
        return self.columns * self.rows


@lru_cache(maxsize=16)
def _font(size: int):
    return ImageFont.load_default(size=size)


def _open(image: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(image))
    img.load()
    return img.convert("RGBA")


def _encode(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.convert("RGB").save(buf, "PNG")
    return buf.getvalue()


def cell_centers(
    width: int, height: int, columns: int, rows: int
) -> list[tuple[int, int]]:
    """Badge centers in row-major order (index ``n - 1`` is cell ``n``)."""
    cell_w, cell_h = width // columns, height // rows
    return [
        (col * cell_w + cell_w // 2, row * cell_h + cell_h // 2)
        for row in range(rows)
        for col in range(columns)
    ]


def _centered_text(draw, cx: int, cy: int, text: str, font, fill) -> None:
    """Draw ``text`` centered on ``(cx, cy)``.

    Uses the text bbox rather than anchors so bitmap fallback fonts
    work too.
    """
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = cx - (right - left) // 2 - left
    y = cy - (bottom - top) // 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def _fit_text(draw, text: str, font, max_width: int) -> str:
    """Truncate ``text`` with an ellipsis until it fits ``max_width``."""
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + "...", font=font) > max_width:
        text = text[:-1]
    return text + "..." if text else ""


def _draw_grid(img: Image.Image, spec: AnnotationSpec) -> Image.Image:
    style = spec.style
    overlay = Image.new("RGBA", img.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = _font(style.font_size)
    r = style.badge_radius

    centers = cell_centers(img.width, img.height, spec.columns, spec.rows)
    for number, (cx, cy) in enumerate(centers, start=1):
        draw.ellipse(
            (cx - r, cy - r, cx + r, cy + r),
            fill=style.badge_background,
            outline=style.stroke_color,
            width=2,
        )
        _centered_text(draw, cx, cy, str(number), font, style.label_color)

    return Image.alpha_composite(img, overlay)


def _banner(
    width: int, height: int, text: str, fill, color, font_size: int
) -> Image.Image:
    banner = Image.new("RGBA", (width, height), fill)
    draw = ImageDraw.Draw(banner)
    font = _font(font_size)
    text = _fit_text(draw, text, font, max(0, width - 8))
    if text:
        _centered_text(draw, width // 2, height // 2, text, font, color)
    return banner


def _stack(banner: Image.Image, body: Image.Image) -> Image.Image:
    canvas = Image.new(
        "RGBA", (body.width, banner.height + body.height), (0, 0, 0, 255)
    )
    canvas.paste(banner, (0, 0))
    canvas.paste(body, (0, banner.height))
    return canvas


def annotate(image: bytes, spec: AnnotationSpec | None = None) -> bytes:
    """Overlay numbered badges on a ``columns x rows`` grid.

    Returns a PNG with the same dimensions as the input.
    """
    spec = spec or AnnotationSpec()
    img = _open(image)
    out = _draw_grid(img, spec)
    logger.debug(
        "Annotated %dx%d image with %dx%d grid",
        img.width, img.height, spec.columns, spec.rows,
    )
    return _encode(out)


def annotate_text(image: bytes, message: str = TEXT_BANNER_MESSAGE) -> bytes:
    """Prepend a fixed-height instruction banner (non-grid challenges)."""
    img = _open(image)
    banner = _banner(
        img.width, TEXT_BANNER_HEIGHT, message,
        _TEXT_BANNER_FILL, _TEXT_BANNER_COLOR, 14,
    )
    return _encode(_stack(banner, img))


def annotate_with_prompt(
    image: bytes, prompt: str, spec: AnnotationSpec | None = None
) -> bytes:
    """Prompt banner on top of a numbered grid.

    Used when the human needs both the challenge question ("Select all
    images with buses") and the cell numbers.
    """
    spec = spec or AnnotationSpec()
    img = _open(image)
    grid = _draw_grid(img, spec)
    banner = _banner(
        img.width, PROMPT_BANNER_HEIGHT, prompt,
        _PROMPT_BANNER_FILL, _PROMPT_BANNER_COLOR, 16,
    )
    return _encode(_stack(banner, grid))


def crop(image: bytes, clip: dict) -> bytes:
    """Cut ``clip`` (``x, y, w, h`` or ``x, y, width, height``) out of
    ``image``.  The region is clamped to the image bounds."""
    img = _open(image)
    x = max(0, int(clip.get("x", 0)))
    y = max(0, int(clip.get("y", 0)))
    w = int(clip.get("w", clip.get("width", img.width)))
    h = int(clip.get("h", clip.get("height", img.height)))
    box = (x, y, min(img.width, x + w), min(img.height, y + h))
    if box[2] <= box[0] or box[3] <= box[1]:
        raise ValueError(f"Clip {clip!r} is outside the {img.width}x{img.height} image")
    return _encode(img.crop(box))
