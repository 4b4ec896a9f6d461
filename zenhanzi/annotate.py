"""
Stroke-order annotation for the grading model.

The model only ever sees a flat image, so stroke order is encoded with
explicit markers drawn over the ink:

1. A green circle at the START of every stroke, containing its 1-based number.
2. A smaller red dot at the END of every stroke (taps get no end dot).

Markers are drawn in stroke order, so a later marker sits on top of an
earlier one wherever they overlap. The grading prompts in schemas.py
describe exactly this encoding; change both together.
"""

import io
from functools import lru_cache
from typing import Sequence, Union

from PIL import Image, ImageDraw, ImageFont

from .models import Stroke

START_RADIUS = 12
END_RADIUS = 6
START_COLOR = "#16a34a"     # green-600
END_COLOR = "#dc2626"       # red-600
OUTLINE_COLOR = "#ffffff"
OUTLINE_WIDTH = 2
LABEL_COLOR = "#ffffff"
LABEL_SIZE = 14
LABEL_WEIGHT = 1            # stroke width that fakes a bold face on the default font

BACKGROUND = (255, 255, 255)


@lru_cache(maxsize=1)
def _label_font() -> ImageFont.ImageFont:
    return ImageFont.load_default(size=LABEL_SIZE)


def _flatten(image: Union[Image.Image, bytes]) -> Image.Image:
    """Return an RGB copy of the ink, compositing any transparency onto white."""
    if isinstance(image, (bytes, bytearray)):
        image = Image.open(io.BytesIO(image))
        image.load()

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        base = Image.new("RGBA", rgba.size, BACKGROUND + (255,))
        return Image.alpha_composite(base, rgba).convert("RGB")
    if image.mode == "RGB":
        return image.copy()
    return image.convert("RGB")


def _circle(draw: ImageDraw.ImageDraw, x: float, y: float, radius: int, fill: str) -> None:
    draw.ellipse(
        [x - radius, y - radius, x + radius, y + radius],
        fill=fill,
        outline=OUTLINE_COLOR,
        width=OUTLINE_WIDTH,
    )


def _centered_label(draw: ImageDraw.ImageDraw, x: float, y: float, text: str) -> None:
    font = _label_font()
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font, stroke_width=LABEL_WEIGHT)
    position = (x - (right - left) / 2 - left, y - (bottom - top) / 2 - top)
    draw.text(position, text, fill=LABEL_COLOR, font=font,
              stroke_width=LABEL_WEIGHT, stroke_fill=LABEL_COLOR)


def annotate_strokes(image: Union[Image.Image, bytes], strokes: Sequence[Stroke]) -> Image.Image:
    """
    Draw stroke-order markers over a copy of the ink image.

    Neither the image nor the strokes are modified. Same inputs always give
    the same pixels.
    """
    annotated = _flatten(image)
    draw = ImageDraw.Draw(annotated)

    for index, stroke in enumerate(strokes):
        if len(stroke) == 0:
            continue

        start = stroke.start
        _circle(draw, start.x, start.y, START_RADIUS, START_COLOR)
        _centered_label(draw, start.x, start.y, str(index + 1))

        if len(stroke) > 1:
            end = stroke.end
            _circle(draw, end.x, end.y, END_RADIUS, END_COLOR)

    return annotated


def encode_png(image: Image.Image) -> bytes:
    """PNG-encode an image. No metadata chunks are written."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_annotated_png(image: Union[Image.Image, bytes], strokes: Sequence[Stroke]) -> bytes:
    """Annotate the ink and return it as PNG bytes for the grading model."""
    return encode_png(annotate_strokes(image, strokes))
