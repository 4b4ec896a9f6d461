"""
Stroke capture surface.

Records pointer down/move/up as an ordered sequence of strokes and
rasterizes the ink into a Pillow image as it arrives. Stroke order is NOT
encoded in the ink color (every stroke uses the same ink); it is added at
export time by annotate.py.
"""

from typing import List, Optional, Tuple

from PIL import Image, ImageDraw

from . import config
from .annotate import encode_png, render_annotated_png
from .logger import logger
from .models import Point, Stroke

INK_COLOR = (28, 25, 23)            # stone-900
BACKGROUND = (255, 255, 255)

DEFAULT_PRESSURE = 0.5              # used when the device reports no pressure
MIN_WIDTH = 3.0
PRESSURE_SCALE = 14.0
WIDTH_SMOOTHING = 0.7               # weight of the previous width


def pressure_width(pressure: Optional[float]) -> float:
    """Ink width for a pressure reading in 0..1."""
    if pressure is None:
        pressure = DEFAULT_PRESSURE
    return max(MIN_WIDTH, pressure * PRESSURE_SCALE)


def smooth_width(previous: float, target: float) -> float:
    """Exponentially smooth the width so pressure jitter does not show."""
    return previous * WIDTH_SMOOTHING + target * (1 - WIDTH_SMOOTHING)


class StrokeSurface:
    """
    A fixed-size drawing surface for one character.

    begin/extend/end map to pointer down/move/up. In read-only mode all
    three are ignored, which is how an already-passed character is shown.
    """

    def __init__(self, width: Optional[int] = None, height: Optional[int] = None,
                 read_only: bool = False) -> None:
        self.width = width or config.CANVAS_SIZE
        self.height = height or self.width
        self.read_only = read_only

        self._image = Image.new("RGB", (self.width, self.height), BACKGROUND)
        self._draw = ImageDraw.Draw(self._image)
        self._strokes: List[Stroke] = []
        self._current: Optional[List[Point]] = None
        self._last_width = pressure_width(None)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def begin(self, point: Point, pressure: Optional[float] = None) -> None:
        """Pointer down: start a new stroke and drop a dot of ink."""
        if self.read_only:
            return
        if self._current is not None:
            # Lost the previous pointer-up
            self.end()

        point = self._clamp(point)
        width = pressure_width(pressure)
        self._last_width = width
        self._current = [point]
        self._dot(point, width)

    def extend(self, point: Point, pressure: Optional[float] = None) -> None:
        """Pointer move: continue the stroke in progress, if any."""
        if self.read_only or self._current is None:
            return

        point = self._clamp(point)
        width = smooth_width(self._last_width, pressure_width(pressure))
        self._last_width = width

        previous = self._current[-1]
        self._current.append(point)
        self._segment(previous, point, width)

    def end(self) -> None:
        """Pointer up or leave: commit the stroke in progress, if any."""
        if self.read_only or self._current is None:
            return

        stroke = Stroke(tuple(self._current))
        self._current = None
        self._strokes.append(stroke)
        logger.debug(f"Stroke {len(self._strokes)} committed ({len(stroke)} points)")

    def reset(self) -> None:
        """Clear all ink and strokes."""
        self._draw.rectangle([0, 0, self.width, self.height], fill=BACKGROUND)
        self._strokes = []
        self._current = None
        self._last_width = pressure_width(None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        return not self._strokes

    def stroke_count(self) -> int:
        """Committed strokes, plus the one in progress."""
        return len(self._strokes) + (1 if self._current is not None else 0)

    def strokes(self) -> Tuple[Stroke, ...]:
        """Committed strokes in the order they were drawn."""
        return tuple(self._strokes)

    @property
    def is_drawing(self) -> bool:
        return self._current is not None

    @property
    def image(self) -> Image.Image:
        """The live ink image. Treat as read-only."""
        return self._image

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_raw_image(self) -> bytes:
        """The ink exactly as drawn, PNG-encoded."""
        return encode_png(self._image)

    def export_annotated_image(self) -> bytes:
        """The ink with stroke-order markers, PNG-encoded."""
        strokes = self.strokes()
        logger.ink(f"Annotating {len(strokes)} strokes ({self.width}x{self.height})")
        return render_annotated_png(self._image, strokes)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _clamp(self, point: Point) -> Point:
        x = min(max(float(point.x), 0.0), float(self.width))
        y = min(max(float(point.y), 0.0), float(self.height))
        return Point(x, y)

    def _dot(self, point: Point, width: float) -> None:
        r = width / 2
        self._draw.ellipse([point.x - r, point.y - r, point.x + r, point.y + r], fill=INK_COLOR)

    def _segment(self, a: Point, b: Point, width: float) -> None:
        self._draw.line([(a.x, a.y), (b.x, b.y)], fill=INK_COLOR, width=max(1, round(width)))
        # Round caps and joins
        self._dot(b, width)
