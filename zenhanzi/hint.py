"""
Stroke-order hints.

Builds a looping stroke-order animation for a character from
hanzi-writer-data (https://github.com/chanind/hanzi-writer-data): one JSON
file per character holding SVG outlines and a median polyline per stroke,
in a 1024x1024 box with the y axis pointing up.

Data is read from HANZI_DATA_DIR when set, otherwise fetched from a CDN.
Any failure yields an unavailable hint with a text notice; nothing here
raises into the caller.
"""

import json
import math
import os
import threading
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from PIL import Image, ImageDraw

from . import config
from .logger import logger, Timer

UNAVAILABLE_MESSAGE = "Animation unavailable"

DATA_BOX = 1024
DATA_BASELINE = 900         # hanzi-writer draws with translate(0, 900) scale(1, -1)

OUTLINE_COLOR = (231, 229, 228)     # stone-200
STROKE_COLOR = (28, 25, 23)         # stone-900
RADICAL_COLOR = (185, 28, 28)       # red-700
BACKGROUND = (255, 255, 255)

_cache: Dict[str, Dict[str, Any]] = {}
_cache_lock = threading.Lock()


@dataclass
class StrokeHint:
    char: str
    available: bool
    frames: List[Image.Image] = field(default_factory=list)
    frame_delay_ms: int = 40
    message: str = ""


def fetch_stroke_data(char: str) -> Dict[str, Any]:
    """Load hanzi-writer JSON for one character. Raises on any failure."""
    with _cache_lock:
        if char in _cache:
            return _cache[char]

    data: Optional[Dict[str, Any]] = None
    if config.HANZI_DATA_DIR:
        path = os.path.join(config.HANZI_DATA_DIR, f"{char}.json")
        if os.path.exists(path):
            logger.ink(f"Loading stroke data for {char} from {path}")
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

    if data is None:
        url = config.HINT_CDN_URL.format(char=urllib.parse.quote(char))
        logger.api_call(f"GET {url}")
        with Timer() as timer:
            response = requests.get(url, timeout=config.HINT_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        logger.api_response(url, duration_ms=timer.duration_ms)

    if not isinstance(data, dict) or not data.get("medians"):
        raise ValueError(f"No stroke medians for {char!r}")

    with _cache_lock:
        _cache[char] = data
    return data


def _partial(points: Sequence[Tuple[float, float]], fraction: float) -> List[Tuple[float, float]]:
    """The leading fraction (0..1) of a polyline, by arc length."""
    if fraction >= 1 or len(points) < 2:
        return list(points)

    lengths = [math.dist(points[i - 1], points[i]) for i in range(1, len(points))]
    remaining = sum(lengths) * max(fraction, 0.0)
    out = [points[0]]
    for (a, b), length in zip(zip(points, points[1:]), lengths):
        if remaining >= length:
            out.append(b)
            remaining -= length
            continue
        if length > 0:
            t = remaining / length
            out.append((a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t))
        break
    return out


def _polyline(draw: ImageDraw.ImageDraw, points: Sequence[Tuple[float, float]],
              color: Tuple[int, int, int], width: int) -> None:
    r = width / 2
    for x, y in points:
        draw.ellipse([x - r, y - r, x + r, y + r], fill=color)
    if len(points) > 1:
        draw.line(list(points), fill=color, width=width)


def render_frames(data: Dict[str, Any], size: int = 200, padding: int = 5,
                  steps_per_stroke: int = 8, hold_frames: int = 20) -> List[Image.Image]:
    """Frames of the stroke-by-stroke animation, ending on a held full character."""
    scale = (size - 2 * padding) / DATA_BOX
    width = max(2, round(64 * scale))
    radicals = set(data.get("radStrokes") or [])

    medians = [
        [(padding + x * scale, padding + (DATA_BASELINE - y) * scale) for x, y in median]
        for median in data["medians"]
    ]

    outline = Image.new("RGB", (size, size), BACKGROUND)
    outline_draw = ImageDraw.Draw(outline)
    for median in medians:
        _polyline(outline_draw, median, OUTLINE_COLOR, width)

    frames = [outline.copy()]
    done = outline.copy()
    for index, median in enumerate(medians):
        color = RADICAL_COLOR if index in radicals else STROKE_COLOR
        for step in range(1, steps_per_stroke + 1):
            frame = done.copy()
            _polyline(ImageDraw.Draw(frame), _partial(median, step / steps_per_stroke), color, width)
            frames.append(frame)
        _polyline(ImageDraw.Draw(done), median, color, width)

    frames.extend(done.copy() for _ in range(hold_frames))
    return frames


def load_stroke_hint(char: str, size: int = 200) -> StrokeHint:
    """Stroke-order animation for char, or an unavailable notice."""
    try:
        data = fetch_stroke_data(char)
        frames = render_frames(data, size=size)
        logger.ink(f"Stroke hint for {char}: {len(data['medians'])} strokes, {len(frames)} frames")
        return StrokeHint(char=char, available=True, frames=frames)
    except Exception as e:
        logger.warning(f"Stroke hint unavailable for {char}: {e}")
        return StrokeHint(char=char, available=False, message=UNAVAILABLE_MESSAGE)
