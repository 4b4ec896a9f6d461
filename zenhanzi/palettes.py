"""Custom character palettes built from pasted text."""

import re
import time
from typing import List, Optional

from .errors import EmptyPaletteError, ValidationError
from .models import CustomPalette

# CJK Unified Ideographs, common range
HANZI_PATTERN = re.compile(r"[一-龥]")


def extract_hanzi(text: str) -> List[str]:
    """Unique recognized characters in first-seen order."""
    return list(dict.fromkeys(HANZI_PATTERN.findall(text or "")))


def create_palette(name: str, raw_chars: str, palette_id: Optional[str] = None) -> CustomPalette:
    """
    Build a palette from raw pasted text.

    Raises ValidationError for a blank name and EmptyPaletteError when the
    text holds no recognized characters.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Give the palette a name.")

    chars = extract_hanzi(raw_chars)
    if not chars:
        raise EmptyPaletteError("No valid Chinese characters found.")

    if palette_id is None:
        palette_id = str(int(time.time() * 1000))
    return CustomPalette(id=palette_id, name=name, chars=chars)
