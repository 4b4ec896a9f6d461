from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import List, Dict, Any, Optional, Tuple, Union


PASS_SCORE = 80                 # minimum score for a pass (is_correct is also required)
CUSTOM_LEVEL_TAG = 99           # mastery level tag for glyphs learned from a custom palette


class HSKLevel(IntEnum):
    """HSK proficiency levels."""
    HSK1 = 1
    HSK2 = 2
    HSK3 = 3
    HSK4 = 4
    HSK5 = 5
    HSK6 = 6


# Cumulative character goals per level
HSK_GOALS: Dict[HSKLevel, int] = {
    HSKLevel.HSK1: 150,
    HSKLevel.HSK2: 300,
    HSKLevel.HSK3: 600,
    HSKLevel.HSK4: 1200,
    HSKLevel.HSK5: 2500,
    HSKLevel.HSK6: 5000,
}


class PracticeMode(str, Enum):
    COPY = "COPY"       # Glyph shown, user copies it
    RECALL = "RECALL"   # Pinyin and meaning shown, user writes from memory


class ContentScope(str, Enum):
    CHARACTER = "character"
    SENTENCE = "sentence"


# ---------------------------------------------------------------------------
# Ink
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Point:
    """A surface-local sample, in pixels from the top-left corner."""
    x: float
    y: float


@dataclass(frozen=True)
class Stroke:
    """A committed pen-down to pen-up path. Never empty."""
    points: Tuple[Point, ...]

    def __post_init__(self) -> None:
        if not self.points:
            raise ValueError("a stroke needs at least one point")

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]

    @property
    def is_tap(self) -> bool:
        """A single-sample stroke, drawn as a dot with no end marker."""
        return len(self.points) == 1

    def __len__(self) -> int:
        return len(self.points)


# ---------------------------------------------------------------------------
# Practice content
# ---------------------------------------------------------------------------

@dataclass
class HanziData:
    """A single character to practice."""
    char: str
    pinyin: str = ""
    meaning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HanziData":
        return cls(
            char=str(data.get("char", "")),
            pinyin=str(data.get("pinyin", "")),
            meaning=str(data.get("meaning", "")),
        )


@dataclass
class SentenceData:
    """A short sentence practiced character by character."""
    text: str
    pinyin: str = ""
    meaning: str = ""
    breakdown: List[HanziData] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "pinyin": self.pinyin,
            "meaning": self.meaning,
            "breakdown": [c.to_dict() for c in self.breakdown],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentenceData":
        return cls(
            text=str(data.get("text", "")),
            pinyin=str(data.get("pinyin", "")),
            meaning=str(data.get("meaning", "")),
            breakdown=[HanziData.from_dict(c) for c in data.get("breakdown", []) or []],
        )


PracticeItem = Union[HanziData, SentenceData]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def clamp_score(value: Any) -> int:
    """Coerce a model-provided score into 0..100."""
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def parse_flag(value: Any) -> bool:
    """Read a model-provided boolean. Only real booleans and "true"/"false" are accepted."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"not a boolean flag: {value!r}")


def is_passing(is_correct: bool, score: int) -> bool:
    """The fixed pass rule: both the flag and the score threshold are required."""
    return bool(is_correct) and score >= PASS_SCORE


@dataclass
class EvaluationResult:
    """Grading outcome for one handwritten character."""
    is_correct: bool = False
    score: int = 0                  # 0–100
    feedback: str = ""

    @property
    def passed(self) -> bool:
        return is_passing(self.is_correct, self.score)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationResult":
        return cls(
            is_correct=parse_flag(data.get("isCorrect", data.get("is_correct", False))),
            score=clamp_score(data.get("score", 0)),
            feedback=str(data.get("feedback", "") or ""),
        )


@dataclass
class AudioEvaluationResult(EvaluationResult):
    """Grading outcome for a spoken sentence."""
    pronunciation_tips: str = ""
    heard_pinyin: str = ""          # What the recording actually sounded like

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioEvaluationResult":
        base = EvaluationResult.from_dict(data)
        return cls(
            is_correct=base.is_correct,
            score=base.score,
            feedback=base.feedback,
            pronunciation_tips=str(data.get("pronunciationTips", data.get("pronunciation_tips", "")) or ""),
            heard_pinyin=str(data.get("heardPinyin", data.get("heard_pinyin", "")) or ""),
        )


# ---------------------------------------------------------------------------
# Practice sources
# ---------------------------------------------------------------------------

@dataclass
class CustomPalette:
    """A user-defined set of characters to practice."""
    id: str
    name: str
    chars: List[str] = field(default_factory=list)   # unique, first-seen order

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomPalette":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            chars=[str(c) for c in data.get("chars", [])],
        )


@dataclass(frozen=True)
class HskSource:
    level: HSKLevel = HSKLevel.HSK1

    @property
    def label(self) -> str:
        return f"HSK {int(self.level)}"

    @property
    def level_tag(self) -> int:
        return int(self.level)


@dataclass(frozen=True)
class PaletteSource:
    palette: CustomPalette

    @property
    def label(self) -> str:
        return self.palette.name

    @property
    def level_tag(self) -> int:
        return CUSTOM_LEVEL_TAG


PracticeSource = Union[HskSource, PaletteSource]


def same_source(a: Optional[PracticeSource], b: Optional[PracticeSource]) -> bool:
    """Compare sources by level or palette id."""
    if isinstance(a, HskSource) and isinstance(b, HskSource):
        return a.level == b.level
    if isinstance(a, PaletteSource) and isinstance(b, PaletteSource):
        return a.palette.id == b.palette.id
    return False
