import random
from typing import Callable, Dict, List, Optional

import pytest

from zenhanzi.ink import StrokeSurface
from zenhanzi.models import (
    AudioEvaluationResult, EvaluationResult, HanziData, SentenceData,
)
from zenhanzi.session import PracticeSession
from zenhanzi.storage import MemoryStore, UserDataStore


class FixedRandom(random.Random):
    """A Random whose random() always returns the same value."""

    def __init__(self, value: float, seed: int = 7) -> None:
        super().__init__(seed)
        self.value = value

    def random(self) -> float:
        return self.value


class FakeServices:
    """Stands in for zenhanzi.api inside a PracticeSession."""

    def __init__(self) -> None:
        self.characters: List[HanziData] = [HanziData("我", "wǒ", "I; me")]
        self.sentence = SentenceData(
            text="你好", pinyin="nǐ hǎo", meaning="hello",
            breakdown=[HanziData("你", "nǐ", "you"), HanziData("好", "hǎo", "good")],
        )
        self.grades: Dict[str, EvaluationResult] = {}
        self.appeal_result = EvaluationResult(is_correct=True, score=90, feedback="Fair point.")
        self.appeal_results: Dict[str, EvaluationResult] = {}
        self.audio_result = AudioEvaluationResult(is_correct=True, score=88, feedback="Clear.",
                                                  heard_pinyin="nǐ hǎo")
        self.on_grade: Optional[Callable[[str], None]] = None
        self.on_fetch: Optional[Callable[[], None]] = None

        self.fetched_levels = []
        self.detail_requests: List[str] = []
        self.sentence_requests = []
        self.graded: List[tuple] = []
        self.appeals: List[tuple] = []

    def fetch_random_character(self, level):
        self.fetched_levels.append(level)
        if self.on_fetch is not None:
            self.on_fetch()
        item = self.characters[(len(self.fetched_levels) - 1) % len(self.characters)]
        return HanziData(item.char, item.pinyin, item.meaning)

    def fetch_character_details(self, char):
        self.detail_requests.append(char)
        return HanziData(char, "pīn", "meaning of " + char)

    def fetch_random_sentence(self, source):
        self.sentence_requests.append(source)
        return SentenceData.from_dict(self.sentence.to_dict())

    def evaluate_handwriting(self, image, target_char, stroke_count):
        self.graded.append((target_char, stroke_count, image))
        if self.on_grade is not None:
            self.on_grade(target_char)
        return self.grades.get(target_char, EvaluationResult(is_correct=True, score=95, feedback="Nice."))

    def adjudicate(self, image, target_char, original_feedback, justification):
        self.appeals.append((target_char, original_feedback, justification))
        return self.appeal_results.get(target_char, self.appeal_result)

    def evaluate_pronunciation(self, audio, target_text, target_pinyin):
        return self.audio_result


def draw_stroke(surface: StrokeSurface, points) -> None:
    """Simulate a pointer down/move/up gesture."""
    from zenhanzi.models import Point

    (x, y), rest = points[0], points[1:]
    surface.begin(Point(x, y))
    for x, y in rest:
        surface.extend(Point(x, y))
    surface.end()


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def user_store(memory_store):
    return UserDataStore(memory_store)


@pytest.fixture
def make_session(services, user_store):
    def factory(rng=None, **kwargs):
        session = PracticeSession(services=services, store=user_store,
                                  rng=rng or FixedRandom(0.99), canvas_size=100,
                                  sentence_canvas_size=60, **kwargs)
        session.login("alice")
        return session

    return factory


@pytest.fixture
def session(make_session):
    return make_session()
