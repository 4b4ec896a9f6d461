"""Mastery progress against HSK goals and custom palettes."""

from dataclasses import dataclass
from typing import List

from .ledger import MasteryLedger
from .models import HSKLevel, HSK_GOALS, HskSource, PracticeSource


@dataclass
class ProgressSnapshot:
    label: str
    mastered: int
    goal: int
    retry_count: int = 0

    @property
    def percent(self) -> int:
        """Percentage of the goal reached, capped at 100."""
        if self.goal <= 0:
            return 0
        return min(100, round(self.mastered / self.goal * 100))

    @property
    def display_mastered(self) -> int:
        return min(self.mastered, self.goal)


@dataclass
class LevelProgress:
    level: HSKLevel
    mastered: int
    goal: int
    percent: int
    completed: bool


def source_progress(ledger: MasteryLedger, source: PracticeSource) -> ProgressSnapshot:
    """Mastery toward the goal of the active practice source."""
    if isinstance(source, HskSource):
        return ProgressSnapshot(
            label=f"{source.label} Mastery",
            mastered=ledger.mastered_count(),
            goal=HSK_GOALS[source.level],
            retry_count=ledger.retry_count,
        )

    chars = set(source.palette.chars)
    return ProgressSnapshot(
        label=f"{source.label} Mastery",
        mastered=ledger.mastered_count(lambda glyph, _level: glyph in chars),
        goal=len(source.palette.chars),
        retry_count=ledger.retry_count,
    )


def level_breakdown(ledger: MasteryLedger) -> List[LevelProgress]:
    """
    Progress on every HSK level, measured by the total number of unique
    mastered characters (so 200 characters completes HSK 1 and is 67% of HSK 2).
    """
    total = ledger.mastered_count()
    levels = []
    for level in HSKLevel:
        goal = HSK_GOALS[level]
        levels.append(LevelProgress(
            level=level,
            mastered=min(total, goal),
            goal=goal,
            percent=min(100, round(total / goal * 100)),
            completed=total >= goal,
        ))
    return levels
