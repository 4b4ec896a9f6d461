"""
Retry/mastery ledger.

Tracks which characters are mastered (glyph -> level tag) and which are
queued for another attempt. A glyph is never in both at once. The ledger
does no I/O; persistence subscribes to changes.
"""

from typing import Callable, Dict, Iterable, List, Optional

from .models import HanziData

LedgerListener = Callable[["MasteryLedger"], None]


class MasteryLedger:
    def __init__(self) -> None:
        self._mastered: Dict[str, int] = {}
        self._retry: List[HanziData] = []
        self._listeners: List[LedgerListener] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Call listener after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_mastery(self, glyph: str, level_tag: int) -> None:
        """Mark glyph as mastered (last write wins) and drop it from the retry queue."""
        self._mastered[glyph] = int(level_tag)
        self._retry = [item for item in self._retry if item.char != glyph]
        self._changed()

    def record_failure(self, item: HanziData) -> bool:
        """
        Queue item for retry unless its glyph is already queued.

        Returns True if the queue grew.
        """
        self._mastered.pop(item.char, None)
        if self.in_retry(item.char):
            self._changed()
            return False
        self._retry.append(item)
        self._changed()
        return True

    def remove_from_retry(self, glyph: str) -> None:
        before = len(self._retry)
        self._retry = [item for item in self._retry if item.char != glyph]
        if len(self._retry) != before:
            self._changed()

    def load(self, mastered: Optional[Dict[str, int]] = None,
             retry: Optional[Iterable[HanziData]] = None) -> None:
        """Replace the whole ledger, e.g. from storage on login."""
        self._mastered = {str(k): int(v) for k, v in (mastered or {}).items()}
        self._retry = []
        seen = set()
        for item in retry or []:
            if item.char in seen or item.char in self._mastered:
                continue
            seen.add(item.char)
            self._retry.append(item)
        self._changed()

    def clear(self) -> None:
        self._mastered = {}
        self._retry = []
        self._changed()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_mastered(self, glyph: str) -> bool:
        return glyph in self._mastered

    def level_of(self, glyph: str) -> Optional[int]:
        return self._mastered.get(glyph)

    def in_retry(self, glyph: str) -> bool:
        return any(item.char == glyph for item in self._retry)

    def mastered_count(self, predicate: Optional[Callable[[str, int], bool]] = None) -> int:
        """Number of mastered glyphs, optionally filtered by predicate(glyph, level_tag)."""
        if predicate is None:
            return len(self._mastered)
        return sum(1 for glyph, level in self._mastered.items() if predicate(glyph, level))

    def mastered_snapshot(self) -> Dict[str, int]:
        return dict(self._mastered)

    def retry_queue_snapshot(self) -> List[HanziData]:
        return list(self._retry)

    @property
    def retry_count(self) -> int:
        return len(self._retry)
