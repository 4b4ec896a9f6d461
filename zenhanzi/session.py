"""
Practice session state machine.

    IDLE → LOADING → PRESENTING → CHECKING → CORRECT | NEEDS_WORK
                         ↑                              │
                         └──── try_again / appeal ──────┘
    advance / skip / source or scope change → LOADING

One session serves one logged-in user. It owns the drawing surfaces (one
per character of the current item, indexed by position), the mastery
ledger, and the user's custom palettes.

Collaborator calls (content fetch, grading, appeals, pronunciation) are made
without holding the session lock so the UI stays responsive; every result
is checked against the generation token taken before the call and dropped
if the user has moved on in the meantime. All ledger mutations happen
under the lock.
"""

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from . import api
from . import config
from .errors import (
    AppealInProgressError, EmptyCanvasError, InvalidActionError, ValidationError,
)
from .ink import StrokeSurface
from .ledger import MasteryLedger
from .logger import logger, Timer
from .models import (
    AudioEvaluationResult, ContentScope, CustomPalette, EvaluationResult, HanziData,
    HSKLevel, HskSource, PaletteSource, PracticeItem, PracticeMode, PracticeSource,
    SentenceData, same_source,
)
from .palettes import create_palette as build_palette
from .progress import LevelProgress, ProgressSnapshot, level_breakdown, source_progress
from .storage import UserDataStore

# Tuned heuristic: how eagerly the retry queue interrupts fresh content
RETRY_PICK_PROBABILITY = 0.4
RETRY_BACKLOG_THRESHOLD = 5


class SessionState(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    PRESENTING = "PRESENTING"
    CHECKING = "CHECKING"
    CORRECT = "CORRECT"
    NEEDS_WORK = "NEEDS_WORK"


@dataclass(eq=False)
class ItemSlot:
    """One character to write: its canvas and its latest grade."""
    index: int
    character: HanziData
    surface: StrokeSurface
    result: Optional[EvaluationResult] = None
    submitted_image: Optional[bytes] = None     # annotated PNG that produced result
    grading: bool = False
    appealing: bool = False

    @property
    def passed(self) -> bool:
        return self.result is not None and self.result.passed

    @property
    def busy(self) -> bool:
        return self.grading or self.appealing

    @property
    def can_appeal(self) -> bool:
        return (self.result is not None and not self.passed
                and self.submitted_image is not None and not self.busy)


@dataclass
class Prompt:
    """What to show above the canvas."""
    text: Optional[str]             # None while hidden in RECALL mode
    pinyin: str
    meaning: str
    is_retry: bool = False
    is_sentence: bool = False


class PracticeSession:
    def __init__(self, services=None, store: Optional[UserDataStore] = None,
                 rng: Optional[random.Random] = None,
                 source: Optional[PracticeSource] = None,
                 scope: ContentScope = ContentScope.CHARACTER,
                 mode: PracticeMode = PracticeMode.COPY,
                 canvas_size: Optional[int] = None,
                 sentence_canvas_size: Optional[int] = None) -> None:
        self.services = services or api
        self.store = store
        self.ledger = MasteryLedger()
        self.palettes: List[CustomPalette] = []

        self.username: Optional[str] = None
        self.source: PracticeSource = source or HskSource(HSKLevel.HSK1)
        self.scope = scope
        self.mode = mode
        self.canvas_size = canvas_size or config.CANVAS_SIZE
        self.sentence_canvas_size = sentence_canvas_size or config.SENTENCE_CANVAS_SIZE

        self.state = SessionState.IDLE
        self.item: Optional[PracticeItem] = None
        self.slots: List[ItemSlot] = []
        self.is_retry = False
        self.audio_result: Optional[AudioEvaluationResult] = None
        self.message: Optional[str] = None

        self._generation = 0
        self._lock = threading.RLock()
        self._rng = rng or random.Random()
        self._unsubscribe = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.transition(self.state.value, state.value)
        self.state = state

    def _require_login(self) -> None:
        if self.username is None:
            raise InvalidActionError("Log in first.")

    def _slot(self, index: int) -> ItemSlot:
        if not 0 <= index < len(self.slots):
            raise InvalidActionError(f"No character at position {index + 1}.")
        return self.slots[index]

    def _is_current(self, generation: int, slot: Optional[ItemSlot] = None) -> bool:
        if generation != self._generation:
            return False
        return slot is None or any(s is slot for s in self.slots)

    def _settle(self) -> None:
        """Pick the resting state from the slots' results."""
        if self.item is None:
            self._set_state(SessionState.IDLE)
        elif self.slots and all(s.passed for s in self.slots):
            self._set_state(SessionState.CORRECT)
        elif any(s.result is not None and not s.passed for s in self.slots):
            self._set_state(SessionState.NEEDS_WORK)
        else:
            self._set_state(SessionState.PRESENTING)

    def _apply_result(self, slot: ItemSlot, result: EvaluationResult) -> None:
        """Record a grade for a slot and update mastery/retry bookkeeping."""
        slot.result = result
        glyph = slot.character.char
        if result.passed:
            self.ledger.record_mastery(glyph, self.source.level_tag)
            slot.surface.read_only = True
            logger.success(f"Mastered {glyph} (score {result.score})")
        else:
            if self.ledger.record_failure(slot.character):
                logger.ui(f"Queued {glyph} for retry")

    def _build_slots(self, item: PracticeItem) -> List[ItemSlot]:
        if isinstance(item, SentenceData):
            return [
                ItemSlot(index=i, character=c, surface=StrokeSurface(self.sentence_canvas_size))
                for i, c in enumerate(item.breakdown)
            ]
        return [ItemSlot(index=0, character=item, surface=StrokeSurface(self.canvas_size))]

    def _pick_palette_char(self, palette: CustomPalette) -> Optional[str]:
        """Uniformly random unmastered glyph, or any glyph once all are mastered."""
        if not palette.chars:
            return None
        unmastered = [c for c in palette.chars if not self.ledger.is_mastered(c)]
        pool = unmastered or palette.chars
        return self._rng.choice(pool)

    def _save_ledger(self, ledger: MasteryLedger) -> None:
        if self.store is None:
            return
        try:
            self.store.save_ledger(ledger)
        except Exception as e:
            logger.error(f"[DB] Failed to save progress: {e}", exc_info=True)

    def _save_palettes(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save_palettes(self.palettes)
        except Exception as e:
            logger.error(f"[DB] Failed to save palettes: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, username: str) -> None:
        """Open the user's saved data. Call load() afterwards to start."""
        username = (username or "").strip()
        if not username:
            raise ValidationError("Enter a name to start practicing.")

        with self._lock:
            if self.username is not None:
                self.logout()

            logger.ui(f"Logging in as {username}")
            if self.store is not None:
                self.store.open(username)
                self.ledger.load(self.store.load_mastered(), self.store.load_retry_queue())
                self.palettes = self.store.load_palettes()
                self._unsubscribe = self.ledger.subscribe(self._save_ledger)
            else:
                self.ledger.clear()
                self.palettes = []

            self.username = username
            logger.ui(f"{self.ledger.mastered_count()} mastered, "
                      f"{self.ledger.retry_count} to review, {len(self.palettes)} palettes")

    def logout(self) -> None:
        with self._lock:
            if self.username is None:
                return
            logger.ui(f"Logging out {self.username}")
            self._generation += 1

            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
            if self.store is not None:
                self._save_ledger(self.ledger)
                self._save_palettes()
                self.store.close()

            self.ledger.clear()
            self.palettes = []
            self.username = None
            self.source = HskSource(HSKLevel.HSK1)
            self.item = None
            self.slots = []
            self.is_retry = False
            self.audio_result = None
            self.message = None
            self._set_state(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Source / scope / mode
    # ------------------------------------------------------------------

    def set_source(self, source: PracticeSource) -> SessionState:
        """Switch practice source; always reloads, discarding any drawing."""
        with self._lock:
            logger.ui(f"Source → {source.label}")
            self.source = source
            if self.username is None:
                return self.state
        return self.load()

    def set_scope(self, scope: ContentScope) -> SessionState:
        """Switch between single characters and sentences; always reloads."""
        with self._lock:
            logger.ui(f"Scope → {scope.value}")
            self.scope = ContentScope(scope)
            if self.username is None:
                return self.state
        return self.load()

    def set_mode(self, mode: PracticeMode) -> None:
        with self._lock:
            logger.ui(f"Mode → {mode.value}")
            self.mode = PracticeMode(mode)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> SessionState:
        """Fetch the next item: a retry, a palette glyph, or fresh content."""
        with self._lock:
            self._require_login()
            self._generation += 1
            generation = self._generation

            self.item = None
            self.slots = []
            self.is_retry = False
            self.audio_result = None
            self.message = None
            self._set_state(SessionState.LOADING)

            source, scope = self.source, self.scope
            retry_item: Optional[HanziData] = None
            palette_char: Optional[str] = None

            if scope == ContentScope.CHARACTER:
                queue = self.ledger.retry_queue_snapshot()
                if queue and (self._rng.random() < RETRY_PICK_PROBABILITY
                              or len(queue) > RETRY_BACKLOG_THRESHOLD):
                    retry_item = queue[0]
                elif isinstance(source, PaletteSource):
                    palette_char = self._pick_palette_char(source.palette)
                    if palette_char is None:
                        self.message = "This palette is empty!"
                        self._set_state(SessionState.IDLE)
                        return self.state

        logger.task_start(f"load ({scope.value}, {source.label})")
        item: Optional[PracticeItem] = None
        with Timer() as timer:
            try:
                if retry_item is not None:
                    item = retry_item
                elif scope == ContentScope.SENTENCE:
                    item = self.services.fetch_random_sentence(source)
                elif palette_char is not None:
                    item = self.services.fetch_character_details(palette_char)
                else:
                    item = self.services.fetch_random_character(source.level)
            except Exception as e:
                logger.task_error("load", str(e), exc_info=True)
                item = None

        with self._lock:
            if not self._is_current(generation):
                logger.warning("Discarding stale content (session moved on)")
                return self.state

            if item is None or (isinstance(item, SentenceData) and not item.breakdown):
                self.message = "Couldn't load practice content. Tap next to try again."
                self._set_state(SessionState.IDLE)
                return self.state

            self.item = item
            self.is_retry = retry_item is not None
            self.slots = self._build_slots(item)
            logger.task_complete("load", duration_ms=timer.duration_ms)
            label = item.text if isinstance(item, SentenceData) else item.char
            logger.ui(f"Presenting {label}{' (review)' if self.is_retry else ''}")
            self._set_state(SessionState.PRESENTING)
            return self.state

    # ------------------------------------------------------------------
    # Checking
    # ------------------------------------------------------------------

    def _grade(self, image: bytes, glyph: str, stroke_count: int) -> EvaluationResult:
        try:
            return self.services.evaluate_handwriting(image, glyph, stroke_count)
        except Exception as e:
            logger.api_error(f"Grading {glyph} failed: {e}", exc_info=True)
            return EvaluationResult(is_correct=False, score=0, feedback=api.GRADING_ERROR_FEEDBACK)

    def _grade_all(self, jobs: List[Tuple[ItemSlot, bytes, int]]) -> List[EvaluationResult]:
        """Grade every job concurrently and wait for all of them."""
        if len(jobs) == 1:
            slot, image, count = jobs[0]
            return [self._grade(image, slot.character.char, count)]

        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="zenhanzi-grade") as pool:
            futures = [pool.submit(self._grade, image, slot.character.char, count)
                       for slot, image, count in jobs]
            return [f.result() for f in futures]

    def check(self) -> SessionState:
        """
        Grade the drawing(s) of the current item.

        Characters already passed are never resubmitted, and empty sentence
        canvases are left ungraded rather than counted as failures.
        """
        with self._lock:
            self._require_login()
            if self.state in (SessionState.CHECKING, SessionState.LOADING):
                raise InvalidActionError("Please wait for the current request to finish.")
            if self.item is None or not self.slots:
                raise InvalidActionError("Nothing to check yet.")

            pending = [s for s in self.slots if not s.passed]
            if not pending:
                raise InvalidActionError("Already complete. Continue to the next one.")
            targets = [s for s in pending if not s.busy and not s.surface.is_empty()]
            if not targets:
                if len(self.slots) == 1:
                    raise EmptyCanvasError("Draw the character first.")
                raise EmptyCanvasError("Draw at least one character first.")

            generation = self._generation
            jobs = []
            for slot in targets:
                slot.grading = True
                jobs.append((slot, slot.surface.export_annotated_image(), slot.surface.stroke_count()))
            self._set_state(SessionState.CHECKING)

        logger.task_start(f"check ({len(jobs)} characters)")
        with Timer() as timer:
            results = self._grade_all(jobs)

        with self._lock:
            for slot, _image, _count in jobs:
                slot.grading = False
            if not self._is_current(generation):
                logger.warning("Discarding stale grading results (session moved on)")
                return self.state

            for (slot, image, _count), result in zip(jobs, results):
                slot.submitted_image = image
                self._apply_result(slot, result)
            logger.task_complete("check", duration_ms=timer.duration_ms)
            self._settle()
            return self.state

    # ------------------------------------------------------------------
    # Retry / clear
    # ------------------------------------------------------------------

    def try_again(self) -> SessionState:
        """Clear every character that has not passed yet, with its grade."""
        with self._lock:
            if self.state == SessionState.CHECKING:
                raise InvalidActionError("Please wait for the check to finish.")
            if self.item is None:
                raise InvalidActionError("Nothing to retry.")

            for slot in self.slots:
                if slot.passed or slot.busy or slot.surface.read_only:
                    continue
                slot.surface.reset()
                slot.result = None
                slot.submitted_image = None
            logger.ui("Try again: cleared unfinished characters")
            self._settle()
            return self.state

    def clear(self, index: int = 0) -> SessionState:
        """Clear a single canvas and its grade."""
        with self._lock:
            slot = self._slot(index)
            if slot.passed or slot.surface.read_only:
                raise InvalidActionError("This character is already done.")
            if slot.busy:
                raise InvalidActionError("Please wait for the current request to finish.")
            slot.surface.reset()
            slot.result = None
            slot.submitted_image = None
            if self.state != SessionState.CHECKING:
                self._settle()
            return self.state

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    def appeal(self, index: int, justification: str) -> Optional[EvaluationResult]:
        """
        Ask for a re-grade of a failed character, with the user's explanation.

        Returns the adjudicated result, or None if it arrived after the
        session had moved on.
        """
        with self._lock:
            slot = self._slot(index)
            if slot.appealing:
                raise AppealInProgressError("An appeal for this character is already under review.")
            if slot.grading:
                raise InvalidActionError("Please wait for the check to finish.")
            if slot.passed:
                raise InvalidActionError("This character already passed.")
            if slot.result is None or slot.submitted_image is None:
                raise InvalidActionError("Check the character before appealing.")

            justification = (justification or "").strip()
            if not justification:
                raise ValidationError("Explain why the grade should change.")

            slot.appealing = True
            generation = self._generation
            image = slot.submitted_image
            glyph = slot.character.char
            feedback = slot.result.feedback

        logger.task_start(f"appeal ({glyph})")
        try:
            result = self.services.adjudicate(image, glyph, feedback, justification)
        except Exception as e:
            logger.task_error("appeal", str(e), exc_info=True)
            result = EvaluationResult(is_correct=False, score=0, feedback=api.APPEAL_ERROR_FEEDBACK)

        with self._lock:
            slot.appealing = False
            if not self._is_current(generation, slot):
                logger.warning(f"Discarding stale appeal result for {glyph}")
                return None

            if result.passed:
                self._apply_result(slot, result)
            else:
                slot.result = result
            logger.task_complete(f"appeal ({glyph})")
            if self.state != SessionState.CHECKING:
                self._settle()
            return result

    # ------------------------------------------------------------------
    # Pronunciation
    # ------------------------------------------------------------------

    def evaluate_pronunciation(self, audio: bytes) -> Optional[AudioEvaluationResult]:
        """Grade a recording of the current sentence. Does not affect mastery."""
        with self._lock:
            if not isinstance(self.item, SentenceData):
                raise InvalidActionError("Pronunciation practice is only available for sentences.")
            if not audio:
                raise ValidationError("Record yourself reading the sentence first.")
            generation = self._generation
            sentence = self.item

        logger.task_start(f"pronunciation ({sentence.text})")
        try:
            result = self.services.evaluate_pronunciation(audio, sentence.text, sentence.pinyin)
        except Exception as e:
            logger.task_error("pronunciation", str(e), exc_info=True)
            result = AudioEvaluationResult(is_correct=False, score=0, feedback=api.AUDIO_ERROR_FEEDBACK)

        with self._lock:
            if not self._is_current(generation) or self.item is not sentence:
                logger.warning("Discarding stale pronunciation result")
                return None
            self.audio_result = result
            return result

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def advance(self) -> SessionState:
        """Move on after the current item has passed."""
        with self._lock:
            if not self.can_advance:
                raise InvalidActionError("Finish the current item first.")
        return self.load()

    def skip(self) -> SessionState:
        """Abandon the current item without recording anything."""
        with self._lock:
            if self.state == SessionState.CHECKING:
                raise InvalidActionError("Please wait for the check to finish.")
            logger.ui("Skipped current item")
        return self.load()

    # ------------------------------------------------------------------
    # Palettes
    # ------------------------------------------------------------------

    def create_palette(self, name: str, raw_chars: str) -> CustomPalette:
        """Create a palette from pasted text and switch to it."""
        self._require_login()
        palette = build_palette(name, raw_chars)
        with self._lock:
            self.palettes.append(palette)
            self._save_palettes()
            logger.ui(f"Created palette {palette.name!r} ({len(palette.chars)} chars)")
        self.set_source(PaletteSource(palette))
        return palette

    def delete_palette(self, palette_id: str) -> None:
        """Delete a palette; if it was active, fall back to HSK 1."""
        with self._lock:
            before = len(self.palettes)
            self.palettes = [p for p in self.palettes if p.id != palette_id]
            if len(self.palettes) == before:
                return
            self._save_palettes()
            logger.ui(f"Deleted palette {palette_id}")
            was_active = isinstance(self.source, PaletteSource) and self.source.palette.id == palette_id
        if was_active:
            self.set_source(HskSource(HSKLevel.HSK1))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_complete(self) -> bool:
        """Every character of the current item has passed."""
        return bool(self.slots) and all(s.passed for s in self.slots)

    @property
    def can_check(self) -> bool:
        if self.item is None or self.state in (SessionState.LOADING, SessionState.CHECKING):
            return False
        return any(not s.passed and not s.busy and not s.surface.is_empty() for s in self.slots)

    @property
    def can_advance(self) -> bool:
        return (self.item is not None and self.is_complete
                and self.state not in (SessionState.LOADING, SessionState.CHECKING))

    @property
    def can_skip(self) -> bool:
        return self.username is not None and self.state != SessionState.CHECKING

    def is_active_source(self, source: PracticeSource) -> bool:
        return same_source(self.source, source)

    def prompt(self) -> Optional[Prompt]:
        """The text to show; in RECALL mode the characters stay hidden until passed."""
        item = self.item
        if item is None:
            return None
        revealed = self.mode == PracticeMode.COPY or self.is_complete
        if isinstance(item, SentenceData):
            return Prompt(item.text if revealed else None, item.pinyin, item.meaning,
                          is_retry=self.is_retry, is_sentence=True)
        return Prompt(item.char if revealed else None, item.pinyin, item.meaning, is_retry=self.is_retry)

    def progress(self) -> ProgressSnapshot:
        return source_progress(self.ledger, self.source)

    def level_progress(self) -> List[LevelProgress]:
        """Progress on every HSK level, for the profile view."""
        return level_breakdown(self.ledger)
