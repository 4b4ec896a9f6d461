import threading

import pytest

from conftest import FixedRandom, draw_stroke
from zenhanzi.errors import (
    AppealInProgressError, EmptyCanvasError, InvalidActionError, ValidationError,
)
from zenhanzi.models import (
    CUSTOM_LEVEL_TAG, ContentScope, CustomPalette, EvaluationResult, HanziData,
    HSKLevel, HskSource, PaletteSource, PracticeMode,
)
from zenhanzi.session import PracticeSession, SessionState


def write(slot):
    draw_stroke(slot.surface, [(10, 10), (40, 40), (80, 80)])


class TestLoading:
    def test_load_requires_login(self, services):
        session = PracticeSession(services=services)
        with pytest.raises(InvalidActionError):
            session.load()

    def test_blank_username_rejected(self, services):
        session = PracticeSession(services=services)
        with pytest.raises(ValidationError):
            session.login("   ")

    def test_load_presents_fresh_character(self, session, services):
        assert session.load() == SessionState.PRESENTING
        assert session.item.char == "我"
        assert len(session.slots) == 1
        assert session.slots[0].surface.width == 100
        assert services.fetched_levels == [HSKLevel.HSK1]
        assert session.is_retry is False

    def test_load_failure_returns_to_idle_with_message(self, session, services):
        def boom(level):
            raise RuntimeError("network down")

        services.fetch_random_character = boom
        assert session.load() == SessionState.IDLE
        assert session.item is None
        assert "try again" in session.message

    def test_sentence_scope_builds_one_slot_per_character(self, session):
        session.set_scope(ContentScope.SENTENCE)
        assert session.state == SessionState.PRESENTING
        assert [s.character.char for s in session.slots] == ["你", "好"]
        assert all(s.surface.width == 60 for s in session.slots)

    def test_setting_source_while_logged_out_only_stores_it(self, services):
        session = PracticeSession(services=services)
        session.set_source(HskSource(HSKLevel.HSK3))
        assert session.source.level == HSKLevel.HSK3
        assert session.state == SessionState.IDLE
        assert services.fetched_levels == []


class TestCheck:
    def test_passing_character_is_mastered(self, session):
        session.load()
        write(session.slots[0])

        assert session.check() == SessionState.CORRECT
        assert session.ledger.is_mastered("我")
        assert session.ledger.level_of("我") == 1
        assert session.slots[0].surface.read_only
        assert session.can_advance
        assert session.progress().mastered == 1

    def test_grader_receives_annotated_png_and_stroke_count(self, session, services):
        session.load()
        write(session.slots[0])
        write(session.slots[0])
        session.check()

        glyph, count, image = services.graded[0]
        assert glyph == "我"
        assert count == 2
        assert image.startswith(b"\x89PNG")

    def test_empty_canvas_is_rejected(self, session, services):
        session.load()
        with pytest.raises(EmptyCanvasError):
            session.check()
        assert services.graded == []
        assert session.state == SessionState.PRESENTING

    def test_check_before_load_is_rejected(self, session):
        with pytest.raises(InvalidActionError):
            session.check()

    def test_failure_queues_retry(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=40, feedback="Wrong radical.")
        session.load()
        write(session.slots[0])

        assert session.check() == SessionState.NEEDS_WORK
        assert session.ledger.in_retry("我")
        assert not session.ledger.is_mastered("我")
        assert not session.slots[0].surface.read_only
        assert session.slots[0].can_appeal

    def test_repeated_failure_does_not_duplicate_retry(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=40, feedback="No.")
        session.load()
        for _ in range(3):
            write(session.slots[0])
            session.check()
            session.try_again()
        assert session.ledger.retry_count == 1

    @pytest.mark.parametrize("is_correct, score, passed", [
        (False, 80, False),
        (True, 79, False),
        (True, 80, True),
        (False, 100, False),
    ])
    def test_pass_needs_flag_and_score(self, session, services, is_correct, score, passed):
        services.grades["我"] = EvaluationResult(is_correct=is_correct, score=score, feedback="")
        session.load()
        write(session.slots[0])
        session.check()

        assert session.ledger.is_mastered("我") is passed
        assert session.ledger.in_retry("我") is not passed
        assert session.state == (SessionState.CORRECT if passed else SessionState.NEEDS_WORK)

    def test_palette_mastery_is_tagged_custom(self, session):
        palette = CustomPalette(id="p1", name="Numbers", chars=["一"])
        session.set_source(PaletteSource(palette))
        write(session.slots[0])
        session.check()
        assert session.ledger.level_of("一") == CUSTOM_LEVEL_TAG

    def test_grader_exception_becomes_failed_result(self, session, services):
        def boom(image, target_char, stroke_count):
            raise RuntimeError("timeout")

        services.evaluate_handwriting = boom
        session.load()
        write(session.slots[0])
        assert session.check() == SessionState.NEEDS_WORK
        assert session.slots[0].result.score == 0


class TestSentence:
    def test_partial_pass_keeps_passed_character(self, session, services):
        services.grades["好"] = EvaluationResult(is_correct=False, score=50, feedback="Unbalanced.")
        session.set_scope(ContentScope.SENTENCE)
        ni, hao = session.slots
        write(ni)
        write(hao)

        assert session.check() == SessionState.NEEDS_WORK
        assert ni.passed and ni.surface.read_only
        assert not hao.passed
        assert session.ledger.is_mastered("你")
        assert session.ledger.in_retry("好")

        session.try_again()
        assert not ni.surface.is_empty()
        assert hao.surface.is_empty()
        assert hao.result is None

        services.grades["好"] = EvaluationResult(is_correct=True, score=85, feedback="Better.")
        write(hao)
        assert session.check() == SessionState.CORRECT
        assert [g[0] for g in services.graded] == ["你", "好", "好"]
        assert not session.ledger.in_retry("好")

    def test_empty_canvases_stay_ungraded(self, session, services):
        session.set_scope(ContentScope.SENTENCE)
        write(session.slots[0])

        assert session.check() == SessionState.PRESENTING
        assert [g[0] for g in services.graded] == ["你"]
        assert session.slots[1].result is None
        assert not session.is_complete

    def test_sentence_with_no_drawing_is_rejected(self, session):
        session.set_scope(ContentScope.SENTENCE)
        with pytest.raises(EmptyCanvasError):
            session.check()

    def test_pronunciation_only_for_sentences(self, session):
        session.load()
        with pytest.raises(InvalidActionError):
            session.evaluate_pronunciation(b"RIFF")

        session.set_scope(ContentScope.SENTENCE)
        result = session.evaluate_pronunciation(b"RIFF")
        assert result.score == 88
        assert session.audio_result is result
        assert session.ledger.mastered_count() == 0


class TestAppeal:
    def test_granted_appeal_masters_character(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=60, feedback="Stroke 3 is off.")
        session.load()
        write(session.slots[0])
        session.check()

        result = session.appeal(0, "That is a common handwritten form.")
        assert result.passed
        assert services.appeals == [("我", "Stroke 3 is off.", "That is a common handwritten form.")]
        assert session.state == SessionState.CORRECT
        assert session.ledger.is_mastered("我")
        assert not session.ledger.in_retry("我")

    def test_denied_appeal_keeps_failure(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=60, feedback="Off.")
        services.appeal_result = EvaluationResult(is_correct=False, score=60, feedback="Still off.")
        session.load()
        write(session.slots[0])
        session.check()

        session.appeal(0, "Looks fine to me")
        assert session.state == SessionState.NEEDS_WORK
        assert session.slots[0].result.feedback == "Still off."
        assert session.ledger.in_retry("我")

    def test_appeal_needs_a_failed_result(self, session):
        session.load()
        with pytest.raises(InvalidActionError):
            session.appeal(0, "please")

    def test_appeal_needs_justification(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=60, feedback="Off.")
        session.load()
        write(session.slots[0])
        session.check()
        with pytest.raises(ValidationError):
            session.appeal(0, "  ")

    def test_second_appeal_while_first_pending_is_rejected(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=60, feedback="Off.")
        session.load()
        write(session.slots[0])
        session.check()

        errors = []

        def nested(image, target_char, original_feedback, justification):
            try:
                session.appeal(0, "again")
            except AppealInProgressError as e:
                errors.append(e)
            return services.appeal_result

        services.adjudicate = nested
        session.appeal(0, "first")
        assert len(errors) == 1


    def test_appeal_second_character_of_sentence(self, session, services):
        services.grades["好"] = EvaluationResult(is_correct=False, score=55, feedback="Unbalanced.")
        session.set_scope(ContentScope.SENTENCE)
        ni, hao = session.slots
        write(ni)
        write(hao)
        session.check()

        result = session.appeal(1, "The right side is a valid variant.")
        assert result.passed
        assert services.appeals == [("好", "Unbalanced.", "The right side is a valid variant.")]
        assert hao.passed and hao.surface.read_only
        assert session.ledger.is_mastered("好")
        assert not session.ledger.in_retry("好")
        assert session.state == SessionState.CORRECT

    def test_sentence_characters_appeal_independently(self, session, services):
        services.grades["你"] = EvaluationResult(is_correct=False, score=40, feedback="Left side cramped.")
        services.grades["好"] = EvaluationResult(is_correct=False, score=50, feedback="Unbalanced.")
        services.appeal_results["你"] = EvaluationResult(is_correct=True, score=88, feedback="Granted.")
        services.appeal_results["好"] = EvaluationResult(is_correct=False, score=50, feedback="Still off.")
        session.set_scope(ContentScope.SENTENCE)
        ni, hao = session.slots
        write(ni)
        write(hao)
        assert session.check() == SessionState.NEEDS_WORK

        both_pending = threading.Barrier(2, timeout=5)
        adjudicate = services.adjudicate

        def wait_for_both(image, target_char, original_feedback, justification):
            both_pending.wait()
            return adjudicate(image, target_char, original_feedback, justification)

        services.adjudicate = wait_for_both
        results = {}
        threads = [threading.Thread(target=lambda i=i: results.__setitem__(i, session.appeal(i, "It is fine")))
                   for i in (0, 1)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert results[0].passed and not results[1].passed
        assert ni.passed and not hao.passed
        assert hao.result.feedback == "Still off."
        assert session.ledger.is_mastered("你")
        assert session.ledger.in_retry("好")
        assert not session.ledger.in_retry("你")
        assert session.state == SessionState.NEEDS_WORK
        assert hao.can_appeal

class TestStaleResults:
    def test_grade_arriving_after_source_change_is_dropped(self, session, services):
        services.characters = [HanziData("我", "wǒ", "I"), HanziData("山", "shān", "mountain")]
        session.load()
        write(session.slots[0])
        services.on_grade = lambda glyph: session.set_source(HskSource(HSKLevel.HSK2))

        session.check()
        assert session.item.char == "山"
        assert session.state == SessionState.PRESENTING
        assert session.ledger.mastered_count() == 0
        assert session.ledger.retry_count == 0
        assert session.slots[0].result is None

    def test_appeal_result_after_skip_is_dropped(self, session, services):
        services.grades["我"] = EvaluationResult(is_correct=False, score=60, feedback="Off.")
        session.load()
        write(session.slots[0])
        session.check()

        def skip_then_grant(image, target_char, original_feedback, justification):
            session.skip()
            return services.appeal_result

        services.adjudicate = skip_then_grant
        assert session.appeal(0, "please") is None
        assert not session.ledger.is_mastered("我")

    def test_content_arriving_after_logout_is_dropped(self, session, services):
        services.on_fetch = session.logout
        session.load()
        assert session.item is None
        assert session.username is None
        assert session.state == SessionState.IDLE


class TestRetrySelection:
    def _queue(self, session, chars):
        session.ledger.load({}, [HanziData(c, "", "") for c in chars])

    def test_large_backlog_always_serves_retry(self, make_session, services):
        session = make_session(rng=FixedRandom(0.99))
        self._queue(session, "一二三四五六")
        session.load()
        assert session.is_retry
        assert session.item.char == "一"
        assert services.fetched_levels == []

    def test_small_backlog_serves_retry_on_low_roll(self, make_session, services):
        session = make_session(rng=FixedRandom(0.1))
        self._queue(session, "一")
        session.load()
        assert session.is_retry
        assert session.prompt().is_retry

    def test_small_backlog_serves_fresh_on_high_roll(self, make_session, services):
        session = make_session(rng=FixedRandom(0.9))
        self._queue(session, "一二")
        session.load()
        assert not session.is_retry
        assert session.item.char == "我"

    def test_sentence_scope_ignores_retry_queue(self, make_session, services):
        session = make_session(rng=FixedRandom(0.0))
        self._queue(session, "一二三四五六七")
        session.set_scope(ContentScope.SENTENCE)
        assert not session.is_retry
        assert session.item.text == "你好"


class TestPalettes:
    def test_unmastered_characters_are_preferred(self, session, services):
        session.ledger.record_mastery("一", CUSTOM_LEVEL_TAG)
        palette = CustomPalette(id="p1", name="Numbers", chars=["一", "二"])
        for _ in range(5):
            session.set_source(PaletteSource(palette))
            assert session.item.char == "二"
        assert set(services.detail_requests) == {"二"}

    def test_fully_mastered_palette_still_serves(self, session):
        session.ledger.record_mastery("一", CUSTOM_LEVEL_TAG)
        palette = CustomPalette(id="p1", name="One", chars=["一"])
        session.set_source(PaletteSource(palette))
        assert session.item.char == "一"

    def test_empty_palette_goes_idle(self, session):
        session.set_source(PaletteSource(CustomPalette(id="p0", name="Empty", chars=[])))
        assert session.state == SessionState.IDLE
        assert session.message == "This palette is empty!"

    def test_create_switches_to_new_palette(self, session, user_store):
        palette = session.create_palette("Food", "米饭 and 面条, 米")
        assert palette.chars == ["米", "饭", "面", "条"]
        assert session.is_active_source(PaletteSource(palette))
        assert session.item.char in palette.chars
        assert [p.name for p in user_store.load_palettes()] == ["Food"]

    def test_delete_active_palette_falls_back_to_hsk1(self, session, user_store):
        palette = session.create_palette("Food", "米饭")
        session.delete_palette(palette.id)
        assert session.palettes == []
        assert session.is_active_source(HskSource(HSKLevel.HSK1))
        assert user_store.load_palettes() == []

    def test_palette_progress_counts_own_characters(self, session):
        session.ledger.record_mastery("我", 1)
        session.ledger.record_mastery("一", CUSTOM_LEVEL_TAG)
        palette = CustomPalette(id="p1", name="Numbers", chars=["一", "二", "三", "四"])
        session.set_source(PaletteSource(palette))
        progress = session.progress()
        assert (progress.mastered, progress.goal, progress.percent) == (1, 4, 25)


class TestNavigationAndModes:
    def test_advance_requires_completion(self, session):
        session.load()
        with pytest.raises(InvalidActionError):
            session.advance()

        write(session.slots[0])
        session.check()
        assert session.advance() == SessionState.PRESENTING

    def test_skip_records_nothing(self, session):
        session.load()
        write(session.slots[0])
        session.skip()
        assert session.ledger.mastered_count() == 0
        assert session.ledger.retry_count == 0
        assert session.slots[0].surface.is_empty()

    def test_recall_hides_glyph_until_passed(self, session):
        session.set_mode(PracticeMode.RECALL)
        session.load()
        prompt = session.prompt()
        assert prompt.text is None
        assert prompt.pinyin == "wǒ"

        write(session.slots[0])
        session.check()
        assert session.prompt().text == "我"

    def test_clear_single_canvas(self, session):
        session.set_scope(ContentScope.SENTENCE)
        write(session.slots[0])
        write(session.slots[1])
        session.clear(1)
        assert not session.slots[0].surface.is_empty()
        assert session.slots[1].surface.is_empty()
        with pytest.raises(InvalidActionError):
            session.clear(5)


class TestPersistence:
    def test_progress_survives_logout_and_login(self, session, services, user_store):
        services.grades["我"] = EvaluationResult(is_correct=False, score=10, feedback="No.")
        services.characters = [HanziData("我", "wǒ", "I"), HanziData("山", "shān", "mountain")]
        session.load()
        write(session.slots[0])
        session.check()
        session.skip()
        write(session.slots[0])
        session.check()

        session.logout()
        assert session.ledger.mastered_count() == 0
        assert user_store.remembered_user() is None

        session.login("alice")
        assert session.ledger.is_mastered("山")
        assert [i.char for i in session.ledger.retry_queue_snapshot()] == ["我"]

    def test_users_are_isolated(self, session, services):
        session.load()
        write(session.slots[0])
        session.check()

        session.login("bob")
        assert session.ledger.mastered_count() == 0
        session.login("alice")
        assert session.ledger.is_mastered("我")

    def test_level_progress_counts_mastered_characters(self, session):
        session.load()
        write(session.slots[0])
        session.check()

        levels = session.level_progress()
        assert [p.level for p in levels] == list(HSKLevel)
        assert levels[0].mastered == 1 and levels[0].goal == 150
        assert levels[0].percent == 1 and not levels[0].completed

    def test_logout_resets_source(self, session):
        session.set_source(HskSource(HSKLevel.HSK4))
        session.logout()
        assert session.source == HskSource(HSKLevel.HSK1)
