"""
OpenAI-backed services for ZenHanzi.

This module handles:
- Picking practice content (random HSK character, palette character details,
  short sentences)
- Grading handwriting from the annotated canvas image
- Re-adjudicating a grade when the user appeals
- Grading spoken sentences (Whisper transcription + chat evaluation)

Every public function is total: failures are logged and replaced with
offline sample data or a zero-score result carrying an explanation, so the
practice session never sees an exception from here.

Rate-limit and overload errors are retried with exponential backoff before
being treated as failures.
"""

import base64
import json
import random
import re
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import openai
from openai import OpenAI

from . import config
from . import schemas
from .logger import logger, Timer
from .models import (
    AudioEvaluationResult, EvaluationResult, HanziData, HSKLevel,
    HskSource, PracticeSource, SentenceData,
)
from .palettes import extract_hanzi

T = TypeVar("T")

# ---------------------------------------------------------------------------
# OpenAI client setup
# ---------------------------------------------------------------------------

logger.separator("ZenHanzi - API Module Initialization")

if config.OPENAI_API_KEY:
    key = config.OPENAI_API_KEY
    masked_key = f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"
    logger.env_success(f"OPENAI_API_KEY found: {masked_key}")
    client: Optional[OpenAI] = OpenAI(api_key=key)
    logger.env_success("OpenAI client initialized successfully")
else:
    logger.env_error("OPENAI_API_KEY not found in environment!")
    logger.warning("Content will come from offline samples and grading is disabled")
    client = None


def is_api_available() -> bool:
    """Check if the OpenAI API client is properly configured."""
    return client is not None


# ---------------------------------------------------------------------------
# Offline fallback data
# ---------------------------------------------------------------------------

OFFLINE_DATA: Dict[HSKLevel, List[HanziData]] = {
    HSKLevel.HSK1: [
        HanziData("我", "wǒ", "I; me"),
        HanziData("你", "nǐ", "you"),
        HanziData("他", "tā", "he; him"),
        HanziData("好", "hǎo", "good"),
        HanziData("的", "de", "possessive particle"),
        HanziData("是", "shì", "to be"),
        HanziData("不", "bù", "no; not"),
        HanziData("人", "rén", "person"),
        HanziData("大", "dà", "big"),
        HanziData("有", "yǒu", "have"),
    ],
    HSKLevel.HSK2: [
        HanziData("红", "hóng", "red"),
        HanziData("吃", "chī", "eat"),
        HanziData("书", "shū", "book"),
        HanziData("水", "shuǐ", "water"),
        HanziData("手", "shǒu", "hand"),
    ],
    HSKLevel.HSK3: [
        HanziData("爱", "ài", "love"),
        HanziData("心", "xīn", "heart"),
        HanziData("做", "zuò", "do"),
        HanziData("想", "xiǎng", "think; want"),
    ],
    HSKLevel.HSK4: [HanziData("网", "wǎng", "network; net"), HanziData("梦", "mèng", "dream")],
    HSKLevel.HSK5: [HanziData("龙", "lóng", "dragon"), HanziData("魂", "hún", "soul")],
    HSKLevel.HSK6: [HanziData("疆", "jiāng", "border; frontier"), HanziData("巅", "diān", "peak; summit")],
}

OFFLINE_SENTENCE = SentenceData(
    text="你好",
    pinyin="nǐ hǎo",
    meaning="Hello (Offline)",
    breakdown=[HanziData("你", "nǐ", "you"), HanziData("好", "hǎo", "good")],
)

UNGRADED_FEEDBACK = "Grading is offline. Set OPENAI_API_KEY to have your handwriting checked."
GRADING_ERROR_FEEDBACK = "Couldn't reach the grader. Please wait a moment and try again."
APPEAL_ERROR_FEEDBACK = "Unable to process appeal."
AUDIO_ERROR_FEEDBACK = "Audio processing error. Please try again."


def _random_offline_char(level: HSKLevel) -> HanziData:
    samples = OFFLINE_DATA.get(level) or OFFLINE_DATA[HSKLevel.HSK1]
    choice = random.choice(samples)
    return HanziData(choice.char, choice.pinyin, choice.meaning)


def _offline_sentence() -> SentenceData:
    return SentenceData.from_dict(OFFLINE_SENTENCE.to_dict())


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

def _status_of(error: Exception) -> Optional[int]:
    return getattr(error, "status_code", None) or getattr(error, "status", None)


def is_transient_error(error: Exception) -> bool:
    """Rate limiting or overload: worth retrying after a pause."""
    if isinstance(error, openai.RateLimitError):
        return True
    if _status_of(error) in (429, 503):
        return True
    message = str(error).lower()
    return "rate limit" in message or "overloaded" in message or "resource_exhausted" in message


def _retry_operation(operation: Callable[[], T], retries: Optional[int] = None,
                     delay: Optional[float] = None) -> T:
    """
    Run operation, retrying transient failures with exponential backoff.

    Any other error propagates immediately; so does the last transient
    error once the retries are used up.
    """
    retries = config.API_MAX_RETRIES if retries is None else retries
    delay = config.API_RETRY_DELAY if delay is None else delay

    while True:
        try:
            return operation()
        except Exception as e:
            if retries <= 0 or not is_transient_error(e):
                raise
            logger.warning(
                f"API request failed (status: {_status_of(e) or 'unknown'}). "
                f"Retrying in {delay:.1f}s... ({retries} retries left)"
            )
            time.sleep(delay)
            retries -= 1
            delay *= 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_DATA_URL_PREFIX = re.compile(r"^data:[\w/+.-]+;base64,")


def _to_base64(payload: Union[bytes, str]) -> str:
    """Accept raw bytes, a data URL or bare base64."""
    if isinstance(payload, (bytes, bytearray)):
        return base64.b64encode(payload).decode("ascii")
    return _DATA_URL_PREFIX.sub("", payload)


def _image_part(image: Union[bytes, str]) -> Dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{_to_base64(image)}", "detail": "high"},
    }


def _chat_json(endpoint: str, messages: List[Dict[str, Any]], temperature: float = 0.3) -> Dict[str, Any]:
    """Make a JSON-mode chat completion and parse the object it returns."""
    logger.api_call(f"chat.completions.create ({endpoint})", model=config.CHAT_MODEL)
    with Timer() as timer:
        completion = _retry_operation(lambda: client.chat.completions.create(
            model=config.CHAT_MODEL,
            response_format={"type": "json_object"},
            messages=messages,
            temperature=temperature,
        ))
    logger.api_response("chat.completions.create", duration_ms=timer.duration_ms)

    raw = completion.choices[0].message.content
    if not raw:
        raise ValueError("Empty response from model")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _parse_character(data: Dict[str, Any]) -> HanziData:
    item = HanziData.from_dict(data)
    if extract_hanzi(item.char) != [item.char]:
        raise ValueError(f"Not a single Chinese character: {item.char!r}")
    return item


SYSTEM_PROMPT = (
    "You are a patient Mandarin Chinese teacher helping a learner practice "
    "writing Simplified Chinese characters by hand."
)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

def fetch_random_character(level: HSKLevel) -> HanziData:
    """Pick a random character appropriate for an HSK level."""
    level = HSKLevel(level)
    logger.api(f"fetch_random_character() called for HSK {int(level)}")

    if client is None:
        logger.warning("Using offline character (no API)")
        return _random_offline_char(level)

    try:
        data = _chat_json("fetch_random_character", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": (
                f"Generate a single random Chinese character (Hanzi) appropriate for HSK Level {int(level)}. "
                "Ensure the character is commonly used at that level.\n"
                f"{schemas.CHARACTER_SCHEMA}"
            )},
        ], temperature=1.0)
        item = _parse_character(data)
        logger.success(f"Character fetched: {item.char} ({item.pinyin})")
        return item
    except Exception as e:
        logger.api_error(f"Character fetch failed, using offline fallback: {e}", exc_info=True)
        return _random_offline_char(level)


def fetch_character_details(char: str) -> HanziData:
    """Look up pinyin and meaning for a palette character."""
    logger.api(f"fetch_character_details() called for {char}")

    if client is None:
        logger.warning("Using offline details (no API)")
        return HanziData(char, "...", "Offline mode")

    try:
        data = _chat_json("fetch_character_details", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": (
                f'Provide the pinyin (with tone marks) and a concise English meaning for the Chinese character: "{char}".\n'
                f"{schemas.CHARACTER_SCHEMA}"
            )},
        ])
        item = HanziData.from_dict(data)
        # The model sometimes echoes a variant form; keep the palette's glyph
        return HanziData(char, item.pinyin or "...", item.meaning)
    except Exception as e:
        logger.api_error(f"Character details failed: {e}", exc_info=True)
        return HanziData(char, "...", "Offline mode")


def fetch_random_sentence(source: PracticeSource) -> SentenceData:
    """Generate a short sentence for the active practice source."""
    logger.api(f"fetch_random_sentence() called for {source.label}")

    if client is None:
        logger.warning("Using offline sentence (no API)")
        return _offline_sentence()

    if isinstance(source, HskSource):
        context = f"appropriate for HSK Level {int(source.level)}. Use simple vocabulary from this level."
    else:
        # Keep the prompt small for huge palettes
        chars = "".join(source.palette.chars[:100])
        context = (
            f'using a mix of these characters: "{chars}". You may use basic connecting words '
            "(like 的, 是, 在) even if not in the list."
        )

    try:
        data = _chat_json("fetch_random_sentence", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": (
                f"Generate a single short Chinese sentence (4-8 characters) {context}\n"
                f"{schemas.SENTENCE_SCHEMA}"
            )},
        ], temperature=1.0)
        sentence = SentenceData.from_dict(data)
        sentence.breakdown = [c for c in sentence.breakdown if extract_hanzi(c.char) == [c.char]]
        if not sentence.text or not sentence.breakdown:
            raise ValueError("Sentence has no character breakdown")
        logger.success(f"Sentence fetched: {sentence.text} ({len(sentence.breakdown)} chars)")
        return sentence
    except Exception as e:
        logger.api_error(f"Sentence fetch failed, using offline fallback: {e}", exc_info=True)
        return _offline_sentence()


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

def evaluate_handwriting(image: Union[bytes, str], target_char: str, stroke_count: int) -> EvaluationResult:
    """
    Grade an annotated handwriting image against the target character.

    image is the PNG produced by StrokeSurface.export_annotated_image().
    """
    logger.api(f"evaluate_handwriting() called for {target_char} ({stroke_count} strokes)")

    if client is None:
        logger.warning("Grading unavailable (no API)")
        return EvaluationResult(is_correct=False, score=0, feedback=UNGRADED_FEEDBACK)

    try:
        data = _chat_json("evaluate_handwriting", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": [
                _image_part(image),
                {"type": "text", "text": schemas.handwriting_prompt(target_char, stroke_count)},
            ]},
        ])
        result = EvaluationResult.from_dict(data)
        logger.success(f"Handwriting graded: {target_char} correct={result.is_correct}, score={result.score}")
        return result
    except Exception as e:
        logger.api_error(f"Handwriting evaluation failed: {e}", exc_info=True)
        return EvaluationResult(is_correct=False, score=0, feedback=GRADING_ERROR_FEEDBACK)


def adjudicate(image: Union[bytes, str], target_char: str, original_feedback: str,
               justification: str) -> EvaluationResult:
    """Re-grade a failed attempt in light of the user's explanation."""
    logger.api(f"adjudicate() called for {target_char}")
    logger.debug(f"Appeal justification: {justification[:80]}")

    if client is None:
        logger.warning("Appeals unavailable (no API)")
        return EvaluationResult(is_correct=False, score=0, feedback=APPEAL_ERROR_FEEDBACK)

    try:
        data = _chat_json("adjudicate", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": [
                _image_part(image),
                {"type": "text", "text": schemas.appeal_prompt(target_char, original_feedback, justification)},
            ]},
        ])
        result = EvaluationResult.from_dict(data)
        verdict = "granted" if result.passed else "denied"
        logger.success(f"Appeal {verdict}: {target_char} score={result.score}")
        return result
    except Exception as e:
        logger.api_error(f"Appeal failed: {e}", exc_info=True)
        return EvaluationResult(is_correct=False, score=0, feedback=APPEAL_ERROR_FEEDBACK)


def transcribe_audio(audio: bytes) -> str:
    """Transcribe a WAV recording with Whisper. Raises on failure."""
    logger.api_call("audio.transcriptions.create", model=config.STT_MODEL)
    with Timer() as timer:
        transcription = _retry_operation(lambda: client.audio.transcriptions.create(
            model=config.STT_MODEL,
            file=("recording.wav", audio),
            response_format="text",
            language="zh",
        ))
    logger.api_response("audio.transcriptions.create", duration_ms=timer.duration_ms)
    text = transcription if isinstance(transcription, str) else getattr(transcription, "text", str(transcription))
    return text.strip()


def evaluate_pronunciation(audio: bytes, target_text: str, target_pinyin: str) -> AudioEvaluationResult:
    """Grade a spoken attempt at a sentence."""
    logger.api(f"evaluate_pronunciation() called for {target_text} ({len(audio)} bytes)")

    if client is None:
        logger.warning("Pronunciation grading unavailable (no API)")
        return AudioEvaluationResult(is_correct=False, score=0, feedback=AUDIO_ERROR_FEEDBACK)

    try:
        heard = transcribe_audio(audio)
        logger.debug(f"Transcription: {heard!r}")
        data = _chat_json("evaluate_pronunciation", [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": schemas.pronunciation_prompt(target_text, target_pinyin, heard)},
        ])
        result = AudioEvaluationResult.from_dict(data)
        logger.success(f"Pronunciation graded: score={result.score}")
        return result
    except Exception as e:
        logger.api_error(f"Pronunciation evaluation failed: {e}", exc_info=True)
        return AudioEvaluationResult(is_correct=False, score=0, feedback=AUDIO_ERROR_FEEDBACK)
