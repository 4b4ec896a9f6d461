"""
Runtime configuration for ZenHanzi.

Values come from the environment, with a .env file at the project root
loaded through python-dotenv so secrets stay out of git:

    OPENAI_API_KEY=sk-...
    ZENHANZI_STORAGE=json            # json | firestore | memory
    FIREBASE_CREDENTIALS_PATH=./service-account.json
"""

import os

from dotenv import load_dotenv

from .logger import logger

logger.env("Loading environment variables from .env file...")
if load_dotenv():
    logger.env_success("dotenv file loaded successfully")
else:
    logger.debug("No .env file found or file is empty")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default


# ---------------------------------------------------------------------------
# Grading / content API
# ---------------------------------------------------------------------------

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
CHAT_MODEL = os.getenv("ZENHANZI_CHAT_MODEL", "gpt-4o-mini")
STT_MODEL = os.getenv("ZENHANZI_STT_MODEL", "whisper-1")

API_MAX_RETRIES = _env_int("ZENHANZI_API_MAX_RETRIES", 3)
API_RETRY_DELAY = _env_float("ZENHANZI_API_RETRY_DELAY", 1.0)   # seconds, doubled per retry

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

DATA_DIR = os.path.expanduser(os.getenv("ZENHANZI_DATA_DIR", "~/.zenhanzi"))
STORAGE_BACKEND = os.getenv("ZENHANZI_STORAGE", "json").lower()
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH")

# ---------------------------------------------------------------------------
# Stroke-order hints
# ---------------------------------------------------------------------------

HANZI_DATA_DIR = os.getenv("HANZI_DATA_DIR")
HINT_CDN_URL = os.getenv(
    "ZENHANZI_HINT_CDN_URL",
    "https://cdn.jsdelivr.net/npm/hanzi-writer-data@2.0/{char}.json",
)
HINT_TIMEOUT = _env_float("ZENHANZI_HINT_TIMEOUT", 10.0)

# ---------------------------------------------------------------------------
# Drawing surface
# ---------------------------------------------------------------------------

CANVAS_SIZE = _env_int("ZENHANZI_CANVAS_SIZE", 320)
SENTENCE_CANVAS_SIZE = _env_int("ZENHANZI_SENTENCE_CANVAS_SIZE", 160)

logger.env(f"Chat model: {CHAT_MODEL}, STT model: {STT_MODEL}")
logger.env(f"Storage backend: {STORAGE_BACKEND} (data dir: {DATA_DIR})")
