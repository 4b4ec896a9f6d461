"""
Persistence for per-user practice data.

The practice session only sees UserDataStore, which scopes keys by username
and serializes the ledger and palettes as JSON. Where the JSON strings end
up is decided by the KeyValueStore behind it:

- MemoryStore: a dict (tests, throwaway sessions)
- JsonFileStore: one JSON document on disk, rewritten on every change
- FirestoreStore: Firebase Firestore, one document per key

Key layout:
- zenhanzi_current_user          -> last logged-in username
- zenhanzi_{user}_mastered       -> {"我": 1, ...}
- zenhanzi_{user}_retry          -> [{"char": ..., "pinyin": ..., "meaning": ...}, ...]
- zenhanzi_{user}_palettes       -> [{"id": ..., "name": ..., "chars": [...]}, ...]
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from . import config
from .ledger import MasteryLedger
from .logger import logger
from .models import CustomPalette, HanziData

CURRENT_USER_KEY = "zenhanzi_current_user"


# ---------------------------------------------------------------------------
# Key-value backends
# ---------------------------------------------------------------------------

class KeyValueStore:
    """String key -> string value storage."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """All keys in a single JSON file, written atomically on every change."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or os.path.join(config.DATA_DIR, "zenhanzi.json")
        self._data: Dict[str, str] = {}

        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}
                logger.db(f"Loaded {len(self._data)} keys from {self.path}")
            except (OSError, ValueError) as e:
                logger.error(f"[DB] Could not read {self.path}, starting empty: {e}")

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".zenhanzi-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class FirestoreStore(KeyValueStore):
    """
    Firebase Firestore backend.

    Collection structure:
    - zenhanzi/{key} -> {"value": <json string>, "updated_at": <iso timestamp>}
    """

    COLLECTION = "zenhanzi"

    def __init__(self, credentials_path: Optional[str] = None) -> None:
        creds_path = credentials_path or config.FIREBASE_CREDENTIALS_PATH
        if not creds_path:
            raise ValueError("FIREBASE_CREDENTIALS_PATH not set in .env file")
        if not os.path.exists(creds_path):
            raise FileNotFoundError(f"Credentials file not found at: {creds_path}")

        self._owns_app = not firebase_admin._apps
        if self._owns_app:
            logger.db("Initializing Firebase app...")
            self.app = firebase_admin.initialize_app(credentials.Certificate(creds_path))
        else:
            self.app = firebase_admin.get_app()
        self.db = firestore.client(self.app)
        logger.success("[DB] Firebase Firestore connected")

    def _doc(self, key: str):
        return self.db.collection(self.COLLECTION).document(key)

    def get(self, key: str) -> Optional[str]:
        doc = self._doc(key).get()
        if not doc.exists:
            return None
        return (doc.to_dict() or {}).get("value")

    def set(self, key: str, value: str) -> None:
        self._doc(key).set({"value": value, "updated_at": datetime.now(timezone.utc).isoformat()})

    def delete(self, key: str) -> None:
        self._doc(key).delete()

    def close(self) -> None:
        if self._owns_app and self.app is not None:
            firebase_admin.delete_app(self.app)
            logger.db("Firebase app closed")
        self.app = None


def create_store(backend: Optional[str] = None) -> KeyValueStore:
    """Build the configured backend, falling back to the local JSON file."""
    backend = (backend or config.STORAGE_BACKEND).lower()
    logger.db(f"Creating {backend} store")

    if backend == "memory":
        return MemoryStore()
    if backend == "firestore":
        try:
            return FirestoreStore()
        except Exception as e:
            logger.error(f"[DB] Failed to initialize Firestore: {e}")
            logger.warning("[DB] Falling back to local JSON storage")
    elif backend != "json":
        logger.warning(f"[DB] Unknown storage backend {backend!r}, using json")
    return JsonFileStore()


# ---------------------------------------------------------------------------
# Per-user practice data
# ---------------------------------------------------------------------------

class UserDataStore:
    """
    Reads and writes one user's mastery record, retry queue and palettes.

    Lifecycle: open(username) on login, save_* on every change, close() on
    logout.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.username: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.username is not None

    def remembered_user(self) -> Optional[str]:
        """The user who was logged in when the app last closed."""
        return self.store.get(CURRENT_USER_KEY) or None

    def open(self, username: str) -> None:
        username = (username or "").strip()
        if not username:
            raise ValueError("username must not be empty")
        self.username = username
        self.store.set(CURRENT_USER_KEY, username)
        logger.db(f"Opened data for {username}")

    def close(self, forget_user: bool = True) -> None:
        if self.username is None:
            return
        logger.db(f"Closed data for {self.username}")
        if forget_user:
            self.store.delete(CURRENT_USER_KEY)
        self.username = None

    def shutdown(self) -> None:
        """Close the user's data, keeping them remembered, and release the backend."""
        self.close(forget_user=False)
        self.store.close()

    def _key(self, name: str) -> str:
        if self.username is None:
            raise RuntimeError("UserDataStore is not open")
        return f"zenhanzi_{self.username}_{name}"

    def _read(self, name: str, default: Any) -> Any:
        raw = self.store.get(self._key(name))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"[DB] Corrupt {name} data for {self.username}, ignoring: {e}")
            return default

    def _write(self, name: str, value: Any) -> None:
        self.store.set(self._key(name), json.dumps(value, ensure_ascii=False))

    # Mastery / retry

    def load_mastered(self) -> Dict[str, int]:
        data = self._read("mastered", {})
        if not isinstance(data, dict):
            return {}
        return {str(k): int(v) for k, v in data.items()}

    def load_retry_queue(self) -> List[HanziData]:
        data = self._read("retry", [])
        if not isinstance(data, list):
            return []
        return [HanziData.from_dict(d) for d in data if isinstance(d, dict) and d.get("char")]

    def save_ledger(self, ledger: MasteryLedger) -> None:
        if not self.is_open:
            return
        self._write("mastered", ledger.mastered_snapshot())
        self._write("retry", [item.to_dict() for item in ledger.retry_queue_snapshot()])

    # Palettes

    def load_palettes(self) -> List[CustomPalette]:
        data = self._read("palettes", [])
        if not isinstance(data, list):
            return []
        return [CustomPalette.from_dict(d) for d in data if isinstance(d, dict) and "id" in d]

    def save_palettes(self, palettes: List[CustomPalette]) -> None:
        if not self.is_open:
            return
        self._write("palettes", [p.to_dict() for p in palettes])
