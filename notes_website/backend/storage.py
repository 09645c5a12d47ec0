"""
Per-user note persistence.

Each user's notes live in one document ``{"entries": [...], "lastModified": ...}``
stored under ``user:{user_id}:notes`` in a backend:

- ``RedisBackend``: remote key-value store shared by every instance.
- ``MemoryBackend``: process-local dict, gone on restart.
- ``FileBackend``: one JSON file per key, replaced atomically on every write.

``Storage`` owns a primary backend plus an optional fallback. The strategy is
chosen once at startup by ``build_storage``; if the primary fails mid-request
the operation is retried once on the fallback and the process stays on the
fallback from then on, so reads and writes never alternate between stores.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import redis

from .config import Settings
from .domain import Attachment, Note, StorageError
from .utils import later_than, make_entry_id, time_now

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

# Display contract: most recently created notes come first.
NEWEST_FIRST = True


class BackendError(Exception):
    """A single backend could not complete a read or write."""
    pass


def user_key(user_id: str) -> str:
    return f"user:{user_id}:notes"


def empty_document() -> Document:
    return {"entries": [], "lastModified": None}


def _normalize(raw: Any) -> Document:
    """Coerce whatever a backend returned into a well-formed document."""
    if isinstance(raw, list):
        return {"entries": raw, "lastModified": None}
    if not isinstance(raw, dict):
        return empty_document()
    entries = raw.get("entries")
    return {
        "entries": entries if isinstance(entries, list) else [],
        "lastModified": raw.get("lastModified"),
    }


class MemoryBackend:
    name = "memory"
    is_global = False

    def __init__(self):
        self.documents: Dict[str, Document] = {}

    def load(self, key: str) -> Document:
        document = self.documents.get(key)
        if document is None:
            return empty_document()
        return json.loads(json.dumps(document))

    def save(self, key: str, document: Document) -> None:
        self.documents[key] = json.loads(json.dumps(document))


class FileBackend:
    """JSON files under ``data_dir``; a missing or corrupt file reads as empty."""

    name = "file"
    is_global = False

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        return self.data_dir / (re.sub(r"[^A-Za-z0-9_.-]", "_", key) + ".json")

    def ping(self) -> bool:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.data_dir, os.W_OK)

    def load(self, key: str) -> Document:
        path = self.path_for(key)
        if not path.exists():
            return empty_document()
        try:
            with open(path, "r", encoding="utf-8") as f:
                return _normalize(json.load(f))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Unreadable notes file %s, treating as empty: %s", path, e)
            return empty_document()

    def save(self, key: str, document: Document) -> None:
        path = self.path_for(key)
        temp_path = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(mode="w", dir=self.data_dir, suffix=".tmp",
                                             delete=False, encoding="utf-8") as tf:
                temp_path = Path(tf.name)
                json.dump(document, tf, indent=2, ensure_ascii=False)
                tf.flush()
                os.fsync(tf.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()
            raise BackendError(f"Failed to write {path}: {e}") from e


class RedisBackend:
    """Documents stored as JSON strings in Redis."""

    name = "redis"
    is_global = True

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 1.0) -> "RedisBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=socket_timeout))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.info("Redis ping failed: %s", e)
            return False

    def load(self, key: str) -> Document:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            raise BackendError(f"Redis GET {key} failed: {e}") from e
        if raw is None:
            return empty_document()
        try:
            return _normalize(json.loads(raw))
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning("Corrupt value at %s, treating as empty: %s", key, e)
            return empty_document()

    def save(self, key: str, document: Document) -> None:
        try:
            self.client.set(key, json.dumps(document, ensure_ascii=False))
        except redis.RedisError as e:
            raise BackendError(f"Redis SET {key} failed: {e}") from e


class Storage:
    """Ownership-scoped note CRUD over a primary backend with one fallback."""

    def __init__(self, primary, fallback=None):
        self.primary = primary
        self.fallback = fallback
        self.active = primary
        # Serializes read-modify-write within this process.
        self.lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.active.name

    @property
    def is_global(self) -> bool:
        return self.active.is_global

    def _call(self, op: str, *args):
        backend = self.active
        try:
            return getattr(backend, op)(*args)
        except BackendError as e:
            if self.fallback is None or backend is self.fallback:
                logger.error("Storage %s failed on %s: %s", op, backend.name, e)
                raise StorageError("Storage unavailable") from e
            logger.warning("Backend %s failed (%s); switching to %s for this process",
                           backend.name, e, self.fallback.name)
            self.active = self.fallback
        try:
            return getattr(self.fallback, op)(*args)
        except BackendError as e:
            logger.error("Fallback storage %s failed on %s: %s", op, self.fallback.name, e)
            raise StorageError("Storage unavailable") from e

    def _load(self, user_id: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        document = self._call("load", user_key(user_id))
        # The backend may hand back data written under a different owner.
        entries = [e for e in document["entries"]
                   if isinstance(e, dict) and e.get("userId") == user_id and e.get("id")]
        return entries, document.get("lastModified")

    def _save(self, user_id: str, entries: List[Dict[str, Any]]) -> str:
        modified = time_now()
        owned = [e for e in entries if e.get("userId") == user_id]
        self._call("save", user_key(user_id), {"entries": owned, "lastModified": modified})
        return modified

    def collection(self, user_id: str) -> Tuple[List[Note], Optional[str]]:
        """Notes for ``user_id`` in display order, plus the document's lastModified."""
        entries, last_modified = self._load(user_id)
        ordered = sorted(entries, key=lambda e: e.get("createdAt") or "", reverse=NEWEST_FIRST)
        return [Note.from_dict(e) for e in ordered], last_modified

    def list(self, user_id: str) -> List[Note]:
        return self.collection(user_id)[0]

    def get(self, user_id: str, note_id: str) -> Optional[Note]:
        entries, _ = self._load(user_id)
        for entry in entries:
            if entry["id"] == note_id:
                return Note.from_dict(entry)
        return None

    def create(self, user_id: str, title: str, content: str,
               attachments: Optional[List[Attachment]] = None) -> Note:
        with self.lock:
            entries, _ = self._load(user_id)
            now = time_now()
            note = Note(make_entry_id(), user_id, title.strip(), content.strip(), now, now,
                        list(attachments or []))
            self._save(user_id, [note.to_dict()] + entries)
        return note

    def update(self, user_id: str, note_id: str, title: str, content: str,
               attachments: Optional[List[Attachment]] = None) -> Optional[Note]:
        """Replace title/content (and attachments when given); None if the note is not the user's."""
        with self.lock:
            entries, _ = self._load(user_id)
            for i, entry in enumerate(entries):
                if entry["id"] != note_id:
                    continue
                existing = Note.from_dict(entry)
                updated = Note(
                    existing.id, existing.user_id, title.strip(), content.strip(),
                    existing.created_at, later_than(existing.updated_at),
                    existing.attachments if attachments is None else list(attachments),
                )
                entries[i] = updated.to_dict()
                self._save(user_id, entries)
                return updated
        return None

    def delete(self, user_id: str, note_id: str) -> bool:
        with self.lock:
            entries, _ = self._load(user_id)
            remaining = [e for e in entries if e["id"] != note_id]
            if len(remaining) == len(entries):
                return False
            self._save(user_id, remaining)
        return True

    def info(self) -> Dict[str, Any]:
        return {"storage": self.name, "isGlobal": self.is_global}


def _local_backend(kind: str, settings: Settings):
    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        backend = FileBackend(settings.data_dir)
        if not backend.ping():
            raise ValueError(f"Data directory {settings.data_dir!r} is not writable")
        return backend
    raise ValueError(f"Unknown local storage backend: {kind!r}")


def build_storage(settings: Settings, redis_backend: Optional[RedisBackend] = None) -> Storage:
    """Resolve the storage strategy once, from configuration."""
    mode = settings.storage_backend.strip().lower()
    fallback_kind = settings.fallback_backend.strip().lower()

    if mode in ("memory", "file"):
        storage = Storage(_local_backend(mode, settings))
    elif mode in ("redis", "auto"):
        fallback = _local_backend(fallback_kind, settings)
        if redis_backend is None and settings.redis_url:
            redis_backend = RedisBackend.from_url(settings.redis_url, settings.redis_socket_timeout)
        if redis_backend is None:
            if mode == "redis":
                raise ValueError("STORAGE_BACKEND=redis requires REDIS_URL")
            storage = Storage(fallback)
        elif redis_backend.ping():
            storage = Storage(redis_backend, fallback)
        elif mode == "redis":
            # Explicitly requested: keep trying Redis first, fall back per failure.
            logger.warning("Redis unreachable at startup; %s will take over on first failure", fallback.name)
            storage = Storage(redis_backend, fallback)
        else:
            logger.warning("Redis unreachable; using %s storage", fallback.name)
            storage = Storage(fallback)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend!r}")

    logger.info("Storage backend: %s", storage.name)
    return storage
