# app/storefront/identity.py
import json
import logging
import random
import string
import time
import uuid
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

STORAGE_KEY = "checkout_session_id"


class SessionStorage(Protocol):
    """
    Key-value store with browser localStorage semantics.

    Implementations may raise OSError when the backing store is unusable.
    """

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, mostly for tests."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """
    Storage persisted to a JSON object on disk, so the id survives a
    process restart the way localStorage survives a page reload.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except ValueError:
            logger.warning("Ignoring corrupt session storage file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def get_item(self, key: str) -> str | None:
        value = self._load().get(key)
        return str(value) if value is not None else None

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)


def generate_session_id() -> str:
    """
    Random UUID; falls back to "<epoch-ms>-<base36 random>" when the OS
    has no randomness source for uuid4.
    """
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        return f"{int(time.time() * 1000)}-{suffix}"


class SessionIdentityStore:
    """
    One durable checkout session id per storefront client.

    The id is reused until clear() is called after a completed checkout.
    If storage is unavailable the store still hands out an id, kept only
    for the lifetime of this object.
    """

    def __init__(self, storage: SessionStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key
        self._ephemeral_id: str | None = None

    def get(self) -> str | None:
        """Current id, or None if no checkout session was started."""
        try:
            stored = self.storage.get_item(self.key)
        except OSError:
            logger.warning("Session storage unavailable, using in-memory id")
            return self._ephemeral_id
        return stored or self._ephemeral_id

    def get_or_create(self) -> str:
        existing = self.get()
        if existing:
            return existing

        session_id = generate_session_id()
        try:
            self.storage.set_item(self.key, session_id)
        except OSError:
            logger.warning("Could not persist checkout session id, keeping it in memory")
            self._ephemeral_id = session_id
        return session_id

    def clear(self) -> None:
        self._ephemeral_id = None
        try:
            self.storage.remove_item(self.key)
        except OSError:
            logger.warning("Could not clear persisted checkout session id")
