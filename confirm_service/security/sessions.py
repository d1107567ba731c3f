"""Server-side session storage keyed by an opaque cookie value."""

from __future__ import annotations

import secrets
import time
from threading import Lock
from typing import Any

from ..domain.contracts import SessionStore

SESSION_KEY = "uid"
FLASH_SUCCESS_KEY = "flash_success"
FLASH_ERROR_KEY = "flash_error"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class InMemorySessionStore:
    """Thread-safe in-process session store with idle expiry."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = ttl_seconds
        self._sessions: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = Lock()

    def _live(self, session_id: str, now: float) -> dict[str, Any] | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        touched, values = entry
        if now - touched > self._ttl:
            del self._sessions[session_id]
            return None
        return values

    def _sweep(self, now: float) -> None:
        expired = [sid for sid, (touched, _) in self._sessions.items() if now - touched > self._ttl]
        for sid in expired:
            del self._sessions[sid]

    def get(self, session_id: str, key: str) -> Any:
        with self._lock:
            values = self._live(session_id, time.time())
            return None if values is None else values.get(key)

    def put(self, session_id: str, key: str, value: Any) -> None:
        now = time.time()
        with self._lock:
            self._sweep(now)
            values = self._live(session_id, now) or {}
            values[key] = value
            self._sessions[session_id] = (now, values)

    def delete(self, session_id: str, key: str) -> None:
        with self._lock:
            values = self._live(session_id, time.time())
            if values is not None:
                values.pop(key, None)


class Session:
    """A single client's view of a ``SessionStore``."""

    def __init__(self, store: SessionStore, session_id: str | None = None) -> None:
        self.store = store
        self.is_new = session_id is None
        self.session_id = session_id or new_session_id()

    def get(self, key: str) -> Any:
        return self.store.get(self.session_id, key)

    def put(self, key: str, value: Any) -> None:
        self.store.put(self.session_id, key, value)

    def pop(self, key: str) -> Any:
        value = self.store.get(self.session_id, key)
        if value is not None:
            self.store.delete(self.session_id, key)
        return value
