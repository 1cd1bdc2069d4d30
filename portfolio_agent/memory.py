from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Protocol

from pydantic import ValidationError

from .config import MEMORY_MAX_TURNS, MEMORY_TTL_SECONDS, PREFERENCES_TTL_SECONDS
from .router.contracts import PreviousTurn
from .tools import memory_get, memory_set

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Dict[str, Any]: ...

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None: ...


class InMemoryStore:
    """Process-local TTL store; expired keys read back as empty."""

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, tuple[float, Dict[str, Any]]] = {}

    def get(self, key: str) -> Dict[str, Any]:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return {}
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._items[key]
                return {}
            return dict(value)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (self._clock() + ttl_seconds, dict(value))


class BackendMemoryStore:
    """Same contract as InMemoryStore, persisted through the backend collaborator."""

    def __init__(self, user_token: str) -> None:
        self.user_token = user_token

    def get(self, key: str) -> Dict[str, Any]:
        data = memory_get(self.user_token, key)
        value = data.get("value", data)
        return value if isinstance(value, dict) else {}

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        memory_set(self.user_token, key, value, ttl_seconds)


def session_key(user_id: str, session_id: str) -> str:
    return f"ai-agent-memory:{user_id}:{session_id}"


def preferences_key(user_id: str) -> str:
    return f"ai-agent-preferences:{user_id}"


def load_turns(store: KeyValueStore, key: str) -> list[Dict[str, Any]]:
    turns = store.get(key).get("turns")
    if not isinstance(turns, list):
        return []
    return [turn for turn in turns if isinstance(turn, dict)]


def previous_turn_from(turns: list[Dict[str, Any]], key: str = "") -> PreviousTurn | None:
    if not turns:
        return None
    last = turns[-1]
    try:
        return PreviousTurn(
            query=str(last.get("query") or ""),
            successfulTools=list(last.get("successfulTools") or []),
            context=last.get("context"),
            timestamp=last.get("timestamp"),
        )
    except ValidationError as exc:
        logger.warning("memory_turn_unreadable key=%s error=%s", key, exc.errors()[:1])
        return None


def load_previous_turn(store: KeyValueStore, key: str) -> PreviousTurn | None:
    return previous_turn_from(load_turns(store, key), key)


def append_turn(
    store: KeyValueStore,
    key: str,
    turn: Dict[str, Any],
    *,
    turns: list[Dict[str, Any]] | None = None,
    max_turns: int = MEMORY_MAX_TURNS,
    ttl_seconds: int = MEMORY_TTL_SECONDS,
) -> list[Dict[str, Any]]:
    """Append ``turn`` and keep only the newest ``max_turns``.

    Write errors are not caught: the request already ran its tools and the
    caller has to know the turn was not recorded. Passing the ``turns`` read
    at the start of the request skips a second read.
    """
    if turns is None:
        turns = load_turns(store, key)
    turns = [*turns, turn][-max_turns:]
    store.set(key, {"turns": turns}, ttl_seconds)
    logger.info("memory_write key=%s turns=%s", key, len(turns))
    return turns


def get_preferences(store: KeyValueStore, user_id: str) -> Dict[str, Any]:
    return store.get(preferences_key(user_id))


def set_preferences(
    store: KeyValueStore,
    user_id: str,
    preferences: Dict[str, Any],
    ttl_seconds: int = PREFERENCES_TTL_SECONDS,
) -> Dict[str, Any]:
    merged = {**get_preferences(store, user_id), **preferences}
    store.set(preferences_key(user_id), merged, ttl_seconds)
    return merged
