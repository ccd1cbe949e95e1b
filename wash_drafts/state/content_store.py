"""In-memory latest-snapshot store keyed by session id."""

from __future__ import annotations

from typing import Callable, Generic, Hashable, TypeVar

from .models import Session

K = TypeVar("K", bound=Hashable)

Updater = Callable[[Session | None], Session | None]


class ContentStore(Generic[K]):
    """Holds the most recent :class:`Session` for each key.

    Callers own the merge: ``update`` hands the current snapshot to the
    updater, which returns a new snapshot with only its own fields replaced.
    A falsy return leaves the stored entry untouched.
    """

    def __init__(self) -> None:
        self._sessions: dict[K, Session] = {}
        self._last_key: K | None = None

    def get(self, key: K) -> Session | None:
        return self._sessions.get(key)

    def set(self, key: K, session: Session) -> None:
        # Re-insert so iteration order tracks recency.
        self._sessions.pop(key, None)
        self._sessions[key] = session
        self._last_key = key

    def update(self, key: K, updater: Updater) -> Session | None:
        """Apply ``updater`` to the current entry and return what is stored afterwards."""
        current = self._sessions.get(key)
        result = updater(current)
        if not result:
            return current
        self._sessions[key] = result
        return result

    def clear(self, key: K) -> Session | None:
        removed = self._sessions.pop(key, None)
        if self._last_key == key:
            self._last_key = next(reversed(self._sessions), None) if self._sessions else None
        return removed

    def latest(self) -> Session | None:
        if self._last_key is not None and self._last_key in self._sessions:
            return self._sessions[self._last_key]
        for session in reversed(self._sessions.values()):
            return session
        return None

    def latest_key(self) -> K | None:
        return self._last_key

    def entries(self) -> list[tuple[K, Session]]:
        return list(self._sessions.items())

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["ContentStore"]
