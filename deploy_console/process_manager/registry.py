from __future__ import annotations

from deploy_console.models import ActiveProcess


class SessionRegistry:
    """In-memory map of session id -> the one ActiveProcess it owns.

    Every method runs without suspending, so each call is atomic with respect
    to other coroutines on the event loop.  Lost on restart; run history is
    not kept.
    """

    def __init__(self) -> None:
        self._store: dict[str, ActiveProcess] = {}

    def get(self, session_id: str) -> ActiveProcess | None:
        return self._store.get(session_id)

    def insert_if_absent(self, session_id: str, active: ActiveProcess) -> bool:
        if session_id in self._store:
            return False
        self._store[session_id] = active
        return True

    def discard(self, session_id: str, active: ActiveProcess) -> bool:
        """Remove the entry only if it is still *active*."""
        if self._store.get(session_id) is not active:
            return False
        del self._store[session_id]
        return True

    def pop(self, session_id: str) -> ActiveProcess | None:
        return self._store.pop(session_id, None)

    def values(self) -> list[ActiveProcess]:
        return list(self._store.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._store

    def __len__(self) -> int:
        return len(self._store)
