"""Session Registry - in-memory table of live preview sessions."""

import threading
from datetime import datetime

from livepreview.core.exceptions import SessionConflictError
from livepreview.core.types import PreviewSession, utc_now


class SessionRegistry:
    """Keyed store of live sessions.

    Every operation takes the same lock, so the launcher (insert), the
    proxy (lookup on every request) and the reaper (sweep + remove) can
    call in from the event loop or from worker threads. Ids are
    remembered after removal and can never be inserted again.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PreviewSession] = {}
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def put(self, session_id: str, session: PreviewSession) -> None:
        """Insert a session.

        Raises:
            SessionConflictError: If the id was ever used before, or a live
                session already owns the port or temp dir.
        """
        with self._lock:
            if session_id in self._issued:
                raise SessionConflictError(f"Session id already used: {session_id}")
            for other in self._sessions.values():
                if other.port == session.port:
                    raise SessionConflictError(
                        f"Port {session.port} already owned by session {other.id}"
                    )
                if other.temp_dir == session.temp_dir:
                    raise SessionConflictError(
                        f"Directory {session.temp_dir} already owned by session {other.id}"
                    )
            self._issued.add(session_id)
            self._sessions[session_id] = session

    def get(self, session_id: str) -> PreviewSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> PreviewSession | None:
        """Remove and return a session; None if it was not present.

        Only one of several concurrent callers gets the session back.
        """
        with self._lock:
            return self._sessions.pop(session_id, None)

    def list_expired(self, ttl_seconds: float, now: datetime | None = None) -> list[PreviewSession]:
        now = now or utc_now()
        with self._lock:
            return [s for s in self._sessions.values() if s.age_seconds(now) > ttl_seconds]

    def list_all(self) -> list[PreviewSession]:
        with self._lock:
            return list(self._sessions.values())

    def is_port_owned(self, port: int) -> bool:
        with self._lock:
            return any(s.port == port for s in self._sessions.values())

    def was_issued(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._issued

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
