import logging
import secrets
import string
import threading
import time
from datetime import UTC, datetime
from typing import Dict, List, Optional

logger = logging.getLogger("lookingglass.session")

SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits
SESSION_ID_RANDOM_LENGTH = 10


def generate_session_id() -> str:
    """Mint a session ID of the form session_<unix-ms>_<10 random chars>."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_RANDOM_LENGTH))
    return f"session_{timestamp}_{suffix}"


class SessionModule:
    def __init__(self):
        """Initialize in-memory session tracking."""
        self._sessions: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def create_session(self, session_id: Optional[str] = None) -> str:
        """
        Create a session, or adopt a client supplied ID on reconnect.

        Args:
            session_id: Existing session ID sent by a reconnecting client

        Returns:
            Session ID
        """
        session_id = session_id or generate_session_id()
        now = datetime.now(UTC).isoformat()

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                self._sessions[session_id] = {
                    "session_id": session_id,
                    "created_at": now,
                    "last_activity": now,
                    "command_count": 0,
                }
                logger.debug(f"Session created: {session_id}")
            else:
                session["last_activity"] = now

        return session_id

    def get_session(self, session_id: str) -> Optional[dict]:
        """Session data dict or None if not found."""
        with self._lock:
            session = self._sessions.get(session_id)
            return dict(session) if session else None

    def keep_alive(self, session_id: str) -> bool:
        """
        Record command activity for a session.

        Returns:
            True if session exists and was updated
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session["last_activity"] = datetime.now(UTC).isoformat()
            session["command_count"] += 1
            return True

    def end_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is not None:
                logger.debug(f"Session ended: {session_id}")

    def get_active_sessions(self) -> List[dict]:
        with self._lock:
            return [dict(session) for session in self._sessions.values()]
