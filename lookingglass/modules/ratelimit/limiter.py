import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

logger = logging.getLogger("lookingglass.ratelimit")


class RateLimiter:
    def __init__(
        self,
        enabled: bool = False,
        max_commands: int = 10,
        time_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            enabled: When False every check is accepted
            max_commands: Commands accepted per session within the window
            time_window: Sliding window length in seconds
            clock: Monotonic time source in seconds
        """
        self.enabled = enabled
        self.max_commands = max_commands
        self.time_window = float(time_window)
        self._clock = clock
        self._sessions: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "RateLimiter":
        """Build from a RateLimitConfig."""
        return cls(
            enabled=config.enabled,
            max_commands=config.max_commands,
            time_window=config.time_window,
        )

    def check_rate_limit(self, session_id: str) -> bool:
        """
        Admit or reject one command for a session.

        Args:
            session_id: Session identifier

        Returns:
            True if accepted (and recorded), False if over the limit

        Logic:
        1. Drop timestamps older than the window
        2. Reject when the remaining count reached the maximum
        3. Otherwise record now and accept
        """
        if not self.enabled:
            return True

        with self._lock:
            now = self._clock()
            timestamps = self._sessions.setdefault(session_id, deque())
            self._prune(timestamps, now)

            if len(timestamps) >= self.max_commands:
                logger.debug(f"Session {session_id} over limit ({len(timestamps)}/{self.max_commands})")
                return False

            timestamps.append(now)
            return True

    def remaining_time(self, session_id: str) -> float:
        """Seconds until the oldest accepted command leaves the window."""
        with self._lock:
            timestamps = self._sessions.get(session_id)
            if not timestamps:
                return 0.0

            now = self._clock()
            self._prune(timestamps, now)
            if not timestamps:
                return 0.0

            return max(0.0, self.time_window - (now - timestamps[0]))

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        while timestamps and now - timestamps[0] >= self.time_window:
            timestamps.popleft()
