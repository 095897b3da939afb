"""
Command registry.

Maps a command ID to its owning session and stop signal so that a stop
request can be routed from any connection. The registry never controls
process lifecycle; the executor owns the process.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lookingglass.errors import DuplicateCommandError

logger = logging.getLogger("lookingglass.executor.registry")


class StopSignal:
    """Single-slot stop request, delivered at most once."""

    def __init__(self):
        self._event = asyncio.Event()

    def trigger(self) -> bool:
        """Request a stop. Returns False if a stop was already requested."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RegistryEntry:
    """Bookkeeping for one running invocation."""

    command_id: str
    session_id: str
    full_command: str
    stop_signal: StopSignal
    started_at: float = field(default_factory=time.time)


class CommandRegistry:
    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def register(self, command_id: str, session_id: str, full_command: str) -> StopSignal:
        """
        Register a new invocation.

        Returns:
            The stop signal the executor should watch

        Raises:
            DuplicateCommandError: If the command ID is already active
        """
        with self._lock:
            if command_id in self._entries:
                raise DuplicateCommandError(command_id)
            stop_signal = StopSignal()
            self._entries[command_id] = RegistryEntry(
                command_id=command_id,
                session_id=session_id,
                full_command=full_command,
                stop_signal=stop_signal,
            )
        return stop_signal

    def unregister(self, command_id: str) -> bool:
        """Remove an invocation. Returns False if it was not registered."""
        with self._lock:
            return self._entries.pop(command_id, None) is not None

    def stop(self, command_id: str) -> bool:
        """
        Deliver a stop request to an active invocation.

        Authorization is by knowledge of the command ID alone, so a client
        that reconnected under a new connection can still cancel.

        Returns:
            True if the signal was delivered, False for unknown, finished
            or already-stopped commands
        """
        with self._lock:
            entry = self._entries.get(command_id)
        if entry is None:
            return False
        return entry.stop_signal.trigger()

    def get(self, command_id: str) -> Optional[RegistryEntry]:
        with self._lock:
            return self._entries.get(command_id)

    def session_of(self, command_id: str) -> Optional[str]:
        entry = self.get(command_id)
        return entry.session_id if entry else None

    def active_commands(self, session_id: Optional[str] = None) -> List[str]:
        """Active command IDs, optionally only those owned by one session."""
        with self._lock:
            return [
                entry.command_id
                for entry in self._entries.values()
                if session_id is None or entry.session_id == session_id
            ]

    def __contains__(self, command_id: str) -> bool:
        with self._lock:
            return command_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
