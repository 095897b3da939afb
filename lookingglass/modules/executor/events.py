"""
Output events produced by a command invocation.

A stream carries any number of DataEvent/ErrorEvent items followed by
exactly one terminal event (CompleteEvent or StoppedEvent).
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Union


class EventType(str, Enum):
    """Wire names of output events."""

    DATA = "output"
    ERROR = "error"
    COMPLETE = "complete"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DataEvent:
    """One line of process output."""

    text: str
    is_stderr: bool = False

    type: ClassVar[EventType] = EventType.DATA
    terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "output": self.text, "is_stderr": self.is_stderr}


@dataclass(frozen=True)
class ErrorEvent:
    """A failure reported before the process started."""

    message: str
    code: str = "error"

    type: ClassVar[EventType] = EventType.ERROR
    terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "error": self.message, "code": self.code}


@dataclass(frozen=True)
class CompleteEvent:
    """Process finished (or never started); closes the stream."""

    success: bool
    message: str = ""

    type: ClassVar[EventType] = EventType.COMPLETE
    terminal: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "success": self.success, "message": self.message}


@dataclass(frozen=True)
class StoppedEvent:
    """Process was cancelled on request; closes the stream."""

    type: ClassVar[EventType] = EventType.STOPPED
    terminal: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value}


OutputEvent = Union[DataEvent, ErrorEvent, CompleteEvent, StoppedEvent]


class CommandStream:
    """
    Async iterator over one invocation's events.

    Iteration ends right after the terminal event has been yielded.
    """

    def __init__(self, command_id: str, queue: "asyncio.Queue[OutputEvent]"):
        self.command_id = command_id
        self._queue = queue
        self._closed = False

    @classmethod
    def failed(cls, message: str, code: str = "error") -> "CommandStream":
        """A stream that reports a failure without any process behind it."""
        queue: "asyncio.Queue[OutputEvent]" = asyncio.Queue()
        queue.put_nowait(ErrorEvent(message=message, code=code))
        queue.put_nowait(CompleteEvent(success=False, message=message))
        return cls("", queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "CommandStream":
        return self

    async def __anext__(self) -> OutputEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.terminal:
            self._closed = True
        return event

    async def collect(self) -> List[OutputEvent]:
        """Drain the remaining events into a list."""
        return [event async for event in self]
