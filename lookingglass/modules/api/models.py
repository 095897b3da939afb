"""
Looking Glass wire models.

These models define the JSON messages exchanged with WebSocket and SSE
clients. Output events map 1:1 onto CommandOutputMessage frames.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from lookingglass.modules.executor.events import (
    CompleteEvent,
    DataEvent,
    ErrorEvent,
    OutputEvent,
    StoppedEvent,
)

STOPPED_MESSAGE = "\n*** Stopped ***"


class MessageType(str, Enum):
    """Types of client and server messages."""

    GET_COMMANDS = "get_commands"
    GET_CONFIG = "get_config"
    EXECUTE_COMMAND = "execute_command"
    STOP_COMMAND = "stop_command"
    SESSION_ID = "session_id"
    COMMANDS_LIST = "commands_list"
    APP_CONFIG = "app_config"
    COMMAND_OUTPUT = "command_output"


class OutputMode(str, Enum):
    """How the client should render an output frame."""

    REPLACE = "replace"
    APPEND = "append"


# Request Models (client input)


class CommandRequest(BaseModel):
    """Message sent by a WebSocket client."""

    type: str = Field(..., description="Message type")
    host: Optional[str] = Field(None, description="Host label echoed back to the client")
    command: Optional[str] = Field(None, description="Command template name")
    target: Optional[str] = Field(None, description="IP address or domain", max_length=256)
    command_id: Optional[str] = Field(None, description="Command to stop")
    ip_version: str = Field(default="auto", description="auto, ipv4 or ipv6")

    @field_validator("ip_version")
    @classmethod
    def normalize_ip_version(cls, v):
        """Unknown preferences fall back to auto."""
        v = (v or "auto").strip().lower()
        return v if v in ("auto", "ipv4", "ipv6") else "auto"


class StopCommandRequest(BaseModel):
    """Body of POST /api/stop."""

    command_id: str = Field(..., min_length=1)


# Response Models (server output)


class SessionIDResponse(BaseModel):
    type: str = MessageType.SESSION_ID.value
    session_id: str


class CommandDetail(BaseModel):
    name: str
    description: str = ""
    ignore_target: bool = False


class CommandsListResponse(BaseModel):
    type: str = MessageType.COMMANDS_LIST.value
    commands: List[CommandDetail] = Field(default_factory=list)


class CommandTemplateInfo(BaseModel):
    name: str
    template: str
    description: str = ""
    ignore_target: bool = False
    maximum_queue: int = 0


class AppConfigResponse(BaseModel):
    type: str = MessageType.APP_CONFIG.value
    version: str
    host: Dict[str, Any] = Field(default_factory=dict)
    commands: List[CommandTemplateInfo] = Field(default_factory=list)


class CommandOutputMessage(BaseModel):
    """One streamed frame of command output."""

    type: str = MessageType.COMMAND_OUTPUT.value
    success: bool = True
    host: str = "localhost"
    command: str = ""
    target: str = ""
    output: str = ""
    error: str = ""
    is_complete: bool = False
    command_id: str = ""
    output_mode: OutputMode = OutputMode.REPLACE
    stopped: bool = False


def output_frame(request: CommandRequest, command_id: str = "", **fields) -> CommandOutputMessage:
    """Build an output frame echoing the request's command and target."""
    return CommandOutputMessage(
        host=request.host or "localhost",
        command=request.command or "",
        target=request.target or "",
        command_id=command_id,
        **fields,
    )


def event_to_frame(request: CommandRequest, command_id: str, event: OutputEvent) -> CommandOutputMessage:
    """
    Translate an executor event into a WebSocket frame.

    Args:
        request: The execute_command request that started the stream
        command_id: Command identifier ("" for pre-spawn failures)
        event: Event read from the CommandStream
    """
    if isinstance(event, DataEvent):
        if event.is_stderr:
            return output_frame(request, command_id, success=False, error=event.text)
        return output_frame(request, command_id, output=event.text)

    if isinstance(event, ErrorEvent):
        return output_frame(request, command_id, success=False, error=event.message)

    if isinstance(event, CompleteEvent):
        return output_frame(
            request,
            command_id,
            success=event.success,
            error=event.message,
            is_complete=True,
        )

    if isinstance(event, StoppedEvent):
        return output_frame(
            request,
            command_id,
            output=STOPPED_MESSAGE,
            is_complete=True,
            output_mode=OutputMode.APPEND,
            stopped=True,
        )

    raise TypeError(f"Unknown event type: {type(event).__name__}")
