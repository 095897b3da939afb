"""
API Module - Black Box Interface

Purpose: Wire models for WebSocket and SSE clients
Interface: Request/response models, event_to_frame()
Hidden: JSON field naming

The API module only describes messages - it contains no business logic.
"""

from .models import (
    AppConfigResponse,
    CommandDetail,
    CommandOutputMessage,
    CommandRequest,
    CommandsListResponse,
    CommandTemplateInfo,
    MessageType,
    OutputMode,
    SessionIDResponse,
    StopCommandRequest,
    event_to_frame,
    output_frame,
)

__all__ = [
    "AppConfigResponse",
    "CommandDetail",
    "CommandOutputMessage",
    "CommandRequest",
    "CommandsListResponse",
    "CommandTemplateInfo",
    "MessageType",
    "OutputMode",
    "SessionIDResponse",
    "StopCommandRequest",
    "event_to_frame",
    "output_frame",
]
