"""
Executor Module - Black Box Interface

Purpose: Run pre-approved diagnostic commands against a target
Interface: CommandExecutor.execute() -> (command_id, CommandStream), CommandExecutor.stop()
Hidden: Target resolution, shell/direct invocation, pipe draining, cancellation

Output is delivered as OutputEvent items; every stream ends with exactly
one CompleteEvent or StoppedEvent.
"""

from .events import (
    CommandStream,
    CompleteEvent,
    DataEvent,
    ErrorEvent,
    EventType,
    OutputEvent,
    StoppedEvent,
)
from .executor import (
    CommandExecutor,
    build_argv,
    build_command_line,
    generate_command_id,
)
from .registry import CommandRegistry, RegistryEntry, StopSignal

__all__ = [
    "CommandExecutor",
    "CommandRegistry",
    "CommandStream",
    "CompleteEvent",
    "DataEvent",
    "ErrorEvent",
    "EventType",
    "OutputEvent",
    "RegistryEntry",
    "StopSignal",
    "StoppedEvent",
    "build_argv",
    "build_command_line",
    "generate_command_id",
]
