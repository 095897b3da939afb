"""
Error taxonomy shared by all modules.

Every error carries a stable ``code`` that the transport layer forwards
to clients unchanged.
"""


class LookingGlassError(Exception):
    """Base class for all service errors."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CommandNotFoundError(LookingGlassError):
    """Requested command template is not configured."""

    code = "command_not_found"

    def __init__(self, command_name: str):
        super().__init__(f"Command not found: {command_name}")
        self.command_name = command_name


class InvalidTargetError(LookingGlassError):
    """Target is not an IP address or domain name."""

    code = "invalid_target"

    def __init__(self, target: str):
        super().__init__("Invalid target: must be an IP address or domain name")
        self.target = target


class ResolutionError(LookingGlassError):
    """Every resolution path, including the platform resolver, failed."""

    code = "resolution_failure"


class SpawnError(LookingGlassError):
    """Process could not be started or its pipes could not be attached."""

    code = "spawn_failure"


class ProcessRuntimeError(LookingGlassError):
    """Process exited with a non-zero status or could not be waited on."""

    code = "process_failure"


class DuplicateCommandError(LookingGlassError):
    """An invocation with the same command ID is still running."""

    code = "duplicate_command"

    def __init__(self, command_id: str):
        super().__init__(f"Command already running: {command_id}")
        self.command_id = command_id


class RateLimitedError(LookingGlassError):
    """Session exceeded its command quota for the current window."""

    code = "rate_limited"

    def __init__(self, remaining_seconds: float):
        wait = int(remaining_seconds) + 1
        super().__init__(
            f"Rate limit exceeded. Please wait {wait} seconds before trying again."
        )
        self.remaining_seconds = remaining_seconds
