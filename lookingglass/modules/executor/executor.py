"""
Command executor - launches diagnostic commands and streams their output.

Each invocation runs three tasks:
- a stdout reader and a stderr reader, both feeding one bounded queue
- a supervisor that waits for exit or a stop request and emits the
  terminal event

The bounded queue is the only buffer between the child process and the
consumer. When it is full the readers stop reading, the OS pipe fills
and the child blocks on write.
"""

import asyncio
import itertools
import logging
import os
import signal
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from lookingglass.config.provider import CommandTemplate
from lookingglass.errors import (
    CommandNotFoundError,
    InvalidTargetError,
    LookingGlassError,
    ProcessRuntimeError,
    ResolutionError,
    SpawnError,
)
from lookingglass.modules.executor.events import (
    CommandStream,
    CompleteEvent,
    DataEvent,
    OutputEvent,
    StoppedEvent,
)
from lookingglass.modules.executor.registry import CommandRegistry, StopSignal
from lookingglass.modules.validator import (
    InputType,
    extract_host_port,
    format_target,
    validate_input,
)

logger = logging.getLogger("lookingglass.executor")

SHELL_OPERATORS = ("|", "&&", "||", ">", "<", ";", "&")
SHELL = "/bin/sh"

DEFAULT_QUEUE_SIZE = 100

# Per-line read limit for the pipe readers
STREAM_LIMIT = 1024 * 1024

# Upper bound on reaping a killed process
REAP_TIMEOUT = 5.0

_command_counter = itertools.count(1)


def generate_command_id(command_name: str, target: str, session_id: str) -> str:
    """
    Build a command ID.

    Deterministic for targeted commands so a reconnecting client can
    recompute it; unique per call when there is no target.
    """
    if target:
        return f"{command_name}-{target}-{session_id}"
    return f"{command_name}-{session_id}-{next(_command_counter)}"


def build_command_line(template: str, target: str, ignore_target: bool = False) -> str:
    """Append the target to the template unless it is ignored or empty."""
    if target and not ignore_target:
        return f"{template} {target}"
    return template


def needs_shell(full_command: str) -> bool:
    return any(op in full_command for op in SHELL_OPERATORS)


def build_argv(full_command: str) -> List[str]:
    """
    Turn a command line into an argv list.

    Command lines with shell operators go through /bin/sh -c; everything
    else is split on whitespace and executed directly.
    """
    if needs_shell(full_command):
        return [SHELL, "-c", full_command]
    return full_command.split()


@dataclass
class Invocation:
    """One running command. The process handle is owned by the executor."""

    command_id: str
    session_id: str
    full_command: str
    process: asyncio.subprocess.Process
    stop_signal: StopSignal


class CommandExecutor:
    """Runs configured command templates and streams their output."""

    def __init__(
        self,
        commands: Mapping[str, CommandTemplate],
        resolver,
        registry: Optional[CommandRegistry] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize executor.

        Args:
            commands: Command templates keyed by name (read-only)
            resolver: Object with ``async resolve(domain, version) -> List[str]``
            registry: Shared command registry; a private one when omitted
            queue_size: Capacity of each invocation's event queue
        """
        self.commands = commands
        self.resolver = resolver
        self.registry = registry if registry is not None else CommandRegistry()
        self.queue_size = queue_size
        self._tasks: set = set()

    async def execute(
        self,
        command_name: str,
        target: str,
        session_id: str,
        ip_version: str = "auto",
    ) -> Tuple[str, CommandStream]:
        """
        Start a command.

        Args:
            command_name: Name of a configured command template
            target: IP address or domain, optionally with a port
            session_id: Owning session
            ip_version: "auto", "ipv4" or "ipv6" for domain resolution

        Returns:
            (command_id, stream). On failure before spawn the command ID is
            "" and the stream holds an ErrorEvent then CompleteEvent(False).
        """
        target = (target or "").strip()

        try:
            template = self._get_template(command_name)
            resolved_target = await self._resolve_target(template, target, ip_version)
            full_command = build_command_line(
                template.template, resolved_target, template.ignore_target
            )
            command_id = generate_command_id(command_name, target, session_id)
            stop_signal = self.registry.register(command_id, session_id, full_command)
        except LookingGlassError as e:
            logger.warning(f"Rejected {command_name!r} for session {session_id}: {e.message}")
            return "", CommandStream.failed(e.message, e.code)

        try:
            process = await self._spawn(full_command)
        except SpawnError as e:
            self.registry.unregister(command_id)
            logger.error(f"Failed to start {command_id}: {e.message}")
            return "", CommandStream.failed(e.message, e.code)

        invocation = Invocation(
            command_id=command_id,
            session_id=session_id,
            full_command=full_command,
            process=process,
            stop_signal=stop_signal,
        )
        queue: "asyncio.Queue[OutputEvent]" = asyncio.Queue(maxsize=self.queue_size)

        task = asyncio.create_task(self._supervise(invocation, queue))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Started {command_id} (pid {process.pid}): {full_command}")
        return command_id, CommandStream(command_id, queue)

    def stop(self, command_id: str) -> bool:
        """Request a stop. False for unknown, finished or already-stopped commands."""
        stopped = self.registry.stop(command_id)
        if stopped:
            logger.info(f"Stop requested for {command_id}")
        return stopped

    async def shutdown(self, timeout: float = REAP_TIMEOUT) -> None:
        """Stop every active command and wait for the supervisors to finish."""
        for command_id in self.registry.active_commands():
            self.registry.stop(command_id)

        if not self._tasks:
            return

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _get_template(self, command_name: str) -> CommandTemplate:
        template = self.commands.get(command_name)
        if template is None:
            raise CommandNotFoundError(command_name)
        return template

    async def _resolve_target(self, template: CommandTemplate, target: str, ip_version: str) -> str:
        """
        Validate the target and replace a domain host with its first address.

        Returns:
            Target ready to append to the command line ("" when ignored)
        """
        if template.ignore_target:
            return ""

        input_type = validate_input(target)
        if input_type == InputType.INVALID:
            raise InvalidTargetError(target)

        host, port = extract_host_port(target)
        if input_type == InputType.DOMAIN:
            ips = await self.resolver.resolve(host, ip_version)
            if not ips:
                raise ResolutionError(f"No IP addresses found for domain: {host}")
            logger.debug(f"Resolved {host} to {ips[0]} ({len(ips)} addresses)")
            host = ips[0]

        return format_target(host, port)

    async def _spawn(self, full_command: str) -> asyncio.subprocess.Process:
        argv = build_argv(full_command)
        if not argv:
            raise SpawnError("Failed to start command: empty command line")

        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Failed to start command: {e}") from e

    async def _supervise(self, invocation: Invocation, queue: "asyncio.Queue[OutputEvent]") -> None:
        """
        Wait for exit or stop, then emit exactly one terminal event.

        The registry entry is removed before the terminal event is queued,
        so a consumer that sees the terminal event never finds the command
        still registered.
        """
        process = invocation.process
        abandoned = asyncio.Event()
        readers = [
            asyncio.create_task(self._drain(process.stdout, queue, abandoned, False)),
            asyncio.create_task(self._drain(process.stderr, queue, abandoned, True)),
        ]
        wait_task = asyncio.create_task(process.wait())
        stop_task = asyncio.create_task(invocation.stop_signal.wait())

        try:
            await asyncio.wait({wait_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            stopped = not wait_task.done()
            if not stopped:
                # Background members of the group can hold the pipes open after exit
                drained = asyncio.gather(*readers, return_exceptions=True)
                await asyncio.wait({drained, stop_task}, return_when=asyncio.FIRST_COMPLETED)
                stopped = not drained.done()

            if stopped:
                self._kill(process)
                abandoned.set()
                for reader in readers:
                    reader.cancel()
                await asyncio.gather(*readers, return_exceptions=True)
                await self._reap(invocation, wait_task)
                terminal = StoppedEvent()
            else:
                stop_task.cancel()
                terminal = self._completion_event(wait_task)
        except asyncio.CancelledError:
            self._kill(process)
            abandoned.set()
            for task in (*readers, wait_task, stop_task):
                task.cancel()
            self.registry.unregister(invocation.command_id)
            raise

        self.registry.unregister(invocation.command_id)
        if isinstance(terminal, StoppedEvent):
            logger.info(f"Stopped {invocation.command_id}")
        else:
            logger.info(
                f"Finished {invocation.command_id} "
                f"(success={terminal.success}, exit={process.returncode})"
            )
        await queue.put(terminal)

    def _completion_event(self, wait_task: asyncio.Task) -> CompleteEvent:
        try:
            returncode = wait_task.result()
        except Exception as e:
            error = ProcessRuntimeError(f"Command failed: {e}")
        else:
            if returncode == 0:
                return CompleteEvent(success=True)
            error = ProcessRuntimeError(f"Command failed: exit status {returncode}")

        return CompleteEvent(success=False, message=error.message)

    async def _drain(
        self,
        stream: Optional[asyncio.StreamReader],
        queue: "asyncio.Queue[OutputEvent]",
        abandoned: asyncio.Event,
        is_stderr: bool,
    ) -> None:
        """Forward lines from one pipe until EOF or abandonment."""
        if stream is None:
            return

        while not abandoned.is_set():
            try:
                line = await stream.readline()
            except ValueError:
                # Line longer than STREAM_LIMIT; the reader already skipped it
                continue
            except OSError as e:
                logger.debug(f"Pipe read ended: {e}")
                return

            if not line or abandoned.is_set():
                return

            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            await queue.put(DataEvent(text=text, is_stderr=is_stderr))

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        """
        Kill the child and everything in its process group.

        The group is killed even after the child itself exited, since
        background members may still hold the pipes open.
        """
        if hasattr(os, "killpg"):
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except ProcessLookupError:
                return
            except PermissionError:
                pass

        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def _reap(self, invocation: Invocation, wait_task: asyncio.Task) -> None:
        """Discard unread output and collect the killed child's exit status."""
        process = invocation.process
        for stream in (process.stdout, process.stderr):
            if stream is None:
                continue
            try:
                await asyncio.wait_for(stream.read(), REAP_TIMEOUT)
            except (asyncio.TimeoutError, ValueError, OSError):
                pass

        try:
            await asyncio.wait_for(asyncio.shield(wait_task), REAP_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Process for {invocation.command_id} did not exit after kill")
