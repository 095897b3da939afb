#!/usr/bin/env python3
"""
Looking Glass - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Exposes the executor over WebSocket and Server-Sent Events

All business logic is in the modules, following black box principles.
"""

import argparse
import asyncio
import json
import logging
import os
import platform
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sse_starlette.sse import EventSourceResponse

from lookingglass import __app_name__, __version__
from lookingglass.config import AppConfig, ConfigError, ConfigProvider, YamlConfigProvider
from lookingglass.config.provider import CONFIG_PATH_ENV
from lookingglass.errors import RateLimitedError
from lookingglass.logging_config import get_logging_config, setup_logging
from lookingglass.modules.api import (
    AppConfigResponse,
    CommandDetail,
    CommandRequest,
    CommandsListResponse,
    CommandTemplateInfo,
    MessageType,
    SessionIDResponse,
    StopCommandRequest,
    event_to_frame,
    output_frame,
)
from lookingglass.modules.dns import DNSResolver
from lookingglass.modules.executor import CommandExecutor, CommandRegistry
from lookingglass.modules.ratelimit import RateLimiter
from lookingglass.modules.session import SessionModule

setup_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("lookingglass.main")

# Module instances (initialized at startup)
config_provider: Optional[ConfigProvider] = None
app_config: Optional[AppConfig] = None
resolver: Optional[DNSResolver] = None
registry: Optional[CommandRegistry] = None
executor: Optional[CommandExecutor] = None
rate_limiter: Optional[RateLimiter] = None
session_module: Optional[SessionModule] = None


def get_version_info() -> str:
    return (
        f"Version: {__version__}\n"
        f"Python Version: {platform.python_version()}\n"
        f"OS: {sys.platform}\n"
        f"Architecture: {platform.machine()}"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - initialize and cleanup resources.
    """
    global config_provider, app_config, resolver, registry, executor, rate_limiter, session_module

    # Startup
    logger.info(f"Starting {__app_name__} {__version__}...")

    # Path comes from $LOOKINGGLASS_CONFIG (set by main() from -c/--config)
    config_provider = YamlConfigProvider()
    app_config = config_provider.get_config()
    setup_logging(app_config.listen.log_level)

    resolver = DNSResolver()
    resolver.start()

    registry = CommandRegistry()
    executor = CommandExecutor(app_config.commands, resolver, registry)
    rate_limiter = RateLimiter.from_config(app_config.rate_limit)
    session_module = SessionModule()

    if rate_limiter.enabled:
        logger.info(
            f"Rate limit: {rate_limiter.max_commands} commands per "
            f"{rate_limiter.time_window:.0f}s per session"
        )
    logger.info(f"{__app_name__} started with {len(app_config.commands)} commands")

    yield

    # Shutdown
    logger.info(f"Shutting down {__app_name__}...")
    await executor.shutdown()
    await resolver.stop()
    logger.info(f"{__app_name__} shutdown complete")


app = FastAPI(
    title=__app_name__,
    description="Looking Glass - Streaming network diagnostics",
    version=__version__,
    lifespan=lifespan,
)


def _require_modules() -> None:
    if not all([app_config, executor, rate_limiter, session_module]):
        raise HTTPException(503, "Service not initialized")


def _commands_list() -> CommandsListResponse:
    return CommandsListResponse(
        commands=[
            CommandDetail(
                name=template.name,
                description=template.description,
                ignore_target=template.ignore_target,
            )
            for template in app_config.list_commands()
        ]
    )


def _app_config_response() -> AppConfigResponse:
    return AppConfigResponse(
        version=__version__,
        host=app_config.info.to_dict(),
        commands=[CommandTemplateInfo(**template.to_dict()) for template in app_config.list_commands()],
    )


def _client_ip(headers, client) -> str:
    """Real client address, honouring reverse proxy headers."""
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    return client.host if client else "unknown"


# HTTP Endpoints


@app.get("/api/session", response_model=SessionIDResponse)
async def get_session():
    """Mint a new session ID."""
    _require_modules()
    return SessionIDResponse(session_id=session_module.create_session())


@app.get("/api/commands", response_model=CommandsListResponse)
async def get_commands():
    """List configured commands in configuration order."""
    _require_modules()
    return _commands_list()


@app.get("/api/config", response_model=AppConfigResponse)
async def get_app_config():
    """Host information and command templates."""
    _require_modules()
    return _app_config_response()


@app.get("/api/stream")
async def stream_command(
    request: Request,
    command: str = Query(..., description="Command template name"),
    target: str = Query("", description="IP address or domain"),
    session_id: Optional[str] = Query(None, description="Existing session ID"),
    ip_version: str = Query("auto", description="auto, ipv4 or ipv6"),
):
    """
    SSE endpoint streaming one command's output.

    Events: session, started, output, error, complete, stopped, rate_limited.
    The command is stopped if the client disconnects before it finishes.
    """
    _require_modules()
    session_id = session_module.create_session(session_id)
    client_ip = _client_ip(request.headers, request.client)

    async def event_generator() -> AsyncGenerator:
        yield {"event": "session", "data": json.dumps({"session_id": session_id})}

        if not rate_limiter.check_rate_limit(session_id):
            error = RateLimitedError(rate_limiter.remaining_time(session_id))
            logger.warning(f"Client [{client_ip}] rate limit exceeded for session: {session_id}")
            yield {
                "event": error.code,
                "data": json.dumps({
                    "error": error.message,
                    "code": error.code,
                    "retry_after": round(error.remaining_seconds, 3),
                }),
            }
            return

        session_module.keep_alive(session_id)
        command_id, stream = await executor.execute(command, target, session_id, ip_version)
        if command_id:
            logger.info(f"Client [{client_ip}] started command via SSE: {command_id}")
            yield {"event": "started", "data": json.dumps({"command_id": command_id})}

        try:
            async for event in stream:
                yield {"event": event.type.value, "data": json.dumps(event.to_dict())}
        except asyncio.CancelledError:
            if command_id and executor.stop(command_id):
                logger.info(f"SSE client [{client_ip}] disconnected, stopped {command_id}")
            raise

    return EventSourceResponse(event_generator())


@app.post("/api/stop")
async def stop_command(payload: StopCommandRequest):
    """Stop a running command by ID, from any session or connection."""
    _require_modules()
    return {"command_id": payload.command_id, "stopped": executor.stop(payload.command_id)}


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        200: Service healthy
        503: Service unhealthy
    """
    if not all([app_config, executor, resolver]):
        return JSONResponse(status_code=503, content={"status": "unhealthy"})

    current = resolver.current_endpoint
    return {
        "status": "healthy",
        "version": __version__,
        "active_commands": len(registry),
        "dns_endpoint": current.name,
    }


# WebSocket Endpoints


class ClientConnection:
    """
    One WebSocket client.

    Sends are serialized; once the socket is gone sends become no-ops so
    running commands keep draining their streams to completion.
    """

    def __init__(self, websocket: WebSocket, session_id: str, client_ip: str):
        self.websocket = websocket
        self.session_id = session_id
        self.client_ip = client_ip
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, message: BaseModel) -> None:
        if self.closed:
            return
        async with self._send_lock:
            try:
                await self.websocket.send_json(message.model_dump(mode="json"))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping message for closed connection {self.session_id}: {e}")
                self.closed = True


async def handle_command(conn: ClientConnection, request: CommandRequest) -> None:
    """Run one execute_command request and relay its stream."""
    session_id = conn.session_id

    if not rate_limiter.check_rate_limit(session_id):
        error = RateLimitedError(rate_limiter.remaining_time(session_id))
        await conn.send(output_frame(request, success=False, error=error.message, is_complete=True))
        logger.warning(f"Client [{conn.client_ip}] rate limit exceeded for session: {session_id}")
        return

    session_module.keep_alive(session_id)
    command_id, stream = await executor.execute(
        request.command or "", request.target or "", session_id, request.ip_version
    )

    if command_id:
        logger.info(f"Client [{conn.client_ip}] sent run signal for command: {command_id}")
        # Send command_id immediately so the client can stop it
        await conn.send(output_frame(request, command_id, success=True))

    async for event in stream:
        await conn.send(event_to_frame(request, command_id, event))


def handle_stop(conn: ClientConnection, request: CommandRequest) -> None:
    if not request.command_id:
        logger.warning("Stop command request missing command_id")
        return

    if executor.stop(request.command_id):
        logger.info(f"Client [{conn.client_ip}] sent stop signal for command: {request.command_id}")


async def serve_websocket(websocket: WebSocket, session_id: Optional[str]) -> None:
    await websocket.accept()

    if not all([app_config, executor, rate_limiter, session_module]):
        await websocket.close(code=1013)
        return

    session_id = session_module.create_session(session_id)
    conn = ClientConnection(websocket, session_id, _client_ip(websocket.headers, websocket.client))
    await conn.send(SessionIDResponse(session_id=session_id))

    tasks: set = set()
    try:
        while True:
            message = await websocket.receive_text()
            try:
                request = CommandRequest.model_validate_json(message)
            except ValidationError as e:
                logger.error(f"Failed to parse command request: {e}")
                continue

            logger.debug(f"Received message type: {request.type}, CommandID: {request.command_id}")

            if request.type == MessageType.GET_COMMANDS.value:
                await conn.send(_commands_list())
            elif request.type == MessageType.GET_CONFIG.value:
                await conn.send(_app_config_response())
            elif request.type == MessageType.EXECUTE_COMMAND.value:
                task = asyncio.create_task(handle_command(conn, request))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
            elif request.type == MessageType.STOP_COMMAND.value:
                handle_stop(conn, request)
            else:
                logger.warning(f"Unknown message type: {request.type}")
    except WebSocketDisconnect:
        logger.debug(f"WebSocket disconnected: {session_id}")
    finally:
        conn.closed = True
        session_module.end_session(session_id)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint; an existing session may be passed as ?sessionId=."""
    await serve_websocket(websocket, websocket.query_params.get("sessionId"))


@app.websocket("/ws/{session_id}")
async def websocket_session_endpoint(websocket: WebSocket, session_id: str):
    """WebSocket endpoint resuming an existing session."""
    await serve_websocket(websocket, session_id)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(prog="lookingglass", description=__app_name__)
    parser.add_argument("-c", "--config", default=None, help="Path to configuration file")
    parser.add_argument("--version", action="store_true", help="Show version information")
    args = parser.parse_args(argv)

    if args.version:
        print(f"{__app_name__}\n{get_version_info()}")
        return 0

    if args.config:
        os.environ[CONFIG_PATH_ENV] = args.config

    try:
        config = YamlConfigProvider(args.config).get_config()
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    ssl_options = {}
    if config.listen.tls:
        for path in (config.listen.tls_cert_file, config.listen.tls_key_file):
            if not path or not os.path.exists(path):
                logger.error(f"TLS file not found: {path}")
                return 1
        ssl_options = {
            "ssl_certfile": config.listen.tls_cert_file,
            "ssl_keyfile": config.listen.tls_key_file,
        }
    else:
        logger.warning("TLS is disabled. Consider enabling TLS for production use.")

    uvicorn.run(
        app,
        host=config.listen.host,
        port=config.listen.port,
        log_level=config.listen.log_level.lower(),
        log_config=get_logging_config(config.listen.log_level),
        **ssl_options,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
