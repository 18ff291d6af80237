"""FastAPI application factory.

``create_app`` wires the dispatcher, monitor hub and routers together and
maps farfield errors onto HTTP statuses. Every JSON body the app returns
has an ``ok`` flag; failures add an ``error`` message (plus ``threadId`` on
thread routes and ``issues`` on validation failures).

The lifespan starts the agents in registry order and stops them in
reverse on shutdown. An agent that fails to start is logged and recorded
in history; the server keeps running so the others stay usable.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..agents.adapters.codex import CodexAgentAdapter
from ..dispatch import AgentDispatcher
from ..errors import (
    ActionFailedError,
    AgentUnavailableError,
    CapabilityUnavailableError,
    DispatchError,
    OwnerUnknownError,
    ReplayError,
    ThreadNotRegisteredError,
    TraceStateError,
)
from ..monitor import MonitorHub
from ..protocol import ProtocolValidationError
from .routers import agents, debug, events, threads

logger = structlog.get_logger()

_DISPATCH_STATUS: tuple[tuple[type[DispatchError], int], ...] = (
    (ThreadNotRegisteredError, status.HTTP_404_NOT_FOUND),
    (AgentUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CapabilityUnavailableError, status.HTTP_400_BAD_REQUEST),
    (OwnerUnknownError, status.HTTP_409_CONFLICT),
)


def _error_body(request: Request, message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"ok": False, "error": message}
    thread_id = request.path_params.get("thread_id")
    if thread_id is not None:
        body["threadId"] = thread_id
    body.update(extra)
    return body


async def _start_agents(app: FastAPI) -> None:
    hub: MonitorHub = app.state.hub
    dispatcher: AgentDispatcher = app.state.dispatcher
    for adapter in dispatcher.registry.list_adapters():
        try:
            await adapter.start()
        except Exception as e:
            logger.error("Agent %s failed to start: %s", adapter.id, e)
            hub.push_system("Agent failed to connect", {"agentId": adapter.id, "error": str(e)})
            continue
        hub.push_system(
            "Agent connected", {"agentId": adapter.id, "connected": adapter.is_connected()}
        )
    hub.broadcast_state()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    hub: MonitorHub = app.state.hub
    dispatcher: AgentDispatcher = app.state.dispatcher
    hub.push_system(
        "Starting farfield server",
        {
            "appExecutable": hub.info.app_executable,
            "socketPath": hub.info.socket_path,
            "agentIds": [a.id for a in dispatcher.registry.list_adapters()],
        },
    )
    await _start_agents(app)
    try:
        yield
    finally:
        pending = app.state.background_tasks
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await hub.close()
        await dispatcher.registry.stop_all()
        logger.info("farfield server stopped")


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProtocolValidationError)
    async def _validation(request: Request, exc: ProtocolValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(request, str(exc), issues=exc.issues),
        )

    @app.exception_handler(RequestValidationError)
    async def _query_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        issues = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(request, "Invalid request parameters", issues=issues),
        )

    @app.exception_handler(DispatchError)
    async def _dispatch(request: Request, exc: DispatchError) -> JSONResponse:
        code = status.HTTP_400_BAD_REQUEST
        for error_type, mapped in _DISPATCH_STATUS:
            if isinstance(exc, error_type):
                code = mapped
                break
        return JSONResponse(status_code=code, content=_error_body(request, str(exc)))

    @app.exception_handler(ActionFailedError)
    async def _action_failed(request: Request, exc: ActionFailedError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, str(exc)),
        )

    @app.exception_handler(TraceStateError)
    async def _trace_state(request: Request, exc: TraceStateError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content=_error_body(request, str(exc))
        )

    @app.exception_handler(ReplayError)
    async def _replay(request: Request, exc: ReplayError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content=_error_body(request, str(exc))
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        hub: MonitorHub = request.app.state.hub
        message = str(exc) or type(exc).__name__
        hub.last_error = message
        logger.error("Request %s %s failed: %s", request.method, request.url.path, message)
        hub.push_system(
            "Request failed",
            {"error": message, "method": request.method, "url": str(request.url)},
        )
        hub.broadcast_state()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": message},
        )


def create_app(
    dispatcher: AgentDispatcher,
    hub: MonitorHub,
    *,
    codex: CodexAgentAdapter | None = None,
) -> FastAPI:
    app = FastAPI(title="farfield", version=__version__, lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.state.hub = hub
    app.state.codex = codex
    app.state.background_tasks = set()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    _register_exception_handlers(app)

    app.include_router(agents.router)
    app.include_router(threads.router)
    app.include_router(debug.router)
    app.include_router(events.router)
    return app
