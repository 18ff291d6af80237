"""Application entry point — CLI parsing, logging setup and server lifecycle.

``main()`` parses flags, applies them to the environment and hands over to
``run()``, which builds the enabled adapters from config, wires them into
the HTTP app and serves it with uvicorn. The app's lifespan starts the
agents in order and stops them in reverse when the server shuts down.
"""

import asyncio
import logging
import os
import sys
from collections.abc import Callable

import structlog
import uvicorn
from fastapi import FastAPI

from . import __version__
from .agents.adapters.codex import (
    CodexAgentAdapter,
    CodexAgentOptions,
    CodexRuntimeState,
)
from .agents.adapters.opencode import OpenCodeAgentAdapter
from .agents.base import AgentAdapter
from .agents.registry import AgentRegistry
from .cli import apply_args_to_env, parse_args
from .dispatch import AgentDispatcher
from .errors import ConfigurationError
from .monitor import MonitorHub, RuntimeInfo
from .utils import resolve_git_commit
from .web import create_app

USER_AGENT = f"farfield/{__version__}"


def _short_name_processor(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Strip the 'farfield.' prefix, cap at 20 chars."""
    name = event_dict.get("_record", {}).get("name", "")
    if not name:
        name = event_dict.get("logger_name", "")
    if name.startswith("farfield.agents.adapters."):
        name = name[len("farfield.agents.adapters.") :]
    elif name.startswith("farfield."):
        name = name[len("farfield.") :]
    event_dict["short_name"] = name[:20]
    return event_dict


def setup_logging(log_level: str) -> None:
    """Configure structured, colored logging for interactive CLI use."""
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _short_name_processor,
            structlog.dev.ConsoleRenderer(
                colors=True,
                pad_event=40,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging for third-party libs
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=True),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            ],
        )
    )
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("farfield").setLevel(numeric_level)
    for name in ("httpx", "httpcore", "asyncio", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_adapters(
    cfg, *, on_codex_state_change: Callable[[CodexRuntimeState], None] | None = None
) -> list[AgentAdapter]:
    """One adapter per configured agent id, in configured order."""
    adapters: list[AgentAdapter] = []
    for agent_id in cfg.agent_ids:
        if agent_id == "codex":
            adapters.append(
                CodexAgentAdapter(
                    CodexAgentOptions(
                        app_executable=cfg.codex_executable,
                        socket_path=cfg.ipc_socket_path,
                        workspace_dir=cfg.workspace_dir,
                        user_agent=USER_AGENT,
                        reconnect_delay=cfg.reconnect_delay,
                        stream_event_limit=cfg.stream_event_limit,
                        strict_patches=cfg.strict_patches,
                        invalid_stream_log=cfg.invalid_stream_log,
                    ),
                    on_state_change=on_codex_state_change,
                )
            )
        elif agent_id == "opencode":
            adapters.append(
                OpenCodeAgentAdapter(url=cfg.opencode_url, port=cfg.opencode_port)
            )
        else:
            raise ConfigurationError(f"No adapter available for agent id {agent_id}")
    return adapters


def build_app(cfg) -> FastAPI:
    """Wire config, agents, monitor hub and dispatcher into the HTTP app."""
    hub = MonitorHub(
        trace_dir=cfg.trace_dir,
        info=RuntimeInfo(
            app_executable=cfg.codex_executable,
            socket_path=cfg.ipc_socket_path,
            git_commit=resolve_git_commit(),
        ),
    )
    registry = AgentRegistry(
        build_adapters(cfg, on_codex_state_change=lambda _state: hub.broadcast_state())
    )

    codex = registry.get_adapter("codex")
    if isinstance(codex, CodexAgentAdapter):
        hub.attach_codex(codex)
    else:
        codex = None

    dispatcher = AgentDispatcher(
        registry,
        configured_agent_ids=cfg.agent_ids,
        default_workspace=cfg.workspace_dir,
    )
    return create_app(dispatcher, hub, codex=codex)


async def run(cfg) -> None:
    """Serve the HTTP API until SIGINT/SIGTERM; agents start and stop with it."""
    logger = structlog.get_logger()

    app = build_app(cfg)
    logger.info("Enabled agents: %s", ", ".join(cfg.agent_ids))
    logger.info("Serving on http://%s:%s", cfg.host, cfg.port)

    server = uvicorn.Server(
        uvicorn.Config(app, host=cfg.host, port=cfg.port, log_config=None, lifespan="on")
    )
    await server.serve()
    if not server.started:
        logger.error("Server did not start on %s:%s", cfg.host, cfg.port)
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    args = parse_args()
    if args.version:
        print(f"farfield {__version__}")
        return

    apply_args_to_env(args)
    setup_logging(os.environ.get("FARFIELD_LOG_LEVEL", "INFO").upper())

    try:
        from .config import config
    except (ValueError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run(config))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
