"""Command-line argument parsing for farfield.

Defines CLI flags and applies precedence: CLI flag > env var > .env > default.
Called by main.py before Config instantiation; sets os.environ for any
explicitly provided flags so Config reads the overridden values.
"""

import argparse
import os
from pathlib import Path

from .agents.base import ALL_AGENT_IDS, AgentId
from .errors import ConfigurationError

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_ALLOWED_AGENT_VALUES = (*ALL_AGENT_IDS, "all")


def parse_agent_ids(raw: str | None) -> tuple[AgentId, ...]:
    """Parse a comma-separated agent list such as ``codex,opencode`` or ``all``.

    ``all`` expands to every known agent. Duplicates are dropped, keeping the
    first occurrence, so the order given is the registry order.
    """
    if raw is None or not raw.strip():
        raise ConfigurationError("Missing value for --agents")

    result: list[AgentId] = []
    for token in raw.split(","):
        value = token.strip().lower()
        if not value:
            continue
        if value == "all":
            expanded: tuple[AgentId, ...] = ALL_AGENT_IDS
        elif value in ALL_AGENT_IDS:
            expanded = (value,)  # type: ignore[assignment]
        else:
            raise ConfigurationError(
                f'Unknown agent id "{value}". '
                f"Allowed values: {', '.join(_ALLOWED_AGENT_VALUES)}."
            )
        for agent_id in expanded:
            if agent_id not in result:
                result.append(agent_id)

    if not result:
        raise ConfigurationError("Missing value for --agents")
    return tuple(result)


def _positive_float(value: str) -> float:
    """Argparse type for positive floats."""
    result = float(value)
    if result <= 0:
        msg = f"must be positive, got {value}"
        raise argparse.ArgumentTypeError(msg)
    return result


def _positive_int(value: str) -> int:
    """Argparse type for positive integers."""
    result = int(value)
    if result < 1:
        msg = f"must be positive, got {value}"
        raise argparse.ArgumentTypeError(msg)
    return result


def _non_negative_int(value: str) -> int:
    """Argparse type for non-negative integers."""
    result = int(value)
    if result < 0:
        msg = f"must be non-negative, got {value}"
        raise argparse.ArgumentTypeError(msg)
    return result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments and return namespace.

    Args:
        argv: Argument list (defaults to sys.argv[1:]). Pass explicitly for testing.
    """
    parser = argparse.ArgumentParser(
        prog="farfield",
        description="Serve Codex and OpenCode agents through one HTTP interface",
    )

    parser.add_argument(
        "--version",
        action="store_true",
        help="show version and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable debug logging (env: FARFIELD_LOG_LEVEL=DEBUG)",
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        metavar="LEVEL",
        help="logging level: DEBUG, INFO, WARNING, ERROR (env: FARFIELD_LOG_LEVEL)",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        metavar="DIR",
        help="config directory (default: ~/.farfield, env: FARFIELD_DIR)",
    )
    parser.add_argument(
        "--agents",
        metavar="ID[,ID...]",
        help="agents to enable: codex, opencode or all (default: codex, env: FARFIELD_AGENTS)",
    )
    parser.add_argument(
        "--codex-path",
        metavar="PATH",
        help="codex executable (env: CODEX_CLI_PATH)",
    )
    parser.add_argument(
        "--ipc-socket",
        type=Path,
        metavar="PATH",
        help="Codex desktop IPC socket (env: CODEX_IPC_SOCKET)",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        metavar="DIR",
        help="default cwd for new Codex threads (default: cwd, env: FARFIELD_WORKSPACE_DIR)",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=_positive_float,
        metavar="SEC",
        help="IPC reconnect delay in seconds (default: 1.0, env: FARFIELD_RECONNECT_DELAY)",
    )
    parser.add_argument(
        "--stream-event-limit",
        type=_positive_int,
        metavar="N",
        help="stream frames kept per thread (default: 400, env: FARFIELD_STREAM_EVENT_LIMIT)",
    )
    parser.add_argument(
        "--strict-patches",
        action="store_true",
        default=None,
        help="fail live-state reads on unresolvable patch paths (env: FARFIELD_STRICT_PATCHES)",
    )
    parser.add_argument(
        "--host",
        metavar="HOST",
        help="HTTP listen address (default: 127.0.0.1, env: FARFIELD_HOST)",
    )
    parser.add_argument(
        "--port",
        type=_positive_int,
        metavar="PORT",
        help="HTTP listen port (default: 4311, env: FARFIELD_PORT)",
    )
    parser.add_argument(
        "--trace-dir",
        type=Path,
        metavar="DIR",
        help="where debug traces are written (default: ./traces, env: FARFIELD_TRACE_DIR)",
    )
    parser.add_argument(
        "--opencode-url",
        metavar="URL",
        help="attach to a running opencode server (env: OPENCODE_URL)",
    )
    parser.add_argument(
        "--opencode-port",
        type=_non_negative_int,
        metavar="PORT",
        help="port for a spawned opencode server, 0=any (env: OPENCODE_PORT)",
    )

    # Optional "run" positional; the only command
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run"],
        help=argparse.SUPPRESS,
    )

    return parser.parse_args(argv)


# Mapping: argparse dest → environment variable name
_FLAG_TO_ENV: list[tuple[str, str]] = [
    ("config_dir", "FARFIELD_DIR"),
    ("agents", "FARFIELD_AGENTS"),
    ("codex_path", "CODEX_CLI_PATH"),
    ("ipc_socket", "CODEX_IPC_SOCKET"),
    ("workspace", "FARFIELD_WORKSPACE_DIR"),
    ("reconnect_delay", "FARFIELD_RECONNECT_DELAY"),
    ("stream_event_limit", "FARFIELD_STREAM_EVENT_LIMIT"),
    ("strict_patches", "FARFIELD_STRICT_PATCHES"),
    ("host", "FARFIELD_HOST"),
    ("port", "FARFIELD_PORT"),
    ("trace_dir", "FARFIELD_TRACE_DIR"),
    ("opencode_url", "OPENCODE_URL"),
    ("opencode_port", "OPENCODE_PORT"),
]


def apply_args_to_env(args: argparse.Namespace) -> None:
    """Set environment variables from explicitly provided CLI flags.

    Call BEFORE Config instantiation to ensure CLI flags take precedence.
    Only sets env vars for flags that were explicitly provided (not None).
    """
    # --verbose always wins over --log-level
    if args.verbose:
        os.environ["FARFIELD_LOG_LEVEL"] = "DEBUG"
    elif args.log_level is not None:
        os.environ["FARFIELD_LOG_LEVEL"] = args.log_level.upper()

    for attr, env_var in _FLAG_TO_ENV:
        value = getattr(args, attr)
        if value is None:
            continue
        if isinstance(value, Path):
            os.environ[env_var] = str(value.expanduser().resolve())
        elif isinstance(value, bool):
            os.environ[env_var] = "true" if value else "false"
        else:
            os.environ[env_var] = str(value)
