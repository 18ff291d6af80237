"""Application configuration — reads env vars and exposes a singleton.

Loads the enabled agent set, Codex executable and IPC socket paths, the
default workspace, live-state tuning and the HTTP listen address / trace
directory from environment variables (with .env support).
.env loading priority: local .env (cwd) > $FARFIELD_DIR/.env (default ~/.farfield).

Key class: Config (singleton instantiated as `config`).
"""

import os
import tempfile
from pathlib import Path

import structlog
from dotenv import load_dotenv

from .agents.base import DEFAULT_AGENT_IDS, AgentId
from .cli import parse_agent_ids
from .utils import farfield_dir

logger = structlog.get_logger()

CODEX_DESKTOP_EXECUTABLE = Path("/Applications/Codex.app/Contents/Resources/codex")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("", "0", "false", "no", "off")


def default_codex_executable() -> str:
    """The desktop app's bundled CLI when installed, else ``codex`` on PATH."""
    if CODEX_DESKTOP_EXECUTABLE.is_file():
        return str(CODEX_DESKTOP_EXECUTABLE)
    return "codex"


def default_ipc_socket_path() -> str:
    uid = os.getuid() if hasattr(os, "getuid") else 0
    return str(Path(tempfile.gettempdir()) / "codex-ipc" / f"ipc-{uid}.sock")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number: {e}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw}")
    return value


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a valid integer: {e}") from e
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {raw}")
    return value


def _env_bool(name: str) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        self.config_dir = farfield_dir()

        # load_dotenv default override=False means first-loaded wins
        local_env = Path(".env")
        global_env = self.config_dir / ".env"
        if local_env.is_file():
            load_dotenv(local_env)
            logger.debug("Loaded env from %s", local_env.resolve())
        if global_env.is_file():
            load_dotenv(global_env)
            logger.debug("Loaded env from %s", global_env)

        raw_agents = os.getenv("FARFIELD_AGENTS")
        self.agent_ids: tuple[AgentId, ...] = (
            parse_agent_ids(raw_agents) if raw_agents is not None else DEFAULT_AGENT_IDS
        )

        self.log_level = os.getenv("FARFIELD_LOG_LEVEL", "INFO").upper()

        # Codex
        self.codex_executable = os.getenv("CODEX_CLI_PATH") or default_codex_executable()
        self.ipc_socket_path = os.getenv("CODEX_IPC_SOCKET") or default_ipc_socket_path()
        self.workspace_dir = os.path.abspath(
            os.getenv("FARFIELD_WORKSPACE_DIR") or os.getcwd()
        )
        self.reconnect_delay = _env_float("FARFIELD_RECONNECT_DELAY", 1.0)
        self.stream_event_limit = _env_int(
            "FARFIELD_STREAM_EVENT_LIMIT", 400, minimum=1
        )
        self.strict_patches = _env_bool("FARFIELD_STRICT_PATCHES")
        self.invalid_stream_log = Path(
            os.getenv("FARFIELD_INVALID_STREAM_LOG")
            or self.config_dir / "invalid-thread-stream-events.jsonl"
        )

        # HTTP server
        self.host = os.getenv("FARFIELD_HOST") or "127.0.0.1"
        self.port = _env_int("FARFIELD_PORT", 4311, minimum=1)
        self.trace_dir = Path(
            os.getenv("FARFIELD_TRACE_DIR") or Path.cwd() / "traces"
        ).resolve()

        # OpenCode
        self.opencode_url: str | None = os.getenv("OPENCODE_URL") or None
        self.opencode_port = _env_int("OPENCODE_PORT", 0)

        logger.debug(
            "Config initialized: dir=%s, agents=%s, codex=%s, socket=%s",
            self.config_dir,
            ",".join(self.agent_ids),
            self.codex_executable,
            self.ipc_socket_path,
        )

    def is_agent_enabled(self, agent_id: AgentId) -> bool:
        return agent_id in self.agent_ids


config = Config()
