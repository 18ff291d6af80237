"""Errors raised by the Codex app-server and desktop IPC clients."""

from typing import Any


class AppServerError(Exception):
    """The app-server process failed or answered with something unusable."""


class AppServerTransportError(AppServerError):
    """The child process could not be started, written to, or read from."""


class AppServerRpcError(AppServerError):
    """The app-server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.rpc_message = message
        self.data = data
        super().__init__(f"app-server error {code}: {message}")


class DesktopIpcError(Exception):
    """The desktop IPC socket is unavailable or a request failed."""
