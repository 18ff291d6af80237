"""Child-process transport for ``codex app-server``.

Spawns the app-server lazily on first request and speaks newline-delimited
JSON-RPC over its stdin/stdout. Every request except ``initialize`` waits
for the one-time initialize handshake. Responses are correlated by integer
id; a request that gets no answer within the timeout fails with
``AppServerError``.

Stderr lines go to ``on_stderr`` when given, else to the debug log. When the process exits, every
pending request fails and the next request respawns it.
"""

import asyncio
import json
import os
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from ..protocol.errors import ProtocolValidationError
from ..protocol.json_rpc import (
    JsonRpcNotification,
    JsonRpcRequest,
    encode_error_response,
    encode_request,
    parse_incoming_message,
    parse_json_rpc_request,
)
from .errors import AppServerError, AppServerRpcError, AppServerTransportError

logger = structlog.get_logger()

DEFAULT_REQUEST_TIMEOUT = 30.0
CLIENT_NAME = "farfield"
CLIENT_VERSION = "0.2.0"
_METHOD_NOT_FOUND = -32601

# Thread reads can return whole transcripts on one line
_STDOUT_LIMIT = 64 * 1024 * 1024


class AppServerTransport(Protocol):
    async def request(
        self, method: str, params: Any, timeout: float | None = None
    ) -> Any: ...

    async def close(self) -> None: ...


class ChildProcessAppServerTransport:
    """JSON-RPC over the stdio of a ``<executable> app-server`` child."""

    def __init__(
        self,
        executable_path: str,
        user_agent: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        on_stderr: Callable[[str], None] | None = None,
    ) -> None:
        self._executable_path = executable_path
        self._user_agent = user_agent
        self._cwd = cwd
        self._env = env or {}
        self._request_timeout = request_timeout
        self._on_stderr = on_stderr
        self._process: asyncio.subprocess.Process | None = None
        self._reader_tasks: list[asyncio.Task[None]] = []
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._next_id = 0
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()

    # ── Process lifecycle ────────────────────────────────────────────────

    async def _ensure_started(self) -> asyncio.subprocess.Process:
        async with self._start_lock:
            if self._process is not None and self._process.returncode is None:
                return self._process

            env = {
                **os.environ,
                **self._env,
                "CODEX_USER_AGENT": self._user_agent,
                "CODEX_CLIENT_ID": f"{CLIENT_NAME}-{uuid.uuid4()}",
            }
            try:
                process = await asyncio.create_subprocess_exec(
                    self._executable_path,
                    "app-server",
                    cwd=self._cwd,
                    env=env,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=_STDOUT_LIMIT,
                )
            except OSError as e:
                raise AppServerTransportError(
                    f"app-server failed to start: {e}"
                ) from e

            logger.info(
                "Spawned app-server (pid=%s, executable=%s)",
                process.pid,
                self._executable_path,
            )
            self._process = process
            self._initialized = False
            self._reader_tasks = [
                asyncio.create_task(self._read_stdout(process)),
                asyncio.create_task(self._read_stderr(process)),
            ]
            return process

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            self._handle_line(line)

        code = await process.wait()
        if self._process is process:
            self._process = None
            self._initialized = False
        self._fail_all(AppServerError(f"app-server exited (code={code})"))

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode(errors="replace").strip()
            if not text:
                continue
            if self._on_stderr is None:
                logger.debug("app-server stderr: %s", text)
                continue
            try:
                self._on_stderr(text)
            except Exception:
                logger.exception("app-server stderr handler failed")

    def _handle_line(self, line: bytes) -> None:
        text = line.strip()
        if not text:
            return
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            self._fail_all(AppServerError("app-server returned invalid JSON"))
            return

        try:
            message = parse_incoming_message(raw)
        except ProtocolValidationError as e:
            try:
                request = parse_json_rpc_request(raw)
            except ProtocolValidationError:
                self._fail_all(
                    AppServerError(f"app-server response schema mismatch: {e}")
                )
                return
            self._decline_server_request(request)
            return

        if isinstance(message.value, JsonRpcNotification):
            logger.debug("app-server notification %s", message.value.method)
            return

        response = message.value
        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            return
        if response.is_error and response.error is not None:
            future.set_exception(
                AppServerRpcError(
                    response.error.code, response.error.message, response.error.data
                )
            )
        else:
            future.set_result(response.result)

    def _decline_server_request(self, request: JsonRpcRequest) -> None:
        """Answer a request the app-server sent us; we serve none."""
        logger.warning("Declining app-server request %s (id=%d)", request.method, request.id)
        process = self._process
        if process is None or process.stdin is None:
            return
        process.stdin.write(
            encode_error_response(
                request.id, _METHOD_NOT_FOUND, f"Method not supported: {request.method}"
            )
        )

    def _fail_all(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # ── Requests ─────────────────────────────────────────────────────────

    async def _send(self, method: str, params: Any, timeout: float | None) -> Any:
        process = self._process
        if process is None or process.stdin is None:
            raise AppServerError("app-server failed to start")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            process.stdin.write(encode_request(request_id, method, params))
            await process.stdin.drain()
        except (ConnectionError, OSError) as e:
            self._pending.pop(request_id, None)
            raise AppServerTransportError(
                f"failed to write app-server request: {e}"
            ) from e

        try:
            return await asyncio.wait_for(
                future, timeout if timeout is not None else self._request_timeout
            )
        except TimeoutError as e:
            raise AppServerError(f"app-server request timed out: {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def _ensure_initialized(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            result = await self._send(
                "initialize",
                {
                    "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                    "capabilities": {"experimentalApi": True},
                },
                self._request_timeout,
            )
            if not isinstance(result, dict):
                raise AppServerError("app-server initialize returned invalid result")
            self._initialized = True

    async def request(
        self, method: str, params: Any, timeout: float | None = None
    ) -> Any:
        await self._ensure_started()
        if method != "initialize":
            await self._ensure_initialized()
        result = await self._send(method, params, timeout)
        if method == "initialize":
            self._initialized = True
        return result

    async def close(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        self._initialized = False
        self._fail_all(AppServerError("app-server transport closed"))

        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except TimeoutError:
                logger.warning("app-server did not exit after SIGTERM, killing")
                process.kill()
                await process.wait()

        for task in self._reader_tasks:
            task.cancel()
        self._reader_tasks = []
        logger.info("Closed app-server transport")
