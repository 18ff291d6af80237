"""Desktop IPC client — a follower connection to the Codex desktop app.

Connects to the app's Unix socket, exchanges length-prefixed JSON frames and
correlates requests with responses by a random ``requestId``. Every parsed
frame is fanned out to registered frame listeners; connection up/down is
reported to connection listeners.

This client never serves requests itself: discovery requests are answered with
``canHandle: false`` and requests with ``no-handler-for-request``.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from ..protocol.errors import ProtocolValidationError
from ..protocol.ipc import (
    FrameDecoder,
    FrameError,
    IpcClientDiscoveryRequestFrame,
    IpcFrame,
    IpcRequestFrame,
    IpcResponseFrame,
    encode_frame,
    parse_ipc_frame,
)
from .errors import DesktopIpcError

logger = structlog.get_logger()

DEFAULT_REQUEST_TIMEOUT = 20.0
INITIALIZING_CLIENT_ID = "initializing-client"
_READ_CHUNK = 64 * 1024


@dataclass(frozen=True, slots=True)
class IpcConnectionState:
    connected: bool
    reason: str | None = None


FrameListener = Callable[[IpcFrame], None]
ConnectionListener = Callable[[IpcConnectionState], None]


@dataclass(slots=True)
class _Pending:
    method: str
    future: asyncio.Future[IpcResponseFrame]


class DesktopIpcClient:
    def __init__(
        self, socket_path: str, request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    ) -> None:
        self._socket_path = socket_path
        self._request_timeout = request_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._client_id: str | None = None
        self._pending: dict[str, _Pending] = {}
        self._frame_listeners: list[FrameListener] = []
        self._connection_listeners: list[ConnectionListener] = []

    @property
    def client_id(self) -> str | None:
        return self._client_id

    def is_connected(self) -> bool:
        return self._writer is not None

    # ── Listeners ────────────────────────────────────────────────────────

    def on_frame(self, listener: FrameListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._frame_listeners.append(listener)
        return lambda: self._frame_listeners.remove(listener)

    def on_connection_state(self, listener: ConnectionListener) -> Callable[[], None]:
        self._connection_listeners.append(listener)
        return lambda: self._connection_listeners.remove(listener)

    def _emit_frame(self, frame: IpcFrame) -> None:
        for listener in list(self._frame_listeners):
            try:
                listener(frame)
            except Exception:
                logger.exception("IPC frame listener failed")

    def _emit_connection_state(self, state: IpcConnectionState) -> None:
        for listener in list(self._connection_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("IPC connection listener failed")

    # ── Connection ───────────────────────────────────────────────────────

    async def connect(self) -> None:
        if self._writer is not None:
            raise DesktopIpcError("IPC client is already connected")
        try:
            reader, writer = await asyncio.open_unix_connection(self._socket_path)
        except OSError as e:
            raise DesktopIpcError(str(e)) from e

        self._reader, self._writer = reader, writer
        self._read_task = asyncio.create_task(self._read_loop(reader))
        logger.info("Connected to desktop IPC at %s", self._socket_path)
        self._emit_connection_state(IpcConnectionState(connected=True))

    async def disconnect(self) -> None:
        writer = self._writer
        if writer is None:
            return
        self._reset()
        self._fail_all(DesktopIpcError("IPC client disconnected"))
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("IPC socket close error: %s", e)
        if self._read_task is not None:
            self._read_task.cancel()
            self._read_task = None

    def _reset(self) -> None:
        self._reader = None
        self._writer = None
        self._client_id = None

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        decoder = FrameDecoder()
        reason = "IPC socket closed"
        try:
            while True:
                chunk = await reader.read(_READ_CHUNK)
                if not chunk:
                    break
                for raw in decoder.feed(chunk):
                    self._handle_raw(raw)
        except FrameError as e:
            reason = str(e)
        except OSError as e:
            reason = f"IPC socket error: {e}"

        if self._reader is not reader:
            return
        writer = self._writer
        self._reset()
        if writer is not None:
            writer.close()
        self._fail_all(DesktopIpcError(reason))
        logger.warning("Desktop IPC disconnected: %s", reason)
        self._emit_connection_state(IpcConnectionState(connected=False, reason=reason))

    def _fail_all(self, error: DesktopIpcError) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(error)

    # ── Inbound frames ───────────────────────────────────────────────────

    def _handle_raw(self, raw: Any) -> None:
        try:
            frame = parse_ipc_frame(raw)
        except ProtocolValidationError as e:
            logger.warning("Ignoring unrecognized IPC frame: %s", e)
            return

        self._emit_frame(frame)

        if isinstance(frame, IpcClientDiscoveryRequestFrame):
            self._write(
                {
                    "type": "client-discovery-response",
                    "requestId": frame.request_id,
                    "response": {"canHandle": False},
                }
            )
        elif isinstance(frame, IpcRequestFrame):
            self._write(
                {
                    "type": "response",
                    "requestId": frame.request_id,
                    "resultType": "error",
                    "error": "no-handler-for-request",
                }
            )
        elif isinstance(frame, IpcResponseFrame):
            self._resolve(frame)

    def _resolve(self, frame: IpcResponseFrame) -> None:
        entry = self._pending.pop(str(frame.request_id), None)
        if entry is None or entry.future.done():
            return
        if frame.is_error:
            detail = frame.error if isinstance(frame.error, str) else repr(frame.error)
            entry.future.set_exception(
                DesktopIpcError(f"IPC {entry.method} failed: {detail}")
            )
            return
        if entry.method == "initialize" and isinstance(frame.result, dict):
            client_id = frame.result.get("clientId")
            if isinstance(client_id, str):
                self._client_id = client_id
        entry.future.set_result(frame)

    # ── Outbound frames ──────────────────────────────────────────────────

    def _write(self, frame: dict[str, Any]) -> None:
        if self._writer is None:
            raise DesktopIpcError("IPC socket is not connected")
        try:
            self._writer.write(encode_frame(frame))
        except FrameError as e:
            raise DesktopIpcError(str(e)) from e

    async def _request(
        self, frame: dict[str, Any], method: str, timeout: float | None
    ) -> IpcResponseFrame:
        request_id = frame["requestId"]
        future: asyncio.Future[IpcResponseFrame] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request_id] = _Pending(method, future)
        try:
            self._write(frame)
            return await asyncio.wait_for(
                future, timeout if timeout is not None else self._request_timeout
            )
        except TimeoutError as e:
            raise DesktopIpcError(f"IPC request timed out: {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def send_request_and_wait(
        self,
        method: str,
        params: Any,
        *,
        target_client_id: str | None = None,
        version: int | None = None,
        timeout: float | None = None,
    ) -> IpcResponseFrame:
        frame: dict[str, Any] = {
            "type": "request",
            "requestId": str(uuid.uuid4()),
            "method": method,
            "params": params,
            "sourceClientId": self._client_id or INITIALIZING_CLIENT_ID,
        }
        if target_client_id is not None:
            frame["targetClientId"] = target_client_id
        if version is not None:
            frame["version"] = version
        return await self._request(frame, method, timeout)

    def send_broadcast(
        self,
        method: str,
        params: Any,
        *,
        target_client_id: str | None = None,
        version: int | None = None,
    ) -> None:
        frame: dict[str, Any] = {
            "type": "broadcast",
            "method": method,
            "params": params,
            "sourceClientId": self._client_id or INITIALIZING_CLIENT_ID,
        }
        if target_client_id is not None:
            frame["targetClientId"] = target_client_id
        if version is not None:
            frame["version"] = version
        self._write(frame)

    async def initialize(self) -> IpcResponseFrame:
        """Handshake; the response assigns this connection its client id."""
        frame = {
            "type": "request",
            "requestId": str(uuid.uuid4()),
            "sourceClientId": INITIALIZING_CLIENT_ID,
            "version": 1,
            "method": "initialize",
            "params": {"clientType": "farfield"},
        }
        return await self._request(frame, "initialize", None)
