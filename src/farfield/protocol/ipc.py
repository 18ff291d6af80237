"""Desktop IPC frame shapes.

The desktop app relays frames between connected clients. Frame types:
  - initialize / request / response: correlated by ``requestId``
  - broadcast: fan-out events such as ``thread-stream-state-changed``
  - client-discovery-request / -response: "can you handle this?" queries

Frames travel length-prefixed; see ``encode_frame`` and ``FrameDecoder``.
"""

import json
import struct
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from .common import NonEmptyStr, NonNegativeInt, StrictBool, WireModel, parse_with_schema
from .errors import ProtocolValidationError
from .thread import ThreadStreamStateChangedParams

THREAD_STREAM_STATE_CHANGED = "thread-stream-state-changed"

RequestId = NonNegativeInt | NonEmptyStr


class IpcInitializeFrame(WireModel):
    type: Literal["initialize"]
    request_id: RequestId | None = None
    method: NonEmptyStr | None = None
    params: Any = None
    client_id: NonEmptyStr | None = None
    version: NonNegativeInt | None = None


class IpcRequestFrame(WireModel):
    type: Literal["request"]
    request_id: RequestId
    method: NonEmptyStr
    params: Any = None
    target_client_id: NonEmptyStr | None = None
    source_client_id: NonEmptyStr | None = None
    version: NonNegativeInt | None = None


class IpcResponseFrame(WireModel):
    type: Literal["response"]
    request_id: RequestId
    method: NonEmptyStr | None = None
    result_type: Literal["success", "error"] | None = None
    success: StrictBool | None = None
    result: Any = None
    error: Any = None

    @property
    def is_error(self) -> bool:
        return self.result_type == "error" or self.success is False


class IpcBroadcastFrame(WireModel):
    type: Literal["broadcast"]
    method: NonEmptyStr
    params: Any = None
    source_client_id: NonEmptyStr | None = None
    target_client_id: NonEmptyStr | None = None
    version: NonNegativeInt | None = None


class IpcClientDiscoveryRequestFrame(WireModel):
    type: Literal["client-discovery-request"]
    request_id: RequestId
    request: Any = None


class IpcClientDiscoveryResponseFrame(WireModel):
    type: Literal["client-discovery-response"]
    request_id: RequestId
    response: Any = None


IpcFrame = Annotated[
    IpcInitializeFrame
    | IpcRequestFrame
    | IpcResponseFrame
    | IpcBroadcastFrame
    | IpcClientDiscoveryRequestFrame
    | IpcClientDiscoveryResponseFrame,
    Field(discriminator="type"),
]

_ipc_frame_adapter: TypeAdapter[IpcFrame] = TypeAdapter(IpcFrame)


class ThreadStreamStateChangedBroadcast(WireModel):
    type: Literal["broadcast"]
    method: Literal["thread-stream-state-changed"]
    source_client_id: NonEmptyStr
    params: ThreadStreamStateChangedParams
    version: NonNegativeInt


def parse_ipc_frame(value: Any) -> IpcFrame:
    try:
        return _ipc_frame_adapter.validate_python(value)
    except ValidationError as e:
        raise ProtocolValidationError.from_pydantic("IpcFrame", e) from e


def parse_thread_stream_state_changed_broadcast(
    value: Any,
) -> ThreadStreamStateChangedBroadcast:
    return parse_with_schema(
        ThreadStreamStateChangedBroadcast, value, "ThreadStreamStateChangedBroadcast"
    )


def extract_thread_id(frame: IpcFrame) -> str | None:
    """Best-effort thread id for a frame (``None`` when it names no thread)."""
    if isinstance(frame, IpcBroadcastFrame):
        if frame.method != THREAD_STREAM_STATE_CHANGED:
            return None
        candidates = ("conversationId",)
    elif isinstance(frame, IpcRequestFrame):
        candidates = ("conversationId", "threadId", "turnId")
    else:
        return None

    params = frame.params
    if not isinstance(params, dict):
        return None
    for key in candidates:
        candidate = params.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


# ── Framing ──────────────────────────────────────────────────────────────
# Each frame is a 4-byte little-endian payload length followed by UTF-8 JSON.

MAX_FRAME_SIZE = 256 * 1024 * 1024
_HEADER_SIZE = 4


class FrameError(ValueError):
    """A frame was oversized or did not contain valid JSON."""


def encode_frame(value: Any) -> bytes:
    payload = json.dumps(value, separators=(",", ":")).encode()
    if len(payload) > MAX_FRAME_SIZE:
        raise FrameError(f"IPC frame exceeded limit ({len(payload)} > {MAX_FRAME_SIZE})")
    return struct.pack("<I", len(payload)) + payload


class FrameDecoder:
    """Incremental decoder: ``feed()`` chunks, get back whole JSON values."""

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size

    def feed(self, chunk: bytes) -> list[Any]:
        self._buffer.extend(chunk)
        values: list[Any] = []
        while len(self._buffer) >= _HEADER_SIZE:
            (size,) = struct.unpack_from("<I", self._buffer)
            if size > self._max_frame_size:
                raise FrameError(
                    f"IPC frame exceeded limit ({size} > {self._max_frame_size})"
                )
            end = _HEADER_SIZE + size
            if len(self._buffer) < end:
                break
            payload = bytes(self._buffer[_HEADER_SIZE:end])
            del self._buffer[:end]
            try:
                values.append(json.loads(payload))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise FrameError("IPC frame contained invalid JSON") from e
        return values

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)
