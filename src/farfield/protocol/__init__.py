"""Wire schemas for every backend dialect farfield speaks.

Re-exports the parse helpers and models so consumers can do
``from farfield.protocol import parse_incoming_message, ...``.
"""

from farfield.protocol.app_server import (
    CollaborationModeListResponse,
    ListModelsResponse,
    ListThreadsResponse,
    ReadThreadResponse,
    StartThreadResponse,
    ThreadListItem,
)
from farfield.protocol.common import WireModel, parse_with_schema
from farfield.protocol.errors import ProtocolValidationError
from farfield.protocol.ipc import (
    MAX_FRAME_SIZE,
    THREAD_STREAM_STATE_CHANGED,
    FrameDecoder,
    FrameError,
    IpcBroadcastFrame,
    IpcFrame,
    IpcRequestFrame,
    IpcResponseFrame,
    ThreadStreamStateChangedBroadcast,
    encode_frame,
    extract_thread_id,
    parse_ipc_frame,
    parse_thread_stream_state_changed_broadcast,
)
from farfield.protocol.json_rpc import (
    IncomingMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    encode_error_response,
    encode_request,
    parse_incoming_message,
    parse_json_rpc_notification,
    parse_json_rpc_request,
    parse_json_rpc_response,
)
from farfield.protocol.thread import (
    CollaborationMode,
    ThreadConversationState,
    ThreadStreamPatch,
    ThreadStreamPatchesChange,
    ThreadStreamSnapshotChange,
    TurnStartParams,
    UserInputResponsePayload,
    parse_thread_conversation_state,
    parse_thread_stream_state_changed_params,
    parse_user_input_response_payload,
)

__all__ = [
    "MAX_FRAME_SIZE",
    "THREAD_STREAM_STATE_CHANGED",
    "FrameDecoder",
    "FrameError",
    "CollaborationMode",
    "CollaborationModeListResponse",
    "IncomingMessage",
    "IpcBroadcastFrame",
    "IpcFrame",
    "IpcRequestFrame",
    "IpcResponseFrame",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "ListModelsResponse",
    "ListThreadsResponse",
    "ProtocolValidationError",
    "ReadThreadResponse",
    "StartThreadResponse",
    "ThreadConversationState",
    "ThreadListItem",
    "ThreadStreamPatch",
    "ThreadStreamPatchesChange",
    "ThreadStreamSnapshotChange",
    "ThreadStreamStateChangedBroadcast",
    "TurnStartParams",
    "UserInputResponsePayload",
    "WireModel",
    "encode_frame",
    "encode_error_response",
    "encode_request",
    "extract_thread_id",
    "parse_incoming_message",
    "parse_ipc_frame",
    "parse_json_rpc_notification",
    "parse_json_rpc_request",
    "parse_json_rpc_response",
    "parse_thread_conversation_state",
    "parse_thread_stream_state_changed_broadcast",
    "parse_thread_stream_state_changed_params",
    "parse_user_input_response_payload",
    "parse_with_schema",
]
