"""JSON-RPC message shapes spoken by the app-server and classification helpers.

Shapes:
  - JsonRpcRequest: ``{id, method, params?}``
  - JsonRpcResponse: ``{id, result | error}`` — exactly one outcome
  - JsonRpcNotification: ``{method, params?}`` with no ``id``

``parse_incoming_message()`` handles traffic whose direction is ambiguous
(responses and server notifications on the same stream): it tries the
response shape first, then the notification shape, and on failure reports
the issues from both attempts.
"""

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import model_validator

from .common import (
    NonEmptyStr,
    NonNegativeInt,
    StrictInt,
    StrictStr,
    WireModel,
    parse_with_schema,
)
from .errors import ProtocolValidationError


class JsonRpcRequest(WireModel):
    jsonrpc: Literal["2.0"] | None = None
    id: NonNegativeInt
    method: NonEmptyStr
    params: Any = None


class JsonRpcErrorObject(WireModel):
    code: StrictInt
    message: StrictStr
    data: Any = None


class JsonRpcResponse(WireModel):
    jsonrpc: Literal["2.0"] | None = None
    id: NonNegativeInt
    result: Any = None
    error: JsonRpcErrorObject | None = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "JsonRpcResponse":
        present = {"result", "error"} & self.model_fields_set
        if len(present) != 1:
            raise ValueError("Response must include exactly one of result or error")
        return self

    @property
    def is_error(self) -> bool:
        return "error" in self.model_fields_set


class JsonRpcNotification(WireModel):
    jsonrpc: Literal["2.0"] | None = None
    method: NonEmptyStr
    params: Any = None

    @model_validator(mode="before")
    @classmethod
    def _reject_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and "id" in data:
            raise ValueError("Notification must not include id")
        return data


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """A classified message from a JSON-RPC peer."""

    kind: Literal["response", "notification"]
    value: JsonRpcResponse | JsonRpcNotification


def parse_json_rpc_request(value: Any) -> JsonRpcRequest:
    return parse_with_schema(JsonRpcRequest, value, "JsonRpcRequest")


def parse_json_rpc_response(value: Any) -> JsonRpcResponse:
    return parse_with_schema(JsonRpcResponse, value, "JsonRpcResponse")


def parse_json_rpc_notification(value: Any) -> JsonRpcNotification:
    return parse_with_schema(JsonRpcNotification, value, "JsonRpcNotification")


def parse_incoming_message(value: Any) -> IncomingMessage:
    """Classify *value* as a response, falling back to a notification.

    Raises ``ProtocolValidationError`` carrying the issues of both shapes.
    """
    try:
        return IncomingMessage("response", parse_json_rpc_response(value))
    except ProtocolValidationError as response_error:
        try:
            return IncomingMessage(
                "notification", parse_json_rpc_notification(value)
            )
        except ProtocolValidationError as notification_error:
            issues = [
                *(f"response {issue}" for issue in response_error.issues),
                *(f"notification {issue}" for issue in notification_error.issues),
            ]
            raise ProtocolValidationError(
                "JsonRpcIncomingMessage", issues
            ) from notification_error


def encode_request(request_id: int, method: str, params: Any) -> bytes:
    """Encode a request as one newline-terminated JSON line."""
    request = parse_json_rpc_request(
        {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
    )
    return json.dumps(request.to_wire()).encode() + b"\n"


def encode_error_response(request_id: int, code: int, message: str) -> bytes:
    """Encode an error response to a peer's request as one JSON line."""
    response = parse_json_rpc_response(
        {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
    )
    return json.dumps(response.to_wire()).encode() + b"\n"
