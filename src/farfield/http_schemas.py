"""First-party request bodies — closed shapes that reject unknown keys.

Unlike the third-party wire schemas in ``farfield.protocol``, these bodies
come from our own web client, so an unexpected key is a bug (or a stale
field name such as ``agentKind``) and is rejected rather than carried.
Primitive fields are strict: ``"1"`` is not a request id.
"""

from typing import Annotated, Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

from .protocol.common import NonEmptyStr, NonNegativeInt, StrictBool, StrictStr, parse_with_schema
from .protocol.thread import CollaborationMode

BodyT = TypeVar("BodyT", bound="RequestBody")


class RequestBody(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        protected_namespaces=(),
    )


class SetModeBody(RequestBody):
    owner_client_id: StrictStr | None = None
    collaboration_mode: CollaborationMode


class SendMessageBody(RequestBody):
    owner_client_id: StrictStr | None = None
    text: NonEmptyStr
    cwd: StrictStr | None = None
    is_steering: StrictBool | None = None


class SubmitUserInputBody(RequestBody):
    owner_client_id: StrictStr | None = None
    request_id: NonNegativeInt
    response: Any = None


class InterruptBody(RequestBody):
    owner_client_id: StrictStr | None = None


class TraceStartBody(RequestBody):
    label: Annotated[str, StringConstraints(strict=True, min_length=1, max_length=120)]


class TraceMarkBody(RequestBody):
    note: Annotated[str, StringConstraints(strict=True, max_length=500)]


class ReplayBody(RequestBody):
    entry_id: NonEmptyStr
    wait_for_response: StrictBool | None = None


class StartThreadBody(RequestBody):
    agent_id: Literal["codex", "opencode"] | None = None
    cwd: StrictStr | None = None
    model: StrictStr | None = None
    model_provider: StrictStr | None = None
    personality: StrictStr | None = None
    sandbox: StrictStr | None = None
    approval_policy: StrictStr | None = None
    ephemeral: StrictBool | None = None


def parse_body(schema: type[BodyT], value: Any) -> BodyT:
    """Validate a request body, raising ``ProtocolValidationError``."""
    return parse_with_schema(schema, value, schema.__name__)


def dump_body(body: RequestBody) -> dict[str, Any]:
    """Recognized fields the client sent, under their wire names."""
    return body.model_dump(mode="json", by_alias=True, exclude_unset=True)
