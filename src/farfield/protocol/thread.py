"""Thread conversation state and the stream-change events that update it.

The conversation state is an open shape: only the fields the reducer and
dispatch layer rely on are typed (``id``, ``turns``, ``requests`` and a few
display fields), everything else is carried through untouched.

Stream changes:
  - ThreadStreamSnapshotChange: full replacement of the conversation state
  - ThreadStreamPatchesChange: ordered add/replace/remove edits by path
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .common import (
    NonEmptyStr,
    NonNegativeInt,
    StrictBool,
    StrictStr,
    WireModel,
    parse_with_schema,
)

# ── Collaboration mode ───────────────────────────────────────────────────


class CollaborationModeSettings(BaseModel):
    """Settings block — snake_case on the wire, so no camelCase aliases."""

    model_config = ConfigDict(extra="allow")

    model: StrictStr | None = None
    reasoning_effort: StrictStr | None = None
    developer_instructions: StrictStr | None = None


class CollaborationMode(BaseModel):
    model_config = ConfigDict(extra="allow")

    mode: NonEmptyStr
    settings: CollaborationModeSettings


# ── Turns and pending requests ───────────────────────────────────────────


class InputPart(WireModel):
    type: Literal["text", "image"]
    text: StrictStr | None = None
    url: StrictStr | None = None


class TurnStartParams(WireModel):
    thread_id: NonEmptyStr
    input: list[InputPart]
    cwd: NonEmptyStr | None = None
    model: StrictStr | None = None
    effort: StrictStr | None = None
    approval_policy: NonEmptyStr | None = None
    summary: StrictStr | None = None
    attachments: list[Any] | None = None
    collaboration_mode: CollaborationMode | None = None


class TurnItem(WireModel):
    """One item inside a turn (user message, agent message, command, ...)."""

    type: NonEmptyStr
    id: NonEmptyStr | None = None


class ThreadTurn(WireModel):
    params: TurnStartParams | None = None
    turn_id: NonEmptyStr | None = None
    id: NonEmptyStr | None = None
    status: NonEmptyStr
    items: list[TurnItem]


class UserInputOption(WireModel):
    label: StrictStr
    description: StrictStr


class UserInputQuestion(WireModel):
    id: NonEmptyStr
    header: StrictStr
    question: StrictStr
    is_other: StrictBool
    is_secret: StrictBool
    options: list[UserInputOption]


class UserInputRequestParams(WireModel):
    thread_id: NonEmptyStr
    turn_id: NonEmptyStr
    item_id: NonEmptyStr
    questions: list[UserInputQuestion]


class UserInputRequest(WireModel):
    method: Literal["item/tool/requestUserInput"]
    id: NonNegativeInt
    params: UserInputRequestParams
    completed: StrictBool | None = None


class ThreadConversationState(WireModel):
    id: NonEmptyStr
    turns: list[ThreadTurn]
    requests: list[UserInputRequest] = Field(default_factory=list)
    created_at: NonNegativeInt | None = None
    updated_at: NonNegativeInt | None = None
    title: StrictStr | None = None
    latest_model: StrictStr | None = None
    latest_reasoning_effort: StrictStr | None = None
    latest_collaboration_mode: CollaborationMode | None = None
    has_unread_turn: StrictBool | None = None
    cwd: StrictStr | None = None

    def to_state_dict(self) -> dict[str, Any]:
        """Plain JSON-like dict used by the live-state reducer."""
        state = self.to_wire()
        state.setdefault("requests", [])
        return state


# ── Stream changes ───────────────────────────────────────────────────────

PatchPathSegment = NonNegativeInt | NonEmptyStr


class ThreadStreamPatch(WireModel):
    op: Literal["add", "replace", "remove"]
    path: Annotated[list[PatchPathSegment], Field(min_length=1)]
    value: Any = None

    @model_validator(mode="after")
    def _value_matches_op(self) -> "ThreadStreamPatch":
        has_value = "value" in self.model_fields_set
        if self.op == "remove" and has_value:
            raise ValueError("remove patches must not include value")
        if self.op != "remove" and not has_value:
            raise ValueError(f"{self.op} patches must include value")
        return self


class ThreadStreamSnapshotChange(WireModel):
    type: Literal["snapshot"]
    conversation_state: ThreadConversationState


class ThreadStreamPatchesChange(WireModel):
    type: Literal["patches"]
    patches: list[ThreadStreamPatch]


ThreadStreamChange = Annotated[
    ThreadStreamSnapshotChange | ThreadStreamPatchesChange,
    Field(discriminator="type"),
]


class ThreadStreamStateChangedParams(WireModel):
    conversation_id: NonEmptyStr
    change: ThreadStreamChange
    version: NonNegativeInt
    type: Literal["thread-stream-state-changed"]


# ── User input responses ─────────────────────────────────────────────────


class UserInputAnswer(BaseModel):
    model_config = ConfigDict(extra="allow")

    answers: list[NonEmptyStr]


class UserInputResponsePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    answers: dict[str, UserInputAnswer]


def parse_thread_conversation_state(value: Any) -> ThreadConversationState:
    return parse_with_schema(ThreadConversationState, value, "ThreadConversationState")


def parse_thread_stream_state_changed_params(
    value: Any,
) -> ThreadStreamStateChangedParams:
    return parse_with_schema(
        ThreadStreamStateChangedParams, value, "ThreadStreamStateChangedParams"
    )


def parse_user_input_response_payload(value: Any) -> UserInputResponsePayload:
    return parse_with_schema(
        UserInputResponsePayload, value, "UserInputResponsePayload"
    )
