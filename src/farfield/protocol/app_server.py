"""Result shapes returned by the Codex app-server JSON-RPC methods."""

from typing import Any

from pydantic import BaseModel, ConfigDict

from .common import NonEmptyStr, NonNegativeInt, StrictBool, StrictStr, WireModel
from .thread import ThreadConversationState


class ThreadListItem(WireModel):
    id: NonEmptyStr
    preview: StrictStr
    model_provider: StrictStr | None = None
    created_at: NonNegativeInt
    updated_at: NonNegativeInt
    path: StrictStr | None = None
    cwd: StrictStr | None = None
    cli_version: StrictStr | None = None
    source: StrictStr | None = None
    git_info: Any = None
    turns: list[Any] | None = None


class ListThreadsResponse(WireModel):
    data: list[ThreadListItem]
    next_cursor: StrictStr | None = None
    pages: NonNegativeInt | None = None
    truncated: StrictBool | None = None


class ReadThreadResponse(WireModel):
    thread: ThreadConversationState


class StartThreadResponse(WireModel):
    thread: ThreadListItem
    model: StrictStr | None = None
    model_provider: StrictStr | None = None
    cwd: StrictStr | None = None
    approval_policy: Any = None
    sandbox: Any = None
    reasoning_effort: StrictStr | None = None


class ModelInfo(WireModel):
    id: NonEmptyStr
    display_name: StrictStr | None = None
    provider_id: StrictStr | None = None
    provider_name: StrictStr | None = None
    context_window: NonNegativeInt | None = None
    max_output_tokens: NonNegativeInt | None = None


class ListModelsResponse(WireModel):
    data: list[ModelInfo]
    next_cursor: StrictStr | None = None


class CollaborationModeListItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: StrictStr
    mode: NonEmptyStr
    model: NonEmptyStr | None
    reasoning_effort: NonEmptyStr | None
    developer_instructions: StrictStr | None


class CollaborationModeListResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[CollaborationModeListItem]
