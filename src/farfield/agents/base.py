"""Agent adapter contract and the value types that cross it.

Pure definitions only — no imports from the backend packages to avoid
circular dependencies. Every backend adapter (Codex, OpenCode) must satisfy
the ``AgentAdapter`` protocol.

Mandatory operations: start/stop lifecycle, enabled/connected predicates,
list/create/read threads, send message, interrupt.

Optional operations are gated by ``AgentCapabilities``: an adapter that does
not flag a capability inherits the ``BaseAgentAdapter`` default, which raises
``CapabilityUnavailableError`` instead of doing anything.
"""

from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any, Literal, Protocol, runtime_checkable

from ..errors import CapabilityUnavailableError

AgentId = Literal["codex", "opencode"]
ALL_AGENT_IDS: tuple[AgentId, ...] = ("codex", "opencode")
DEFAULT_AGENT_IDS: tuple[AgentId, ...] = ("codex",)

# ── Capabilities ─────────────────────────────────────────────────────────


class Capability(StrEnum):
    LIST_MODELS = "list_models"
    LIST_COLLABORATION_MODES = "list_collaboration_modes"
    SET_COLLABORATION_MODE = "set_collaboration_mode"
    SUBMIT_USER_INPUT = "submit_user_input"
    READ_LIVE_STATE = "read_live_state"
    READ_STREAM_EVENTS = "read_stream_events"


@dataclass(frozen=True, slots=True)
class AgentCapabilities:
    """Six independent flags, one per ``Capability``.

    A flag says the adapter implements the operation; whether it can be
    used right now also depends on the adapter being connected
    (see ``CapabilityPolicy``).
    """

    list_models: bool = False
    list_collaboration_modes: bool = False
    set_collaboration_mode: bool = False
    submit_user_input: bool = False
    read_live_state: bool = False
    read_stream_events: bool = False

    def supports(self, capability: Capability) -> bool:
        return bool(getattr(self, Capability(capability).value))

    def flagged(self) -> tuple[Capability, ...]:
        return tuple(Capability(f.name) for f in fields(self) if getattr(self, f.name))

    def to_wire(self) -> dict[str, bool]:
        """camelCase ``canXxx`` keys, as the web client expects."""
        return {
            "can" + "".join(part.title() for part in f.name.split("_")): getattr(
                self, f.name
            )
            for f in fields(self)
        }


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    """Point-in-time description of one adapter for listing endpoints."""

    id: AgentId
    label: str
    enabled: bool
    connected: bool
    capabilities: AgentCapabilities
    project_directories: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "enabled": self.enabled,
            "connected": self.connected,
            "capabilities": self.capabilities.to_wire(),
            "projectDirectories": list(self.project_directories),
        }


# ── Operation inputs ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ListThreadsInput:
    limit: int = 80
    archived: bool = False
    all: bool = False
    max_pages: int = 20
    cursor: str | None = None


@dataclass(frozen=True, slots=True)
class CreateThreadInput:
    cwd: str | None = None
    model: str | None = None
    model_provider: str | None = None
    personality: str | None = None
    sandbox: str | None = None
    approval_policy: str | None = None
    ephemeral: bool | None = None


@dataclass(frozen=True, slots=True)
class ReadThreadInput:
    thread_id: str
    include_turns: bool = True


@dataclass(frozen=True, slots=True)
class SendMessageInput:
    thread_id: str
    text: str
    owner_client_id: str | None = None
    cwd: str | None = None
    is_steering: bool = False


@dataclass(frozen=True, slots=True)
class InterruptInput:
    thread_id: str
    owner_client_id: str | None = None


@dataclass(frozen=True, slots=True)
class SetCollaborationModeInput:
    thread_id: str
    collaboration_mode: dict[str, Any]
    owner_client_id: str | None = None


@dataclass(frozen=True, slots=True)
class SubmitUserInputInput:
    thread_id: str
    request_id: int
    response: dict[str, Any]
    owner_client_id: str | None = None


# ── Operation results ────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ListThreadsResult:
    data: list[dict[str, Any]]
    next_cursor: str | None = None
    pages: int | None = None
    truncated: bool | None = None


@dataclass(frozen=True, slots=True)
class CreateThreadResult:
    thread_id: str
    thread: dict[str, Any]
    model: str | None = None
    model_provider: str | None = None
    cwd: str | None = None
    approval_policy: Any = None
    sandbox: Any = None
    reasoning_effort: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "thread": self.thread,
            "model": self.model,
            "modelProvider": self.model_provider,
            "cwd": self.cwd,
            "approvalPolicy": self.approval_policy,
            "sandbox": self.sandbox,
            "reasoningEffort": self.reasoning_effort,
        }


@dataclass(frozen=True, slots=True)
class ReadThreadResult:
    thread: dict[str, Any]


@dataclass(frozen=True, slots=True)
class OwnerAck:
    """Acknowledgement of an operation routed to a thread's owner client."""

    owner_client_id: str
    request_id: int | None = None


@dataclass(frozen=True, slots=True)
class LiveStateResult:
    owner_client_id: str | None
    conversation_state: dict[str, Any] | None
    live_state_error: str | None = None


@dataclass(frozen=True, slots=True)
class StreamEventsResult:
    owner_client_id: str | None
    events: list[dict[str, Any]] = field(default_factory=list)


# ── Adapter protocol ─────────────────────────────────────────────────────


@runtime_checkable
class AgentAdapter(Protocol):
    """Protocol every backend adapter must satisfy."""

    @property
    def id(self) -> AgentId: ...

    @property
    def label(self) -> str: ...

    @property
    def capabilities(self) -> AgentCapabilities: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def is_enabled(self) -> bool: ...

    def is_connected(self) -> bool: ...

    async def list_threads(self, params: ListThreadsInput) -> ListThreadsResult: ...

    async def create_thread(self, params: CreateThreadInput) -> CreateThreadResult: ...

    async def read_thread(self, params: ReadThreadInput) -> ReadThreadResult: ...

    async def send_message(self, params: SendMessageInput) -> None: ...

    async def interrupt(self, params: InterruptInput) -> None: ...

    async def list_models(self, limit: int) -> dict[str, Any]: ...

    async def list_collaboration_modes(self) -> dict[str, Any]: ...

    async def set_collaboration_mode(
        self, params: SetCollaborationModeInput
    ) -> OwnerAck: ...

    async def submit_user_input(self, params: SubmitUserInputInput) -> OwnerAck: ...

    async def read_live_state(self, thread_id: str) -> LiveStateResult: ...

    async def read_stream_events(
        self, thread_id: str, limit: int
    ) -> StreamEventsResult: ...

    async def list_project_directories(self) -> list[str]: ...


class BaseAgentAdapter:
    """Shared defaults: optional operations refuse with a typed error.

    Subclasses override the operations they flag in ``capabilities``.
    ``list_project_directories`` has no flag and defaults to an empty list.
    """

    id: AgentId
    label: str
    capabilities: AgentCapabilities = AgentCapabilities()

    def _unsupported(self, capability: Capability) -> CapabilityUnavailableError:
        return CapabilityUnavailableError(self.id, capability.value)

    async def list_models(self, limit: int) -> dict[str, Any]:
        raise self._unsupported(Capability.LIST_MODELS)

    async def list_collaboration_modes(self) -> dict[str, Any]:
        raise self._unsupported(Capability.LIST_COLLABORATION_MODES)

    async def set_collaboration_mode(self, params: SetCollaborationModeInput) -> OwnerAck:
        raise self._unsupported(Capability.SET_COLLABORATION_MODE)

    async def submit_user_input(self, params: SubmitUserInputInput) -> OwnerAck:
        raise self._unsupported(Capability.SUBMIT_USER_INPUT)

    async def read_live_state(self, thread_id: str) -> LiveStateResult:
        raise self._unsupported(Capability.READ_LIVE_STATE)

    async def read_stream_events(self, thread_id: str, limit: int) -> StreamEventsResult:
        raise self._unsupported(Capability.READ_STREAM_EVENTS)

    async def list_project_directories(self) -> list[str]:
        return []


def require_capability(adapter: AgentAdapter, capability: Capability) -> None:
    """Raise ``CapabilityUnavailableError`` unless *adapter* flags *capability*."""
    if not adapter.capabilities.supports(capability):
        raise CapabilityUnavailableError(adapter.id, Capability(capability).value)
