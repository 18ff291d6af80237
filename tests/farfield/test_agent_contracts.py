"""Contract tests for the AgentAdapter protocol and capability helpers.

StubAdapter is a minimal conforming adapter shared by the registry and
dispatch tests.
"""

from dataclasses import FrozenInstanceError
from typing import Any

import pytest

from farfield.agents.adapters.codex import CodexAgentAdapter, CodexAgentOptions
from farfield.agents.adapters.opencode import OpenCodeAgentAdapter
from farfield.agents.base import (
    AgentAdapter,
    AgentCapabilities,
    AgentDescriptor,
    BaseAgentAdapter,
    Capability,
    CreateThreadInput,
    CreateThreadResult,
    InterruptInput,
    ListThreadsInput,
    ListThreadsResult,
    ReadThreadInput,
    ReadThreadResult,
    SendMessageInput,
    SetCollaborationModeInput,
    SubmitUserInputInput,
    require_capability,
)
from farfield.agents.policy import CapabilityPolicy
from farfield.errors import CapabilityUnavailableError

ALL_CAPABILITIES = AgentCapabilities(
    list_models=True,
    list_collaboration_modes=True,
    set_collaboration_mode=True,
    submit_user_input=True,
    read_live_state=True,
    read_stream_events=True,
)

# ── Stub adapter (minimal conforming implementation) ─────────────────────


class StubAdapter(BaseAgentAdapter):
    """In-memory adapter with switchable enabled/connected state.

    Lifecycle calls are appended to ``calls`` (shared between stubs when a
    list is passed in) so ordering across adapters can be asserted.
    """

    def __init__(
        self,
        agent_id: str = "codex",
        *,
        enabled: bool = True,
        connected: bool = True,
        capabilities: AgentCapabilities = AgentCapabilities(),
        threads: list[dict[str, Any]] | None = None,
        calls: list[str] | None = None,
        fail_on: str | None = None,
    ) -> None:
        self.id = agent_id  # type: ignore[assignment]
        self.label = agent_id.title()
        self.capabilities = capabilities
        self.enabled = enabled
        self.connected = connected
        self.threads = threads if threads is not None else []
        self.calls = calls if calls is not None else []
        self.fail_on = fail_on
        self.sent: list[SendMessageInput] = []
        self.interrupted: list[InterruptInput] = []
        self.created: list[CreateThreadInput] = []
        self.directories: list[str] = []

    def _record(self, event: str) -> None:
        self.calls.append(f"{event}:{self.id}")
        if self.fail_on == event:
            raise RuntimeError(f"{event} failed for {self.id}")

    async def start(self) -> None:
        self._record("start")

    async def stop(self) -> None:
        self._record("stop")

    def is_enabled(self) -> bool:
        return self.enabled

    def is_connected(self) -> bool:
        return self.connected

    async def list_threads(self, params: ListThreadsInput) -> ListThreadsResult:
        self._record("list_threads")
        return ListThreadsResult(data=[dict(t) for t in self.threads])

    async def create_thread(self, params: CreateThreadInput) -> CreateThreadResult:
        self.created.append(params)
        thread_id = f"{self.id}-thread-{len(self.created)}"
        return CreateThreadResult(thread_id=thread_id, thread={"id": thread_id}, cwd=params.cwd)

    async def read_thread(self, params: ReadThreadInput) -> ReadThreadResult:
        return ReadThreadResult(thread={"id": params.thread_id, "turns": []})

    async def send_message(self, params: SendMessageInput) -> None:
        self.sent.append(params)

    async def interrupt(self, params: InterruptInput) -> None:
        self.interrupted.append(params)

    async def list_models(self, limit: int) -> dict[str, Any]:
        if not self.capabilities.list_models:
            return await super().list_models(limit)
        return {"data": [{"id": f"{self.id}-model"}], "nextCursor": None}

    async def list_project_directories(self) -> list[str]:
        self._record("list_project_directories")
        return list(self.directories)


# ── Protocol conformance ─────────────────────────────────────────────────


def _codex() -> CodexAgentAdapter:
    return CodexAgentAdapter(
        CodexAgentOptions(
            app_executable="codex",
            socket_path="/tmp/ipc.sock",
            workspace_dir="/tmp",
            user_agent="farfield/test",
        )
    )


@pytest.mark.parametrize(
    "factory",
    [StubAdapter, _codex, lambda: OpenCodeAgentAdapter(url="http://127.0.0.1:1")],
    ids=["stub", "codex", "opencode"],
)
class TestAdapterContract:
    def test_is_agent_adapter(self, factory) -> None:
        assert isinstance(factory(), AgentAdapter)

    def test_id_in_known_set(self, factory) -> None:
        assert factory().id in ("codex", "opencode")

    def test_label_non_empty(self, factory) -> None:
        assert factory().label

    def test_capabilities_type(self, factory) -> None:
        assert isinstance(factory().capabilities, AgentCapabilities)

    def test_not_connected_before_start(self, factory) -> None:
        adapter = factory()
        if isinstance(adapter, StubAdapter):
            pytest.skip("stub starts connected")
        assert adapter.is_connected() is False


class TestKnownCapabilities:
    def test_codex_flags_everything(self) -> None:
        assert _codex().capabilities == ALL_CAPABILITIES

    def test_opencode_flags_nothing(self) -> None:
        adapter = OpenCodeAgentAdapter(url="http://127.0.0.1:1")
        assert adapter.capabilities.flagged() == ()


# ── Capabilities ─────────────────────────────────────────────────────────


class TestAgentCapabilities:
    def test_defaults_all_false(self) -> None:
        caps = AgentCapabilities()
        assert all(not caps.supports(c) for c in Capability)

    def test_supports_accepts_string_value(self) -> None:
        caps = AgentCapabilities(read_live_state=True)
        assert caps.supports("read_live_state") is True  # type: ignore[arg-type]

    def test_flagged_order(self) -> None:
        caps = AgentCapabilities(read_stream_events=True, list_models=True)
        assert caps.flagged() == (Capability.LIST_MODELS, Capability.READ_STREAM_EVENTS)

    def test_to_wire_keys(self) -> None:
        assert ALL_CAPABILITIES.to_wire() == {
            "canListModels": True,
            "canListCollaborationModes": True,
            "canSetCollaborationMode": True,
            "canSubmitUserInput": True,
            "canReadLiveState": True,
            "canReadStreamEvents": True,
        }

    def test_frozen(self) -> None:
        caps = AgentCapabilities()
        with pytest.raises(FrozenInstanceError):
            caps.list_models = True  # type: ignore[misc]

    def test_descriptor_to_wire(self) -> None:
        descriptor = AgentDescriptor(
            id="opencode",
            label="OpenCode",
            enabled=True,
            connected=False,
            capabilities=AgentCapabilities(),
            project_directories=("/a",),
        )
        wire = descriptor.to_wire()
        assert wire["projectDirectories"] == ["/a"]
        assert wire["capabilities"]["canReadLiveState"] is False


class TestRequireCapability:
    def test_passes_when_flagged(self) -> None:
        require_capability(StubAdapter(capabilities=ALL_CAPABILITIES), Capability.LIST_MODELS)

    def test_raises_when_not_flagged(self) -> None:
        with pytest.raises(CapabilityUnavailableError) as exc_info:
            require_capability(StubAdapter("opencode"), Capability.SUBMIT_USER_INPUT)
        assert exc_info.value.agent_id == "opencode"
        assert exc_info.value.capability == "submit_user_input"


class TestBaseAgentAdapterDefaults:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("call", "capability"),
        [
            (lambda a: a.list_models(10), "list_models"),
            (lambda a: a.list_collaboration_modes(), "list_collaboration_modes"),
            (
                lambda a: a.set_collaboration_mode(
                    SetCollaborationModeInput("thr", {"mode": "plan"})
                ),
                "set_collaboration_mode",
            ),
            (
                lambda a: a.submit_user_input(SubmitUserInputInput("thr", 1, {})),
                "submit_user_input",
            ),
            (lambda a: a.read_live_state("thr"), "read_live_state"),
            (lambda a: a.read_stream_events("thr", 5), "read_stream_events"),
        ],
    )
    async def test_optional_operations_refuse(self, call, capability: str) -> None:
        with pytest.raises(CapabilityUnavailableError, match=capability):
            await call(StubAdapter())

    @pytest.mark.asyncio
    async def test_project_directories_default_empty(self) -> None:
        assert await BaseAgentAdapter.list_project_directories(StubAdapter()) == []


class TestCapabilityPolicy:
    def test_available_requires_connection(self) -> None:
        policy = CapabilityPolicy(StubAdapter(capabilities=ALL_CAPABILITIES, connected=False))
        assert policy.is_flagged(Capability.READ_LIVE_STATE) is True
        assert policy.is_available(Capability.READ_LIVE_STATE) is False
        assert policy.available() == ()

    def test_eligible_requires_enabled(self) -> None:
        policy = CapabilityPolicy(StubAdapter(capabilities=ALL_CAPABILITIES, enabled=False))
        assert policy.is_available(Capability.LIST_MODELS) is True
        assert policy.is_eligible(Capability.LIST_MODELS) is False

    def test_available_lists_flagged(self) -> None:
        policy = CapabilityPolicy(StubAdapter(capabilities=AgentCapabilities(list_models=True)))
        assert policy.available() == (Capability.LIST_MODELS,)
