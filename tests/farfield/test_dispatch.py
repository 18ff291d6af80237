"""Tests for AgentDispatcher — thread routing, capability gating, merging."""

import pytest

from farfield.agents.base import AgentCapabilities, ListThreadsInput
from farfield.agents.registry import AgentRegistry
from farfield.dispatch import AgentDispatcher
from farfield.errors import (
    AgentUnavailableError,
    CapabilityUnavailableError,
    ThreadNotRegisteredError,
)
from farfield.http_schemas import (
    InterruptBody,
    SendMessageBody,
    SetModeBody,
    StartThreadBody,
    SubmitUserInputBody,
    parse_body,
)
from test_agent_contracts import ALL_CAPABILITIES, StubAdapter


def _dispatcher(*adapters: StubAdapter, **kwargs) -> AgentDispatcher:
    return AgentDispatcher(AgentRegistry(adapters), **kwargs)


# ── Thread routing ───────────────────────────────────────────────────────


class TestThreadRouting:
    def test_unregistered_thread(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex"))
        with pytest.raises(ThreadNotRegisteredError, match="thr_x"):
            dispatcher.resolve_adapter_for_thread("thr_x")

    def test_routes_to_owner(self) -> None:
        codex, opencode = StubAdapter("codex"), StubAdapter("opencode")
        dispatcher = _dispatcher(codex, opencode)
        dispatcher.thread_index.register("ses_1", "opencode")
        assert dispatcher.resolve_adapter_for_thread("ses_1") is opencode

    def test_disabled_owner(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex", enabled=False))
        dispatcher.thread_index.register("thr_1", "codex")
        with pytest.raises(AgentUnavailableError, match="not enabled"):
            dispatcher.resolve_adapter_for_thread("thr_1")

    def test_disconnected_owner(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex", connected=False))
        dispatcher.thread_index.register("thr_1", "codex")
        with pytest.raises(AgentUnavailableError, match="not connected"):
            dispatcher.resolve_adapter_for_thread("thr_1")

    def test_owner_missing_from_registry(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex"))
        dispatcher.thread_index.register("ses_1", "opencode")
        with pytest.raises(AgentUnavailableError):
            dispatcher.resolve_adapter_for_thread("ses_1")

    @pytest.mark.asyncio
    async def test_send_message_routed(self) -> None:
        codex = StubAdapter("codex")
        dispatcher = _dispatcher(codex)
        dispatcher.thread_index.register("thr_1", "codex")
        body = parse_body(SendMessageBody, {"text": "hello", "ownerClientId": ""})
        await dispatcher.send_message("thr_1", body)
        assert codex.sent[0].text == "hello"
        assert codex.sent[0].owner_client_id is None
        assert codex.sent[0].is_steering is False

    @pytest.mark.asyncio
    async def test_interrupt_routed(self) -> None:
        codex = StubAdapter("codex")
        dispatcher = _dispatcher(codex)
        dispatcher.thread_index.register("thr_1", "codex")
        await dispatcher.interrupt("thr_1", parse_body(InterruptBody, {"ownerClientId": "c1"}))
        assert codex.interrupted[0].owner_client_id == "c1"

    @pytest.mark.asyncio
    async def test_read_thread(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex"))
        dispatcher.thread_index.register("thr_1", "codex")
        result = await dispatcher.read_thread("thr_1")
        assert result.thread["id"] == "thr_1"


# ── Capability gating ────────────────────────────────────────────────────


class TestCapabilityGating:
    @pytest.mark.asyncio
    async def test_live_state_requires_capability(self) -> None:
        dispatcher = _dispatcher(StubAdapter("opencode"))
        dispatcher.thread_index.register("ses_1", "opencode")
        with pytest.raises(CapabilityUnavailableError, match="read_live_state"):
            await dispatcher.read_live_state("ses_1")

    @pytest.mark.asyncio
    async def test_stream_events_requires_capability(self) -> None:
        dispatcher = _dispatcher(StubAdapter("opencode"))
        dispatcher.thread_index.register("ses_1", "opencode")
        with pytest.raises(CapabilityUnavailableError):
            await dispatcher.read_stream_events("ses_1")

    @pytest.mark.asyncio
    async def test_set_mode_requires_capability(self) -> None:
        dispatcher = _dispatcher(StubAdapter("opencode"))
        dispatcher.thread_index.register("ses_1", "opencode")
        body = parse_body(SetModeBody, {"collaborationMode": {"mode": "plan", "settings": {}}})
        with pytest.raises(CapabilityUnavailableError, match="set_collaboration_mode"):
            await dispatcher.set_collaboration_mode("ses_1", body)

    @pytest.mark.asyncio
    async def test_submit_user_input_requires_capability(self) -> None:
        dispatcher = _dispatcher(StubAdapter("opencode"))
        dispatcher.thread_index.register("ses_1", "opencode")
        body = parse_body(SubmitUserInputBody, {"requestId": 1, "response": {}})
        with pytest.raises(CapabilityUnavailableError, match="submit_user_input"):
            await dispatcher.submit_user_input("ses_1", body)

    @pytest.mark.asyncio
    async def test_list_models_first_capable_connected(self) -> None:
        dispatcher = _dispatcher(
            StubAdapter("opencode"),
            StubAdapter("codex", capabilities=AgentCapabilities(list_models=True)),
        )
        result = await dispatcher.list_models()
        assert result["data"] == [{"id": "codex-model"}]

    @pytest.mark.asyncio
    async def test_list_models_empty_when_none_qualify(self) -> None:
        dispatcher = _dispatcher(
            StubAdapter("codex", capabilities=ALL_CAPABILITIES, connected=False)
        )
        assert await dispatcher.list_models() == {"data": [], "nextCursor": None}

    @pytest.mark.asyncio
    async def test_collaboration_modes_empty_when_none_qualify(self) -> None:
        dispatcher = _dispatcher(StubAdapter("opencode"))
        assert await dispatcher.list_collaboration_modes() == {"data": []}


# ── Agent-level operations ───────────────────────────────────────────────


class TestListThreads:
    @pytest.mark.asyncio
    async def test_merges_tags_and_registers(self) -> None:
        dispatcher = _dispatcher(
            StubAdapter("codex", threads=[{"id": "thr_1"}]),
            StubAdapter("opencode", threads=[{"id": "ses_1"}]),
        )
        result = await dispatcher.list_threads(ListThreadsInput())
        assert result.data == [
            {"id": "thr_1", "agentId": "codex"},
            {"id": "ses_1", "agentId": "opencode"},
        ]
        assert dispatcher.thread_index.resolve("ses_1") == "opencode"

    @pytest.mark.asyncio
    async def test_failing_agent_skipped(self) -> None:
        dispatcher = _dispatcher(
            StubAdapter("codex", fail_on="list_threads"),
            StubAdapter("opencode", threads=[{"id": "ses_1"}]),
        )
        result = await dispatcher.list_threads(ListThreadsInput())
        assert [t["id"] for t in result.data] == ["ses_1"]

    @pytest.mark.asyncio
    async def test_disabled_agent_not_listed(self) -> None:
        calls: list[str] = []
        dispatcher = _dispatcher(StubAdapter("codex", enabled=False, calls=calls))
        result = await dispatcher.list_threads(ListThreadsInput())
        assert result.data == []
        assert calls == []


class TestCreateThread:
    @pytest.mark.asyncio
    async def test_default_agent_and_workspace(self) -> None:
        codex = StubAdapter("codex")
        dispatcher = _dispatcher(codex, default_workspace="/work")
        created = await dispatcher.create_thread(parse_body(StartThreadBody, {}))
        assert created.agent_id == "codex"
        assert codex.created[0].cwd == "/work"
        assert dispatcher.thread_index.resolve(created.result.thread_id) == "codex"

    @pytest.mark.asyncio
    async def test_requested_agent(self) -> None:
        opencode = StubAdapter("opencode")
        dispatcher = _dispatcher(StubAdapter("codex"), opencode, default_workspace="/work")
        created = await dispatcher.create_thread(
            parse_body(StartThreadBody, {"agentId": "opencode"})
        )
        assert created.agent_id == "opencode"
        assert opencode.created[0].cwd is None

    @pytest.mark.asyncio
    async def test_requested_agent_disabled(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex"), StubAdapter("opencode", enabled=False))
        with pytest.raises(AgentUnavailableError, match="opencode is not enabled"):
            await dispatcher.create_thread(parse_body(StartThreadBody, {"agentId": "opencode"}))

    @pytest.mark.asyncio
    async def test_no_enabled_agent(self) -> None:
        dispatcher = _dispatcher(StubAdapter("codex", enabled=False))
        with pytest.raises(AgentUnavailableError, match="No enabled agent"):
            await dispatcher.create_thread(parse_body(StartThreadBody, {}))


class TestDescribeAgents:
    @pytest.mark.asyncio
    async def test_descriptors_and_default(self) -> None:
        opencode = StubAdapter("opencode")
        opencode.directories = ["/a", "/b"]
        dispatcher = _dispatcher(StubAdapter("codex", capabilities=ALL_CAPABILITIES), opencode)
        overview = await dispatcher.describe_agents()
        assert overview.default_agent_id == "codex"
        assert [a.id for a in overview.agents] == ["codex", "opencode"]
        assert overview.agents[1].project_directories == ("/a", "/b")

    @pytest.mark.asyncio
    async def test_disconnected_agent_lists_no_directories(self) -> None:
        calls: list[str] = []
        opencode = StubAdapter("opencode", connected=False, calls=calls)
        opencode.directories = ["/a"]
        overview = await _dispatcher(opencode).describe_agents()
        assert overview.agents[0].project_directories == ()
        assert calls == []

    @pytest.mark.asyncio
    async def test_directory_failure_gives_empty_list(self) -> None:
        opencode = StubAdapter("opencode", fail_on="list_project_directories")
        overview = await _dispatcher(opencode).describe_agents()
        assert overview.agents[0].project_directories == ()

    @pytest.mark.asyncio
    async def test_default_falls_back_to_configured(self) -> None:
        dispatcher = _dispatcher(
            StubAdapter("codex", enabled=False), configured_agent_ids=("codex",)
        )
        overview = await dispatcher.describe_agents()
        assert overview.default_agent_id == "codex"
