"""Agent dispatcher — routes every operation to the adapter that should run it.

Routing rules:
  - thread operations go to the agent that owns the thread (``ThreadIndex``);
    an unknown thread raises ``ThreadNotRegisteredError`` and a disabled or
    disconnected owner raises ``AgentUnavailableError``.
  - capability-gated thread operations also require the owner to flag the
    capability (``CapabilityUnavailableError`` otherwise).
  - model / collaboration-mode listings go to the first enabled, connected
    adapter that flags the capability; with none, the listing is empty.
  - thread creation uses the requested agent, else the default agent.

The dispatcher knows nothing about HTTP; it takes parsed request bodies
from ``farfield.http_schemas`` and returns plain results.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from .agents.base import (
    AgentAdapter,
    AgentDescriptor,
    AgentId,
    Capability,
    CreateThreadInput,
    CreateThreadResult,
    InterruptInput,
    ListThreadsInput,
    ListThreadsResult,
    LiveStateResult,
    OwnerAck,
    ReadThreadInput,
    ReadThreadResult,
    SendMessageInput,
    SetCollaborationModeInput,
    StreamEventsResult,
    SubmitUserInputInput,
    require_capability,
)
from .agents.registry import AgentRegistry
from .agents.thread_index import ThreadIndex
from .errors import AgentUnavailableError, ThreadNotRegisteredError
from .http_schemas import (
    InterruptBody,
    SendMessageBody,
    SetModeBody,
    StartThreadBody,
    SubmitUserInputBody,
)

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class AgentsOverview:
    agents: list[AgentDescriptor]
    default_agent_id: AgentId | None


@dataclass(frozen=True, slots=True)
class CreatedThread:
    agent_id: AgentId
    result: CreateThreadResult


class AgentDispatcher:
    def __init__(
        self,
        registry: AgentRegistry,
        thread_index: ThreadIndex | None = None,
        *,
        configured_agent_ids: tuple[AgentId, ...] = (),
        default_workspace: str | None = None,
    ) -> None:
        self.registry = registry
        self.thread_index = thread_index or ThreadIndex()
        self._configured_agent_ids = configured_agent_ids
        self._default_workspace = default_workspace

    # ── Resolution ───────────────────────────────────────────────────────

    def resolve_adapter_for_thread(self, thread_id: str) -> AgentAdapter:
        agent_id = self.thread_index.resolve(thread_id)
        if agent_id is None:
            raise ThreadNotRegisteredError(thread_id)

        adapter = self.registry.get_adapter(agent_id)
        if adapter is None or not adapter.is_enabled():
            raise AgentUnavailableError(
                agent_id, f"Agent {agent_id} is not enabled for thread {thread_id}."
            )
        if not adapter.is_connected():
            raise AgentUnavailableError(
                agent_id, f"Agent {agent_id} is not connected for thread {thread_id}."
            )
        return adapter

    def resolve_create_thread_adapter(self, agent_id: AgentId | None) -> AgentAdapter:
        if agent_id is not None:
            adapter = self.registry.get_adapter(agent_id)
            if adapter is None or not adapter.is_enabled():
                raise AgentUnavailableError(
                    agent_id, f"Requested agent {agent_id} is not enabled."
                )
            return adapter

        default_id = self.registry.resolve_default_agent_id()
        adapter = self.registry.get_adapter(default_id) if default_id else None
        if adapter is None:
            raise AgentUnavailableError(None, "No enabled agent is available.")
        return adapter

    # ── Agent-level operations ───────────────────────────────────────────

    async def describe_agents(self) -> AgentsOverview:
        descriptors = [await self._describe(a) for a in self.registry.list_adapters()]
        default_id = self.registry.resolve_default_agent_id()
        if default_id is None and self._configured_agent_ids:
            default_id = self._configured_agent_ids[0]
        return AgentsOverview(agents=descriptors, default_agent_id=default_id)

    async def _describe(self, adapter: AgentAdapter) -> AgentDescriptor:
        directories: list[str] = []
        if adapter.is_connected():
            try:
                directories = await adapter.list_project_directories()
            except Exception as e:
                logger.warning(
                    "Listing project directories failed for %s: %s", adapter.id, e
                )
        return AgentDescriptor(
            id=adapter.id,
            label=adapter.label,
            enabled=adapter.is_enabled(),
            connected=adapter.is_connected(),
            capabilities=adapter.capabilities,
            project_directories=tuple(directories),
        )

    async def create_thread(self, body: StartThreadBody) -> CreatedThread:
        adapter = self.resolve_create_thread_adapter(body.agent_id)
        cwd = body.cwd or (self._default_workspace if adapter.id == "codex" else None)
        result = await adapter.create_thread(
            CreateThreadInput(
                cwd=cwd,
                model=body.model or None,
                model_provider=body.model_provider or None,
                personality=body.personality or None,
                sandbox=body.sandbox or None,
                approval_policy=body.approval_policy or None,
                ephemeral=body.ephemeral,
            )
        )
        self.thread_index.register(result.thread_id, adapter.id)
        logger.info("Created thread %s on %s", result.thread_id, adapter.id)
        return CreatedThread(agent_id=adapter.id, result=result)

    async def list_threads(self, params: ListThreadsInput) -> ListThreadsResult:
        """Merge thread lists of all enabled agents, tagging each with ``agentId``.

        Every listed thread is registered in the index. An agent whose listing
        fails is logged and skipped. ``next_cursor`` is the first one any
        agent returned.
        """
        merged: list[dict[str, Any]] = []
        next_cursor: str | None = None
        for adapter in self.registry.list_enabled():
            try:
                result = await adapter.list_threads(params)
            except Exception as e:
                logger.warning("Listing threads failed for %s: %s", adapter.id, e)
                continue
            if next_cursor is None and result.next_cursor:
                next_cursor = result.next_cursor
            for thread in result.data:
                self.thread_index.register(thread["id"], adapter.id)
                merged.append({**thread, "agentId": adapter.id})
        return ListThreadsResult(data=merged, next_cursor=next_cursor)

    async def list_models(self, limit: int = 100) -> dict[str, Any]:
        adapter = self.registry.resolve_first_with_capability(Capability.LIST_MODELS)
        if adapter is None:
            return {"data": [], "nextCursor": None}
        return await adapter.list_models(limit)

    async def list_collaboration_modes(self) -> dict[str, Any]:
        adapter = self.registry.resolve_first_with_capability(
            Capability.LIST_COLLABORATION_MODES
        )
        if adapter is None:
            return {"data": []}
        return await adapter.list_collaboration_modes()

    # ── Thread operations ────────────────────────────────────────────────

    async def read_thread(
        self, thread_id: str, include_turns: bool = True
    ) -> ReadThreadResult:
        adapter = self.resolve_adapter_for_thread(thread_id)
        return await adapter.read_thread(ReadThreadInput(thread_id, include_turns))

    async def read_live_state(self, thread_id: str) -> LiveStateResult:
        adapter = self.resolve_adapter_for_thread(thread_id)
        require_capability(adapter, Capability.READ_LIVE_STATE)
        return await adapter.read_live_state(thread_id)

    async def read_stream_events(
        self, thread_id: str, limit: int = 60
    ) -> StreamEventsResult:
        adapter = self.resolve_adapter_for_thread(thread_id)
        require_capability(adapter, Capability.READ_STREAM_EVENTS)
        return await adapter.read_stream_events(thread_id, limit)

    async def send_message(self, thread_id: str, body: SendMessageBody) -> None:
        adapter = self.resolve_adapter_for_thread(thread_id)
        await adapter.send_message(
            SendMessageInput(
                thread_id=thread_id,
                text=body.text,
                owner_client_id=body.owner_client_id or None,
                cwd=body.cwd or None,
                is_steering=bool(body.is_steering),
            )
        )

    async def set_collaboration_mode(self, thread_id: str, body: SetModeBody) -> OwnerAck:
        adapter = self.resolve_adapter_for_thread(thread_id)
        require_capability(adapter, Capability.SET_COLLABORATION_MODE)
        return await adapter.set_collaboration_mode(
            SetCollaborationModeInput(
                thread_id=thread_id,
                collaboration_mode=body.collaboration_mode.model_dump(mode="json"),
                owner_client_id=body.owner_client_id or None,
            )
        )

    async def submit_user_input(
        self, thread_id: str, body: SubmitUserInputBody
    ) -> OwnerAck:
        adapter = self.resolve_adapter_for_thread(thread_id)
        require_capability(adapter, Capability.SUBMIT_USER_INPUT)
        return await adapter.submit_user_input(
            SubmitUserInputInput(
                thread_id=thread_id,
                request_id=body.request_id,
                response=body.response,
                owner_client_id=body.owner_client_id or None,
            )
        )

    async def interrupt(self, thread_id: str, body: InterruptBody) -> None:
        adapter = self.resolve_adapter_for_thread(thread_id)
        await adapter.interrupt(
            InterruptInput(thread_id, owner_client_id=body.owner_client_id or None)
        )
