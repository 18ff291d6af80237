"""Agent-level endpoints: health, agent list, thread list / create, catalogs."""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ...agents.base import ListThreadsInput
from ...dispatch import AgentDispatcher
from ...http_schemas import StartThreadBody
from ...monitor import MonitorHub
from ..dependencies import attempt_action, get_dispatcher, get_hub, read_body

router = APIRouter(prefix="/api", tags=["agents"])


@router.get("/health")
async def health(hub: MonitorHub = Depends(get_hub)) -> dict[str, Any]:
    return {"ok": True, "state": hub.runtime_state()}


@router.get("/agents")
async def list_agents(
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    overview = await dispatcher.describe_agents()
    return {
        "ok": True,
        "agents": [descriptor.to_wire() for descriptor in overview.agents],
        "defaultAgentId": overview.default_agent_id,
    }


@router.get("/threads")
async def list_threads(
    limit: int = Query(80, ge=1),
    archived: bool = False,
    include_all: bool = Query(False, alias="all"),
    max_pages: int = Query(20, ge=1, alias="maxPages"),
    cursor: str | None = None,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    result = await dispatcher.list_threads(
        ListThreadsInput(
            limit=limit,
            archived=archived,
            all=include_all,
            max_pages=max_pages,
            cursor=cursor,
        )
    )
    return {"ok": True, "data": result.data, "nextCursor": result.next_cursor}


@router.post("/threads")
async def create_thread(
    request: Request,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    body = await read_body(request, StartThreadBody)
    adapter = dispatcher.resolve_create_thread_adapter(body.agent_id)

    created = await attempt_action(
        hub,
        "thread-create",
        {"agentId": adapter.id, "cwd": body.cwd, "model": body.model},
        lambda: dispatcher.create_thread(body),
    )
    result = created.result
    hub.push_action(
        "thread-create",
        "success",
        {
            "agentId": created.agent_id,
            "threadId": result.thread_id,
            "cwd": result.cwd or result.thread.get("cwd"),
        },
    )
    return {"ok": True, **result.to_wire(), "agentId": created.agent_id}


@router.get("/models")
async def list_models(
    limit: int = Query(100, ge=1),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    return {"ok": True, **await dispatcher.list_models(limit)}


@router.get("/collaboration-modes")
async def list_collaboration_modes(
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    return {"ok": True, **await dispatcher.list_collaboration_modes()}
