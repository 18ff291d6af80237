"""Per-thread endpoints, routed to the agent that owns the thread.

Every route resolves the owner first, so an unknown thread answers 404 and
a disabled or disconnected owner answers 503 before the body is read.
Actions (messages, collaboration mode, user input, interrupt) are recorded
in history as attempt / success / error events.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...agents.adapters.codex import is_thread_not_loaded_error
from ...agents.base import AgentAdapter, Capability, require_capability
from ...dispatch import AgentDispatcher
from ...http_schemas import (
    InterruptBody,
    SendMessageBody,
    SetModeBody,
    SubmitUserInputBody,
)
from ...monitor import MonitorHub
from ..dependencies import attempt_action, get_dispatcher, get_hub, read_body

router = APIRouter(prefix="/api/threads/{thread_id}", tags=["threads"])


def thread_owner(
    thread_id: str, dispatcher: AgentDispatcher = Depends(get_dispatcher)
) -> AgentAdapter:
    return dispatcher.resolve_adapter_for_thread(thread_id)


@router.get("")
async def read_thread(
    thread_id: str,
    include_turns: bool = Query(True, alias="includeTurns"),
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    try:
        result = await dispatcher.read_thread(thread_id, include_turns)
    except Exception as e:
        if adapter.id == "codex" and is_thread_not_loaded_error(e):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Thread not loaded in app-server: {thread_id}",
            ) from e
        raise
    return {"ok": True, "thread": result.thread, "agentId": adapter.id}


@router.get("/live-state")
async def read_live_state(
    thread_id: str,
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    result = await dispatcher.read_live_state(thread_id)
    body: dict[str, Any] = {
        "ok": True,
        "threadId": thread_id,
        "ownerClientId": result.owner_client_id,
        "conversationState": result.conversation_state,
    }
    if result.live_state_error is not None:
        body["liveStateError"] = result.live_state_error
    return body


@router.get("/stream-events")
async def read_stream_events(
    thread_id: str,
    limit: int = Query(60, ge=1),
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    result = await dispatcher.read_stream_events(thread_id, limit)
    return {
        "ok": True,
        "threadId": thread_id,
        "ownerClientId": result.owner_client_id,
        "events": result.events,
    }


@router.post("/messages")
async def send_message(
    thread_id: str,
    request: Request,
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    body = await read_body(request, SendMessageBody)
    await attempt_action(
        hub,
        "messages",
        {"agentId": adapter.id, "threadId": thread_id, "textLength": len(body.text)},
        lambda: dispatcher.send_message(thread_id, body),
    )
    hub.push_action("messages", "success", {"agentId": adapter.id, "threadId": thread_id})
    return {"ok": True, "threadId": thread_id}


@router.post("/collaboration-mode")
async def set_collaboration_mode(
    thread_id: str,
    request: Request,
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    require_capability(adapter, Capability.SET_COLLABORATION_MODE)
    body = await read_body(request, SetModeBody)
    ack = await attempt_action(
        hub,
        "collaboration-mode",
        {
            "agentId": adapter.id,
            "threadId": thread_id,
            "collaborationMode": body.collaboration_mode.model_dump(mode="json"),
        },
        lambda: dispatcher.set_collaboration_mode(thread_id, body),
    )
    hub.push_action(
        "collaboration-mode",
        "success",
        {"agentId": adapter.id, "threadId": thread_id, "ownerClientId": ack.owner_client_id},
    )
    return {"ok": True, "threadId": thread_id, "ownerClientId": ack.owner_client_id}


@router.post("/user-input")
async def submit_user_input(
    thread_id: str,
    request: Request,
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    require_capability(adapter, Capability.SUBMIT_USER_INPUT)
    body = await read_body(request, SubmitUserInputBody)
    ack = await attempt_action(
        hub,
        "user-input",
        {"agentId": adapter.id, "threadId": thread_id, "requestId": body.request_id},
        lambda: dispatcher.submit_user_input(thread_id, body),
    )
    hub.push_action(
        "user-input",
        "success",
        {
            "agentId": adapter.id,
            "threadId": thread_id,
            "ownerClientId": ack.owner_client_id,
            "requestId": ack.request_id,
        },
    )
    return {
        "ok": True,
        "threadId": thread_id,
        "ownerClientId": ack.owner_client_id,
        "requestId": ack.request_id,
    }


@router.post("/interrupt")
async def interrupt(
    thread_id: str,
    request: Request,
    adapter: AgentAdapter = Depends(thread_owner),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    body = await read_body(request, InterruptBody)
    await attempt_action(
        hub,
        "interrupt",
        {"agentId": adapter.id, "threadId": thread_id},
        lambda: dispatcher.interrupt(thread_id, body),
    )
    hub.push_action("interrupt", "success", {"agentId": adapter.id, "threadId": thread_id})
    return {"ok": True, "threadId": thread_id}
