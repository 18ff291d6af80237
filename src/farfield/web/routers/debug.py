"""Debug endpoints: history browsing, IPC frame replay and trace recording."""

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse

from ...agents.adapters.codex import CodexAgentAdapter
from ...http_schemas import ReplayBody, TraceMarkBody, TraceStartBody
from ...monitor import MonitorHub, parse_replay_frame
from ...utils import task_done_callback
from ..dependencies import get_codex, get_hub, read_body

router = APIRouter(prefix="/api/debug", tags=["debug"])


@router.get("/history")
async def list_history(
    limit: int = Query(120, ge=1),
    hub: MonitorHub = Depends(get_hub),
) -> dict[str, Any]:
    return {"ok": True, "history": [entry.to_wire() for entry in hub.history(limit)]}


@router.get("/history/{entry_id}")
async def get_history_entry(
    entry_id: str, hub: MonitorHub = Depends(get_hub)
) -> dict[str, Any]:
    entry = hub.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="History entry not found")
    return {"ok": True, "entry": entry.to_wire(), "fullPayload": entry.payload}


@router.post("/replay")
async def replay(
    request: Request,
    hub: MonitorHub = Depends(get_hub),
    codex: CodexAgentAdapter | None = Depends(get_codex),
) -> dict[str, Any]:
    """Re-send a captured IPC request or broadcast to the desktop app.

    With ``waitForResponse`` the reply is returned; otherwise the request is
    queued and a failure is recorded in history.
    """
    if codex is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Codex adapter is not enabled",
        )
    if not codex.is_ipc_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=codex.runtime_state.last_error or "Desktop IPC is not connected",
        )

    body = await read_body(request, ReplayBody)
    entry = hub.get_entry(body.entry_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="History entry not found")
    frame = parse_replay_frame(entry.payload)

    if frame.type == "broadcast":
        codex.replay_broadcast(
            frame.method,
            frame.params,
            target_client_id=frame.target_client_id,
            version=frame.version,
        )
        return {"ok": True, "replayed": True}

    replay_call = codex.replay_request(
        frame.method,
        frame.params,
        target_client_id=frame.target_client_id,
        version=frame.version,
    )
    if body.wait_for_response:
        return {"ok": True, "replayed": True, "response": await replay_call}

    async def _replay_in_background() -> None:
        try:
            await replay_call
        except Exception as e:
            hub.push_system("Replay request failed", {"error": str(e), "entryId": entry.id})

    task = asyncio.create_task(_replay_in_background(), name=f"replay-{entry.id}")
    background: set[asyncio.Task[None]] = request.app.state.background_tasks
    background.add(task)
    task.add_done_callback(background.discard)
    task.add_done_callback(task_done_callback)
    return {"ok": True, "replayed": True, "queued": True}


# ── Traces ───────────────────────────────────────────────────────────────


@router.get("/trace/status")
async def trace_status(hub: MonitorHub = Depends(get_hub)) -> dict[str, Any]:
    active = hub.active_trace
    return {
        "ok": True,
        "active": active.to_wire() if active else None,
        "recent": [summary.to_wire() for summary in hub.recent_traces],
    }


@router.post("/trace/start")
async def start_trace(request: Request, hub: MonitorHub = Depends(get_hub)) -> dict[str, Any]:
    body = await read_body(request, TraceStartBody)
    summary = hub.start_trace(body.label)
    return {"ok": True, "trace": summary.to_wire()}


@router.post("/trace/mark")
async def mark_trace(request: Request, hub: MonitorHub = Depends(get_hub)) -> dict[str, Any]:
    body = await read_body(request, TraceMarkBody)
    hub.mark_trace(body.note)
    return {"ok": True}


@router.post("/trace/stop")
async def stop_trace(hub: MonitorHub = Depends(get_hub)) -> dict[str, Any]:
    summary = await hub.stop_trace()
    return {"ok": True, "trace": summary.to_wire()}


@router.get("/trace/{trace_id}/download")
async def download_trace(trace_id: str, hub: MonitorHub = Depends(get_hub)) -> FileResponse:
    summary = hub.find_trace(trace_id)
    if summary is None or not summary.path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trace not found")
    return FileResponse(
        summary.path, media_type="application/x-ndjson", filename=f"{summary.id}.ndjson"
    )
