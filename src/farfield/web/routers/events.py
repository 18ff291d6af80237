"""Server-sent events: runtime state and history entries as they happen."""

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...monitor import MonitorHub
from ..dependencies import get_hub

router = APIRouter(tags=["events"])


def format_sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def sse_generator(hub: MonitorHub) -> AsyncIterator[str]:
    """Yield the current state, then every published event until disconnect."""
    queue = hub.subscribe()
    try:
        yield format_sse({"type": "state", "state": hub.runtime_state()})
        while True:
            yield format_sse(await queue.get())
    finally:
        hub.unsubscribe(queue)


@router.get("/events")
async def stream_events(hub: MonitorHub = Depends(get_hub)) -> StreamingResponse:
    return StreamingResponse(
        sse_generator(hub),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
