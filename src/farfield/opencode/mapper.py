"""Map opencode sessions and messages onto the thread shapes farfield serves.

A session becomes a thread list item; its messages become turns. Each user
message opens a turn and the assistant messages that follow it are folded
into that turn's items.
"""

from typing import Any

from ..protocol.app_server import ThreadListItem
from ..protocol.common import parse_with_schema
from ..protocol.thread import ThreadConversationState


def _seconds(value: Any) -> int:
    """opencode timestamps are epoch milliseconds."""
    if isinstance(value, int | float) and not isinstance(value, bool) and value > 0:
        return int(value) // 1000
    return 0


def session_to_thread_list_item(session: dict[str, Any]) -> dict[str, Any]:
    times = session.get("time") or {}
    created = _seconds(times.get("created"))
    item = {
        "id": session["id"],
        "preview": session.get("title") or "",
        "modelProvider": "opencode",
        "createdAt": created,
        "updatedAt": _seconds(times.get("updated")) or created,
        "cwd": session.get("directory"),
        "source": "opencode",
    }
    return parse_with_schema(ThreadListItem, item, "OpenCodeThreadListItem").to_wire()


def _part_to_item(part: dict[str, Any]) -> dict[str, Any] | None:
    part_type = part.get("type")
    part_id = part.get("id")
    if part_type == "text":
        return {"type": "agentMessage", "id": part_id, "text": part.get("text", "")}
    if part_type == "reasoning":
        return {"type": "reasoning", "id": part_id, "text": part.get("text", "")}
    if part_type == "tool":
        return {
            "type": "toolCall",
            "id": part_id,
            "tool": part.get("tool"),
            "state": part.get("state"),
        }
    return None


def _user_item(info: dict[str, Any], parts: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": "userMessage",
        "id": info["id"],
        "content": [
            {"type": "text", "text": part.get("text", "")}
            for part in parts
            if part.get("type") == "text"
        ],
    }


def session_to_conversation_state(
    session: dict[str, Any], messages: list[dict[str, Any]]
) -> dict[str, Any]:
    """Build a conversation state from a session and its ``{info, parts}`` list."""
    turns: list[dict[str, Any]] = []
    latest_model: str | None = None

    for entry in messages:
        info = entry.get("info") or {}
        parts = entry.get("parts") or []
        if info.get("role") == "user":
            turns.append(
                {
                    "turnId": info.get("id"),
                    "status": "completed",
                    "items": [_user_item(info, parts)],
                }
            )
            continue

        if not turns:
            turns.append({"turnId": info.get("id"), "status": "completed", "items": []})
        turn = turns[-1]
        turn["items"].extend(
            item for item in (_part_to_item(part) for part in parts) if item is not None
        )
        if info.get("modelID"):
            latest_model = info["modelID"]
        completed = (info.get("time") or {}).get("completed")
        turn["status"] = "completed" if completed else "inProgress"

    times = session.get("time") or {}
    state = {
        "id": session["id"],
        "turns": turns,
        "requests": [],
        "title": session.get("title"),
        "createdAt": _seconds(times.get("created")),
        "updatedAt": _seconds(times.get("updated")),
        "cwd": session.get("directory"),
        "latestModel": latest_model,
    }
    return parse_with_schema(
        ThreadConversationState, state, "OpenCodeConversationState"
    ).to_state_dict()
