"""Session operations against the opencode HTTP API."""

import asyncio
from dataclasses import dataclass
from typing import Any

from .client import OpenCodeConnection, OpenCodeError
from .mapper import session_to_conversation_state, session_to_thread_list_item


@dataclass(frozen=True, slots=True)
class CreatedSession:
    thread_id: str
    session: dict[str, Any]
    mapped: dict[str, Any]


class OpenCodeMonitorService:
    def __init__(self, connection: OpenCodeConnection) -> None:
        self._connection = connection

    async def list_sessions(self, directory: str | None = None) -> list[dict[str, Any]]:
        sessions = await self._connection.request("GET", "/session", directory=directory)
        return [session_to_thread_list_item(s) for s in sessions or []]

    async def list_project_directories(self) -> list[str]:
        projects = await self._connection.request("GET", "/project")
        return [
            project["worktree"]
            for project in projects or []
            if isinstance(project.get("worktree"), str) and project["worktree"].strip()
        ]

    async def create_session(
        self, *, title: str | None = None, directory: str | None = None
    ) -> CreatedSession:
        body = {"title": title} if title else {}
        session = await self._connection.request(
            "POST", "/session", directory=directory, json=body
        )
        if not isinstance(session, dict) or "id" not in session:
            raise OpenCodeError("opencode returned no session")
        return CreatedSession(
            thread_id=session["id"],
            session=session,
            mapped=session_to_thread_list_item(session),
        )

    async def get_session_state(
        self, session_id: str, directory: str | None = None
    ) -> dict[str, Any]:
        session, messages = await asyncio.gather(
            self._connection.request("GET", f"/session/{session_id}", directory=directory),
            self._connection.request(
                "GET", f"/session/{session_id}/message", directory=directory
            ),
        )
        return session_to_conversation_state(session, messages or [])

    async def send_message(
        self, session_id: str, text: str, directory: str | None = None
    ) -> None:
        text = text.strip()
        if not text:
            raise ValueError("Message text is required")
        await self._connection.request(
            "POST",
            f"/session/{session_id}/message",
            directory=directory,
            json={"parts": [{"type": "text", "text": text}]},
        )

    async def abort(self, session_id: str, directory: str | None = None) -> None:
        await self._connection.request(
            "POST", f"/session/{session_id}/abort", directory=directory
        )
