"""Typed client for the Codex app-server JSON-RPC methods."""

from typing import Any

from ..protocol.app_server import (
    CollaborationModeListResponse,
    ListModelsResponse,
    ListThreadsResponse,
    ReadThreadResponse,
    StartThreadResponse,
    ThreadListItem,
)
from ..protocol.common import parse_with_schema
from .transport import AppServerTransport


class AppServerClient:
    """Wraps an ``AppServerTransport`` and validates every result."""

    def __init__(self, transport: AppServerTransport) -> None:
        self._transport = transport

    async def close(self) -> None:
        await self._transport.close()

    async def list_threads(
        self, *, limit: int, archived: bool, cursor: str | None = None
    ) -> ListThreadsResponse:
        result = await self._transport.request(
            "thread/list", {"limit": limit, "archived": archived, "cursor": cursor}
        )
        return parse_with_schema(ListThreadsResponse, result, "AppServerListThreadsResponse")

    async def list_threads_all(
        self,
        *,
        limit: int,
        archived: bool,
        max_pages: int,
        cursor: str | None = None,
    ) -> ListThreadsResponse:
        """Follow ``nextCursor`` for up to *max_pages* pages.

        ``truncated`` is set when the page limit was reached before the list ended;
        ``next_cursor`` then points at the first unread page.
        """
        items: list[ThreadListItem] = []
        pages = 0
        while pages < max_pages:
            page = await self.list_threads(limit=limit, archived=archived, cursor=cursor)
            items.extend(page.data)
            pages += 1
            if not page.next_cursor or not page.data:
                return ListThreadsResponse(
                    data=items, next_cursor=None, pages=pages, truncated=False
                )
            cursor = page.next_cursor

        return ListThreadsResponse(
            data=items, next_cursor=cursor, pages=pages, truncated=True
        )

    async def read_thread(
        self, thread_id: str, include_turns: bool = True
    ) -> ReadThreadResponse:
        result = await self._transport.request(
            "thread/read", {"threadId": thread_id, "includeTurns": include_turns}
        )
        return parse_with_schema(ReadThreadResponse, result, "AppServerReadThreadResponse")

    async def list_models(self, limit: int = 100) -> ListModelsResponse:
        result = await self._transport.request("model/list", {"limit": limit})
        return parse_with_schema(ListModelsResponse, result, "AppServerListModelsResponse")

    async def list_collaboration_modes(self) -> CollaborationModeListResponse:
        result = await self._transport.request("collaborationMode/list", {})
        return parse_with_schema(
            CollaborationModeListResponse,
            result,
            "AppServerCollaborationModeListResponse",
        )

    async def start_thread(
        self,
        *,
        cwd: str,
        model: str | None = None,
        model_provider: str | None = None,
        personality: str | None = None,
        sandbox: str | None = None,
        approval_policy: str | None = None,
        ephemeral: bool | None = None,
    ) -> StartThreadResponse:
        params: dict[str, Any] = {"cwd": cwd}
        optional = {
            "model": model,
            "modelProvider": model_provider,
            "personality": personality,
            "sandbox": sandbox,
            "approvalPolicy": approval_policy,
            "ephemeral": ephemeral,
        }
        params.update({k: v for k, v in optional.items() if v is not None})
        result = await self._transport.request("thread/start", params)
        return parse_with_schema(StartThreadResponse, result, "AppServerStartThreadResponse")

    async def send_user_message(self, thread_id: str, text: str) -> None:
        await self._transport.request(
            "sendUserMessage",
            {
                "conversationId": thread_id,
                "items": [{"type": "text", "data": {"text": text}}],
            },
        )

    async def resume_thread(self, thread_id: str) -> None:
        await self._transport.request(
            "thread/resume", {"threadId": thread_id, "persistExtendedHistory": False}
        )
