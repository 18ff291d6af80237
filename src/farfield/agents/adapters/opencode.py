"""OpenCode adapter — sessions over the opencode HTTP API.

Flags no optional capabilities. Remembers the directory each thread lives
in, since opencode scopes session requests by ``?directory=``.
"""

import asyncio
import os
from typing import Any

import structlog

from ...errors import AgentUnavailableError
from ...opencode.client import OpenCodeConnection
from ...opencode.service import OpenCodeMonitorService
from ..base import (
    AgentCapabilities,
    AgentId,
    BaseAgentAdapter,
    CreateThreadInput,
    CreateThreadResult,
    InterruptInput,
    ListThreadsInput,
    ListThreadsResult,
    ReadThreadInput,
    ReadThreadResult,
    SendMessageInput,
)

logger = structlog.get_logger()


def normalize_directory_input(directory: str) -> str:
    """Absolute path of an existing directory; ``ValueError`` otherwise."""
    trimmed = directory.strip()
    if not trimmed:
        raise ValueError("Directory is required")
    resolved = os.path.abspath(trimmed)
    if not os.path.exists(resolved):
        raise ValueError(f"Directory does not exist: {resolved}")
    if not os.path.isdir(resolved):
        raise ValueError(f"Path is not a directory: {resolved}")
    return resolved


def normalize_directory_list(directories: list[str]) -> list[str]:
    """Trimmed, absolute, de-duplicated and sorted."""
    return sorted({os.path.abspath(d.strip()) for d in directories if d.strip()})


class OpenCodeAgentAdapter(BaseAgentAdapter):
    id: AgentId = "opencode"
    label = "OpenCode"
    capabilities = AgentCapabilities()

    def __init__(
        self,
        connection: OpenCodeConnection | None = None,
        *,
        url: str | None = None,
        port: int = 0,
    ) -> None:
        self._connection = connection or OpenCodeConnection(url=url, port=port)
        self._service = OpenCodeMonitorService(self._connection)
        self._thread_directories: dict[str, str] = {}

    @property
    def url(self) -> str | None:
        return self._connection.url

    def is_enabled(self) -> bool:
        return True

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    async def start(self) -> None:
        await self._connection.start()

    async def stop(self) -> None:
        await self._connection.stop()

    def _ensure_connected(self) -> None:
        if not self._connection.is_connected():
            raise AgentUnavailableError(self.id, "OpenCode backend is not connected")

    def _remember_directory(self, thread_id: str, cwd: Any) -> None:
        if isinstance(cwd, str) and cwd.strip():
            self._thread_directories[thread_id] = os.path.abspath(cwd.strip())

    def thread_directory(self, thread_id: str) -> str | None:
        return self._thread_directories.get(thread_id)

    async def list_threads(self, params: ListThreadsInput) -> ListThreadsResult:
        """Every session across known projects; paging inputs are ignored."""
        self._ensure_connected()
        directories = await self.list_project_directories()
        if directories:
            pages = await asyncio.gather(
                *(self._service.list_sessions(d) for d in directories)
            )
        else:
            pages = [await self._service.list_sessions()]

        sessions: dict[str, dict[str, Any]] = {}
        for page in pages:
            for item in page:
                sessions[item["id"]] = item
                self._remember_directory(item["id"], item.get("cwd"))
        return ListThreadsResult(data=list(sessions.values()), next_cursor=None)

    async def create_thread(self, params: CreateThreadInput) -> CreateThreadResult:
        self._ensure_connected()
        directory = normalize_directory_input(params.cwd) if params.cwd else None
        created = await self._service.create_session(
            title=params.model or None, directory=directory
        )
        if created.mapped.get("cwd"):
            self._remember_directory(created.thread_id, created.mapped["cwd"])
        elif directory:
            self._thread_directories[created.thread_id] = directory
        logger.info("Created opencode session %s", created.thread_id)
        return CreateThreadResult(
            thread_id=created.thread_id,
            thread=created.mapped,
            cwd=created.mapped.get("cwd"),
        )

    async def read_thread(self, params: ReadThreadInput) -> ReadThreadResult:
        self._ensure_connected()
        state = await self._service.get_session_state(
            params.thread_id, self.thread_directory(params.thread_id)
        )
        self._remember_directory(params.thread_id, state.get("cwd"))
        return ReadThreadResult(thread=state)

    async def send_message(self, params: SendMessageInput) -> None:
        self._ensure_connected()
        directory = (
            normalize_directory_input(params.cwd)
            if params.cwd
            else self.thread_directory(params.thread_id)
        )
        await self._service.send_message(params.thread_id, params.text, directory)

    async def interrupt(self, params: InterruptInput) -> None:
        self._ensure_connected()
        await self._service.abort(
            params.thread_id, self.thread_directory(params.thread_id)
        )

    async def list_project_directories(self) -> list[str]:
        self._ensure_connected()
        return normalize_directory_list(await self._service.list_project_directories())
