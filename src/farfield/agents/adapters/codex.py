"""Codex adapter — app-server JSON-RPC plus a desktop IPC follower connection.

Two channels:
  - app-server (child process, stdio JSON-RPC): list/create/read threads,
    send messages, list models and collaboration modes.
  - desktop IPC (Unix socket): interrupt, set collaboration mode, submit
    user input and steering turns, all routed to the thread's owner client.
    The same socket delivers ``thread-stream-state-changed`` broadcasts.
    Each valid one is folded into a streaming reducer as it arrives and
    also kept per thread (bounded) for ``read_stream_events``.

Runtime state (``CodexRuntimeState``) tracks both channels; the adapter is
"connected" when Codex is installed and the app-server has answered.
A dropped IPC socket is retried after ``reconnect_delay`` seconds.
"""

import asyncio
import json
import re
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, TypeVar

import aiofiles
import structlog

from ...codex.app_server import AppServerClient
from ...codex.errors import AppServerRpcError, AppServerTransportError
from ...codex.ipc_client import DesktopIpcClient, IpcConnectionState
from ...codex.service import CodexMonitorService
from ...codex.transport import ChildProcessAppServerTransport
from ...errors import AgentUnavailableError, ThreadStreamReductionError
from ...live_state import (
    LiveStateReducer,
    PatchesChange,
    StateChangeEvent,
    find_latest_turn_params_template,
)
from ...protocol.errors import ProtocolValidationError
from ...protocol.ipc import (
    THREAD_STREAM_STATE_CHANGED,
    IpcBroadcastFrame,
    IpcFrame,
    IpcRequestFrame,
    IpcResponseFrame,
    extract_thread_id,
    parse_thread_stream_state_changed_broadcast,
)
from ...utils import task_done_callback
from ..base import (
    AgentCapabilities,
    AgentId,
    BaseAgentAdapter,
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
)
from ..thread_owner import resolve_owner_client_id

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_STREAM_EVENT_LIMIT = 400
_INVALID_REQUEST = -32600
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")


@dataclass(frozen=True, slots=True)
class CodexRuntimeState:
    app_ready: bool = False
    ipc_connected: bool = False
    ipc_initialized: bool = False
    codex_available: bool = True
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class CodexIpcFrameEvent:
    """A frame seen on (``in``) or sent to (``out``) the desktop socket."""

    direction: Literal["in", "out"]
    frame: IpcFrame
    method: str
    thread_id: str | None


@dataclass(frozen=True, slots=True)
class CodexAgentOptions:
    app_executable: str
    socket_path: str
    workspace_dir: str
    user_agent: str
    reconnect_delay: float = 1.0
    stream_event_limit: int = DEFAULT_STREAM_EVENT_LIMIT
    strict_patches: bool = False
    invalid_stream_log: Path | None = None


def _normalize_stderr(line: str) -> str:
    return _ANSI_ESCAPE.sub("", line).strip()


def _is_benign_stderr(line: str) -> bool:
    return (
        "codex_core::rollout::list" in line
        and "state db missing rollout path for thread" in line
    )


def _log_app_server_stderr(line: str) -> None:
    normalized = _normalize_stderr(line)
    if _is_benign_stderr(normalized):
        logger.debug("codex app-server stderr (ignored): %s", normalized)
    else:
        logger.error("codex app-server stderr: %s", normalized)


def _frame_method(frame: IpcFrame) -> str:
    if isinstance(frame, IpcRequestFrame | IpcBroadcastFrame):
        return frame.method
    if isinstance(frame, IpcResponseFrame):
        return frame.method or "response"
    return frame.type


def is_thread_not_loaded_error(error: Exception) -> bool:
    if not isinstance(error, AppServerRpcError) or error.code != _INVALID_REQUEST:
        return False
    message = error.rpc_message.lower()
    return "conversation not found" in message or "thread not loaded" in message


class CodexAgentAdapter(BaseAgentAdapter):
    id: AgentId = "codex"
    label = "Codex"
    capabilities = AgentCapabilities(
        list_models=True,
        list_collaboration_modes=True,
        set_collaboration_mode=True,
        submit_user_input=True,
        read_live_state=True,
        read_stream_events=True,
    )

    def __init__(
        self,
        options: CodexAgentOptions,
        *,
        app_client: AppServerClient | None = None,
        ipc_client: DesktopIpcClient | None = None,
        on_state_change: Callable[[CodexRuntimeState], None] | None = None,
    ) -> None:
        self._options = options
        self._on_state_change = on_state_change
        self._app = app_client or AppServerClient(
            ChildProcessAppServerTransport(
                options.app_executable,
                options.user_agent,
                cwd=options.workspace_dir,
                on_stderr=_log_app_server_stderr,
            )
        )
        self._ipc = ipc_client or DesktopIpcClient(options.socket_path)
        self._service = CodexMonitorService(self._ipc)

        self._owners: dict[str, str] = {}
        self._stream_events: dict[str, deque[dict[str, Any]]] = {}
        self._reducer = LiveStateReducer(strict=options.strict_patches)
        self._live_errors: dict[str, str] = {}
        self._log_tasks: set[asyncio.Task[None]] = set()
        self._frame_listeners: list[Callable[[CodexIpcFrameEvent], None]] = []
        self._state = CodexRuntimeState()
        self._started = False
        self._bootstrap_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None

        self._ipc.on_connection_state(self._handle_connection_state)
        self._ipc.on_frame(self._handle_frame)

    # ── Runtime state ────────────────────────────────────────────────────

    @property
    def runtime_state(self) -> CodexRuntimeState:
        return self._state

    @property
    def thread_owner_count(self) -> int:
        return len(self._owners)

    def _patch_state(self, **changes: Any) -> None:
        updated = replace(self._state, **changes)
        if updated == self._state:
            return
        self._state = updated
        if self._on_state_change is not None:
            self._on_state_change(updated)

    def is_enabled(self) -> bool:
        return True

    def is_connected(self) -> bool:
        return self._state.codex_available and self._state.app_ready

    def is_ipc_ready(self) -> bool:
        return self._state.ipc_connected and self._state.ipc_initialized

    def _ensure_codex_available(self) -> None:
        if not self._state.codex_available:
            raise AgentUnavailableError(self.id, "Codex backend is not available")

    def _ensure_ipc_ready(self) -> None:
        if not self.is_ipc_ready():
            raise AgentUnavailableError(
                self.id, self._state.last_error or "Desktop IPC is not connected"
            )

    # ── IPC events ───────────────────────────────────────────────────────

    def on_ipc_frame(
        self, listener: Callable[[CodexIpcFrameEvent], None]
    ) -> Callable[[], None]:
        self._frame_listeners.append(listener)
        return lambda: self._frame_listeners.remove(listener)

    def _emit_frame(self, event: CodexIpcFrameEvent) -> None:
        for listener in list(self._frame_listeners):
            listener(event)

    def _handle_connection_state(self, state: IpcConnectionState) -> None:
        changes: dict[str, Any] = {"ipc_connected": state.connected}
        if not state.connected:
            changes["ipc_initialized"] = False
        if state.reason:
            changes["last_error"] = state.reason
        self._patch_state(**changes)

        if not state.connected:
            self._schedule_reconnect()

    def _handle_frame(self, frame: IpcFrame) -> None:
        self._emit_frame(
            CodexIpcFrameEvent(
                direction="in",
                frame=frame,
                method=_frame_method(frame),
                thread_id=extract_thread_id(frame),
            )
        )
        if (
            not isinstance(frame, IpcBroadcastFrame)
            or frame.method != THREAD_STREAM_STATE_CHANGED
        ):
            return

        thread_id = extract_thread_id(frame)
        if thread_id is None:
            return
        if frame.source_client_id and frame.source_client_id.strip():
            self._owners[thread_id] = frame.source_client_id.strip()

        raw = frame.to_wire()
        try:
            broadcast = parse_thread_stream_state_changed_broadcast(raw)
        except ProtocolValidationError as e:
            logger.warning("Dropping invalid stream event for %s: %s", thread_id, e)
            self._schedule_invalid_event_log(thread_id, e, raw)
            return

        events = self._stream_events.get(thread_id)
        if events is None:
            events = deque(maxlen=self._options.stream_event_limit)
            self._stream_events[thread_id] = events
        events.append(raw)
        self._apply_stream_event(StateChangeEvent.from_broadcast(broadcast))

    def _apply_stream_event(self, event: StateChangeEvent) -> None:
        """Fold one validated event into the live state, exactly once.

        After a strict-mode failure the thread stays failed until the next
        snapshot; patches in between have no trustworthy base.
        """
        failed = event.thread_id in self._live_errors
        if failed and isinstance(event.change, PatchesChange):
            return
        try:
            self._reducer.apply(event)
        except ThreadStreamReductionError as e:
            logger.error("Thread stream reduction failed for %s: %s", event.thread_id, e)
            self._live_errors[event.thread_id] = str(e)
            return
        if failed:
            del self._live_errors[event.thread_id]

    def _schedule_invalid_event_log(
        self, thread_id: str, error: ProtocolValidationError, raw: dict[str, Any]
    ) -> None:
        if self._options.invalid_stream_log is None:
            return
        task = asyncio.create_task(
            self._record_invalid_event(thread_id, error, raw),
            name="codex-invalid-stream-log",
        )
        self._log_tasks.add(task)
        task.add_done_callback(self._log_tasks.discard)
        task.add_done_callback(task_done_callback)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._started = True
        await self._bootstrap()

    async def stop(self) -> None:
        self._started = False
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        await self._ipc.disconnect()
        await self._app.close()
        if self._log_tasks:
            await asyncio.gather(*self._log_tasks, return_exceptions=True)

    def _schedule_reconnect(self) -> None:
        if (
            self._reconnect_task is not None
            or not self._state.codex_available
            or not self._started
        ):
            return
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after_delay(), name="codex-ipc-reconnect"
        )
        self._reconnect_task.add_done_callback(task_done_callback)

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._options.reconnect_delay)
        self._reconnect_task = None
        logger.info("Reconnecting to desktop IPC")
        await self._bootstrap()

    async def _run_app_call(self, call: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await call()
        except AppServerTransportError as e:
            self._patch_state(app_ready=False, last_error=str(e))
            raise
        except Exception as e:
            self._patch_state(app_ready=True, last_error=str(e))
            raise
        self._patch_state(app_ready=True, last_error=None)
        return result

    async def _bootstrap(self) -> None:
        async with self._bootstrap_lock:
            try:
                await self._run_app_call(
                    lambda: self._app.list_threads(limit=1, archived=False)
                )
            except AppServerTransportError as e:
                if isinstance(e.__cause__, FileNotFoundError):
                    self._patch_state(codex_available=False, last_error=str(e))
                    logger.warning("Codex executable not found: %s", e)
                    return
                logger.warning("Codex app-server unavailable: %s", e)
            except Exception as e:
                logger.warning("Codex app-server startup check failed: %s", e)

            try:
                if not self._ipc.is_connected():
                    await self._ipc.connect()
                self._patch_state(ipc_connected=True)
                await self._ipc.initialize()
                self._patch_state(ipc_initialized=True)
            except Exception as e:
                self._patch_state(
                    ipc_initialized=False,
                    ipc_connected=self._ipc.is_connected(),
                    last_error=str(e),
                )
                logger.warning("Desktop IPC unavailable: %s", e)
                if not self._ipc.is_connected():
                    self._schedule_reconnect()

    # ── Mandatory operations ─────────────────────────────────────────────

    async def list_threads(self, params: ListThreadsInput) -> ListThreadsResult:
        self._ensure_codex_available()
        if params.all:
            result = await self._run_app_call(
                lambda: self._app.list_threads_all(
                    limit=params.limit,
                    archived=params.archived,
                    max_pages=params.max_pages,
                    cursor=params.cursor,
                )
            )
        else:
            result = await self._run_app_call(
                lambda: self._app.list_threads(
                    limit=params.limit, archived=params.archived, cursor=params.cursor
                )
            )
        return ListThreadsResult(
            data=[item.to_wire() for item in result.data],
            next_cursor=result.next_cursor,
            pages=result.pages,
            truncated=result.truncated,
        )

    async def create_thread(self, params: CreateThreadInput) -> CreateThreadResult:
        self._ensure_codex_available()
        cwd = (params.cwd or "").strip() or self._options.workspace_dir
        result = await self._run_app_call(
            lambda: self._app.start_thread(
                cwd=cwd,
                model=params.model or None,
                model_provider=params.model_provider or None,
                personality=params.personality or None,
                sandbox=params.sandbox or None,
                approval_policy=params.approval_policy or None,
                ephemeral=params.ephemeral,
            )
        )
        return CreateThreadResult(
            thread_id=result.thread.id,
            thread=result.thread.to_wire(),
            model=result.model,
            model_provider=result.model_provider,
            cwd=result.cwd,
            approval_policy=result.approval_policy,
            sandbox=result.sandbox,
            reasoning_effort=result.reasoning_effort,
        )

    async def read_thread(self, params: ReadThreadInput) -> ReadThreadResult:
        self._ensure_codex_available()
        result = await self._run_app_call(
            lambda: self._app.read_thread(params.thread_id, params.include_turns)
        )
        return ReadThreadResult(thread=result.thread.to_state_dict())

    async def send_message(self, params: SendMessageInput) -> None:
        self._ensure_codex_available()
        if params.is_steering:
            await self._send_steering_message(params)
            return

        try:
            await self._run_app_call(
                lambda: self._app.send_user_message(params.thread_id, params.text)
            )
            return
        except AppServerRpcError as e:
            if not is_thread_not_loaded_error(e):
                raise
            logger.info("Thread %s not loaded, resuming before send", params.thread_id)

        await self._run_app_call(lambda: self._app.resume_thread(params.thread_id))
        await self._run_app_call(
            lambda: self._app.send_user_message(params.thread_id, params.text)
        )

    async def _send_steering_message(self, params: SendMessageInput) -> None:
        self._ensure_ipc_ready()
        owner = resolve_owner_client_id(
            self._owners, params.thread_id, params.owner_client_id
        )
        live = await self.read_live_state(params.thread_id)
        if live.conversation_state is None:
            raise AgentUnavailableError(
                self.id, "No live state is known for this thread yet"
            )
        await self._service.start_turn(
            thread_id=params.thread_id,
            owner_client_id=owner,
            text=params.text,
            turn_start_template=find_latest_turn_params_template(
                live.conversation_state
            ),
            cwd=params.cwd,
            is_steering=True,
        )

    async def interrupt(self, params: InterruptInput) -> None:
        self._ensure_codex_available()
        self._ensure_ipc_ready()
        owner = resolve_owner_client_id(
            self._owners, params.thread_id, params.owner_client_id
        )
        await self._service.interrupt(thread_id=params.thread_id, owner_client_id=owner)

    # ── Optional operations ──────────────────────────────────────────────

    async def list_models(self, limit: int) -> dict[str, Any]:
        self._ensure_codex_available()
        result = await self._run_app_call(lambda: self._app.list_models(limit))
        return result.to_wire()

    async def list_collaboration_modes(self) -> dict[str, Any]:
        self._ensure_codex_available()
        result = await self._run_app_call(self._app.list_collaboration_modes)
        return result.model_dump(mode="json")

    async def set_collaboration_mode(self, params: SetCollaborationModeInput) -> OwnerAck:
        self._ensure_codex_available()
        self._ensure_ipc_ready()
        owner = resolve_owner_client_id(
            self._owners, params.thread_id, params.owner_client_id
        )
        await self._service.set_collaboration_mode(
            thread_id=params.thread_id,
            owner_client_id=owner,
            collaboration_mode=params.collaboration_mode,
        )
        return OwnerAck(owner_client_id=owner)

    async def submit_user_input(self, params: SubmitUserInputInput) -> OwnerAck:
        self._ensure_codex_available()
        self._ensure_ipc_ready()
        owner = resolve_owner_client_id(
            self._owners, params.thread_id, params.owner_client_id
        )
        await self._service.submit_user_input(
            thread_id=params.thread_id,
            owner_client_id=owner,
            request_id=params.request_id,
            response=params.response,
        )
        return OwnerAck(owner_client_id=owner, request_id=params.request_id)

    async def read_live_state(self, thread_id: str) -> LiveStateResult:
        """Current reduced state of *thread_id*, folded as broadcasts arrive."""
        owner = self._owners.get(thread_id)
        error = self._live_errors.get(thread_id)
        if error is not None:
            return LiveStateResult(
                owner_client_id=owner, conversation_state=None, live_state_error=error
            )
        state = self._reducer.get(thread_id)
        if state is None:
            return LiveStateResult(owner_client_id=owner, conversation_state=None)
        return LiveStateResult(
            owner_client_id=state.owner_client_id or owner,
            conversation_state=state.conversation_state,
        )

    async def read_stream_events(self, thread_id: str, limit: int) -> StreamEventsResult:
        events = list(self._stream_events.get(thread_id, ()))
        return StreamEventsResult(
            owner_client_id=self._owners.get(thread_id),
            events=events[-limit:] if limit > 0 else [],
        )

    async def _record_invalid_event(
        self, thread_id: str, error: ProtocolValidationError, raw: dict[str, Any]
    ) -> None:
        path = self._options.invalid_stream_log
        if path is None:
            return
        detail = {
            "threadId": thread_id,
            "error": str(error),
            "issues": error.issues,
            "rawPayload": raw,
            "loggedAt": datetime.now(UTC).isoformat(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "a", encoding="utf-8") as f:
                await f.write(json.dumps(detail) + "\n")
        except OSError as e:
            logger.warning("Failed to write invalid stream event to %s: %s", path, e)

    # ── Replay ───────────────────────────────────────────────────────────

    async def replay_request(
        self,
        method: str,
        params: Any,
        *,
        target_client_id: str | None = None,
        version: int | None = None,
    ) -> Any:
        """Re-send a captured request frame and return its result."""
        self._ensure_ipc_ready()
        preview = IpcRequestFrame(
            type="request",
            request_id="monitor-preview-request-id",
            method=method,
            params=params,
            target_client_id=target_client_id,
            version=version,
        )
        self._emit_frame(
            CodexIpcFrameEvent("out", preview, method, extract_thread_id(preview))
        )
        response = await self._ipc.send_request_and_wait(
            method, params, target_client_id=target_client_id, version=version
        )
        return response.result

    def replay_broadcast(
        self,
        method: str,
        params: Any,
        *,
        target_client_id: str | None = None,
        version: int | None = None,
    ) -> None:
        """Re-send a captured broadcast frame."""
        self._ensure_ipc_ready()
        preview = IpcBroadcastFrame(
            type="broadcast",
            method=method,
            params=params,
            target_client_id=target_client_id,
            version=version,
        )
        thread_id = extract_thread_id(
            IpcRequestFrame(
                type="request",
                request_id="monitor-preview-request-id",
                method=method,
                params=params,
            )
        )
        self._emit_frame(CodexIpcFrameEvent("out", preview, method, thread_id))
        self._ipc.send_broadcast(
            method, params, target_client_id=target_client_id, version=version
        )
