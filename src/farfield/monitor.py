"""Monitor hub — debug history, SSE fan-out and trace recording.

Everything the HTTP surface observes flows through ``MonitorHub``:
  - history: the last ``HISTORY_LIMIT`` IPC frames, action events and system
    messages, each with a uuid so it can be fetched or replayed later.
  - subscribers: one ``asyncio.Queue`` per ``/events`` client; every history
    entry and runtime-state change is put on all of them.
  - traces: at most one active trace receives every history entry plus
    explicit markers as NDJSON lines under ``trace_dir``; the last
    ``RECENT_TRACE_LIMIT`` stopped traces stay downloadable.

Trace lines are queued and written by a background aiofiles task so that
recording never blocks the event loop; ``stop_trace`` waits for the queue
to drain before returning.
"""

import asyncio
import json
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import aiofiles
import structlog

from .agents.adapters.codex import CodexAgentAdapter, CodexIpcFrameEvent
from .errors import ReplayError, TraceStateError
from .utils import task_done_callback

logger = structlog.get_logger()

HISTORY_LIMIT = 2000
RECENT_TRACE_LIMIT = 20
SUBSCRIBER_QUEUE_SIZE = 1000

HistorySource = Literal["ipc", "app", "system"]
HistoryDirection = Literal["in", "out", "system"]
ActionStage = Literal["attempt", "success", "error"]

# Keys copied from action details into the log line
_ACTION_SUMMARY_KEYS = (
    "agentId",
    "threadId",
    "ownerClientId",
    "requestId",
    "textLength",
    "cwd",
    "model",
)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def summarize_action_details(details: dict[str, Any]) -> dict[str, Any]:
    return {k: details[k] for k in _ACTION_SUMMARY_KEYS if details.get(k) is not None}


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    id: str
    at: str
    source: HistorySource
    direction: HistoryDirection
    payload: Any
    meta: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class TraceSummary:
    id: str
    label: str
    started_at: str
    path: Path
    stopped_at: str | None = None
    event_count: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "startedAt": self.started_at,
            "stoppedAt": self.stopped_at,
            "eventCount": self.event_count,
            "path": str(self.path),
        }


@dataclass(frozen=True, slots=True)
class ReplayFrame:
    type: Literal["request", "broadcast"]
    method: str
    params: Any
    target_client_id: str | None = None
    version: int | None = None


def parse_replay_frame(payload: Any) -> ReplayFrame:
    """Pull the replayable parts out of a captured IPC frame payload."""
    if not isinstance(payload, dict):
        raise ReplayError("Entry payload is unavailable")

    frame_type = payload.get("type")
    if frame_type not in ("request", "broadcast"):
        raise ReplayError("Only captured request and broadcast entries can be replayed")

    method = payload.get("method")
    if not isinstance(method, str) or not method.strip():
        raise ReplayError("Captured IPC frame has invalid method")

    target = payload.get("targetClientId")
    version = payload.get("version")
    return ReplayFrame(
        type=frame_type,
        method=method,
        params=payload.get("params"),
        target_client_id=target if isinstance(target, str) else None,
        # bool is an int subclass; a captured ``true`` is not a version
        version=version if isinstance(version, int) and not isinstance(version, bool) else None,
    )


@dataclass(frozen=True, slots=True)
class RuntimeInfo:
    """Static facts reported alongside the live runtime state."""

    app_executable: str | None = None
    socket_path: str | None = None
    git_commit: str | None = None


class _ActiveTrace:
    """An open trace file fed through a queue by one writer task."""

    def __init__(self, summary: TraceSummary) -> None:
        self.summary = summary
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._writer = asyncio.create_task(
            self._write_lines(), name=f"trace-writer-{summary.id}"
        )
        self._writer.add_done_callback(task_done_callback)

    def record(self, event: dict[str, Any]) -> None:
        self.summary.event_count += 1
        self._queue.put_nowait(json.dumps(event, default=str) + "\n")

    async def _write_lines(self) -> None:
        async with aiofiles.open(self.summary.path, "a", encoding="utf-8") as f:
            while True:
                line = await self._queue.get()
                if line is None:
                    return
                await f.write(line)

    async def close(self) -> None:
        self._queue.put_nowait(None)
        try:
            await self._writer
        except OSError as e:
            logger.warning("Trace %s could not be written: %s", self.summary.id, e)


class MonitorHub:
    def __init__(
        self,
        *,
        trace_dir: Path,
        info: RuntimeInfo | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.trace_dir = trace_dir
        self.info = info or RuntimeInfo()
        self.last_error: str | None = None
        self._history_limit = history_limit
        self._history: OrderedDict[str, HistoryEntry] = OrderedDict()
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()
        self._active_trace: _ActiveTrace | None = None
        self._recent_traces: list[TraceSummary] = []
        self._codex: CodexAgentAdapter | None = None

    # ── Codex wiring ─────────────────────────────────────────────────────

    def attach_codex(self, adapter: CodexAgentAdapter) -> None:
        """Record the adapter's IPC frames and report its runtime state."""
        self._codex = adapter
        adapter.on_ipc_frame(self._record_ipc_frame)

    def _record_ipc_frame(self, event: CodexIpcFrameEvent) -> None:
        self.push_history(
            "ipc",
            event.direction,
            event.frame.to_wire(),
            {"method": event.method, "threadId": event.thread_id},
        )

    # ── History ──────────────────────────────────────────────────────────

    def push_history(
        self,
        source: HistorySource,
        direction: HistoryDirection,
        payload: Any,
        meta: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=str(uuid.uuid4()),
            at=_now_iso(),
            source=source,
            direction=direction,
            payload=payload,
            meta=meta or {},
        )
        self._history[entry.id] = entry
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)

        wire = entry.to_wire()
        if self._active_trace is not None:
            self._active_trace.record({"type": "history", **wire})
        self.publish({"type": "history", "entry": wire})
        return entry

    def push_action(
        self, action: str, stage: ActionStage, details: dict[str, Any]
    ) -> None:
        logger.info(
            "Action %s %s %s", action, stage, summarize_action_details(details)
        )
        self.push_history(
            "app", "out", {"type": "action", "action": action, "stage": stage, **details}
        )

    def push_action_error(
        self, action: str, error: BaseException, details: dict[str, Any]
    ) -> str:
        """Record a failed action; returns the message shown to the caller."""
        message = str(error) or type(error).__name__
        logger.error(
            "Action %s failed: %s %s",
            action,
            message,
            summarize_action_details(details),
        )
        self.push_action(action, "error", {**details, "error": message})
        self.push_system("Action failed", {"action": action, **details, "error": message})
        return message

    def push_system(self, message: str, details: dict[str, Any] | None = None) -> None:
        logger.info("%s %s", message, details or {})
        self.push_history("system", "system", {"message": message, "details": details or {}})

    def history(self, limit: int) -> list[HistoryEntry]:
        entries = list(self._history.values())
        return entries[-limit:] if limit > 0 else []

    def get_entry(self, entry_id: str) -> HistoryEntry | None:
        return self._history.get(entry_id)

    @property
    def history_count(self) -> int:
        return len(self._history)

    # ── Subscribers ──────────────────────────────────────────────────────

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, payload: dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.debug("Dropping %s event for slow subscriber", payload.get("type"))

    # ── Runtime state ────────────────────────────────────────────────────

    def runtime_state(self) -> dict[str, Any]:
        codex_state = self._codex.runtime_state if self._codex is not None else None
        return {
            "appExecutable": self.info.app_executable,
            "socketPath": self.info.socket_path,
            "gitCommit": self.info.git_commit,
            "appReady": codex_state.app_ready if codex_state else False,
            "ipcConnected": codex_state.ipc_connected if codex_state else False,
            "ipcInitialized": codex_state.ipc_initialized if codex_state else False,
            "codexAvailable": codex_state.codex_available if codex_state else False,
            "lastError": self.last_error
            or (codex_state.last_error if codex_state else None),
            "historyCount": len(self._history),
            "threadOwnerCount": self._codex.thread_owner_count if self._codex else 0,
            "activeTrace": (
                self._active_trace.summary.to_wire() if self._active_trace else None
            ),
        }

    def broadcast_state(self) -> None:
        self.publish({"type": "state", "state": self.runtime_state()})

    # ── Traces ───────────────────────────────────────────────────────────

    @property
    def active_trace(self) -> TraceSummary | None:
        return self._active_trace.summary if self._active_trace else None

    @property
    def recent_traces(self) -> list[TraceSummary]:
        return list(self._recent_traces)

    def start_trace(self, label: str) -> TraceSummary:
        if self._active_trace is not None:
            raise TraceStateError("A trace is already active")

        self.trace_dir.mkdir(parents=True, exist_ok=True)
        trace_id = f"{int(time.time() * 1000)}-{uuid.uuid4()}"
        summary = TraceSummary(
            id=trace_id,
            label=label,
            started_at=_now_iso(),
            path=self.trace_dir / f"{trace_id}.ndjson",
        )
        self._active_trace = _ActiveTrace(summary)
        self.push_system("Trace started", {"traceId": trace_id, "label": label})
        return summary

    def mark_trace(self, note: str) -> None:
        if self._active_trace is None:
            raise TraceStateError("No active trace")
        self._active_trace.record({"type": "trace-marker", "at": _now_iso(), "note": note})

    async def stop_trace(self) -> TraceSummary:
        trace = self._active_trace
        if trace is None:
            raise TraceStateError("No active trace")

        self._active_trace = None
        trace.summary.stopped_at = _now_iso()
        await trace.close()

        self._recent_traces.insert(0, trace.summary)
        del self._recent_traces[RECENT_TRACE_LIMIT:]
        self.push_system("Trace stopped", {"traceId": trace.summary.id})
        return trace.summary

    def find_trace(self, trace_id: str) -> TraceSummary | None:
        for summary in self._recent_traces:
            if summary.id == trace_id:
                return summary
        return None

    async def close(self) -> None:
        """Flush and close the active trace, if any."""
        trace = self._active_trace
        if trace is None:
            return
        self._active_trace = None
        trace.summary.stopped_at = _now_iso()
        await trace.close()
