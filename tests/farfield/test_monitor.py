"""Tests for MonitorHub — history, subscriber fan-out, traces and replay frames."""

import json

import pytest

import farfield.monitor as monitor
from farfield.errors import ReplayError, TraceStateError
from farfield.monitor import MonitorHub, RuntimeInfo, parse_replay_frame
from test_codex_adapter import _make, _snapshot_change, _stream_frame


def _hub(tmp_path, **kwargs) -> MonitorHub:
    return MonitorHub(trace_dir=tmp_path / "traces", **kwargs)


# ── History ──────────────────────────────────────────────────────────────


class TestHistory:
    def test_bounded_and_oldest_evicted(self, tmp_path) -> None:
        hub = _hub(tmp_path, history_limit=3)
        entries = [hub.push_history("app", "out", {"n": n}) for n in range(5)]
        assert hub.history_count == 3
        assert hub.get_entry(entries[0].id) is None
        assert hub.get_entry(entries[4].id) is entries[4]
        assert [e.payload["n"] for e in hub.history(10)] == [2, 3, 4]

    def test_limit_returns_newest_in_order(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        for n in range(4):
            hub.push_history("app", "out", {"n": n})
        assert [e.payload["n"] for e in hub.history(2)] == [2, 3]

    def test_entry_wire_shape(self, tmp_path) -> None:
        entry = _hub(tmp_path).push_history("ipc", "in", {"type": "broadcast"}, {"method": "m"})
        wire = entry.to_wire()
        assert set(wire) == {"id", "at", "source", "direction", "payload", "meta"}
        assert wire["at"].endswith("Z")
        assert wire["meta"] == {"method": "m"}

    def test_action_error_recorded_twice(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        message = hub.push_action_error("messages", RuntimeError("desktop closed"), {"threadId": "t"})
        assert message == "desktop closed"
        action, system = hub.history(2)
        assert action.payload["stage"] == "error"
        assert action.payload["error"] == "desktop closed"
        assert system.payload["message"] == "Action failed"
        assert system.payload["details"]["action"] == "messages"

    def test_error_without_message_uses_type_name(self, tmp_path) -> None:
        assert _hub(tmp_path).push_action_error("x", TimeoutError(), {}) == "TimeoutError"


# ── Subscribers ──────────────────────────────────────────────────────────


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_history_fans_out_to_every_subscriber(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        first, second = hub.subscribe(), hub.subscribe()
        entry = hub.push_system("hello")
        for queue in (first, second):
            event = queue.get_nowait()
            assert event["type"] == "history"
            assert event["entry"]["id"] == entry.id

    @pytest.mark.asyncio
    async def test_unsubscribed_queue_gets_nothing(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        queue = hub.subscribe()
        hub.unsubscribe(queue)
        hub.broadcast_state()
        assert queue.empty()
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_raising(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(monitor, "SUBSCRIBER_QUEUE_SIZE", 1)
        hub = _hub(tmp_path)
        queue = hub.subscribe()
        hub.push_system("one")
        hub.push_system("two")
        assert queue.qsize() == 1
        assert queue.get_nowait()["entry"]["payload"]["message"] == "one"


# ── Runtime state ────────────────────────────────────────────────────────


class TestRuntimeState:
    def test_defaults_without_codex(self, tmp_path) -> None:
        hub = _hub(tmp_path, info=RuntimeInfo(app_executable="codex", git_commit="abc123"))
        state = hub.runtime_state()
        assert state["appExecutable"] == "codex"
        assert state["gitCommit"] == "abc123"
        assert state["appReady"] is False
        assert state["codexAvailable"] is False
        assert state["threadOwnerCount"] == 0
        assert state["activeTrace"] is None
        assert state["lastError"] is None

    @pytest.mark.asyncio
    async def test_codex_frames_recorded_and_state_reported(self, tmp_path) -> None:
        adapter, _, ipc = _make()
        hub = _hub(tmp_path)
        hub.attach_codex(adapter)
        await adapter.start()

        ipc.push(_stream_frame(_snapshot_change()))
        (entry,) = [e for e in hub.history(10) if e.source == "ipc"]
        assert entry.direction == "in"
        assert entry.meta == {"method": "thread-stream-state-changed", "threadId": "thr_1"}
        assert entry.payload["sourceClientId"] == "owner-1"

        state = hub.runtime_state()
        assert state["appReady"] is True
        assert state["ipcInitialized"] is True
        assert state["threadOwnerCount"] == 1
        await adapter.stop()

    def test_hub_error_wins_over_codex_error(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        hub.last_error = "request failed"
        assert hub.runtime_state()["lastError"] == "request failed"


# ── Traces ───────────────────────────────────────────────────────────────


class TestTraces:
    @pytest.mark.asyncio
    async def test_start_mark_stop_writes_ndjson(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        summary = hub.start_trace("repro")
        assert hub.runtime_state()["activeTrace"]["label"] == "repro"

        hub.push_action("messages", "attempt", {"threadId": "thr_1"})
        hub.mark_trace("sent message")
        stopped = await hub.stop_trace()

        assert stopped is summary
        assert stopped.stopped_at is not None
        assert hub.active_trace is None
        lines = [json.loads(line) for line in summary.path.read_text().splitlines()]
        assert len(lines) == stopped.event_count
        assert lines[0]["payload"]["message"] == "Trace started"
        assert lines[1]["payload"]["action"] == "messages"
        assert lines[2] == {"type": "trace-marker", "at": lines[2]["at"], "note": "sent message"}
        # "Trace stopped" is pushed after the trace closed
        assert all(line.get("payload", {}).get("message") != "Trace stopped" for line in lines)

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        hub.start_trace("a")
        with pytest.raises(TraceStateError, match="already active"):
            hub.start_trace("b")
        await hub.close()

    @pytest.mark.asyncio
    async def test_mark_and_stop_without_trace(self, tmp_path) -> None:
        hub = _hub(tmp_path)
        with pytest.raises(TraceStateError, match="No active trace"):
            hub.mark_trace("x")
        with pytest.raises(TraceStateError, match="No active trace"):
            await hub.stop_trace()

    @pytest.mark.asyncio
    async def test_recent_traces_newest_first_and_capped(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(monitor, "RECENT_TRACE_LIMIT", 2)
        hub = _hub(tmp_path)
        ids = []
        for label in ("a", "b", "c"):
            ids.append(hub.start_trace(label).id)
            await hub.stop_trace()
        assert [t.id for t in hub.recent_traces] == [ids[2], ids[1]]
        assert hub.find_trace(ids[0]) is None
        assert hub.find_trace(ids[2]).label == "c"


# ── Replay frames ────────────────────────────────────────────────────────


class TestParseReplayFrame:
    def test_request(self) -> None:
        frame = parse_replay_frame(
            {
                "type": "request",
                "requestId": "r1",
                "method": "thread-follower-interrupt-turn",
                "params": {"conversationId": "thr_1"},
                "targetClientId": "owner-1",
                "version": 1,
            }
        )
        assert frame.type == "request"
        assert frame.params == {"conversationId": "thr_1"}
        assert frame.target_client_id == "owner-1"
        assert frame.version == 1

    def test_non_numeric_version_and_target_ignored(self) -> None:
        frame = parse_replay_frame(
            {"type": "broadcast", "method": "m", "version": True, "targetClientId": 5}
        )
        assert frame.version is None
        assert frame.target_client_id is None

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            (None, "unavailable"),
            ({"type": "response", "method": "m"}, "request and broadcast"),
            ({"type": "request", "method": "  "}, "invalid method"),
        ],
    )
    def test_rejected(self, payload, message) -> None:
        with pytest.raises(ReplayError, match=message):
            parse_replay_frame(payload)
