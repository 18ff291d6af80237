"""Tests for DesktopIpcClient against an in-process Unix socket server."""

import asyncio
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from farfield.codex.errors import DesktopIpcError
from farfield.codex.ipc_client import DesktopIpcClient, IpcConnectionState
from farfield.protocol import FrameDecoder, IpcBroadcastFrame, encode_frame


class FakeDesktopApp:
    """Minimal relay: answers initialize, echoes requests, records frames."""

    def __init__(self) -> None:
        self.received: list[dict] = []
        self.writers: list[asyncio.StreamWriter] = []
        self.fail_methods: set[str] = set()
        self.silent_methods: set[str] = set()

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writers.append(writer)
        decoder = FrameDecoder()
        while chunk := await reader.read(65536):
            for frame in decoder.feed(chunk):
                self.received.append(frame)
                self._answer(frame, writer)

    def _answer(self, frame: dict, writer: asyncio.StreamWriter) -> None:
        if frame.get("type") != "request" or frame["method"] in self.silent_methods:
            return
        if frame["method"] == "initialize":
            result = {"clientId": "client-42"}
        else:
            result = {"echo": frame["params"]}
        response = {"type": "response", "requestId": frame["requestId"], "method": frame["method"]}
        if frame["method"] in self.fail_methods:
            response.update(resultType="error", error="boom")
        else:
            response.update(resultType="success", result=result)
        writer.write(encode_frame(response))

    def send(self, frame: dict) -> None:
        for writer in self.writers:
            writer.write(encode_frame(frame))

    def close_clients(self) -> None:
        for writer in self.writers:
            writer.close()


@pytest_asyncio.fixture
async def desktop():
    app = FakeDesktopApp()
    with tempfile.TemporaryDirectory(prefix="ff") as directory:
        path = str(Path(directory) / "ipc.sock")
        server = await asyncio.start_unix_server(app.handle, path=path)
        try:
            yield app, path
        finally:
            app.close_clients()
            server.close()
            await server.wait_closed()


async def _until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestDesktopIpcClient:
    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        client = DesktopIpcClient("/nonexistent/dir/ipc.sock")
        with pytest.raises(DesktopIpcError):
            await client.connect()
        assert client.is_connected() is False

    @pytest.mark.asyncio
    async def test_initialize_assigns_client_id(self, desktop) -> None:
        app, path = desktop
        states: list[IpcConnectionState] = []
        client = DesktopIpcClient(path)
        client.on_connection_state(states.append)
        await client.connect()
        await client.initialize()
        assert client.client_id == "client-42"
        assert states == [IpcConnectionState(connected=True)]
        assert app.received[0]["sourceClientId"] == "initializing-client"
        assert app.received[0]["params"] == {"clientType": "farfield"}
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_request_roundtrip(self, desktop) -> None:
        app, path = desktop
        client = DesktopIpcClient(path)
        await client.connect()
        await client.initialize()
        response = await client.send_request_and_wait(
            "thread-follower-interrupt-turn",
            {"conversationId": "thr_1"},
            target_client_id="owner-1",
            version=1,
        )
        assert response.result == {"echo": {"conversationId": "thr_1"}}
        sent = app.received[-1]
        assert sent["targetClientId"] == "owner-1"
        assert sent["sourceClientId"] == "client-42"
        assert sent["version"] == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_error_response_raises(self, desktop) -> None:
        app, path = desktop
        app.fail_methods.add("thread-follower-start-turn")
        client = DesktopIpcClient(path)
        await client.connect()
        with pytest.raises(DesktopIpcError, match="thread-follower-start-turn failed: boom"):
            await client.send_request_and_wait("thread-follower-start-turn", {})
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_request_timeout(self, desktop) -> None:
        app, path = desktop
        app.silent_methods.add("slow")
        client = DesktopIpcClient(path)
        await client.connect()
        with pytest.raises(DesktopIpcError, match="timed out: slow"):
            await client.send_request_and_wait("slow", {}, timeout=0.05)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_broadcasts_reach_listeners(self, desktop) -> None:
        app, path = desktop
        frames = []
        client = DesktopIpcClient(path)
        client.on_frame(frames.append)
        await client.connect()
        await _until(lambda: app.writers)
        app.send({"type": "broadcast", "method": "thread-stream-state-changed", "params": {}})
        await _until(lambda: frames)
        assert isinstance(frames[0], IpcBroadcastFrame)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_discovery_and_requests_declined(self, desktop) -> None:
        app, path = desktop
        client = DesktopIpcClient(path)
        await client.connect()
        await _until(lambda: app.writers)
        app.send({"type": "client-discovery-request", "requestId": "d1", "request": {}})
        app.send({"type": "request", "requestId": "r1", "method": "do-something"})
        await _until(lambda: len(app.received) >= 2)
        assert app.received[0] == {
            "type": "client-discovery-response",
            "requestId": "d1",
            "response": {"canHandle": False},
        }
        assert app.received[1]["error"] == "no-handler-for-request"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_server_close_reports_disconnect(self, desktop) -> None:
        app, path = desktop
        states: list[IpcConnectionState] = []
        client = DesktopIpcClient(path)
        client.on_connection_state(states.append)
        await client.connect()
        await _until(lambda: app.writers)
        app.close_clients()
        await _until(lambda: len(states) == 2)
        assert states[-1].connected is False
        assert states[-1].reason == "IPC socket closed"
        assert client.is_connected() is False
