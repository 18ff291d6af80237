"""Tests for the OpenCode adapter, service and mapper over httpx.MockTransport."""

import json

import httpx
import pytest

from farfield.agents.adapters.opencode import (
    OpenCodeAgentAdapter,
    normalize_directory_input,
    normalize_directory_list,
)
from farfield.agents.base import (
    CreateThreadInput,
    InterruptInput,
    ListThreadsInput,
    ReadThreadInput,
    SendMessageInput,
)
from farfield.errors import AgentUnavailableError, CapabilityUnavailableError
from farfield.opencode.client import OpenCodeConnection, OpenCodeError
from farfield.opencode.mapper import session_to_conversation_state, session_to_thread_list_item


def _session(session_id: str, directory: str, title: str = "Fix bug") -> dict:
    return {
        "id": session_id,
        "title": title,
        "directory": directory,
        "time": {"created": 1_700_000_000_000, "updated": 1_700_000_500_000},
    }


class FakeOpenCodeServer:
    """Routes MockTransport requests; records (method, path, directory, body)."""

    def __init__(self, projects: dict[str, list[dict]]) -> None:
        self.projects = projects
        self.requests: list[tuple[str, str, str | None, object]] = []
        self.messages: dict[str, list[dict]] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        directory = request.url.params.get("directory")
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.requests.append((request.method, path, directory, body))

        if path == "/project":
            return httpx.Response(200, json=[{"worktree": d} for d in self.projects] + [{"worktree": " "}])
        if path == "/session" and request.method == "GET":
            return httpx.Response(200, json=self.projects.get(directory, []))
        if path == "/session" and request.method == "POST":
            created = _session("ses_new", directory or "/default", body.get("title", ""))
            return httpx.Response(200, json=created)
        if path.endswith("/message") and request.method == "GET":
            return httpx.Response(200, json=self.messages.get(path.split("/")[2], []))
        if path.endswith("/message") and request.method == "POST":
            return httpx.Response(200, json={"ok": True})
        if path.endswith("/abort"):
            return httpx.Response(200, content=b"")
        if path.startswith("/session/"):
            session_id = path.split("/")[2]
            for sessions in self.projects.values():
                for session in sessions:
                    if session["id"] == session_id:
                        return httpx.Response(200, json=session)
            return httpx.Response(404, text="not found")
        return httpx.Response(404)


async def _adapter(server: FakeOpenCodeServer) -> OpenCodeAgentAdapter:
    connection = OpenCodeConnection(
        url="http://opencode.test", transport=httpx.MockTransport(server)
    )
    adapter = OpenCodeAgentAdapter(connection)
    await adapter.start()
    return adapter


@pytest.fixture
def project_dirs(tmp_path):
    a = tmp_path / "a"
    b = tmp_path / "b"
    a.mkdir()
    b.mkdir()
    return str(a), str(b)


# ── Directory normalization ──────────────────────────────────────────────


class TestDirectories:
    def test_normalize_input(self, tmp_path) -> None:
        assert normalize_directory_input(f"  {tmp_path}  ") == str(tmp_path)

    def test_normalize_input_missing(self, tmp_path) -> None:
        with pytest.raises(ValueError, match="does not exist"):
            normalize_directory_input(str(tmp_path / "missing"))

    def test_normalize_input_file(self, tmp_path) -> None:
        path = tmp_path / "f.txt"
        path.write_text("x")
        with pytest.raises(ValueError, match="not a directory"):
            normalize_directory_input(str(path))

    def test_normalize_input_blank(self) -> None:
        with pytest.raises(ValueError, match="required"):
            normalize_directory_input("   ")

    def test_normalize_list_sorted_unique(self) -> None:
        assert normalize_directory_list(["/b", " /a", "/b/", "", "/a"]) == ["/a", "/b"]


# ── Mapper ───────────────────────────────────────────────────────────────


class TestMapper:
    def test_thread_list_item(self) -> None:
        item = session_to_thread_list_item(_session("ses_1", "/repo"))
        assert item == {
            "id": "ses_1",
            "preview": "Fix bug",
            "modelProvider": "opencode",
            "createdAt": 1_700_000_000,
            "updatedAt": 1_700_000_500,
            "cwd": "/repo",
            "source": "opencode",
        }

    def test_missing_updated_uses_created(self) -> None:
        session = {"id": "ses_1", "time": {"created": 5000}}
        item = session_to_thread_list_item(session)
        assert item["updatedAt"] == 5
        assert item["preview"] == ""

    def test_conversation_state_groups_turns(self) -> None:
        messages = [
            {"info": {"id": "m1", "role": "user"}, "parts": [{"type": "text", "text": "hi"}]},
            {
                "info": {"id": "m2", "role": "assistant", "modelID": "claude", "time": {"completed": 1}},
                "parts": [
                    {"id": "p1", "type": "reasoning", "text": "think"},
                    {"id": "p2", "type": "text", "text": "hello"},
                    {"id": "p3", "type": "step-start"},
                ],
            },
            {"info": {"id": "m3", "role": "user"}, "parts": [{"type": "text", "text": "again"}]},
            {"info": {"id": "m4", "role": "assistant"}, "parts": [{"id": "p4", "type": "tool", "tool": "bash"}]},
        ]
        state = session_to_conversation_state(_session("ses_1", "/repo"), messages)
        assert state["id"] == "ses_1"
        assert state["latestModel"] == "claude"
        assert state["requests"] == []
        first, second = state["turns"]
        assert [i["type"] for i in first["items"]] == ["userMessage", "reasoning", "agentMessage"]
        assert first["status"] == "completed"
        assert second["items"][1]["type"] == "toolCall"
        assert second["status"] == "inProgress"


# ── Adapter ──────────────────────────────────────────────────────────────


class TestOpenCodeAdapter:
    @pytest.mark.asyncio
    async def test_not_connected_before_start(self) -> None:
        adapter = OpenCodeAgentAdapter(url="http://opencode.test")
        assert adapter.is_connected() is False
        with pytest.raises(AgentUnavailableError, match="not connected"):
            await adapter.list_threads(ListThreadsInput())

    @pytest.mark.asyncio
    async def test_list_threads_across_projects(self, project_dirs) -> None:
        a, b = project_dirs
        server = FakeOpenCodeServer({a: [_session("ses_a", a)], b: [_session("ses_b", b)]})
        adapter = await _adapter(server)
        result = await adapter.list_threads(ListThreadsInput())
        assert sorted(t["id"] for t in result.data) == ["ses_a", "ses_b"]
        assert adapter.thread_directory("ses_b") == b
        await adapter.stop()
        assert adapter.is_connected() is False

    @pytest.mark.asyncio
    async def test_project_directories(self, project_dirs) -> None:
        a, b = project_dirs
        adapter = await _adapter(FakeOpenCodeServer({b: [], a: []}))
        assert await adapter.list_project_directories() == [a, b]

    @pytest.mark.asyncio
    async def test_create_thread_in_directory(self, project_dirs) -> None:
        a, _ = project_dirs
        server = FakeOpenCodeServer({})
        adapter = await _adapter(server)
        result = await adapter.create_thread(CreateThreadInput(cwd=a))
        assert result.thread_id == "ses_new"
        assert result.cwd == a
        assert server.requests[-1] == ("POST", "/session", a, {})
        assert adapter.thread_directory("ses_new") == a

    @pytest.mark.asyncio
    async def test_create_thread_rejects_missing_directory(self, tmp_path) -> None:
        adapter = await _adapter(FakeOpenCodeServer({}))
        with pytest.raises(ValueError, match="does not exist"):
            await adapter.create_thread(CreateThreadInput(cwd=str(tmp_path / "nope")))

    @pytest.mark.asyncio
    async def test_read_thread_scoped_to_directory(self, project_dirs) -> None:
        a, _ = project_dirs
        server = FakeOpenCodeServer({a: [_session("ses_a", a)]})
        server.messages["ses_a"] = [
            {"info": {"id": "m1", "role": "user"}, "parts": [{"type": "text", "text": "hi"}]}
        ]
        adapter = await _adapter(server)
        await adapter.list_threads(ListThreadsInput())
        result = await adapter.read_thread(ReadThreadInput("ses_a"))
        assert result.thread["turns"][0]["items"][0]["type"] == "userMessage"
        assert {d for _, p, d, _ in server.requests if p.startswith("/session/ses_a")} == {a}

    @pytest.mark.asyncio
    async def test_send_message_and_interrupt(self, project_dirs) -> None:
        a, _ = project_dirs
        server = FakeOpenCodeServer({a: [_session("ses_a", a)]})
        adapter = await _adapter(server)
        await adapter.list_threads(ListThreadsInput())
        await adapter.send_message(SendMessageInput("ses_a", "  hello  "))
        assert server.requests[-1] == (
            "POST",
            "/session/ses_a/message",
            a,
            {"parts": [{"type": "text", "text": "hello"}]},
        )
        await adapter.interrupt(InterruptInput("ses_a"))
        assert server.requests[-1][:2] == ("POST", "/session/ses_a/abort")

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self) -> None:
        adapter = await _adapter(FakeOpenCodeServer({}))
        with pytest.raises(OpenCodeError, match="404"):
            await adapter.read_thread(ReadThreadInput("ses_missing"))

    @pytest.mark.asyncio
    async def test_optional_capabilities_refused(self) -> None:
        adapter = await _adapter(FakeOpenCodeServer({}))
        with pytest.raises(CapabilityUnavailableError):
            await adapter.read_live_state("ses_a")
