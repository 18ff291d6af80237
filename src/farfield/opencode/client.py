"""Connection to an opencode server — attach by URL or spawn ``opencode serve``.

All HTTP goes through one ``httpx.AsyncClient``. A spawned server is started
on 127.0.0.1 and its URL is read from the "listening on" line it prints.
"""

import asyncio
import re
from typing import Any

import httpx
import structlog

from ..utils import task_done_callback

logger = structlog.get_logger()

DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_TIMEOUT = 30.0
_LISTENING = re.compile(r"listening on\s+(https?://\S+)")


class OpenCodeError(Exception):
    """The opencode server could not be reached or rejected a request."""


class OpenCodeConnection:
    def __init__(
        self,
        *,
        url: str | None = None,
        port: int = 0,
        hostname: str = DEFAULT_HOSTNAME,
        executable: str = "opencode",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._port = port
        self._hostname = hostname
        self._executable = executable
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._server: asyncio.subprocess.Process | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._base_url: str | None = None

    @property
    def url(self) -> str | None:
        return self._base_url or self._url

    def is_connected(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        base_url = self._url or await self._spawn_server()
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=self._timeout, transport=self._transport
        )
        logger.info("Connected to opencode at %s", base_url)

    async def _spawn_server(self) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self._executable,
                "serve",
                f"--hostname={self._hostname}",
                f"--port={self._port}",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise OpenCodeError(f"Failed to start opencode server: {e}") from e

        self._server = process
        try:
            url = await asyncio.wait_for(self._read_url(process), self._timeout)
        except OpenCodeError:
            await self._stop_server()
            raise
        except TimeoutError as e:
            await self._stop_server()
            raise OpenCodeError(
                f"Timed out waiting for opencode server after {self._timeout}s"
            ) from e

        self._drain_task = asyncio.create_task(
            self._drain_output(process), name="opencode-output"
        )
        self._drain_task.add_done_callback(task_done_callback)
        return url

    @staticmethod
    async def _read_url(process: asyncio.subprocess.Process) -> str:
        assert process.stdout is not None
        output: list[str] = []
        while True:
            line = await process.stdout.readline()
            if not line:
                code = await process.wait()
                raise OpenCodeError(
                    f"opencode server exited with code {code}: {''.join(output)}"
                )
            text = line.decode(errors="replace")
            output.append(text)
            match = _LISTENING.search(text)
            if match:
                return match.group(1)

    @staticmethod
    async def _drain_output(process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while line := await process.stdout.readline():
            logger.debug("opencode: %s", line.decode(errors="replace").rstrip())

    async def _stop_server(self) -> None:
        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None
        process, self._server = self._server, None
        if process is None or process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except TimeoutError:
            process.kill()
            await process.wait()

    async def stop(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
        await self._stop_server()
        self._base_url = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        directory: str | None = None,
        json: Any = None,
    ) -> Any:
        """Send one request; returns the decoded JSON body (``None`` if empty)."""
        if self._client is None:
            raise OpenCodeError("OpenCode connection not started")
        params = {"directory": directory.strip()} if directory and directory.strip() else None
        try:
            response = await self._client.request(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise OpenCodeError(
                f"opencode {method} {path} failed with {e.response.status_code}: "
                f"{e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise OpenCodeError(f"opencode {method} {path} failed: {e}") from e
        if not response.content:
            return None
        return response.json()
