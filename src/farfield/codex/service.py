"""Follower commands sent to the thread's owner client over desktop IPC."""

from typing import Any

from ..protocol.thread import parse_user_input_response_payload
from .ipc_client import DesktopIpcClient

FOLLOWER_VERSION = 1


class CodexMonitorService:
    def __init__(self, ipc_client: DesktopIpcClient) -> None:
        self._ipc = ipc_client

    async def _send(self, method: str, params: dict[str, Any], owner_client_id: str) -> None:
        await self._ipc.send_request_and_wait(
            method,
            params,
            target_client_id=owner_client_id,
            version=FOLLOWER_VERSION,
        )

    async def start_turn(
        self,
        *,
        thread_id: str,
        owner_client_id: str,
        text: str,
        turn_start_template: dict[str, Any],
        cwd: str | None = None,
        is_steering: bool = False,
    ) -> None:
        """Start (or steer) a turn using a previous turn's params as template."""
        text = text.strip()
        if not text:
            raise ValueError("Message text is required")

        attachments = turn_start_template.get("attachments")
        turn_start_params = {
            **turn_start_template,
            "threadId": thread_id,
            "input": [{"type": "text", "text": text}],
            "cwd": cwd or turn_start_template.get("cwd"),
            "attachments": attachments if isinstance(attachments, list) else [],
        }
        await self._send(
            "thread-follower-start-turn",
            {
                "conversationId": thread_id,
                "turnStartParams": turn_start_params,
                "isSteering": is_steering,
            },
            owner_client_id,
        )

    async def set_collaboration_mode(
        self, *, thread_id: str, owner_client_id: str, collaboration_mode: dict[str, Any]
    ) -> None:
        await self._send(
            "thread-follower-set-collaboration-mode",
            {"conversationId": thread_id, "collaborationMode": collaboration_mode},
            owner_client_id,
        )

    async def submit_user_input(
        self,
        *,
        thread_id: str,
        owner_client_id: str,
        request_id: int,
        response: dict[str, Any],
    ) -> None:
        payload = parse_user_input_response_payload(response)
        await self._send(
            "thread-follower-submit-user-input",
            {
                "conversationId": thread_id,
                "requestId": request_id,
                "response": payload.model_dump(mode="json"),
            },
            owner_client_id,
        )

    async def interrupt(self, *, thread_id: str, owner_client_id: str) -> None:
        await self._send(
            "thread-follower-interrupt-turn",
            {"conversationId": thread_id},
            owner_client_id,
        )
