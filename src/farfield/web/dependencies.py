"""Request-scoped helpers shared by the routers.

The dispatcher, monitor hub and (optional) Codex adapter live on
``app.state``; routers get them through ``Depends``. Request bodies are
read raw and validated with ``parse_body`` so every body error carries
the schema name and the offending paths.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fastapi import Request

from ..agents.adapters.codex import CodexAgentAdapter
from ..dispatch import AgentDispatcher
from ..errors import ActionFailedError, DispatchError
from ..http_schemas import RequestBody, parse_body
from ..monitor import MonitorHub
from ..protocol import ProtocolValidationError

T = TypeVar("T")
BodyT = TypeVar("BodyT", bound=RequestBody)


def get_dispatcher(request: Request) -> AgentDispatcher:
    return request.app.state.dispatcher


def get_hub(request: Request) -> MonitorHub:
    return request.app.state.hub


def get_codex(request: Request) -> CodexAgentAdapter | None:
    return request.app.state.codex


async def read_body(request: Request, schema: type[BodyT]) -> BodyT:
    """Parse the JSON request body against ``schema``; an empty body is ``{}``."""
    raw = await request.body()
    if not raw.strip():
        value: Any = {}
    else:
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolValidationError(
                schema.__name__, [f"<root>: invalid JSON: {e.msg}"]
            ) from e
    return parse_body(schema, value)


async def attempt_action(
    hub: MonitorHub,
    action: str,
    details: dict[str, Any],
    call: Callable[[], Awaitable[T]],
) -> T:
    """Run an adapter call, recording the attempt and any failure in history.

    Routing errors keep their own status; any other failure becomes an
    ``ActionFailedError`` (HTTP 500) carrying the recorded message.
    """
    hub.push_action(action, "attempt", details)
    try:
        return await call()
    except DispatchError as e:
        hub.push_action_error(action, e, details)
        raise
    except Exception as e:
        message = hub.push_action_error(action, e, details)
        raise ActionFailedError(action, message, details.get("threadId")) from e
