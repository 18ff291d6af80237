"""Runtime error hierarchy shared by the registry, dispatch, adapters and server.

Configuration errors are fatal at startup; dispatch errors are recoverable
and carry enough context to be shown to the caller. Wire validation errors
live in ``farfield.protocol.errors``.
"""


class FarfieldError(Exception):
    """Base class for farfield runtime errors."""


# ── Configuration (fatal) ────────────────────────────────────────────────


class ConfigurationError(FarfieldError):
    """Invalid startup configuration (unknown agent id, bad adapter set)."""


class DuplicateAgentError(ConfigurationError):
    """Two adapters were registered under the same agent id."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Duplicate agent adapter id: {agent_id}")


# ── Dispatch (recoverable) ───────────────────────────────────────────────


class DispatchError(FarfieldError):
    """An operation could not be routed to a suitable adapter."""


class ThreadNotRegisteredError(DispatchError):
    def __init__(self, thread_id: str) -> None:
        self.thread_id = thread_id
        super().__init__(
            f"Thread {thread_id} is not registered. Refresh thread list and try again."
        )


class AgentUnavailableError(DispatchError):
    """The owning agent is unknown, disabled or disconnected."""

    def __init__(self, agent_id: str | None, reason: str) -> None:
        self.agent_id = agent_id
        super().__init__(reason)


class CapabilityUnavailableError(DispatchError):
    """The adapter does not offer the requested optional operation."""

    def __init__(self, agent_id: str, capability: str) -> None:
        self.agent_id = agent_id
        self.capability = capability
        super().__init__(f"Agent {agent_id} does not support {capability}")


class OwnerUnknownError(DispatchError):
    def __init__(self, thread_id: str) -> None:
        self.thread_id = thread_id
        super().__init__(
            "No owner client id is known for this thread yet. "
            "Open the thread in the desktop app first."
        )


# ── Live state ───────────────────────────────────────────────────────────


class ThreadStreamReductionError(FarfieldError):
    """A patch could not be applied in strict mode."""

    def __init__(
        self, message: str, thread_id: str, event_index: int, patch_index: int
    ) -> None:
        self.thread_id = thread_id
        self.event_index = event_index
        self.patch_index = patch_index
        super().__init__(
            f"{message} (thread={thread_id}, event={event_index}, patch={patch_index})"
        )


# ── HTTP surface ─────────────────────────────────────────────────────────


class ActionFailedError(FarfieldError):
    """A thread action reached its adapter and the adapter call failed."""

    def __init__(self, action: str, message: str, thread_id: str | None = None) -> None:
        self.action = action
        self.thread_id = thread_id
        super().__init__(message)


class TraceStateError(FarfieldError):
    """Trace start while one is active, or mark/stop with none active."""


class ReplayError(FarfieldError):
    """A history entry cannot be replayed."""
