"""Thread index — which agent owns which thread."""

from .base import AgentId


class ThreadIndex:
    """Mutable thread-id → agent-id table; re-registering overwrites."""

    def __init__(self) -> None:
        self._agent_by_thread: dict[str, AgentId] = {}

    def register(self, thread_id: str, agent_id: AgentId) -> None:
        self._agent_by_thread[thread_id] = agent_id

    def resolve(self, thread_id: str) -> AgentId | None:
        return self._agent_by_thread.get(thread_id)

    def list(self) -> list[tuple[str, AgentId]]:
        return list(self._agent_by_thread.items())

    def __len__(self) -> int:
        return len(self._agent_by_thread)
