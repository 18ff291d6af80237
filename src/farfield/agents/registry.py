"""Agent registry — the ordered, uniquely-keyed set of adapters.

Built once at startup from the configured adapters. Insertion order is the
order of ``start_all`` and of default/capability resolution; ``stop_all``
unwinds in reverse.
"""

from collections.abc import Iterable

import structlog

from ..errors import DuplicateAgentError
from .base import AgentAdapter, AgentId, Capability
from .policy import CapabilityPolicy

logger = structlog.get_logger()


class AgentRegistry:
    """Maps agent ids to adapters, preserving registration order.

    Raises ``DuplicateAgentError`` at construction if two adapters share
    an id.
    """

    def __init__(self, adapters: Iterable[AgentAdapter]) -> None:
        self._ordered: list[AgentAdapter] = []
        self._by_id: dict[AgentId, AgentAdapter] = {}
        for adapter in adapters:
            if adapter.id in self._by_id:
                raise DuplicateAgentError(adapter.id)
            self._by_id[adapter.id] = adapter
            self._ordered.append(adapter)
            logger.debug("Registered agent adapter %r", adapter.id)

    def list_adapters(self) -> list[AgentAdapter]:
        return list(self._ordered)

    def get_adapter(self, agent_id: str) -> AgentAdapter | None:
        return self._by_id.get(agent_id)  # type: ignore[arg-type]

    def list_enabled(self) -> list[AgentAdapter]:
        return [adapter for adapter in self._ordered if adapter.is_enabled()]

    def resolve_default_agent_id(self) -> AgentId | None:
        """Id of the first enabled adapter, or ``None``."""
        enabled = self.list_enabled()
        return enabled[0].id if enabled else None

    def resolve_first_with_capability(
        self, capability: Capability
    ) -> AgentAdapter | None:
        """First enabled, connected adapter that flags *capability*."""
        for adapter in self.list_enabled():
            if CapabilityPolicy(adapter).is_available(capability):
                return adapter
        return None

    async def start_all(self) -> None:
        """Start adapters in order; the first failure aborts and propagates."""
        for adapter in self._ordered:
            logger.info("Starting agent %s", adapter.id)
            await adapter.start()

    async def stop_all(self) -> None:
        """Stop adapters in reverse order; the first failure aborts and propagates."""
        for adapter in reversed(self._ordered):
            logger.info("Stopping agent %s", adapter.id)
            await adapter.stop()
