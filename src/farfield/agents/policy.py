"""Capability policy — one place that answers "can this adapter do X now?".

A capability is available only when the adapter flags it AND reports
itself connected at call time. Dispatch code asks the policy instead of
reading ``AgentCapabilities`` fields directly.
"""

from .base import AgentAdapter, Capability


class CapabilityPolicy:
    """Answers availability queries for one adapter."""

    def __init__(self, adapter: AgentAdapter) -> None:
        self._adapter = adapter

    def is_flagged(self, capability: Capability) -> bool:
        return self._adapter.capabilities.supports(capability)

    def is_available(self, capability: Capability) -> bool:
        """Flagged and connected right now."""
        return self.is_flagged(capability) and self._adapter.is_connected()

    def is_eligible(self, capability: Capability) -> bool:
        """Enabled, connected and flagged — the rule used for routing."""
        return self._adapter.is_enabled() and self.is_available(capability)

    def available(self) -> tuple[Capability, ...]:
        if not self._adapter.is_connected():
            return ()
        return self._adapter.capabilities.flagged()
