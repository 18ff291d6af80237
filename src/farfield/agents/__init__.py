"""Agent adapter contract, registry and thread routing."""

from farfield.agents.base import (
    ALL_AGENT_IDS,
    DEFAULT_AGENT_IDS,
    AgentAdapter,
    AgentCapabilities,
    AgentDescriptor,
    AgentId,
    BaseAgentAdapter,
    Capability,
    require_capability,
)
from farfield.agents.policy import CapabilityPolicy
from farfield.agents.registry import AgentRegistry
from farfield.agents.thread_index import ThreadIndex
from farfield.agents.thread_owner import resolve_owner_client_id

__all__ = [
    "ALL_AGENT_IDS",
    "DEFAULT_AGENT_IDS",
    "AgentAdapter",
    "AgentCapabilities",
    "AgentDescriptor",
    "AgentId",
    "AgentRegistry",
    "BaseAgentAdapter",
    "Capability",
    "CapabilityPolicy",
    "ThreadIndex",
    "require_capability",
    "resolve_owner_client_id",
]
