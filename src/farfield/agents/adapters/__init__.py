"""Backend-specific ``AgentAdapter`` implementations."""
