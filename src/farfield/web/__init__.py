"""HTTP surface: a FastAPI app over AgentDispatcher and MonitorHub."""

from farfield.web.app import create_app

__all__ = ["create_app"]
