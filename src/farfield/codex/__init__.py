"""Clients for the Codex backend: app-server JSON-RPC and desktop IPC."""
