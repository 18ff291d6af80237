"""HTTP client for an opencode server and its session-to-thread mapping."""
