"""Farfield — one interface over several coding-agent backends.

Backends (Codex, OpenCode) are wrapped by adapters in ``farfield.agents``;
wire shapes live in ``farfield.protocol``; ``farfield.live_state`` folds the
thread stream into a consistent per-thread view.
"""

__version__ = "0.2.0"
