"""Voice orchestrator package.

This package implements the turn and event orchestration core for a voice
agent: the event model, tool registry, per-call turn engine, interruption
handling and multi-agent handoffs, plus a WebSocket transport around them.
Modules do not perform network I/O on import.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
