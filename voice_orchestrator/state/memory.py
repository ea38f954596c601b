from __future__ import annotations

from collections.abc import Hashable
from typing import Any


class CallState:
    """Per-call state block.

    Each agent that takes part in the call gets its own scope, keyed by the
    agent object itself, so one agent never sees another's state, not even
    after a handoff.
    """

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        self._scopes: dict[Hashable, dict[str, Any]] = {}

    def scope(self, owner: Hashable) -> dict[str, Any]:
        return self._scopes.setdefault(owner, {})

    def __len__(self) -> int:
        return len(self._scopes)


class StateArena:
    """Allocates one :class:`CallState` per call id and tears it down on demand."""

    def __init__(self) -> None:
        self._blocks: dict[str, CallState] = {}

    def allocate(self, call_id: str) -> CallState:
        block = self._blocks.get(call_id)
        if block is None:
            block = CallState(call_id)
            self._blocks[call_id] = block
        return block

    def get(self, call_id: str) -> CallState | None:
        return self._blocks.get(call_id)

    def release(self, call_id: str) -> None:
        self._blocks.pop(call_id, None)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._blocks
