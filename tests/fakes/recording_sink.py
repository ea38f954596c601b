from __future__ import annotations

from typing import Any

from voice_orchestrator.events import AgentSendText


class RecordingSink:
    """Output sink that remembers everything the engine sent, in order."""

    def __init__(self) -> None:
        self.log: list[Any] = []

    async def send(self, event: Any) -> None:
        self.log.append(event)

    async def clear(self) -> None:
        self.log.append("clear")

    @property
    def events(self) -> list[Any]:
        return [item for item in self.log if item != "clear"]

    @property
    def clears(self) -> int:
        return sum(1 for item in self.log if item == "clear")

    @property
    def texts(self) -> list[str]:
        return [item.text for item in self.log if isinstance(item, AgentSendText)]
