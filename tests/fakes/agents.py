from __future__ import annotations

from typing import Any

from voice_orchestrator.events import AgentHandedOff, AgentSendText, UserTurnEnded


class RecordingAgent:
    """Minimal agent that answers every user turn and remembers what it saw.

    ``hand_to`` makes the agent hand the call off on its next user turn.
    """

    def __init__(self, name: str, reply: str = "ok") -> None:
        self.name = name
        self.reply = reply
        self.seen: list[Any] = []
        self.cleaned = 0
        self.hand_to: Any = None

    async def process(self, ctx, event):
        self.seen.append(event)
        ctx.state["turns"] = ctx.state.get("turns", 0) + 1
        if isinstance(event, UserTurnEnded) and self.hand_to is not None:
            target, self.hand_to = self.hand_to, None
            async for out in ctx.hand_off(target):
                yield out
            return
        if isinstance(event, (AgentHandedOff, UserTurnEnded)):
            yield AgentSendText(text=f"{self.name}: {self.reply}")

    def cleanup(self) -> None:
        self.cleaned += 1


class AsyncCleanupAgent(RecordingAgent):
    async def cleanup(self) -> None:
        self.cleaned += 1
