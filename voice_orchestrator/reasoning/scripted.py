"""Offline reasoner used by ``voice-orchestrator test --fake-client``."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from ..events import UserDtmfSent, UserTextSent, UserTurnEnded
from .base import ReasoningChunk, ReasoningRequest, TextDelta

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.interruption import CancellationToken


class EchoReasoner:
    """Repeats the most recent user input back."""

    async def stream(
        self, request: ReasoningRequest, token: CancellationToken
    ) -> AsyncIterator[ReasoningChunk]:
        token.raise_if_cancelled()
        for event in reversed(request.history):
            if isinstance(event, UserTurnEnded):
                heard = event.text
            elif isinstance(event, UserTextSent):
                heard = event.content
            elif isinstance(event, UserDtmfSent):
                heard = f"[DTMF {event.button}]"
            else:
                continue
            yield TextDelta(f"You said: {heard}")
            return
        yield TextDelta("I didn't catch that.")
