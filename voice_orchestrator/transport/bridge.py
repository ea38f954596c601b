"""Seam between the call session and external speech services.

Speech recognition and synthesis are provided by the surrounding deployment.
A bridge turns inbound audio into input events (typically
``UserTurnStarted`` when speech begins and ``UserTurnEnded`` with the
transcript when it stops) and agent text into outbound audio chunks.
"""

from __future__ import annotations

from typing import Any, Protocol


class SpeechBridge(Protocol):
    async def transcribe(self, audio: bytes) -> list[Any]:
        """Feed inbound audio; return any input events it completes."""
        ...

    async def synthesize(self, text: str) -> list[bytes]:
        """Return audio chunks speaking ``text`` in the stream's output format."""
        ...

    async def interrupt(self) -> None:
        """Stop any synthesis in progress."""
        ...


class NullSpeechBridge:
    """Bridge for text-only sessions: audio in is ignored, no audio out."""

    async def transcribe(self, audio: bytes) -> list[Any]:
        return []

    async def synthesize(self, text: str) -> list[bytes]:
        return []

    async def interrupt(self) -> None:
        return None
