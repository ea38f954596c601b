from __future__ import annotations

import asyncio
import json
from typing import Any

from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close


class FakeConnection:
    """In-memory stand-in for a server-side ``websockets`` connection.

    Frames pushed with :meth:`feed` are returned by :meth:`recv`; pushing
    ``None`` simulates the client hanging up.
    """

    def __init__(self, frames: list[Any] | None = None) -> None:
        self._inbound = asyncio.Queue[str | None]()
        for frame in frames or ():
            self.feed(frame)
        self.sent: list[dict] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.closed = asyncio.Event()
        self.last_activity = 0.0

    def feed(self, frame: Any) -> None:
        if frame is None or isinstance(frame, str):
            self._inbound.put_nowait(frame)
        else:
            self._inbound.put_nowait(json.dumps(frame))

    def protocol_ping(self) -> None:
        """Simulate a WebSocket ping, which never reaches :meth:`recv`."""
        self.last_activity = asyncio.get_running_loop().time()

    async def recv(self) -> str:
        msg = await self._inbound.get()
        if msg is None:
            raise ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)
        return msg

    async def send(self, msg: str) -> None:
        self.sent.append(json.loads(msg))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason
        self.closed.set()

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, frame_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame["type"] == frame_type]
