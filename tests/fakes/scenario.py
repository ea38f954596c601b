from __future__ import annotations

import asyncio
from collections.abc import Callable

from voice_orchestrator.events import UserTextSent, UserTurnEnded, UserTurnStarted


def said(text: str) -> UserTurnEnded:
    return UserTurnEnded(content=(UserTextSent(content=text),))


async def user_says(engine, text: str) -> None:
    await engine.handle(UserTurnStarted())
    await engine.handle(said(text))


async def settle(engine, rounds: int = 5) -> None:
    """Wait until the engine has no queued work, including work triggered
    by background tools that resolved meanwhile."""
    for _ in range(rounds):
        await asyncio.sleep(0.01)
        await engine.join()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)
