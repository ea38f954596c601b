from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from ..errors import ErrorCategory
from ..metrics import background_tools_in_flight
from ..tools.invoke import ToolInvocation
from .interruption import CancellationToken

YieldHandler = Callable[[ToolInvocation, Any, Any], Awaitable[None]]


class BackgroundSupervisor:
    """Runs background loopback tools for one call.

    Tasks are independent of the call's units of work and are not affected by
    interruptions; only :meth:`shutdown` stops them. Their yields are handed
    to ``on_yield`` one at a time, in the order they arrive.
    """

    def __init__(self, call_id: str, on_yield: YieldHandler) -> None:
        self.call_id = call_id
        self.token = CancellationToken()
        self._on_yield = on_yield
        self._yield_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self.log = logging.getLogger(__name__)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def spawn(
        self, invocation: ToolInvocation, values: AsyncIterator[Any], owner: Any
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._drive(invocation, values, owner), name=f"background:{self.call_id}:{invocation.name}"
        )
        self._tasks.add(task)
        background_tools_in_flight.inc()
        task.add_done_callback(self._finished)
        return task

    async def _drive(self, invocation: ToolInvocation, values: AsyncIterator[Any], owner: Any) -> None:
        async with contextlib.aclosing(values) as stream:
            async for value in stream:
                async with self._yield_lock:
                    await self._on_yield(invocation, owner, value)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        background_tools_in_flight.dec()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.error(
                "background_tool_failed",
                exc_info=exc,
                extra={"call_id": self.call_id, "error_category": ErrorCategory.TOOL.value},
            )

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every background task; results already delivered are kept."""
        self.token.cancel("shutdown")
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
