"""Uniform calling convention for the three tool paradigms.

Tool bodies may return a value, an awaitable, a generator or an async
generator; the helpers here normalize all of them into an async stream of
values. Failures raised by a tool body stay local to the invocation: they are
logged, recorded on the :class:`ToolInvocation`, and turned into an error
string the reasoning step can read.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import ErrorCategory
from ..events import OUTPUT_EVENT_TYPES, AgentSendText, AgentToolReturned
from ..metrics import tool_calls_total
from .registry import Tool

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.turn import TurnContext

log = logging.getLogger(__name__)


class InvocationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ToolInvocation:
    """Correlates a tool call id with its tool, arguments and results."""

    call_id: str
    tool: Tool
    arguments: dict[str, Any]
    status: InvocationStatus = InvocationStatus.PENDING
    results: list[Any] = field(default_factory=list)
    error: str | None = None

    @property
    def name(self) -> str:
        return self.tool.name

    def returned(self, result: Any) -> AgentToolReturned:
        return AgentToolReturned(
            tool_call_id=self.call_id,
            tool_name=self.name,
            tool_args=self.arguments,
            result=result,
        )

    def fail(self, exc: BaseException) -> str:
        self.status = InvocationStatus.FAILED
        self.error = f"Error: {exc}"
        log.warning(
            "tool_failed",
            exc_info=exc,
            extra={
                "tool_name": self.name,
                "tool_call_id": self.call_id,
                "error_category": ErrorCategory.TOOL.value,
            },
        )
        return self.error


async def iterate_result(result: Any) -> AsyncIterator[Any]:
    """Normalize a tool's return value into an async stream of values.

    A plain (or awaited) value becomes exactly one item.
    """
    if inspect.isawaitable(result):
        result = await result
    if inspect.isasyncgen(result) or hasattr(result, "__anext__"):
        async for value in result:
            yield value
        return
    if inspect.isgenerator(result):
        for value in result:
            yield value
        return
    yield result


async def _values(
    invocation: ToolInvocation, ctx: TurnContext, **extra: Any
) -> AsyncIterator[Any]:
    tool_calls_total.inc()
    log.info(
        "tool_invoked",
        extra={
            "tool_name": invocation.name,
            "tool_call_id": invocation.call_id,
            "paradigm": invocation.tool.paradigm.value,
            "background": invocation.tool.background,
        },
    )
    # A handoff target reuses its invocation for every event it handles.
    invocation.status = InvocationStatus.PENDING
    invocation.error = None
    invocation.results.clear()
    try:
        result = invocation.tool.func(ctx, **invocation.arguments, **extra)
        async for value in iterate_result(result):
            invocation.results.append(value)
            yield value
    except (asyncio.CancelledError, GeneratorExit):
        if invocation.status is InvocationStatus.PENDING:
            invocation.status = InvocationStatus.CANCELLED
        raise
    except Exception as exc:
        yield invocation.fail(exc)
        return
    invocation.status = InvocationStatus.COMPLETED


async def run_loopback(invocation: ToolInvocation, ctx: TurnContext) -> Any:
    """Run a synchronous loopback tool to completion.

    A single value is returned as-is; several yields are returned as a list.
    """
    values = [value async for value in _values(invocation, ctx)]
    if invocation.status is InvocationStatus.FAILED:
        return invocation.error
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


def stream_loopback(invocation: ToolInvocation, ctx: TurnContext) -> AsyncIterator[Any]:
    """Yield a background loopback tool's values as they are produced."""
    return _values(invocation, ctx)


async def stream_events(
    invocation: ToolInvocation, ctx: TurnContext, **extra: Any
) -> AsyncIterator[Any]:
    """Yield the output events of a passthrough or handoff tool.

    Bare strings are spoken as :class:`AgentSendText`; anything else that is
    not an output event fails the invocation.
    """
    async with contextlib.aclosing(_values(invocation, ctx, **extra)) as values:
        async for value in values:
            if invocation.status is InvocationStatus.FAILED:
                return
            if isinstance(value, str):
                value = AgentSendText(text=value)
            elif not isinstance(value, OUTPUT_EVENT_TYPES):
                invocation.fail(TypeError(f"{type(value).__name__} is not an output event"))
                return
            yield value
