"""The agent contract the turn engine drives.

An agent is any object with an async generator ``process(ctx, event)`` that
yields output events. Optional attributes customise how the engine treats it:

* ``run_filter`` / ``cancel_filter``: predicates selecting which input events
  start a unit of work and which interrupt the current one;
* ``cleanup()``: called once when the call ends, sync or async;
* ``name``: used in logs.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, Protocol

from ..events import CallEnded, CallStarted, UserTurnEnded, UserTurnStarted

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..events import OutputEvent
    from .turn import TurnContext

EventFilter = Callable[[Any], bool]


def event_types(*types: type) -> EventFilter:
    """Build a filter matching events that are instances of ``types``."""

    def matches(event: Any) -> bool:
        return isinstance(event, types)

    return matches


DEFAULT_RUN_FILTER: EventFilter = event_types(CallStarted, UserTurnEnded, CallEnded)
DEFAULT_CANCEL_FILTER: EventFilter = event_types(UserTurnStarted)


class Agent(Protocol):
    def process(self, ctx: TurnContext, event: Any) -> AsyncIterator[OutputEvent]: ...


def run_filter_of(agent: Any) -> EventFilter:
    return getattr(agent, "run_filter", None) or DEFAULT_RUN_FILTER


def cancel_filter_of(agent: Any) -> EventFilter:
    return getattr(agent, "cancel_filter", None) or DEFAULT_CANCEL_FILTER


def agent_name(agent: Any) -> str:
    return getattr(agent, "name", None) or type(agent).__name__


def state_key(agent: Any) -> Any:
    """Key of the agent's scope in the call state block."""
    return getattr(agent, "state_key", None) or agent


async def cleanup_agent(agent: Any) -> None:
    cleanup = getattr(agent, "cleanup", None)
    if cleanup is None:
        return
    result = cleanup()
    if inspect.isawaitable(result):
        await result
