"""Call ownership and handoffs between agents."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from ..tools.invoke import ToolInvocation, stream_events
from ..tools.registry import Tool, handoff_tool
from .agent import agent_name

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..events import OutputEvent
    from .turn import TurnContext


class HandoffCoordinator:
    """Holds the single current owner of a call.

    Every agent that has ever owned the call is remembered so it can be
    cleaned up when the call ends; a former owner keeps its own state.
    """

    def __init__(self, initial: Any, call_id: str = "") -> None:
        self.call_id = call_id
        self._owner = initial
        self._participants: list[Any] = [initial]
        self.log = logging.getLogger(__name__)

    @property
    def owner(self) -> Any:
        return self._owner

    @property
    def participants(self) -> tuple[Any, ...]:
        return tuple(self._participants)

    def reassign(self, target: Any) -> Any:
        previous = self._owner
        self._owner = target
        if not any(p is target for p in self._participants):
            self._participants.append(target)
        self.log.info(
            "owner_reassigned",
            extra={
                "call_id": self.call_id,
                "agent": agent_name(target),
                "previous_agent": agent_name(previous),
            },
        )
        return previous


class HandoffTarget:
    """A handoff tool bound to its arguments, acting as the call's owner.

    The tool function is called with the ``AgentHandedOff`` signal first and
    then with every input event routed to the call while it stays the owner.
    """

    def __init__(self, invocation: ToolInvocation) -> None:
        self.invocation = invocation
        self.agent = getattr(invocation.tool.func, "agent", None)
        self.pre_message: str | None = getattr(invocation.tool.func, "pre_message", None)

    @property
    def name(self) -> str:
        return agent_name(self.agent) if self.agent is not None else self.invocation.name

    @property
    def state_key(self) -> Any:
        return self.agent if self.agent is not None else self

    @property
    def run_filter(self) -> Any:
        return getattr(self.agent, "run_filter", None)

    @property
    def cancel_filter(self) -> Any:
        return getattr(self.agent, "cancel_filter", None)

    async def process(self, ctx: TurnContext, event: Any) -> AsyncIterator[OutputEvent]:
        async for out in stream_events(self.invocation, ctx, event=event):
            yield out


class _AgentHandoff:
    """Handoff tool body that delegates every event to ``agent``."""

    def __init__(self, agent: Any, pre_message: str | None) -> None:
        self.agent = agent
        self.pre_message = pre_message

    async def __call__(self, ctx: TurnContext, event: Any) -> AsyncIterator[OutputEvent]:
        async with contextlib.aclosing(self.agent.process(ctx, event)) as outputs:
            async for out in outputs:
                yield out


def agent_as_handoff(
    agent: Any,
    *,
    name: str | None = None,
    description: str | None = None,
    pre_message: str | None = None,
) -> Tool:
    """Wrap ``agent`` as a handoff tool.

    Calling the tool speaks ``pre_message`` (if any), hands the call to
    ``agent`` with an ``AgentHandedOff`` signal, and routes every later event
    of the call to it.
    """
    target = agent_name(agent)
    return handoff_tool(
        _AgentHandoff(agent, pre_message),
        name=name or f"transfer_to_{target}",
        description=description or f"Transfer the conversation to {target}.",
        parameters=(),
    )
