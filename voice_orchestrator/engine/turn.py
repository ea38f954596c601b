"""Per-call turn engine.

:class:`TurnEngine` receives input events for one call, records them in the
call history, interrupts in-flight work when an event matches the owner's
cancel filter, and queues a unit of work when it matches the owner's run
filter. Every output event an agent yields goes through :meth:`TurnEngine._emit`,
which appends it to history and forwards it to the :class:`OutputSink`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Protocol

from ..errors import ErrorCategory
from ..events import (
    AgentHandedOff,
    AgentSendText,
    AgentTurnEnded,
    CallEnded,
    LogMessage,
    LogMetric,
    UserTurnEnded,
)
from ..metrics import calls_total, interruptions_total, turns_total
from ..redaction import Redactor
from ..state.call import Call, CallHistory, CallStatus
from ..state.memory import StateArena
from ..tools.invoke import ToolInvocation, stream_loopback
from .agent import agent_name, cancel_filter_of, cleanup_agent, run_filter_of, state_key
from .background import BackgroundSupervisor
from .handoff import HandoffCoordinator
from .interruption import CancellationToken, InterruptionController

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EngineState(str, Enum):
    IDLE = "idle"
    REASONING = "reasoning"
    EXECUTING_TOOLS = "executing_tools"
    EMITTING = "emitting"
    ENDED = "ended"


class OutputSink(Protocol):
    """Where a call's output events go (normally the transport session)."""

    async def send(self, event: Any) -> None: ...

    async def clear(self) -> None:
        """Drop any agent speech that is queued but not yet played."""
        ...


class TurnContext:
    """What an agent (or a tool) sees of the engine while it runs.

    A context is bound to one owner and to the cancellation token of the
    unit of work it was created for.
    """

    def __init__(self, engine: TurnEngine, owner: Any, token: CancellationToken) -> None:
        self._engine = engine
        self.owner = owner
        self.token = token

    @property
    def call_id(self) -> str:
        return self._engine.call.id

    @property
    def metadata(self) -> dict[str, Any]:
        return self._engine.call.metadata

    @property
    def state(self) -> dict[str, Any]:
        """The owner's private scope in the call state block."""
        return self._engine.state_block.scope(state_key(self.owner))

    def history(self) -> tuple:
        return self._engine.call.history.snapshot()

    def transition(self, state: EngineState) -> None:
        self._engine._transition(state, self.token)

    def spawn_background(self, invocation: ToolInvocation) -> None:
        self._engine._spawn_background(self, invocation)

    def hand_off(self, target: Any) -> AsyncIterator[Any]:
        return self._engine._hand_off(self, target)

    def for_background(self) -> TurnContext:
        return TurnContext(self._engine, self.owner, self._engine.background.token)


class TurnEngine:
    """Drives one call from ``CallStarted`` to ``CallEnded``."""

    def __init__(
        self,
        agent: Any,
        sink: OutputSink,
        *,
        call: Call | None = None,
        arena: StateArena | None = None,
        redactor: Redactor | None = None,
    ) -> None:
        self.call = call or Call(history=CallHistory(redactor))
        self.sink = sink
        self.arena = arena or StateArena()
        self.state_block = self.arena.allocate(self.call.id)
        self.coordinator = HandoffCoordinator(agent, self.call.id)
        self.controller = InterruptionController(self.call.id)
        self.background = BackgroundSupervisor(self.call.id, self._on_background_yield)
        self.state = EngineState.IDLE
        self._emit_lock = asyncio.Lock()
        self._speaking = False
        self._ending = False
        self.log = logging.getLogger(__name__)

    @property
    def owner(self) -> Any:
        return self.coordinator.owner

    @property
    def ended(self) -> bool:
        return self.state is EngineState.ENDED

    def _extra(self, **fields: Any) -> dict[str, Any]:
        return {"call_id": self.call.id, "agent": agent_name(self.owner), **fields}

    # -------------------------
    # Input
    # -------------------------

    async def handle(self, event: Any) -> None:
        """Process one input event for the call."""
        if self._ending or self.call.ended:
            self.log.debug("event_ignored", extra=self._extra(event_type=event.type))
            return
        if isinstance(event, CallEnded):
            await self._end(event)
            return

        if self.call.status is CallStatus.CREATED:
            calls_total.inc()
        self.call.activate()
        owner = self.coordinator.owner
        delivered = self._record(event)
        if cancel_filter_of(owner)(event):
            await self._interrupt(event)
        if run_filter_of(owner)(event):
            self._submit(delivered)

    def _record(self, event: Any) -> Any:
        snapshot = self.call.history.snapshot()
        self.call.history.append(event)
        if isinstance(event, UserTurnEnded):
            turns_total.inc()
        elif isinstance(event, AgentTurnEnded):
            self._speaking = False
        return event.model_copy(update={"history": snapshot})

    async def _interrupt(self, event: Any) -> None:
        was_active = await self.controller.interrupt(f"interrupted by {event.type}")
        if was_active:
            interruptions_total.inc()
        if was_active or self._speaking:
            self._speaking = False
            await self.sink.clear()
            self.log.info("interrupted", extra=self._extra(event_type=event.type))
        if not self._ending:
            self.state = EngineState.IDLE

    def _submit(self, event: Any, *, expected_owner: Any = None) -> None:
        async def work(token: CancellationToken) -> None:
            owner = self.coordinator.owner
            if expected_owner is not None and owner is not expected_owner:
                self.log.info("background_result_recorded", extra=self._extra(event_type=event.type))
                return
            try:
                await self._run_agent(TurnContext(self, owner, token), event)
            finally:
                if not self._ending:
                    self.state = EngineState.IDLE

        self.controller.submit(event.type, work)

    async def _run_agent(self, ctx: TurnContext, event: Any) -> None:
        async with contextlib.aclosing(ctx.owner.process(ctx, event)) as outputs:
            async for out in outputs:
                await self._emit(out, ctx.token)

    def _transition(self, state: EngineState, token: CancellationToken) -> None:
        if token.cancelled or self.state is EngineState.ENDED or self.state is state:
            return
        self.log.debug(
            "state_transition", extra=self._extra(previous=self.state.value, state=state.value)
        )
        self.state = state

    # -------------------------
    # Output
    # -------------------------

    async def _emit(self, out: Any, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        async with self._emit_lock:
            # The unit may have been interrupted while waiting for the lock.
            token.raise_if_cancelled()
            self.call.history.append(out)
            if isinstance(out, AgentSendText):
                self._speaking = True
                self._transition(EngineState.EMITTING, token)
            await self._deliver(out)

    async def _deliver(self, out: Any) -> None:
        if isinstance(out, LogMessage):
            self.log.log(
                _LOG_LEVELS[out.level],
                out.name,
                extra=self._extra(event_type=out.name, detail=out.message, metadata=out.metadata),
            )
        elif isinstance(out, LogMetric):
            self.log.info("metric", extra=self._extra(event_type=out.name, value=out.value))
        await self.sink.send(out)

    # -------------------------
    # Handoff and background tools
    # -------------------------

    async def _hand_off(self, ctx: TurnContext, target: Any) -> AsyncIterator[Any]:
        self.coordinator.reassign(target)
        signal = self._record(AgentHandedOff())
        target_ctx = TurnContext(self, target, ctx.token)
        async with contextlib.aclosing(target.process(target_ctx, signal)) as outputs:
            async for out in outputs:
                yield out

    def _spawn_background(self, ctx: TurnContext, invocation: ToolInvocation) -> None:
        values = stream_loopback(invocation, ctx.for_background())
        self.background.spawn(invocation, values, ctx.owner)

    async def _on_background_yield(self, invocation: ToolInvocation, owner: Any, value: Any) -> None:
        event = invocation.returned(value)
        async with self._emit_lock:
            if self.call.ended:
                return
            self.call.history.append(event)
            await self._deliver(event)
        if owner is self.coordinator.owner and not self._ending:
            self._submit(event, expected_owner=owner)
        else:
            self.log.info(
                "background_result_recorded",
                extra=self._extra(tool_name=invocation.name, event_type=event.type),
            )

    # -------------------------
    # Shutdown
    # -------------------------

    async def _end(self, event: CallEnded) -> None:
        self._ending = True
        await self.controller.interrupt("call ended")
        owner = self.coordinator.owner
        delivered = self._record(event)
        await self.background.shutdown()
        if run_filter_of(owner)(event):
            try:
                await self._run_agent(TurnContext(self, owner, CancellationToken()), delivered)
            except Exception:
                self.log.exception(
                    "call_ended_handler_failed",
                    extra=self._extra(error_category=ErrorCategory.ENGINE.value),
                )
        self.call.end()
        self.state = EngineState.ENDED

        seen: list[Any] = []
        for participant in self.coordinator.participants:
            key = state_key(participant)
            if any(key is s for s in seen):
                continue
            seen.append(key)
            try:
                await cleanup_agent(key)
            except Exception:
                self.log.exception(
                    "agent_cleanup_failed",
                    extra=self._extra(agent=agent_name(key), error_category=ErrorCategory.ENGINE.value),
                )
        self.arena.release(self.call.id)
        self.log.info("call_ended", extra=self._extra(events=len(self.call.history)))

    async def join(self) -> None:
        """Wait until no unit of work is active or queued."""
        await self.controller.join()
