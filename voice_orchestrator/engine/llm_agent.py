"""Agent that runs the reasoning step and the tool loop it drives."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, assert_never

from ..errors import (
    ErrorCategory,
    ReasoningExhausted,
    ReasoningProviderError,
    SchemaViolation,
    ToolLoopExceeded,
)
from ..events import (
    AgentDtmfSent,
    AgentEndCall,
    AgentHandedOff,
    AgentSendText,
    AgentTextSent,
    AgentToolCalled,
    AgentToolReturned,
    AgentTurnEnded,
    AgentTurnStarted,
    CallEnded,
    CallStarted,
    LogMessage,
    UserDtmfSent,
    UserTextSent,
    UserTurnEnded,
    UserTurnStarted,
)
from ..metrics import (
    Timer,
    reasoning_failures_total,
    reasoning_first_delta_ms,
    tool_loop_exceeded_total,
)
from ..reasoning.base import Reasoner, ReasoningRequest, SamplingConfig, TextDelta, ToolCallRequest
from ..reasoning.policy import ResilientReasoner, RetryPolicy
from ..tools.invoke import ToolInvocation, run_loopback, stream_events
from ..tools.registry import Tool, ToolRegistry
from ..tools.schema import ToolParadigm
from .agent import EventFilter
from .handoff import HandoffTarget
from .turn import EngineState

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..events import OutputEvent
    from .turn import TurnContext


@dataclass(frozen=True)
class AgentConfig:
    system_prompt: str = "You are a helpful voice assistant. Keep answers short."
    # Spoken once per call when the agent first becomes active.
    introduction: str | None = None
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    max_tool_iterations: int = 10
    retry: RetryPolicy | None = None
    fallback_models: tuple[str, ...] = ()
    error_message: str = "Sorry, I'm having trouble right now. Could you say that again?"
    tool_loop_message: str = "Sorry, I wasn't able to finish that. Let's try something else."
    end_call_on_tool_loop: bool = False


@dataclass
class _Round:
    reason_again: bool = False
    handed_off: bool = False


class LlmAgent:
    """Reasoning-step agent.

    Each qualifying event runs the reasoning step over the call history. Tool
    calls it requests are executed in request order; synchronous loopback
    results are fed back for another round, up to ``max_tool_iterations``
    rounds per event.
    """

    def __init__(
        self,
        reasoner: Reasoner,
        config: AgentConfig | None = None,
        tools: ToolRegistry | Iterable[Tool] = (),
        *,
        name: str = "agent",
        run_filter: EventFilter | None = None,
        cancel_filter: EventFilter | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        if self.config.retry is not None or self.config.fallback_models:
            reasoner = ResilientReasoner(reasoner, self.config.retry, self.config.fallback_models)
        self.reasoner = reasoner
        self.name = name
        self.run_filter = run_filter
        self.cancel_filter = cancel_filter
        self.log = logging.getLogger(__name__)

    async def process(self, ctx: TurnContext, event: Any) -> AsyncIterator[OutputEvent]:
        match event:
            case CallStarted():
                if self._claim_introduction(ctx):
                    yield AgentSendText(text=self.config.introduction)
            case AgentHandedOff():
                if self._claim_introduction(ctx):
                    yield AgentSendText(text=self.config.introduction)
                else:
                    async for out in self._respond(ctx):
                        yield out
            case UserTurnEnded() | UserTextSent() | UserDtmfSent() | AgentToolReturned():
                async for out in self._respond(ctx):
                    yield out
            case (
                CallEnded()
                | UserTurnStarted()
                | AgentTurnStarted()
                | AgentTurnEnded()
                | AgentTextSent()
                | AgentDtmfSent()
            ):
                pass
            case _:
                assert_never(event)

    def _claim_introduction(self, ctx: TurnContext) -> bool:
        if not self.config.introduction or ctx.state.get("introduced"):
            return False
        ctx.state["introduced"] = True
        return True

    async def _respond(self, ctx: TurnContext) -> AsyncIterator[OutputEvent]:
        try:
            async for out in self._reason_loop(ctx):
                yield out
        except ToolLoopExceeded as exc:
            tool_loop_exceeded_total.inc()
            self.log.error(
                "tool_loop_exceeded",
                extra={"call_id": ctx.call_id, "agent": self.name, "error_category": exc.category.value},
            )
            yield LogMessage(
                name="tool_loop_exceeded",
                level="error",
                message=str(exc),
                metadata={"limit": exc.limit},
            )
            yield AgentSendText(text=self.config.tool_loop_message)
            if self.config.end_call_on_tool_loop:
                yield AgentEndCall()
        except (ReasoningExhausted, ReasoningProviderError) as exc:
            reasoning_failures_total.inc()
            self.log.error(
                "reasoning_failed",
                extra={
                    "call_id": ctx.call_id,
                    "agent": self.name,
                    "error_category": ErrorCategory.REASONING.value,
                },
            )
            yield LogMessage(name="reasoning_failed", level="error", message=str(exc))
            yield AgentSendText(text=self.config.error_message)

    async def _reason_loop(self, ctx: TurnContext) -> AsyncIterator[OutputEvent]:
        rounds = 0
        while True:
            ctx.transition(EngineState.REASONING)
            request = ReasoningRequest(
                system_prompt=self.config.system_prompt,
                history=ctx.history(),
                tools=self.tools.descriptors(),
                sampling=self.config.sampling,
            )
            calls: list[ToolCallRequest] = []
            timer = Timer()
            timer.start()
            async with contextlib.aclosing(self.reasoner.stream(request, ctx.token)) as chunks:
                async for chunk in chunks:
                    latency = timer.stop()
                    if latency is not None:
                        reasoning_first_delta_ms.last_ms = latency
                        self.log.debug(
                            "reasoning_first_delta",
                            extra={"call_id": ctx.call_id, "agent": self.name, "latency_ms": latency},
                        )
                    match chunk:
                        case TextDelta(text=text):
                            if text:
                                yield AgentSendText(text=text)
                        case ToolCallRequest():
                            calls.append(chunk)
            if not calls:
                return

            rounds += 1
            if rounds > self.config.max_tool_iterations:
                raise ToolLoopExceeded(self.config.max_tool_iterations)
            ctx.transition(EngineState.EXECUTING_TOOLS)
            outcome = _Round()
            async with contextlib.aclosing(self._run_tools(ctx, calls, outcome)) as outputs:
                async for out in outputs:
                    yield out
            if outcome.handed_off or not outcome.reason_again:
                return

    async def _run_tools(
        self, ctx: TurnContext, calls: list[ToolCallRequest], outcome: _Round
    ) -> AsyncIterator[OutputEvent]:
        for request in calls:
            args = request.arguments or {}
            yield AgentToolCalled(tool_call_id=request.id, tool_name=request.name, tool_args=args)

            tool = self.tools.get(request.name)
            if tool is None:
                yield AgentToolReturned(
                    tool_call_id=request.id,
                    tool_name=request.name,
                    tool_args=args,
                    result=f"Error: unknown tool '{request.name}'",
                )
                outcome.reason_again = True
                continue
            try:
                arguments = tool.descriptor.validate(request.arguments)
            except SchemaViolation as exc:
                self.log.warning(
                    "schema_violation",
                    extra={
                        "call_id": ctx.call_id,
                        "tool_name": tool.name,
                        "error_category": exc.category.value,
                    },
                )
                yield AgentToolReturned(
                    tool_call_id=request.id, tool_name=tool.name, tool_args=args, result=f"Error: {exc}"
                )
                outcome.reason_again = True
                continue

            invocation = ToolInvocation(call_id=request.id, tool=tool, arguments=arguments)
            match tool.paradigm:
                case ToolParadigm.LOOPBACK if tool.background:
                    ctx.spawn_background(invocation)
                case ToolParadigm.LOOPBACK:
                    result = await run_loopback(invocation, ctx)
                    yield invocation.returned(result)
                    outcome.reason_again = True
                case ToolParadigm.PASSTHROUGH:
                    async with contextlib.aclosing(stream_events(invocation, ctx)) as events:
                        async for out in events:
                            yield out
                    yield invocation.returned(invocation.error or "success")
                    if invocation.error:
                        outcome.reason_again = True
                case ToolParadigm.HANDOFF:
                    yield invocation.returned("handed off")
                    outcome.handed_off = True
                    target = HandoffTarget(invocation)
                    if target.pre_message:
                        yield AgentSendText(text=target.pre_message)
                    async with contextlib.aclosing(ctx.hand_off(target)) as events:
                        async for out in events:
                            yield out
                    return
