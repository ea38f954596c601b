from __future__ import annotations

import asyncio

from voice_orchestrator.engine.llm_agent import LlmAgent
from voice_orchestrator.engine.turn import TurnEngine
from voice_orchestrator.events import AgentToolReturned, CallEnded, UserTurnEnded
from voice_orchestrator.tools.registry import loopback_tool
from tests.fakes.fake_reasoner import ScriptedReasoner, call, text
from tests.fakes.recording_sink import RecordingSink
from tests.fakes.scenario import said, settle, user_says


def _balance_tool(release: asyncio.Event):
    async def balance(ctx):
        """Look up the caller's balance."""
        yield "Looking up…"
        await release.wait()
        yield "Balance: $10"

    return loopback_tool(balance, background=True)


def _respond(request):
    last = request.history[-1]
    if isinstance(last, UserTurnEnded):
        if last.text == "check balance":
            return [call("balance")]
        return [text("You're welcome.")]
    if isinstance(last, AgentToolReturned):
        if last.result == "Looking up…":
            return [text("Still checking.")]
        return [text(f"Your {last.result.lower()}.")]
    return []


def _returned(engine) -> list:
    return [e.result for e in engine.call.history if isinstance(e, AgentToolReturned)]


def test_background_yields_interleave_with_user_turns_in_arrival_order():
    async def main():
        release = asyncio.Event()
        reasoner = ScriptedReasoner(_respond)
        sink = RecordingSink()
        engine = TurnEngine(LlmAgent(reasoner, tools=[_balance_tool(release)]), sink)

        await engine.handle(said("check balance"))
        await settle(engine)
        await user_says(engine, "thanks")
        await settle(engine)
        # The tool keeps running across the interruption.
        assert engine.background.in_flight == 1

        release.set()
        await engine.background.join()
        await settle(engine)

        order = []
        for event in engine.call.history:
            if isinstance(event, AgentToolReturned):
                order.append(event.result)
            elif isinstance(event, UserTurnEnded):
                order.append(event.text)
        assert order == ["check balance", "Looking up…", "thanks", "Balance: $10"]
        assert sink.texts == ["Still checking.", "You're welcome.", "Your balance: $10."]
        assert engine.background.in_flight == 0

    asyncio.run(main())


def test_returned_value_becomes_single_yield():
    async def main():
        async def quote(ctx, symbol: str):
            await asyncio.sleep(0.01)
            return f"{symbol} is up"

        reasoner = ScriptedReasoner([[call("quote", {"symbol": "ACME"})]])
        engine = TurnEngine(
            LlmAgent(reasoner, tools=[loopback_tool(quote, background=True)]), RecordingSink()
        )
        await engine.handle(said("how is acme"))
        await engine.background.join()
        await settle(engine)

        assert _returned(engine) == ["ACME is up"]
        # The resolved value triggered one more reasoning step.
        assert len(reasoner.requests) == 2

    asyncio.run(main())


def test_concurrent_background_tools_deliver_first_completed_first():
    async def main():
        slow_done, fast_done = asyncio.Event(), asyncio.Event()

        async def slow(ctx):
            await slow_done.wait()
            return "slow"

        async def fast(ctx):
            await fast_done.wait()
            return "fast"

        reasoner = ScriptedReasoner([[call("slow", call_id="c1"), call("fast", call_id="c2")]])
        tools = [loopback_tool(slow, background=True), loopback_tool(fast, background=True)]
        engine = TurnEngine(LlmAgent(reasoner, tools=tools), RecordingSink())

        await engine.handle(said("do both"))
        await settle(engine)
        fast_done.set()
        await settle(engine)
        slow_done.set()
        await engine.background.join()
        await settle(engine)

        assert _returned(engine) == ["fast", "slow"]

    asyncio.run(main())


def test_call_end_stops_background_tools_and_keeps_partial_results():
    async def main():
        release = asyncio.Event()
        engine = TurnEngine(
            LlmAgent(ScriptedReasoner(_respond), tools=[_balance_tool(release)]), RecordingSink()
        )

        await engine.handle(said("check balance"))
        await settle(engine)
        await engine.handle(CallEnded())
        release.set()
        await asyncio.sleep(0.01)

        assert engine.background.in_flight == 0
        assert _returned(engine) == ["Looking up…"]
        assert engine.call.history.snapshot()[-1].type == "call_ended"

    asyncio.run(main())
