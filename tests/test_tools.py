from __future__ import annotations

import asyncio
from enum import Enum
from typing import Literal, Optional

import pytest

from voice_orchestrator.errors import SchemaViolation
from voice_orchestrator.events import AgentEndCall, AgentSendDtmf, AgentSendText
from voice_orchestrator.tools.builtins import builtin_tools, current_time, end_call, send_dtmf
from voice_orchestrator.tools.invoke import (
    InvocationStatus,
    ToolInvocation,
    run_loopback,
    stream_events,
)
from voice_orchestrator.tools.registry import (
    ToolRegistry,
    handoff_tool,
    loopback_tool,
    passthrough_tool,
)
from voice_orchestrator.tools.schema import (
    Parameter,
    ParameterType,
    ToolDescriptor,
    ToolParadigm,
    infer_parameters,
)


def _descriptor() -> ToolDescriptor:
    return ToolDescriptor(
        name="book",
        description="Book a table",
        parameters=(
            Parameter("party", ParameterType.INTEGER),
            Parameter("seating", enum=("inside", "outside"), required=False, default="inside"),
            Parameter("note", required=False),
        ),
    )


def test_optional_parameter_gets_default():
    args = _descriptor().validate({"party": 2})
    assert args == {"party": 2, "seating": "inside", "note": None}


def test_out_of_enum_value_is_rejected():
    with pytest.raises(SchemaViolation) as info:
        _descriptor().validate({"party": 2, "seating": "roof"})
    assert "seating" in str(info.value)
    assert info.value.tool_name == "book"


def test_missing_required_and_unknown_arguments_are_rejected():
    with pytest.raises(SchemaViolation) as info:
        _descriptor().validate({"colour": "red"})
    problems = " ".join(info.value.problems)
    assert "missing required argument 'party'" in problems
    assert "unexpected argument 'colour'" in problems


def test_values_are_not_coerced():
    with pytest.raises(SchemaViolation):
        _descriptor().validate({"party": "2"})
    with pytest.raises(SchemaViolation):
        _descriptor().validate({"party": True})
    with pytest.raises(SchemaViolation):
        _descriptor().validate(None)


def test_descriptor_construction_checks():
    with pytest.raises(ValueError):
        ToolDescriptor("x", "d", paradigm=ToolParadigm.PASSTHROUGH, background=True)
    with pytest.raises(ValueError):
        ToolDescriptor("x", "d", parameters=(Parameter("a"), Parameter("a")))
    with pytest.raises(ValueError):
        Parameter("a", enum=("x", "y"), required=False, default="z")


class Size(Enum):
    SMALL = "s"
    LARGE = "l"


def test_parameters_are_inferred_from_signature():
    def order(
        ctx,
        item: str,
        count: int = 1,
        size: Size = Size.SMALL,
        mode: Literal["pickup", "delivery"] = "pickup",
        note: Optional[str] = None,
        extras: list[str] | None = None,
    ):
        """Place an order."""

    params = {p.name: p for p in infer_parameters(order, {"item": "What to order"})}
    assert "ctx" not in params
    assert params["item"].required and params["item"].description == "What to order"
    assert params["count"].type is ParameterType.INTEGER and params["count"].default == 1
    assert params["size"].enum == ("s", "l") and params["size"].default == "s"
    assert params["mode"].enum == ("pickup", "delivery")
    assert params["note"].type is ParameterType.STRING and not params["note"].required
    assert params["extras"].type is ParameterType.ARRAY


def test_unresolvable_annotations_leave_parameters_untyped():
    # Annotations stay strings here; the unknown names are never imported.
    def lookup(ctx: UnknownContext, account: str, count: int = 2, region: UnknownRegion = "eu"):  # noqa: F821
        """Look up an account."""

    params = {p.name: p for p in infer_parameters(lookup)}
    assert list(params) == ["account", "count", "region"]
    assert params["account"].type is ParameterType.STRING
    assert params["count"].type is ParameterType.INTEGER
    assert params["region"].type is ParameterType.STRING
    assert params["region"].default == "eu" and not params["region"].required


def test_builders_and_registry():
    def lookup(ctx, account_id: str):
        """Look up an account."""
        return "ok"

    tool = loopback_tool(lookup, background=True)
    assert tool.name == "lookup"
    assert tool.descriptor.description == "Look up an account."
    assert tool.background

    registry = ToolRegistry([tool, handoff_tool(lookup, name="transfer")])
    with pytest.raises(ValueError):
        registry.register(tool)
    assert "transfer" in registry and len(registry) == 2
    spec = registry.specs()[0]
    assert spec["type"] == "function"
    assert spec["function"]["parameters"]["required"] == ["account_id"]


def test_builtin_tools_schemas():
    assert [t.name for t in builtin_tools()] == ["end_call", "send_dtmf", "transfer_call", "current_time"]
    (button,) = send_dtmf.descriptor.parameters
    assert button.enum is not None and "#" in button.enum
    assert end_call.paradigm is ToolParadigm.PASSTHROUGH
    assert current_time.paradigm is ToolParadigm.LOOPBACK
    with pytest.raises(SchemaViolation):
        send_dtmf.descriptor.validate({"button": "A"})


def test_run_loopback_normalizes_results():
    async def coro(ctx):
        return 42

    def gen(ctx):
        yield "a"
        yield "b"

    def broken(ctx):
        raise RuntimeError("record store offline")

    async def main():
        single = ToolInvocation("c1", loopback_tool(coro), {})
        assert await run_loopback(single, None) == 42
        assert single.status is InvocationStatus.COMPLETED

        many = ToolInvocation("c2", loopback_tool(gen), {})
        assert await run_loopback(many, None) == ["a", "b"]

        failed = ToolInvocation("c3", loopback_tool(broken), {})
        result = await run_loopback(failed, None)
        assert result == "Error: record store offline"
        assert failed.status is InvocationStatus.FAILED

    asyncio.run(main())


def test_stream_events_for_passthrough_tools():
    def bad(ctx):
        yield "fine"
        yield 123

    async def main():
        inv = ToolInvocation("c1", end_call, end_call.descriptor.validate({"message": "bye"}))
        events = [e async for e in stream_events(inv, None)]
        assert events == [AgentSendText(text="bye"), AgentEndCall()]

        inv = ToolInvocation("c2", send_dtmf, {"button": "9"})
        assert [e async for e in stream_events(inv, None)] == [AgentSendDtmf(button="9")]

        inv = ToolInvocation("c3", passthrough_tool(bad), {})
        events = [e async for e in stream_events(inv, None)]
        assert events == [AgentSendText(text="fine")]
        assert inv.status is InvocationStatus.FAILED
        assert "not an output event" in inv.error

    asyncio.run(main())


def test_reused_handoff_invocation_keeps_only_latest_results():
    def desk(ctx, event):
        yield f"heard {event}"

    async def main():
        inv = ToolInvocation("c1", handoff_tool(desk), {})
        for event in ("one", "two", "three"):
            events = [e async for e in stream_events(inv, None, event=event)]
            assert events == [AgentSendText(text=f"heard {event}")]
        assert inv.results == ["heard three"]
        assert inv.status is InvocationStatus.COMPLETED

    asyncio.run(main())
