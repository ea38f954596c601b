"""Built-in tools available to every agent."""

from __future__ import annotations

import datetime as _dt
from typing import TYPE_CHECKING, Any, Literal

from ..events import AgentEndCall, AgentSendDtmf, AgentSendText, AgentTransferCall
from .registry import Tool, loopback_tool, passthrough_tool
from .schema import Parameter, ParameterType

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.turn import TurnContext

DtmfButton = Literal["0", "1", "2", "3", "4", "5", "6", "7", "8", "9", "*", "#"]


async def _end_call(ctx: TurnContext, message: str | None = None) -> Any:
    if message:
        yield AgentSendText(text=message)
    yield AgentEndCall()


async def _send_dtmf(ctx: TurnContext, button: DtmfButton) -> Any:
    yield AgentSendDtmf(button=button)


async def _transfer_call(ctx: TurnContext, target: str, message: str | None = None) -> Any:
    if message:
        yield AgentSendText(text=message)
    yield AgentTransferCall(target=target)


def _current_time(ctx: TurnContext) -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


end_call = passthrough_tool(
    _end_call,
    name="end_call",
    description="End the call, optionally saying goodbye first.",
    parameters=[
        Parameter(
            "message",
            ParameterType.STRING,
            "What to say before hanging up.",
            required=False,
        )
    ],
)

send_dtmf = passthrough_tool(
    _send_dtmf,
    name="send_dtmf",
    description="Press a key on the phone keypad.",
    descriptions={"button": "The key to press."},
)

transfer_call = passthrough_tool(
    _transfer_call,
    name="transfer_call",
    description="Transfer the caller to a phone number or SIP address.",
    descriptions={
        "target": "Destination phone number (E.164) or SIP URI.",
        "message": "What to say before transferring.",
    },
)

current_time = loopback_tool(
    _current_time,
    name="current_time",
    description="Current UTC time in ISO 8601 format.",
)


def builtin_tools() -> list[Tool]:
    return [end_call, send_dtmf, transfer_call, current_time]
