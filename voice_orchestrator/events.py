"""Typed event definitions.

Input events flow from the transport into the turn engine; output events flow
from agents back toward the transport. Both end up in the call history, which
is the only record of a conversation.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def _generate_event_id() -> str:
    return str(uuid.uuid4())


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


# -------------------------
# Output events (agent -> transport)
# -------------------------


class AgentSendText(_Event):
    type: Literal["agent_send_text"] = "agent_send_text"
    text: str


class AgentSendDtmf(_Event):
    type: Literal["agent_send_dtmf"] = "agent_send_dtmf"
    button: str


class AgentEndCall(_Event):
    type: Literal["end_call"] = "end_call"


class AgentTransferCall(_Event):
    type: Literal["agent_transfer_call"] = "agent_transfer_call"
    target: str


class AgentUpdateCall(_Event):
    type: Literal["update_call"] = "update_call"
    voice_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AgentToolCalled(_Event):
    type: Literal["agent_tool_called"] = "agent_tool_called"
    tool_call_id: str
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)


class AgentToolReturned(_Event):
    type: Literal["agent_tool_returned"] = "agent_tool_returned"
    tool_call_id: str
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class LogMetric(_Event):
    type: Literal["log_metric"] = "log_metric"
    name: str
    value: Any


class LogMessage(_Event):
    type: Literal["log_message"] = "log_message"
    name: str
    level: Literal["debug", "info", "warning", "error"] = "info"
    message: str
    metadata: dict[str, Any] | None = None


# -------------------------
# Input events (transport -> agent)
# -------------------------
# ``history`` holds a snapshot of every prior event for the call when the
# event is delivered to an agent, and ``None`` once it is stored in history.


class _InputEvent(_Event):
    event_id: str = Field(default_factory=_generate_event_id)
    history: tuple[HistoryEvent, ...] | None = None


class CallStarted(_InputEvent):
    type: Literal["call_started"] = "call_started"


class CallEnded(_InputEvent):
    type: Literal["call_ended"] = "call_ended"


class UserTurnStarted(_InputEvent):
    type: Literal["user_turn_started"] = "user_turn_started"


class UserTextSent(_InputEvent):
    type: Literal["user_text_sent"] = "user_text_sent"
    content: str


class UserDtmfSent(_InputEvent):
    type: Literal["user_dtmf_sent"] = "user_dtmf_sent"
    button: str


class UserTurnEnded(_InputEvent):
    type: Literal["user_turn_ended"] = "user_turn_ended"
    content: tuple[UserContent, ...] = ()

    @property
    def text(self) -> str:
        """The turn rendered as a single line of user text."""
        parts: list[str] = []
        for item in self.content:
            if isinstance(item, UserTextSent):
                parts.append(item.content)
            else:
                parts.append(f"[DTMF {item.button}]")
        return " ".join(p for p in parts if p)


class AgentTurnStarted(_InputEvent):
    type: Literal["agent_turn_started"] = "agent_turn_started"


class AgentTextSent(_InputEvent):
    type: Literal["agent_text_sent"] = "agent_text_sent"
    content: str


class AgentDtmfSent(_InputEvent):
    type: Literal["agent_dtmf_sent"] = "agent_dtmf_sent"
    button: str


class AgentTurnEnded(_InputEvent):
    type: Literal["agent_turn_ended"] = "agent_turn_ended"
    content: tuple[AgentContent, ...] = ()


class AgentHandedOff(_InputEvent):
    """Synthetic signal delivered to a handoff target on first activation."""

    type: Literal["agent_handed_off"] = "agent_handed_off"


UserContent = Annotated[Union[UserTextSent, UserDtmfSent], Field(discriminator="type")]
AgentContent = Annotated[Union[AgentTextSent, AgentDtmfSent], Field(discriminator="type")]

InputEvent = Union[
    CallStarted,
    CallEnded,
    UserTurnStarted,
    UserTurnEnded,
    UserTextSent,
    UserDtmfSent,
    AgentTurnStarted,
    AgentTurnEnded,
    AgentTextSent,
    AgentDtmfSent,
    AgentHandedOff,
]

OutputEvent = Union[
    AgentSendText,
    AgentSendDtmf,
    AgentEndCall,
    AgentTransferCall,
    AgentUpdateCall,
    AgentToolCalled,
    AgentToolReturned,
    LogMetric,
    LogMessage,
]

HistoryEvent = Annotated[
    Union[
        CallStarted,
        CallEnded,
        UserTurnStarted,
        UserTurnEnded,
        UserTextSent,
        UserDtmfSent,
        AgentTurnStarted,
        AgentTurnEnded,
        AgentTextSent,
        AgentDtmfSent,
        AgentHandedOff,
        AgentSendText,
        AgentSendDtmf,
        AgentEndCall,
        AgentTransferCall,
        AgentUpdateCall,
        AgentToolCalled,
        AgentToolReturned,
        LogMetric,
        LogMessage,
    ],
    Field(discriminator="type"),
]

OUTPUT_EVENT_TYPES: tuple[type[_Event], ...] = (
    AgentSendText,
    AgentSendDtmf,
    AgentEndCall,
    AgentTransferCall,
    AgentUpdateCall,
    AgentToolCalled,
    AgentToolReturned,
    LogMetric,
    LogMessage,
)

INPUT_EVENT_TYPES: tuple[type[_InputEvent], ...] = (
    CallStarted,
    CallEnded,
    UserTurnStarted,
    UserTurnEnded,
    UserTextSent,
    UserDtmfSent,
    AgentTurnStarted,
    AgentTurnEnded,
    AgentTextSent,
    AgentDtmfSent,
    AgentHandedOff,
)

for _cls in INPUT_EVENT_TYPES:
    _cls.model_rebuild()


def is_input_event(event: object) -> bool:
    return isinstance(event, _InputEvent)


__all__ = [
    # Output
    "AgentSendText",
    "AgentSendDtmf",
    "AgentEndCall",
    "AgentTransferCall",
    "AgentUpdateCall",
    "AgentToolCalled",
    "AgentToolReturned",
    "LogMetric",
    "LogMessage",
    "OutputEvent",
    "OUTPUT_EVENT_TYPES",
    # Input
    "CallStarted",
    "CallEnded",
    "UserTurnStarted",
    "UserTurnEnded",
    "UserTextSent",
    "UserDtmfSent",
    "AgentTurnStarted",
    "AgentTurnEnded",
    "AgentTextSent",
    "AgentDtmfSent",
    "AgentHandedOff",
    "InputEvent",
    "INPUT_EVENT_TYPES",
    # History
    "HistoryEvent",
    "is_input_event",
]
