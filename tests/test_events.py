from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from voice_orchestrator.events import (
    AgentSendText,
    AgentToolReturned,
    CallStarted,
    HistoryEvent,
    UserDtmfSent,
    UserTextSent,
    UserTurnEnded,
    is_input_event,
)


def test_events_are_immutable():
    event = AgentSendText(text="hi")
    with pytest.raises(ValidationError):
        event.text = "changed"  # type: ignore[misc]


def test_input_events_get_unique_ids():
    assert CallStarted().event_id != CallStarted().event_id
    assert is_input_event(CallStarted())
    assert not is_input_event(AgentSendText(text="x"))


def test_user_turn_text_renders_dtmf():
    turn = UserTurnEnded(content=(UserTextSent(content="press"), UserDtmfSent(button="5")))
    assert turn.text == "press [DTMF 5]"


def test_history_union_discriminates_on_type():
    adapter = TypeAdapter(HistoryEvent)
    event = adapter.validate_python(
        {"type": "agent_tool_returned", "tool_call_id": "c1", "tool_name": "t", "result": 3}
    )
    assert isinstance(event, AgentToolReturned)
    assert event.result == 3

    nested = adapter.validate_python(
        {"type": "user_turn_ended", "content": [{"type": "user_text_sent", "content": "hey"}]}
    )
    assert isinstance(nested, UserTurnEnded)
    assert nested.text == "hey"


def test_input_event_carries_history_snapshot():
    prior = (CallStarted(), AgentSendText(text="hello"))
    event = UserTurnEnded(content=(UserTextSent(content="hi"),), history=prior)
    assert event.history == prior
