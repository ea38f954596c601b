"""WebSocket frames exchanged with the telephony / client side.

Every frame is a JSON text message with a ``type`` field. Inbound frames are
validated into pydantic models; anything that does not parse is a protocol
violation that closes the connection.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import ProtocolViolation

DtmfButton = Literal["0", "1", "2", "3", "4", "5", "6", "7", "8", "9", "*", "#"]


class CloseCode(IntEnum):
    NORMAL = 1000
    PROTOCOL_ERROR = 1002
    INVALID_DATA = 1007
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011


REASON_AGENT_ENDED = "call ended by agent"
REASON_IDLE_TIMEOUT = "connection idle timeout"
REASON_CALL_ENDED = "call ended"
REASON_EXPECTED_START = "expected start message"
REASON_DUPLICATE_START = "duplicate start message"
REASON_INVALID_FRAME = "invalid frame"
REASON_INTERNAL_ERROR = "internal error"


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore")


# -------------------------
# Inbound (client -> server)
# -------------------------


class StreamConfig(_Frame):
    input_format: str = "pcm_16000"
    output_format: str = "pcm_16000"


class AgentOverrides(_Frame):
    system_prompt: str | None = None
    introduction: str | None = None


class StartFrame(_Frame):
    type: Literal["start"]
    stream_id: str | None = None
    config: StreamConfig = Field(default_factory=StreamConfig)
    agent: AgentOverrides = Field(default_factory=AgentOverrides)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Media(_Frame):
    payload: str


class MediaInputFrame(_Frame):
    type: Literal["media_input"]
    media: Media


class TextFrame(_Frame):
    type: Literal["text"]
    text: str


class DtmfFrame(_Frame):
    type: Literal["dtmf"]
    dtmf: DtmfButton


class CustomFrame(_Frame):
    type: Literal["custom"]
    metadata: dict[str, Any] = Field(default_factory=dict)


class PingFrame(_Frame):
    type: Literal["ping"]


class StopFrame(_Frame):
    type: Literal["stop"]


InboundFrame = Annotated[
    Union[
        StartFrame,
        MediaInputFrame,
        TextFrame,
        DtmfFrame,
        CustomFrame,
        PingFrame,
        StopFrame,
    ],
    Field(discriminator="type"),
]

_inbound = TypeAdapter(InboundFrame)


def parse_frame(raw: str | bytes) -> Any:
    """Parse one inbound message.

    Raises:
        ProtocolViolation: for malformed JSON, unknown frame types or frames
            missing required fields.
    """
    try:
        return _inbound.validate_json(raw)
    except ValidationError as exc:
        raise ProtocolViolation(CloseCode.INVALID_DATA, REASON_INVALID_FRAME) from exc


# -------------------------
# Outbound (server -> client)
# -------------------------


class AckFrame(_Frame):
    type: Literal["ack"] = "ack"
    received: str
    call_id: str | None = None


class MediaOutputFrame(_Frame):
    type: Literal["media_output"] = "media_output"
    media: Media


class ClearFrame(_Frame):
    type: Literal["clear"] = "clear"


class DtmfOutputFrame(_Frame):
    type: Literal["dtmf"] = "dtmf"
    dtmf: DtmfButton


class AgentTextFrame(_Frame):
    type: Literal["agent_text"] = "agent_text"
    text: str


class TransferCallFrame(_Frame):
    type: Literal["transfer_call"] = "transfer_call"
    target: str


class UpdateCallFrame(_Frame):
    type: Literal["update_call"] = "update_call"
    voice_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def encode(frame: _Frame) -> str:
    return frame.model_dump_json(exclude_none=True)
