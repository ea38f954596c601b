"""Handlers for inbound frames once a call is running."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING

from ..events import UserDtmfSent, UserTextSent, UserTurnEnded, UserTurnStarted
from ..errors import ProtocolViolation
from ..transport.events import Dispatcher
from ..transport.protocol import (
    REASON_DUPLICATE_START,
    REASON_INVALID_FRAME,
    CloseCode,
    CustomFrame,
    DtmfFrame,
    MediaInputFrame,
    PingFrame,
    StartFrame,
    StopFrame,
    TextFrame,
)

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..transport.server import CallSession

logger = logging.getLogger(__name__)


async def handle_start(frame: StartFrame, session: CallSession) -> None:
    raise ProtocolViolation(CloseCode.PROTOCOL_ERROR, REASON_DUPLICATE_START)


async def handle_media_input(frame: MediaInputFrame, session: CallSession) -> None:
    """Pass inbound audio to the speech bridge and forward what it recognizes."""
    try:
        audio = base64.b64decode(frame.media.payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolViolation(CloseCode.INVALID_DATA, REASON_INVALID_FRAME) from exc
    for event in await session.bridge.transcribe(audio):
        await session.engine.handle(event)


async def handle_text(frame: TextFrame, session: CallSession) -> None:
    await session.ack(frame.type)
    await session.engine.handle(UserTurnStarted())
    await session.engine.handle(UserTurnEnded(content=(UserTextSent(content=frame.text),)))


async def handle_dtmf(frame: DtmfFrame, session: CallSession) -> None:
    await session.ack(frame.type)
    await session.engine.handle(UserTurnStarted())
    await session.engine.handle(UserTurnEnded(content=(UserDtmfSent(button=frame.dtmf),)))


async def handle_custom(frame: CustomFrame, session: CallSession) -> None:
    """Merge client-supplied metadata into the call."""
    session.engine.call.metadata.update(frame.metadata)
    logger.info(
        "custom_event",
        extra={"call_id": session.engine.call.id, "keys": sorted(frame.metadata)},
    )
    await session.ack(frame.type)


async def handle_ping(frame: PingFrame, session: CallSession) -> None:
    await session.ack(frame.type)


async def handle_stop(frame: StopFrame, session: CallSession) -> None:
    await session.ack(frame.type)
    session.stop()


def register_handlers(dispatcher: Dispatcher, session: CallSession) -> None:
    dispatcher.on("start", lambda fr: handle_start(fr, session))
    dispatcher.on("media_input", lambda fr: handle_media_input(fr, session))
    dispatcher.on("text", lambda fr: handle_text(fr, session))
    dispatcher.on("dtmf", lambda fr: handle_dtmf(fr, session))
    dispatcher.on("custom", lambda fr: handle_custom(fr, session))
    dispatcher.on("ping", lambda fr: handle_ping(fr, session))
    dispatcher.on("stop", lambda fr: handle_stop(fr, session))
