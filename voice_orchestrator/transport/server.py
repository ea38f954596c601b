"""WebSocket call server.

Each connection is one call handled by a :class:`CallSession`. The session
owns the connection, validates the ``start`` handshake, resolves the agent,
and then feeds inbound frames to a :class:`TurnEngine` while acting as the
engine's output sink.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from websockets.asyncio.server import ServerConnection, serve as ws_serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import Frame, Opcode
from websockets.protocol import Event

from ..engine.agent import agent_name
from ..engine.turn import TurnEngine
from ..errors import ErrorCategory, ProtocolViolation
from ..events import (
    AgentEndCall,
    AgentSendDtmf,
    AgentSendText,
    AgentTransferCall,
    AgentUpdateCall,
    CallEnded,
    CallStarted,
)
from ..handlers.core import register_handlers
from ..redaction import Redactor
from ..state.call import Call, CallHistory
from ..state.memory import StateArena
from .bridge import NullSpeechBridge, SpeechBridge
from .events import Dispatcher
from .protocol import (
    REASON_AGENT_ENDED,
    REASON_CALL_ENDED,
    REASON_EXPECTED_START,
    REASON_IDLE_TIMEOUT,
    REASON_INTERNAL_ERROR,
    AckFrame,
    AgentTextFrame,
    ClearFrame,
    CloseCode,
    DtmfOutputFrame,
    Media,
    MediaOutputFrame,
    StartFrame,
    TransferCallFrame,
    UpdateCallFrame,
    encode,
    parse_frame,
)


@dataclass
class CallRequest:
    """What the client asked for in its ``start`` frame."""

    stream_id: str | None
    input_format: str
    output_format: str
    system_prompt: str | None = None
    introduction: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_start(cls, frame: StartFrame) -> CallRequest:
        return cls(
            stream_id=frame.stream_id,
            input_format=frame.config.input_format,
            output_format=frame.config.output_format,
            system_prompt=frame.agent.system_prompt,
            introduction=frame.agent.introduction,
            metadata=dict(frame.metadata),
        )


@dataclass
class PreCallResult:
    accept: bool = True
    reason: str = "call rejected"
    # Merged into the call metadata when the call is accepted.
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallContext:
    call_id: str
    request: CallRequest
    metadata: dict[str, Any]


GetAgent = Callable[[CallContext], Any]
PreCallHandler = Callable[[CallRequest], Any]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ActivityConnection(ServerConnection):
    """Server connection that remembers when the client last sent a frame.

    Protocol-level pings count as activity even though they never reach
    ``recv()``. Pongs do not, since they answer the server's own pings.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.last_activity = asyncio.get_running_loop().time()

    def process_event(self, event: Event) -> None:
        if isinstance(event, Frame) and event.opcode is not Opcode.PONG:
            self.last_activity = asyncio.get_running_loop().time()
        super().process_event(event)


class CallSession:
    """One WebSocket connection carrying one call."""

    def __init__(
        self,
        ws: Any,
        get_agent: GetAgent,
        *,
        pre_call_handler: PreCallHandler | None = None,
        bridge: SpeechBridge | None = None,
        idle_timeout_s: float = 180.0,
        arena: StateArena | None = None,
        redactor: Redactor | None = None,
    ) -> None:
        self.ws = ws
        self.get_agent = get_agent
        self.pre_call_handler = pre_call_handler
        self.bridge = bridge or NullSpeechBridge()
        self.idle_timeout_s = idle_timeout_s
        self.arena = arena or StateArena()
        self.redactor = redactor
        self.engine: TurnEngine | None = None
        self.dispatcher: Dispatcher = Dispatcher()
        register_handlers(self.dispatcher, self)
        self._agent_ended = asyncio.Event()
        self._stopped = False
        self._closed = False
        self._last_frame = 0.0
        self.log = logging.getLogger(__name__)

    # -------------------------
    # Connection lifecycle
    # -------------------------

    async def run(self) -> None:
        self._last_frame = asyncio.get_running_loop().time()
        try:
            if await self._handshake():
                await self._serve_frames()
        except ProtocolViolation as exc:
            self.log.warning(
                "protocol_violation",
                extra={
                    "call_id": self._call_id(),
                    "code": int(exc.code),
                    "reason": exc.reason,
                    "error_category": exc.category.value,
                },
            )
            await self.close(exc.code, exc.reason)
        except ConnectionClosed:
            self.log.info(
                "connection_closed",
                extra={"call_id": self._call_id(), "error_category": ErrorCategory.NETWORK.value},
            )
            self._closed = True
        except Exception:
            self.log.exception(
                "session_failed",
                extra={"call_id": self._call_id(), "error_category": ErrorCategory.ENGINE.value},
            )
            await self.close(CloseCode.INTERNAL_ERROR, REASON_INTERNAL_ERROR)
        finally:
            if self.engine is not None and not self.engine.ended:
                await self.engine.handle(CallEnded())

    async def _handshake(self) -> bool:
        raw = await self._receive()
        if raw is None:
            await self.close(CloseCode.NORMAL, REASON_IDLE_TIMEOUT)
            return False
        frame = parse_frame(raw)
        if not isinstance(frame, StartFrame):
            raise ProtocolViolation(CloseCode.PROTOCOL_ERROR, REASON_EXPECTED_START)

        request = CallRequest.from_start(frame)
        decision = PreCallResult()
        if self.pre_call_handler is not None:
            decision = await _resolve(self.pre_call_handler(request))
            if isinstance(decision, bool):
                decision = PreCallResult(accept=decision)
        if not decision.accept:
            self.log.info("call_rejected", extra={"reason": decision.reason})
            await self.close(CloseCode.POLICY_VIOLATION, decision.reason)
            return False

        call = Call(
            history=CallHistory(self.redactor),
            metadata={**request.metadata, **decision.metadata},
        )
        agent = await _resolve(self.get_agent(CallContext(call.id, request, call.metadata)))
        self.engine = TurnEngine(agent, self, call=call, arena=self.arena, redactor=self.redactor)
        self.log.info(
            "call_started",
            extra={"call_id": call.id, "stream_id": request.stream_id, "agent": agent_name(agent)},
        )
        await self.ack(frame.type)
        await self.engine.handle(CallStarted())
        return True

    async def _serve_frames(self) -> None:
        ended = asyncio.create_task(self._agent_ended.wait())
        try:
            while True:
                raw = await self._receive(ended)
                if raw is None:
                    reason = REASON_AGENT_ENDED if self._agent_ended.is_set() else REASON_IDLE_TIMEOUT
                    await self.close(CloseCode.NORMAL, reason)
                    return
                frame = parse_frame(raw)
                await self.dispatcher.dispatch(frame)
                if self._stopped:
                    await self.close(CloseCode.NORMAL, REASON_CALL_ENDED)
                    return
                if self._agent_ended.is_set():
                    await self.close(CloseCode.NORMAL, REASON_AGENT_ENDED)
                    return
        finally:
            ended.cancel()

    async def _receive(self, *waiters: asyncio.Future[Any]) -> Any:
        """Return the next inbound message.

        Returns ``None`` when the client has been idle for ``idle_timeout_s``
        or when one of ``waiters`` completes first. Any inbound frame,
        protocol pings included, pushes the idle deadline back.
        """
        loop = asyncio.get_running_loop()
        recv = asyncio.create_task(self.ws.recv())
        try:
            while True:
                remaining = self._last_activity() + self.idle_timeout_s - loop.time()
                if remaining <= 0:
                    return None
                done, _ = await asyncio.wait(
                    {recv, *waiters}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if recv in done:
                    self._last_frame = loop.time()
                    return recv.result()
                if done:
                    return None
        finally:
            if not recv.done():
                recv.cancel()
                await asyncio.gather(recv, return_exceptions=True)

    def _last_activity(self) -> float:
        return max(self._last_frame, getattr(self.ws, "last_activity", 0.0))

    def stop(self) -> None:
        """Client asked to end the call."""
        self._stopped = True

    async def close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self.log.info("closing", extra={"call_id": self._call_id(), "code": int(code), "reason": reason})
        await self.ws.close(int(code), reason)

    def _call_id(self) -> str | None:
        return self.engine.call.id if self.engine is not None else None

    # -------------------------
    # Outbound
    # -------------------------

    async def _send_frame(self, frame: Any) -> None:
        if self._closed:
            return
        await self.ws.send(encode(frame))

    async def ack(self, received: str) -> None:
        await self._send_frame(AckFrame(received=received, call_id=self._call_id()))

    async def send(self, event: Any) -> None:
        """Forward an engine output event to the client."""
        if isinstance(event, AgentSendText):
            await self._send_frame(AgentTextFrame(text=event.text))
            for chunk in await self.bridge.synthesize(event.text):
                payload = base64.b64encode(chunk).decode("ascii")
                await self._send_frame(MediaOutputFrame(media=Media(payload=payload)))
        elif isinstance(event, AgentSendDtmf):
            await self._send_frame(DtmfOutputFrame(dtmf=event.button))
        elif isinstance(event, AgentTransferCall):
            await self._send_frame(TransferCallFrame(target=event.target))
        elif isinstance(event, AgentUpdateCall):
            await self._send_frame(UpdateCallFrame(voice_id=event.voice_id, metadata=event.metadata))
        elif isinstance(event, AgentEndCall):
            self._agent_ended.set()

    async def clear(self) -> None:
        await self.bridge.interrupt()
        await self._send_frame(ClearFrame())


async def serve(
    get_agent: GetAgent,
    *,
    host: str = "0.0.0.0",
    port: int = 8765,
    pre_call_handler: PreCallHandler | None = None,
    bridge_factory: Callable[[], SpeechBridge] | None = None,
    idle_timeout_s: float = 180.0,
    redactor: Redactor | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Accept calls until ``stop`` is set (or forever)."""
    log = logging.getLogger(__name__)
    arena = StateArena()

    async def handler(ws: Any) -> None:
        session = CallSession(
            ws,
            get_agent,
            pre_call_handler=pre_call_handler,
            bridge=bridge_factory() if bridge_factory else None,
            idle_timeout_s=idle_timeout_s,
            arena=arena,
            redactor=redactor,
        )
        await session.run()

    async with ws_serve(handler, host, port, create_connection=ActivityConnection) as server:
        log.info("server_listening", extra={"host": host, "port": port})
        if stop is not None:
            await stop.wait()
        else:
            await server.serve_forever()
