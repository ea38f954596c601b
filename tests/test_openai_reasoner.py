from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from voice_orchestrator.config import Settings
from voice_orchestrator.engine.interruption import CancellationToken
from voice_orchestrator.errors import ReasoningProviderError
from voice_orchestrator.events import (
    AgentSendText,
    AgentToolReturned,
    UserDtmfSent,
    UserTextSent,
    UserTurnEnded,
)
from voice_orchestrator.reasoning.base import (
    ReasoningRequest,
    SamplingConfig,
    TextDelta,
    ToolCallRequest,
)
from voice_orchestrator.reasoning.openai_impl import OpenAIReasoner, build_messages
from voice_orchestrator.tools.registry import loopback_tool


def _chunk(content=None, tool_calls=None):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self._chunks:
            yield chunk

    async def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, stream=None, error=None):
        self.stream = stream
        self.error = error
        self.calls: list[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.stream


def _reasoner(client) -> OpenAIReasoner:
    return OpenAIReasoner(client=client, settings=Settings(openai_api_key="sk-test"), model="gpt-test")


async def _collect(reasoner, request):
    return [chunk async for chunk in reasoner.stream(request, CancellationToken())]


def test_stream_yields_text_then_assembled_tool_calls():
    def lookup(ctx, account_id: str):
        """Look up an account."""

    stream = FakeStream(
        [
            SimpleNamespace(choices=[]),
            _chunk("Let me "),
            _chunk("check."),
            _chunk(tool_calls=[_tool_delta(0, id="call_1", name="lookup", arguments='{"account')]),
            _chunk(tool_calls=[_tool_delta(0, arguments='_id": "7"}')]),
            _chunk(tool_calls=[_tool_delta(1, id="call_2", name="lookup", arguments="{oops")]),
        ]
    )
    client = FakeClient(stream)
    request = ReasoningRequest(
        system_prompt="Be brief.",
        history=(UserTurnEnded(content=(UserTextSent(content="balance?"),)),),
        tools=(loopback_tool(lookup).descriptor,),
        sampling=SamplingConfig(temperature=0.2),
    )

    chunks = asyncio.run(_collect(_reasoner(client), request))

    assert chunks == [
        TextDelta("Let me "),
        TextDelta("check."),
        ToolCallRequest(id="call_1", name="lookup", arguments={"account_id": "7"}),
        ToolCallRequest(id="call_2", name="lookup", arguments=None),
    ]
    assert stream.closed
    (kwargs,) = client.calls
    assert kwargs["model"] == "gpt-test"
    assert kwargs["stream"] is True
    assert kwargs["temperature"] == 0.2
    assert "max_tokens" not in kwargs
    assert kwargs["tools"][0]["function"]["name"] == "lookup"
    assert kwargs["messages"][-1] == {"role": "user", "content": "balance?"}


def test_sampling_model_overrides_default():
    client = FakeClient(FakeStream([]))
    request = ReasoningRequest(system_prompt="", history=(), sampling=SamplingConfig(model="backup"))
    asyncio.run(_collect(_reasoner(client), request))
    assert client.calls[0]["model"] == "backup"
    assert "tools" not in client.calls[0]


def test_provider_errors_are_classified():
    req = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    auth = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=req), body=None
    )
    request = ReasoningRequest(system_prompt="", history=())

    with pytest.raises(ReasoningProviderError) as info:
        asyncio.run(_collect(_reasoner(FakeClient(error=auth)), request))
    assert not info.value.retryable

    with pytest.raises(ReasoningProviderError) as info:
        asyncio.run(_collect(_reasoner(FakeClient(error=openai.APIConnectionError(request=req))), request))
    assert info.value.retryable


def test_missing_api_key_is_reported_when_client_is_built():
    reasoner = OpenAIReasoner(settings=Settings(openai_api_key=""))
    with pytest.raises(RuntimeError):
        reasoner.client


def test_build_messages_renders_history():
    history = (
        UserTurnEnded(content=(UserTextSent(content="hi"), UserDtmfSent(button="5"))),
        AgentSendText(text="Hel"),
        AgentSendText(text="lo"),
        AgentToolReturned(tool_call_id="c1", tool_name="balance", tool_args={"a": 1}, result={"usd": 10}),
        AgentToolReturned(tool_call_id="c1", tool_name="balance", tool_args={"a": 1}, result="again"),
        UserDtmfSent(button="#"),
    )
    messages = build_messages("Be brief.", history)

    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert messages[1] == {"role": "user", "content": "hi [DTMF 5]"}
    assert messages[2] == {"role": "assistant", "content": "Hello"}
    assert messages[3]["tool_calls"][0]["id"] == "c1"
    assert json.loads(messages[3]["tool_calls"][0]["function"]["arguments"]) == {"a": 1}
    assert messages[4] == {"role": "tool", "tool_call_id": "c1", "content": '{"usd": 10}'}
    assert messages[5]["tool_calls"][0]["id"] == "c1_1"
    assert messages[6] == {"role": "tool", "tool_call_id": "c1_1", "content": "again"}
    assert messages[7] == {"role": "user", "content": "[DTMF #]"}
