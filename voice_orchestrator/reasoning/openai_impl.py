from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any

import openai

from ..config import Settings, get_settings
from ..errors import ErrorCategory, ReasoningProviderError
from ..events import AgentSendText, AgentToolReturned, UserDtmfSent, UserTextSent, UserTurnEnded
from .base import ReasoningChunk, ReasoningRequest, TextDelta, ToolCallRequest

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.interruption import CancellationToken

# Errors that will not go away by asking again.
_FATAL_ERRORS: tuple[type[Exception], ...] = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
)


def build_messages(system_prompt: str, history: Sequence[Any]) -> list[dict[str, Any]]:
    """Render a call history as Chat Completions messages.

    Consecutive agent speech is merged into one assistant message. Every tool
    result becomes an assistant tool call paired with its tool message, so a
    background tool that yields several times produces several pairs; repeated
    ids get a numeric suffix.
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    seen_ids: dict[str, int] = {}
    for event in history:
        if isinstance(event, UserTurnEnded):
            if event.text:
                messages.append({"role": "user", "content": event.text})
        elif isinstance(event, UserTextSent):
            messages.append({"role": "user", "content": event.content})
        elif isinstance(event, UserDtmfSent):
            messages.append({"role": "user", "content": f"[DTMF {event.button}]"})
        elif isinstance(event, AgentSendText):
            last = messages[-1]
            if last["role"] == "assistant" and "tool_calls" not in last:
                last["content"] += event.text
            else:
                messages.append({"role": "assistant", "content": event.text})
        elif isinstance(event, AgentToolReturned):
            count = seen_ids.get(event.tool_call_id, 0)
            seen_ids[event.tool_call_id] = count + 1
            call_id = event.tool_call_id if count == 0 else f"{event.tool_call_id}_{count}"
            messages.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": call_id,
                            "type": "function",
                            "function": {
                                "name": event.tool_name,
                                "arguments": json.dumps(event.tool_args),
                            },
                        }
                    ],
                }
            )
            result = event.result
            content = result if isinstance(result, str) else json.dumps(result, default=str)
            messages.append({"role": "tool", "tool_call_id": call_id, "content": content})
    return messages


def _parse_arguments(raw: str) -> dict[str, Any] | None:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class OpenAIReasoner:
    """Reasoning step backed by streaming Chat Completions."""

    def __init__(
        self,
        *,
        client: Any | None = None,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self.log = logging.getLogger(__name__)
        self.settings = settings or get_settings()
        self.model = model or self.settings.model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._build_client(self.settings)
        return self._client

    async def stream(
        self, request: ReasoningRequest, token: CancellationToken
    ) -> AsyncIterator[ReasoningChunk]:
        sampling = request.sampling
        kwargs: dict[str, Any] = {
            "model": sampling.model or self.model,
            "messages": build_messages(request.system_prompt, request.history),
            "stream": True,
        }
        if request.tools:
            kwargs["tools"] = [descriptor.spec() for descriptor in request.tools]
        if sampling.temperature is not None:
            kwargs["temperature"] = sampling.temperature
        if sampling.max_tokens is not None:
            kwargs["max_tokens"] = sampling.max_tokens
        if sampling.top_p is not None:
            kwargs["top_p"] = sampling.top_p

        try:
            stream = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise self._wrap(exc) from exc

        pending: dict[int, dict[str, str]] = {}
        try:
            async for chunk in stream:
                token.raise_if_cancelled()
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield TextDelta(delta.content)
                for call in delta.tool_calls or ():
                    slot = pending.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        slot["id"] = call.id
                    if call.function is not None:
                        slot["name"] += call.function.name or ""
                        slot["arguments"] += call.function.arguments or ""
        except openai.OpenAIError as exc:
            raise self._wrap(exc) from exc
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCallRequest(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )

    def _wrap(self, exc: Exception) -> ReasoningProviderError:
        retryable = not isinstance(exc, _FATAL_ERRORS)
        self.log.warning(
            "provider_error",
            extra={"error_category": ErrorCategory.REASONING.value, "retryable": retryable},
        )
        return ReasoningProviderError(f"{type(exc).__name__}: {exc}", retryable=retryable)

    def _build_client(self, settings: Settings) -> Any:
        if settings.provider == "azure":
            if not settings.azure_openai_api_key:
                raise RuntimeError("AZURE_OPENAI_API_KEY is required for the reasoning step")
            if not settings.azure_openai_endpoint:
                raise RuntimeError("AZURE_OPENAI_ENDPOINT is required for the reasoning step")
            return openai.AsyncAzureOpenAI(
                api_key=settings.azure_openai_api_key,
                api_version=settings.azure_openai_api_version,
                azure_endpoint=settings.azure_openai_endpoint,
            )

        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is required for the reasoning step")
        client_kwargs: dict[str, Any] = {"api_key": settings.openai_api_key}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        return openai.AsyncOpenAI(**client_kwargs)
