from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol, Union

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.interruption import CancellationToken
    from ..events import HistoryEvent
    from ..tools.schema import ToolDescriptor


@dataclass(frozen=True)
class SamplingConfig:
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call requested by the reasoning step.

    ``arguments`` is ``None`` when the provider returned arguments that were
    not a JSON object.
    """

    id: str
    name: str
    arguments: dict[str, Any] | None


ReasoningChunk = Union[TextDelta, ToolCallRequest]


@dataclass(frozen=True)
class ReasoningRequest:
    system_prompt: str
    history: tuple[HistoryEvent, ...]
    tools: tuple[ToolDescriptor, ...] = ()
    sampling: SamplingConfig = SamplingConfig()

    def with_model(self, model: str) -> ReasoningRequest:
        return replace(self, sampling=replace(self.sampling, model=model))


class Reasoner(Protocol):
    def stream(
        self, request: ReasoningRequest, token: CancellationToken
    ) -> AsyncIterator[ReasoningChunk]:  # noqa: D401
        """Produce text deltas and tool-call requests for ``request``."""
