"""Retry, timeout and fallback handling around a :class:`Reasoner`."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import ErrorCategory, ReasoningExhausted, ReasoningProviderError
from .base import Reasoner, ReasoningChunk, ReasoningRequest

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..engine.interruption import CancellationToken


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_base: float = 0.5
    backoff_max: float = 4.0
    # Maximum wait for any single chunk, including the first one.
    timeout_s: float | None = 15.0


class ResilientReasoner:
    """Wraps a reasoner with per-chunk timeouts, retries and fallback models.

    Retries are transparent only while an attempt has produced nothing: once a
    chunk has been handed on, a failure raises :class:`ReasoningExhausted`
    rather than replaying output the caller already consumed.
    """

    def __init__(
        self,
        primary: Reasoner,
        policy: RetryPolicy | None = None,
        fallback_models: Sequence[str] = (),
    ) -> None:
        self.primary = primary
        self.policy = policy or RetryPolicy()
        self.fallback_models = tuple(fallback_models)
        self.log = logging.getLogger(__name__)

    async def stream(
        self, request: ReasoningRequest, token: CancellationToken
    ) -> AsyncIterator[ReasoningChunk]:
        targets = [request] + [request.with_model(model) for model in self.fallback_models]
        attempts = 0
        last: ReasoningProviderError | None = None
        for index, target in enumerate(targets):
            backoff = self.policy.backoff_base
            for retry in range(self.policy.max_retries + 1):
                token.raise_if_cancelled()
                attempts += 1
                started = False
                try:
                    async with contextlib.aclosing(self._attempt(target, token)) as chunks:
                        async for chunk in chunks:
                            started = True
                            yield chunk
                    return
                except ReasoningProviderError as exc:
                    last = exc
                    self.log.warning(
                        "reasoning_attempt_failed",
                        extra={
                            "attempt": attempts,
                            "model": target.sampling.model,
                            "retryable": exc.retryable,
                            "error_category": ErrorCategory.REASONING.value,
                        },
                    )
                    if started:
                        raise ReasoningExhausted(attempts, exc) from exc
                    if not exc.retryable or retry == self.policy.max_retries:
                        break
                    await asyncio.sleep(backoff + random.uniform(0, backoff))
                    backoff = min(backoff * 2, self.policy.backoff_max)
            if index + 1 < len(targets):
                self.log.info(
                    "reasoning_fallback",
                    extra={"model": targets[index + 1].sampling.model, "attempt": attempts},
                )
        raise ReasoningExhausted(attempts, last)

    async def _attempt(
        self, request: ReasoningRequest, token: CancellationToken
    ) -> AsyncIterator[ReasoningChunk]:
        it = self.primary.stream(request, token)
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(it.__anext__(), self.policy.timeout_s)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as exc:
                    raise ReasoningProviderError(
                        f"no response within {self.policy.timeout_s}s"
                    ) from exc
                yield chunk
        finally:
            aclose = getattr(it, "aclose", None)
            if aclose is not None:
                await aclose()
