from __future__ import annotations

import asyncio
import logging

from .config import Settings, get_settings
from .logging import configure_logging


def build_agent_factory(settings: Settings):  # noqa: ANN201 - returns a get_agent callable
    """Return the default ``get_agent`` resolver.

    Each call gets a fresh :class:`LlmAgent` with the built-in tools. The
    client's ``start`` frame may override the system prompt and introduction.
    """
    from .engine.llm_agent import AgentConfig, LlmAgent
    from .reasoning.base import SamplingConfig
    from .reasoning.openai_impl import OpenAIReasoner
    from .reasoning.policy import RetryPolicy
    from .tools.builtins import builtin_tools

    reasoner = OpenAIReasoner(settings=settings)
    retry = RetryPolicy(
        max_retries=settings.reasoning_max_retries,
        backoff_base=settings.retry_backoff_base,
        backoff_max=settings.retry_backoff_max,
        timeout_s=settings.reasoning_timeout_s,
    )

    def get_agent(context) -> LlmAgent:  # noqa: ANN001 - CallContext
        request = context.request
        config = AgentConfig(
            system_prompt=request.system_prompt or settings.system_prompt,
            introduction=request.introduction or settings.introduction,
            sampling=SamplingConfig(
                model=settings.model,
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
            ),
            max_tool_iterations=settings.max_tool_iterations,
            retry=retry,
            fallback_models=tuple(settings.fallback_models),
        )
        return LlmAgent(reasoner, config, builtin_tools())

    return get_agent


async def run(settings: Settings | None = None) -> None:
    """Run the call server."""

    configure_logging()
    settings = settings or get_settings()

    # Lazy imports to avoid pulling in the server stack on `--help`.
    from .redaction import Redactor
    from .transport.server import serve

    log = logging.getLogger(__name__)
    log.info(
        "orchestrator starting",
        extra={
            "model": settings.model,
            "host": settings.host,
            "port": settings.port,
            "idle_timeout_s": settings.idle_timeout_s,
        },
    )
    await serve(
        build_agent_factory(settings),
        host=settings.host,
        port=settings.port,
        idle_timeout_s=settings.idle_timeout_s,
        redactor=Redactor(enabled=settings.redact_pii),
    )


def main() -> None:
    asyncio.run(run())
