from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Classification for error logging."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    TOOL = "tool"
    REASONING = "reasoning"
    ENGINE = "engine"


class VoiceOrchestratorError(Exception):
    """Base class for errors raised by the orchestrator."""

    category: ErrorCategory = ErrorCategory.ENGINE


class SchemaViolation(VoiceOrchestratorError):
    """Tool arguments did not match the declared parameter schema."""

    category = ErrorCategory.TOOL

    def __init__(self, tool_name: str, problems: list[str]) -> None:
        self.tool_name = tool_name
        self.problems = problems
        super().__init__(f"Invalid arguments for tool '{tool_name}': " + "; ".join(problems))


class ToolLoopExceeded(VoiceOrchestratorError):
    """Reasoning requested more tool rounds than the configured bound."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Tool loop exceeded {limit} rounds")


class ReasoningProviderError(VoiceOrchestratorError):
    """A single reasoning attempt failed (timeout, upstream or auth error)."""

    category = ErrorCategory.REASONING

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class ReasoningExhausted(VoiceOrchestratorError):
    """Retries and fallbacks were used up without a complete response."""

    category = ErrorCategory.REASONING

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Reasoning failed after {attempts} attempt(s){detail}")


class ProtocolViolation(VoiceOrchestratorError):
    """The transport peer broke the WebSocket protocol."""

    category = ErrorCategory.PROTOCOL

    def __init__(self, code: int, reason: str) -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"{reason} ({code})")
