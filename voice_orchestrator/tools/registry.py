"""Tool registry and registration helpers.

Tools are registered with an explicit builder call that wraps a plain
function with its paradigm and parameter schema::

    lookup = loopback_tool(
        get_balance,
        description="Look up the account balance",
        parameters=[Parameter("account_id")],
    )
    registry = ToolRegistry([lookup])

When ``parameters`` is omitted the schema is inferred from the function
signature.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .schema import Parameter, ToolDescriptor, ToolParadigm, infer_parameters


@dataclass(frozen=True)
class Tool:
    """A callable unit paired with its immutable descriptor."""

    descriptor: ToolDescriptor
    func: Callable[..., Any]

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def paradigm(self) -> ToolParadigm:
        return self.descriptor.paradigm

    @property
    def background(self) -> bool:
        return self.descriptor.background


class ToolRegistry:
    """Simple in-memory tool registry."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def descriptors(self) -> tuple[ToolDescriptor, ...]:
        return tuple(t.descriptor for t in self._tools.values())

    def specs(self) -> list[dict]:
        """Return tool specs suitable for the reasoning provider."""
        return [t.descriptor.spec() for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _build(
    func: Callable[..., Any],
    paradigm: ToolParadigm,
    *,
    name: str | None,
    description: str | None,
    parameters: Sequence[Parameter] | None,
    descriptions: Mapping[str, str] | None,
    background: bool = False,
) -> Tool:
    if parameters is None:
        parameters = infer_parameters(func, descriptions)
    descriptor = ToolDescriptor(
        name=name or func.__name__,
        description=description or (func.__doc__ or "").strip() or f"Call {func.__name__}",
        parameters=tuple(parameters),
        paradigm=paradigm,
        background=background,
    )
    return Tool(descriptor=descriptor, func=func)


def loopback_tool(
    func: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: Sequence[Parameter] | None = None,
    descriptions: Mapping[str, str] | None = None,
    background: bool = False,
) -> Tool:
    """Wrap ``func`` as a tool whose result goes back to the reasoning step.

    ``func(ctx, **arguments)`` may return a value, an awaitable, or a (sync or
    async) generator. With ``background=True`` the engine does not wait for
    it; every yielded value triggers a new reasoning step.
    """
    return _build(
        func,
        ToolParadigm.LOOPBACK,
        name=name,
        description=description,
        parameters=parameters,
        descriptions=descriptions,
        background=background,
    )


def passthrough_tool(
    func: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: Sequence[Parameter] | None = None,
    descriptions: Mapping[str, str] | None = None,
) -> Tool:
    """Wrap ``func`` as a tool whose output events go straight to the transport."""
    return _build(
        func,
        ToolParadigm.PASSTHROUGH,
        name=name,
        description=description,
        parameters=parameters,
        descriptions=descriptions,
    )


def handoff_tool(
    func: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: Sequence[Parameter] | None = None,
    descriptions: Mapping[str, str] | None = None,
) -> Tool:
    """Wrap ``func`` as a tool that takes ownership of the call.

    ``func(ctx, **arguments, event=event)`` is first called with an
    ``AgentHandedOff`` event and afterwards with every input event routed to
    the call, for as long as it stays the owner.
    """
    return _build(
        func,
        ToolParadigm.HANDOFF,
        name=name,
        description=description,
        parameters=parameters,
        descriptions=descriptions,
    )
