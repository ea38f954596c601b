"""Parameter schemas for tools and argument validation.

Arguments coming from the reasoning step are checked here before any tool
body runs. Nothing is coerced: a value either matches its declared type and
enum constraint or the whole call is rejected with :class:`SchemaViolation`.
"""

from __future__ import annotations

import inspect
import types
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

from ..errors import SchemaViolation

_MISSING: Any = object()

# Parameters filled in by the engine rather than by the reasoning step.
RESERVED_PARAMETERS = frozenset({"ctx", "event"})


class ParameterType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"

    def accepts(self, value: Any) -> bool:
        if self is ParameterType.STRING:
            return isinstance(value, str)
        if self is ParameterType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is ParameterType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is ParameterType.BOOLEAN:
            return isinstance(value, bool)
        if self is ParameterType.ARRAY:
            return isinstance(value, list)
        return isinstance(value, dict)


class ToolParadigm(str, Enum):
    LOOPBACK = "loopback"
    PASSTHROUGH = "passthrough"
    HANDOFF = "handoff"


@dataclass(frozen=True)
class Parameter:
    """One declared tool parameter.

    A parameter is optional when ``required`` is false; its ``default`` is
    used whenever the reasoning step omits it.
    """

    name: str
    type: ParameterType = ParameterType.STRING
    description: str = ""
    required: bool = True
    default: Any = None
    enum: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        if self.enum is not None:
            object.__setattr__(self, "enum", tuple(self.enum))
            if not self.required and self.default is not None and self.default not in self.enum:
                raise ValueError(
                    f"Default {self.default!r} of parameter '{self.name}' is not in its enum"
                )

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type.value}
        if self.description:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable description of a tool as advertised to the reasoning step."""

    name: str
    description: str
    parameters: tuple[Parameter, ...] = ()
    paradigm: ToolParadigm = ToolParadigm.LOOPBACK
    background: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", tuple(self.parameters))
        if self.background and self.paradigm is not ToolParadigm.LOOPBACK:
            raise ValueError(f"Tool '{self.name}': only loopback tools can run in background")
        names = [p.name for p in self.parameters]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Tool '{self.name}': duplicate parameters {duplicates}")

    def json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def spec(self) -> dict[str, Any]:
        """Return an OpenAI function-tool spec for this descriptor."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }

    def validate(self, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        """Check ``arguments`` against the schema and fill in defaults.

        Raises:
            SchemaViolation: if arguments are malformed, unknown, missing,
                mistyped or outside an enum.
        """
        if arguments is None:
            raise SchemaViolation(self.name, ["arguments were not a valid JSON object"])

        problems: list[str] = []
        declared = {p.name: p for p in self.parameters}
        for name in arguments:
            if name not in declared:
                problems.append(f"unexpected argument '{name}'")

        validated: dict[str, Any] = {}
        for param in self.parameters:
            value = arguments.get(param.name, _MISSING)
            if value is _MISSING or (value is None and not param.required):
                if param.required:
                    problems.append(f"missing required argument '{param.name}'")
                else:
                    validated[param.name] = param.default
                continue
            if not param.type.accepts(value):
                problems.append(
                    f"argument '{param.name}' must be of type {param.type.value}, got {value!r}"
                )
                continue
            if param.enum is not None and value not in param.enum:
                allowed = ", ".join(repr(v) for v in param.enum)
                problems.append(f"argument '{param.name}' must be one of {allowed}, got {value!r}")
                continue
            validated[param.name] = value

        if problems:
            raise SchemaViolation(self.name, problems)
        return validated


# Schema inference ------------------------------------------------------------

_SIMPLE_TYPES: dict[Any, ParameterType] = {
    str: ParameterType.STRING,
    int: ParameterType.INTEGER,
    float: ParameterType.NUMBER,
    bool: ParameterType.BOOLEAN,
    list: ParameterType.ARRAY,
    dict: ParameterType.OBJECT,
}


def _parameter_type(hint: Any) -> tuple[ParameterType, tuple[Any, ...] | None]:
    """Map a type hint to a parameter type and an optional enum constraint."""
    if hint is inspect.Parameter.empty or hint is Any:
        return ParameterType.STRING, None
    if hint in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[hint], None

    origin = get_origin(hint)
    if origin is Literal:
        values = get_args(hint)
        return _parameter_type(type(values[0]))[0], tuple(values)
    if origin in (Union, types.UnionType):
        # Optional[T] / T | None; the first non-None member wins
        args = [a for a in get_args(hint) if a is not type(None)]
        return _parameter_type(args[0])
    if origin in (list, Sequence, tuple):
        return ParameterType.ARRAY, None
    if origin in (dict, Mapping):
        return ParameterType.OBJECT, None
    if isinstance(hint, type) and issubclass(hint, Enum):
        values = tuple(member.value for member in hint)
        return _parameter_type(type(values[0]))[0], values
    return ParameterType.STRING, None


def _resolve_hints(func: Callable[..., Any]) -> dict[str, Any]:
    """Resolve the annotations of schema parameters one at a time.

    Engine-supplied parameters are skipped, since their annotations often
    only exist under ``TYPE_CHECKING``. An annotation that does not resolve
    leaves its parameter untyped.
    """
    globalns = getattr(func, "__globals__", {})
    hints: dict[str, Any] = {}
    for name, annotation in getattr(func, "__annotations__", {}).items():
        if name in RESERVED_PARAMETERS or name in ("self", "return"):
            continue
        holder = types.SimpleNamespace(__annotations__={name: annotation}, __globals__=globalns)
        try:
            hints.update(get_type_hints(holder))
        except (NameError, TypeError, SyntaxError):
            continue
    return hints


def infer_parameters(
    func: Callable[..., Any], descriptions: Mapping[str, str] | None = None
) -> tuple[Parameter, ...]:
    """Infer parameters from ``func``'s signature and type hints.

    The leading ``ctx`` and the ``event`` parameter of handoff tools are
    supplied by the engine and are not part of the schema.
    """
    descriptions = descriptions or {}
    sig = inspect.signature(func)
    hints = _resolve_hints(func)

    params: list[Parameter] = []
    for name, param in sig.parameters.items():
        if name in RESERVED_PARAMETERS or name == "self":
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        ptype, enum = _parameter_type(hints.get(name, inspect.Parameter.empty))
        required = param.default is inspect.Parameter.empty
        default = None if required else param.default
        if isinstance(default, Enum):
            default = default.value
        params.append(
            Parameter(
                name=name,
                type=ptype,
                description=descriptions.get(name, ""),
                required=required,
                default=default,
                enum=enum,
            )
        )
    return tuple(params)
