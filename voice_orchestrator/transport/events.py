from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

FrameT = TypeVar("FrameT")


FrameHandler = Callable[[FrameT], Awaitable[None]]


def get_type(frame: Any) -> str:
    if isinstance(frame, dict):
        return frame.get("type", "")
    return getattr(frame, "type", "")


class Dispatcher(Generic[FrameT]):
    """Minimal async frame dispatcher.

    Handlers can be registered for frame types and will be awaited when a
    matching frame is dispatched. Unknown frame types are ignored.

    The :meth:`on` method can be used either as a decorator::

        dispatcher = Dispatcher()


        @dispatcher.on("text")
        async def handler(frame): ...

    or called directly::

        dispatcher.on("text", handler)

    """

    def __init__(self) -> None:
        self._handlers: dict[str, FrameHandler[FrameT]] = {}

    def on(
        self, frame_type: str, handler: FrameHandler[FrameT] | None = None
    ) -> FrameHandler[FrameT] | Callable[[FrameHandler[FrameT]], FrameHandler[FrameT]]:
        """Register ``handler`` for ``frame_type``.

        If ``handler`` is ``None`` this functions as a decorator factory.
        """

        if handler is not None:
            self._handlers[frame_type] = handler
            return handler

        def decorator(func: FrameHandler[FrameT]) -> FrameHandler[FrameT]:
            self._handlers[frame_type] = func
            return func

        return decorator

    async def dispatch(self, frame: FrameT) -> None:
        handler = self._handlers.get(get_type(frame))
        if handler:
            await handler(frame)
