"""Cooperative cancellation for a call's synchronous unit of work.

A unit of work is one reasoning step together with the synchronous tools it
runs. Units for a call execute one at a time, in submission order; the
controller can cancel the active unit and anything queued behind it.
Cancellation is observed at await points (the unit's task is cancelled) and
at every emission (the unit's token is checked), so an interrupted unit never
emits again once :meth:`InterruptionController.interrupt` has been called.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..errors import ErrorCategory

Work = Callable[["CancellationToken"], Awaitable[None]]


class CancellationToken:
    """Cancellation signal handed to every suspension point of a unit."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason)


@dataclass(eq=False)
class _Unit:
    label: str
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task | None = None


class InterruptionController:
    """Serializes a call's units of work and cancels them on demand."""

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        self._lock = asyncio.Lock()
        self._units: list[_Unit] = []
        self._active: _Unit | None = None
        self.log = logging.getLogger(__name__)

    @property
    def active(self) -> bool:
        """Whether a unit currently holds the serialization point."""
        return self._active is not None

    def submit(self, label: str, work: Work) -> asyncio.Task:
        """Queue ``work`` to run once every earlier unit has finished."""
        unit = _Unit(label)
        unit.task = asyncio.create_task(self._run(unit, work), name=f"unit:{self.call_id}:{label}")
        unit.task.add_done_callback(lambda task: self._finished(unit, task))
        self._units.append(unit)
        return unit.task

    async def _run(self, unit: _Unit, work: Work) -> None:
        try:
            async with self._lock:
                unit.token.raise_if_cancelled()
                self._active = unit
                try:
                    await work(unit.token)
                finally:
                    self._active = None
        except asyncio.CancelledError:
            # Cancellation requested through the token is an expected outcome.
            if not unit.token.cancelled:
                raise
            self.log.debug(
                "unit_cancelled",
                extra={"call_id": self.call_id, "event_type": unit.label, "reason": unit.token.reason},
            )

    def _finished(self, unit: _Unit, task: asyncio.Task) -> None:
        if unit in self._units:
            self._units.remove(unit)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.error(
                "unit_failed",
                exc_info=exc,
                extra={
                    "call_id": self.call_id,
                    "event_type": unit.label,
                    "error_category": ErrorCategory.ENGINE.value,
                },
            )

    async def interrupt(self, reason: str = "interrupted") -> bool:
        """Cancel the active unit and every queued one.

        Returns whether a unit was active. Waits until all cancelled units have
        unwound.
        """
        was_active = self._active is not None
        units = list(self._units)
        for unit in units:
            unit.token.cancel(reason)
            if unit.task is not None:
                unit.task.cancel()
        if units:
            await asyncio.gather(*(u.task for u in units if u.task), return_exceptions=True)
        return was_active

    async def join(self) -> None:
        """Wait until no unit is active or queued."""
        while self._units:
            await asyncio.gather(*(u.task for u in list(self._units) if u.task), return_exceptions=True)
