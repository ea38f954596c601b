from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..events import HistoryEvent, is_input_event
from ..redaction import Redactor


class CallStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"


class CallHistory:
    """Append-only, totally ordered record of a call's events.

    Stored input events have their nested ``history`` stripped. Readers only
    ever get tuple snapshots, so a snapshot taken earlier is always a prefix
    of any later one.
    """

    def __init__(self, redactor: Redactor | None = None) -> None:
        self._events: list[HistoryEvent] = []
        self._redactor = redactor
        self._log = logging.getLogger(__name__)

    def append(self, event: HistoryEvent) -> HistoryEvent:
        if is_input_event(event) and event.history is not None:
            event = event.model_copy(update={"history": None})
        self._events.append(event)
        if self._log.isEnabledFor(logging.DEBUG):
            payload = event.model_dump()
            if self._redactor:
                payload = self._redactor.redact_value(payload)
            self._log.debug(
                "append_event",
                extra={"event_type": event.type, "position": len(self._events), "payload": payload},
            )
        return event

    def snapshot(self) -> tuple[HistoryEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[HistoryEvent]:
        return iter(self.snapshot())


@dataclass
class Call:
    """One conversation instance, owned by its harness for its whole life."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    history: CallHistory = field(default_factory=CallHistory)
    metadata: dict[str, Any] = field(default_factory=dict)
    status: CallStatus = CallStatus.CREATED

    @property
    def ended(self) -> bool:
        return self.status is CallStatus.ENDED

    def activate(self) -> None:
        if self.status is CallStatus.CREATED:
            self.status = CallStatus.ACTIVE

    def end(self) -> None:
        self.status = CallStatus.ENDED
