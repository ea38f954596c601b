"""Simple PII redaction utilities for log output."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

# Basic patterns for emails and US phone numbers
EMAIL_RE = re.compile(r"[\w.\-]+@[\w.\-]+")
PHONE_RE = re.compile(r"\b(?:\d{3}[ -]?){2}\d{4}\b")


@dataclass
class Redactor:
    """Redact configured PII patterns from text."""

    enabled: bool = True
    patterns: Iterable[re.Pattern[str]] = (EMAIL_RE, PHONE_RE)
    replacement: str = "[REDACTED]"

    def redact(self, text: str) -> str:
        """Return ``text`` with any PII patterns removed."""
        if not self.enabled:
            return text
        redacted = text
        for pattern in self.patterns:
            redacted = pattern.sub(self.replacement, redacted)
        return redacted

    def redact_value(self, value: object) -> object:
        """Redact every string nested inside ``value``.

        Used on ``model_dump()`` output of events before they are logged, so
        transcripts and tool arguments never reach the log stream unredacted.
        """
        if not self.enabled:
            return value
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {key: self.redact_value(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.redact_value(item) for item in value]
        return value
