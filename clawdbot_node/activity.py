"""Bounded activity log of recent commands and lifecycle events."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

MAX_ENTRIES = 50

_DOMAINS = ("camera", "canvas", "location", "screen")


@dataclass(frozen=True)
class ActivityRecord:
    command: str
    succeeded: bool
    classification: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def classify(command: str) -> str:
    domain = command.split(".", 1)[0]
    return domain if domain in _DOMAINS else "other"


class ActivityLog:
    """Append-only, oldest entries evicted beyond ``capacity``."""

    def __init__(self, capacity: int = MAX_ENTRIES):
        self._entries: deque[ActivityRecord] = deque(maxlen=capacity)

    def record(self, command: str, succeeded: bool, classification: str | None = None) -> ActivityRecord:
        entry = ActivityRecord(
            command=command,
            succeeded=succeeded,
            classification=classification or classify(command),
        )
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> list[ActivityRecord]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
