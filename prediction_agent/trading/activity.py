from collections import deque
from dataclasses import dataclass
from datetime import datetime

from prediction_agent.constants import LogType
from prediction_agent.utils.logger import log


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: datetime
    type: LogType
    message: str


class ActivityLog:
    """Bounded, human-readable event feed. Oldest entries fall off first."""

    def __init__(self, capacity: int = 200):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[ActivityEntry] = deque(maxlen=capacity)

    def __len__(self):
        return len(self._entries)

    def add(self, timestamp: datetime, type_: LogType, message: str) -> ActivityEntry:
        entry = ActivityEntry(timestamp, type_, message)
        self._entries.append(entry)
        if type_ == LogType.ERROR:
            log.error("[%s] %s", type_.value, message)
        else:
            log.info("[%s] %s", type_.value, message)
        return entry

    def recent(self, n: int = 50) -> list[ActivityEntry]:
        """Newest first."""
        return list(reversed(self._entries))[:n]

    def clear(self):
        self._entries.clear()
