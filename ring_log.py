# src/ring_log.py
import itertools
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Iterator, Tuple

from errors import InvalidConfiguration
from models import LogEntry, LogLevel

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.CRIT: logging.CRITICAL,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RingLog:
    """Fixed-capacity activity log; appending past capacity evicts the oldest entry."""

    def __init__(self, capacity: int = 50, clock: Callable[[], datetime] = utc_now):
        if capacity <= 0:
            raise InvalidConfiguration("RingLog capacity must be > 0")
        self._capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, level: LogLevel, message: str) -> LogEntry:
        entry = LogEntry(id=next(self._ids), timestamp=self._clock(), level=LogLevel(level), message=message)
        self._entries.append(entry)
        logger.log(_PY_LEVELS[entry.level], "[activity] %s", message)
        return entry

    def tail(self, n: int) -> Tuple[LogEntry, ...]:
        if n <= 0:
            return ()
        return tuple(itertools.islice(self._entries, max(0, len(self._entries) - n), None))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))
