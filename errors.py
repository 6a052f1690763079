# src/errors.py
"""Error taxonomy for the monitor core.

- NotFound: an operation referenced a position id absent from the book.
  Recovered locally (no-op or reported to the caller), never fatal.
- InvalidConfiguration: a threshold or limit that must be positive is not.
  Raised at construction/config time, never per tick.

A second press on a hold gate that is already running is idempotent and
has no exception of its own.
"""


class MonitorError(Exception):
    """Base class for monitor core errors."""


class NotFound(MonitorError, KeyError):
    def __init__(self, position_id: str):
        super().__init__(position_id)
        self.position_id = position_id

    def __str__(self) -> str:
        return f"Position {self.position_id!r} not found"


class InvalidConfiguration(MonitorError, ValueError):
    pass
