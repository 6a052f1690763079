# src/position_book.py
from typing import Dict, KeysView, Optional, ValuesView

from errors import InvalidConfiguration, NotFound
from models import Position


class PositionBook:
    """Open positions keyed by id, iterated in insertion order.

    The book does not write to the activity log; callers report removals.
    """

    def __init__(self, tick_interval_minutes: float):
        if tick_interval_minutes <= 0:
            raise InvalidConfiguration("tick_interval_minutes must be > 0")
        self.tick_interval_minutes = tick_interval_minutes
        self._positions: Dict[str, Position] = {}

    def upsert(self, position: Position) -> bool:
        """Insert or replace by id. Returns True if the id was not present."""
        is_new = position.id not in self._positions
        self._positions[position.id] = position
        return is_new

    def tick(self, position_id: str, price_delta: float, pnl_delta: float) -> bool:
        """Advance one position by a tick. Unknown ids are a no-op (returns False)."""
        position = self._positions.get(position_id)
        if position is None:
            return False
        position.mark_price += price_delta
        position.pnl += pnl_delta
        # Duration first, then the history window
        position.duration_minutes += self.tick_interval_minutes
        position.add_price(position.mark_price)
        return True

    def remove(self, position_id: str) -> Position:
        try:
            return self._positions.pop(position_id)
        except KeyError:
            raise NotFound(position_id) from None

    def get(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def all(self) -> ValuesView[Position]:
        # A live view: lazy, restartable, insertion-ordered
        return self._positions.values()

    def ids(self) -> KeysView[str]:
        return self._positions.keys()

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)
