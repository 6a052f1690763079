"""Severity classification for positions and account drawdown.

Every rule in this module reduces to one threshold function, ``tier``, applied
to a (value, maximum) pair. Keeping a single implementation means drawdown,
staleness and position size agree on edge behaviour.

Tier boundaries are open intervals on the ratio ``|value / maximum|``:
- ratio > critical_above -> CRITICAL
- ratio > warn_above     -> WARNING
- otherwise              -> NORMAL

So a ratio of exactly ``warn_above`` is still NORMAL and exactly
``critical_above`` is still WARNING.

Breakpoints per rule:
- staleness:      0.8 / 1.0 (CRITICAL means the position is STALE)
- drawdown:       0.5 / 0.8
- position size:  0.5 / 0.8

All functions are pure.
"""

from errors import InvalidConfiguration
from models import Position, PositionView, Tier

STALENESS_BREAKPOINTS = (0.8, 1.0)
DRAWDOWN_BREAKPOINTS = (0.5, 0.8)
POSITION_SIZE_BREAKPOINTS = (0.5, 0.8)


def tier(value: float, maximum: float, warn_above: float = 0.8, critical_above: float = 1.0) -> Tier:
    """Classify ``value`` against ``maximum``.

    Contract:
    - ``maximum`` must be non-zero; both arguments may carry either sign
      (drawdowns are negative), only the magnitude of the ratio matters.
    - Raises InvalidConfiguration for a zero maximum, which can only come from
      a bad limit.
    """
    if maximum == 0:
        raise InvalidConfiguration("maximum must be non-zero")
    ratio = abs(value / maximum)
    if ratio > critical_above:
        return Tier.CRITICAL
    if ratio > warn_above:
        return Tier.WARNING
    return Tier.NORMAL


def drawdown_tier(current: float, maximum: float) -> Tier:
    """Drawdown severity; ``current`` and ``maximum`` are <= 0 (e.g. -450 of -500)."""
    return tier(current, maximum, *DRAWDOWN_BREAKPOINTS)


def staleness_tier(duration_minutes: float, max_duration_minutes: float) -> Tier:
    return tier(duration_minutes, max_duration_minutes, *STALENESS_BREAKPOINTS)


def is_stale(duration_minutes: float, max_duration_minutes: float) -> bool:
    return duration_minutes > max_duration_minutes


def duration_progress(duration_minutes: float, max_duration_minutes: float) -> float:
    """Fraction of the allowed holding time used, capped at 1.0 for display."""
    if max_duration_minutes <= 0:
        raise InvalidConfiguration("max_duration_minutes must be > 0")
    return min(1.0, duration_minutes / max_duration_minutes)


def position_size_tier(notional: float, max_notional: float) -> Tier:
    return tier(notional, max_notional, *POSITION_SIZE_BREAKPOINTS)


def classify_position(position: Position, max_notional: float) -> PositionView:
    """Freeze a live position into a view carrying its derived severities."""
    return PositionView(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        pnl=position.pnl,
        entry_price=position.entry_price,
        mark_price=position.mark_price,
        z_score=position.z_score,
        duration_minutes=position.duration_minutes,
        max_duration_minutes=position.max_duration_minutes,
        quantity=position.quantity,
        price_history=tuple(position.price_history),
        notional=position.notional,
        staleness_tier=staleness_tier(position.duration_minutes, position.max_duration_minutes),
        is_stale=is_stale(position.duration_minutes, position.max_duration_minutes),
        duration_progress=duration_progress(position.duration_minutes, position.max_duration_minutes),
        size_tier=position_size_tier(position.notional, max_notional),
    )


def unclassified_view(position: Position) -> PositionView:
    """View for a position whose severities could not be derived.

    Raw fields are carried as-is and both tiers read CRITICAL so the row
    still demands attention.
    """
    return PositionView(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        pnl=position.pnl,
        entry_price=position.entry_price,
        mark_price=position.mark_price,
        z_score=position.z_score,
        duration_minutes=position.duration_minutes,
        max_duration_minutes=position.max_duration_minutes,
        quantity=position.quantity,
        price_history=tuple(position.price_history),
        notional=abs(position.quantity * position.mark_price),
        staleness_tier=Tier.CRITICAL,
        is_stale=False,
        duration_progress=1.0,
        size_tier=Tier.CRITICAL,
    )
