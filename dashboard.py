# src/dashboard.py
"""Aggregate state behind the trading monitor.

One ``DashboardState`` owns the position book, the health monitor, the
activity log and one hold gate per position being liquidated. The tick
handler (``apply_tick``) and the gate completion callback (``liquidate``)
are the only writers; everything the rendering side sees is a frozen
``DashboardSnapshot``.
"""

import functools
import itertools
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import DashboardConfig
from errors import NotFound
from health import HealthMonitor
from hold_gate import HoldToConfirmGate
from models import (
    DashboardSnapshot,
    GateState,
    HealthStatus,
    HoldStateResponse,
    LogLevel,
    Position,
    PositionView,
    TickBatch,
    Tier,
)
from position_book import PositionBook
from ring_log import RingLog, utc_now
from risk import classify_position, drawdown_tier, unclassified_view
from scheduler import Scheduler

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[DashboardSnapshot], None]

_TIER_RANK = {Tier.NORMAL: 0, Tier.WARNING: 1, Tier.CRITICAL: 2}


class DashboardState:
    def __init__(
        self,
        config: DashboardConfig,
        scheduler: Scheduler,
        clock: Callable[[], datetime] = utc_now,
        positions: Iterable[Position] = (),
    ):
        self.config = config
        self._scheduler = scheduler
        self._clock = clock

        self.log = RingLog(config.log_capacity, clock)
        self.book = PositionBook(config.tick_interval_minutes)
        self.health = HealthMonitor(
            api_limit_max=config.api_limit_max,
            api_requests_remaining=config.api_requests_remaining,
            total_memory_mb=config.total_memory_mb,
            memory_usage_mb=config.memory_usage_mb,
            latency_ms=config.initial_latency_ms,
            latency_degraded_ms=config.latency_degraded_ms,
        )

        self.daily_pnl = config.initial_daily_pnl
        self._peak_daily_pnl = self.daily_pnl
        self._closed_trades = config.initial_closed_trades
        self._winning_trades = round(config.initial_win_rate / 100.0 * config.initial_closed_trades)

        self._gates: Dict[str, HoldToConfirmGate] = {}
        self._subscribers: Dict[int, SnapshotCallback] = {}
        self._subscriber_ids = itertools.count()

        # Previously published signals, so only transitions reach the activity log
        self._last_status = self.health.status
        self._last_drawdown_tier = Tier.NORMAL
        self._stale_ids: Set[str] = set()
        self._unclassified_ids: Set[str] = set()

        self._seq = 0
        self._torn_down = False

        self.log.append(LogLevel.INFO, "System initialized")
        for position in positions:
            self.book.upsert(position)
        self._snapshot = self._publish()

    # --- derived account figures ---

    @property
    def drawdown(self) -> float:
        return min(0.0, self.daily_pnl - self._peak_daily_pnl)

    @property
    def win_rate(self) -> float:
        if self._closed_trades == 0:
            return self.config.initial_win_rate
        return 100.0 * self._winning_trades / self._closed_trades

    # --- tick cycle ---

    def apply_tick(self, batch: TickBatch) -> DashboardSnapshot:
        """Advance everything by one tick and publish a new snapshot.

        Order within the tick: health, positions, account, classification,
        publication. A failure on one position is logged and skipped.
        """
        if self._torn_down:
            logger.debug("Tick ignored after teardown")
            return self._snapshot

        if batch.quota_reset:
            self.health.reset_quota()
        self.health.update(batch.health.latency_ms, batch.health.quota_delta, batch.health.memory_used_mb)

        # Several updates for one id in a batch add up; the position still ages once
        deltas: Dict[str, Tuple[float, float]] = {}
        for update in batch.positions:
            price, pnl = deltas.get(update.position_id, (0.0, 0.0))
            deltas[update.position_id] = (price + update.mark_price_delta, pnl + update.pnl_delta)
        unknown = [pid for pid in deltas if pid not in self.book]
        if unknown:
            logger.debug("Ignoring ticks for unknown positions: %s", unknown)
        for position_id in list(self.book.ids()):
            price_delta, pnl_delta = deltas.get(position_id, (0.0, 0.0))
            try:
                self.book.tick(position_id, price_delta, pnl_delta)
            except Exception:
                logger.exception("Tick failed for position %s", position_id)

        self.daily_pnl += batch.daily_pnl_delta
        self._peak_daily_pnl = max(self._peak_daily_pnl, self.daily_pnl)
        for note in batch.notes:
            self.log.append(LogLevel.INFO, note)

        return self._publish()

    def _classify(self) -> List[PositionView]:
        """One view per open position; a position that cannot be classified is shown at CRITICAL."""
        views = []
        failing = set()
        for position in self.book.all():
            try:
                view = classify_position(position, self.config.max_position_notional)
            except Exception:
                logger.exception("Classification failed for position %s", position.id)
                view = unclassified_view(position)
                failing.add(position.id)
                if position.id not in self._unclassified_ids:
                    self.log.append(LogLevel.WARN, f"RISK UNAVAILABLE: {position.symbol} shown as CRITICAL")
            views.append(view)
        self._unclassified_ids = failing
        return views

    def _log_transitions(self, views: List[PositionView], dd_tier: Tier) -> None:
        status = self.health.status
        if status != self._last_status:
            if status is HealthStatus.HALTED:
                self.log.append(
                    LogLevel.CRIT,
                    f"API QUOTA EXHAUSTED: 0/{self.health.api_limit_max} requests remaining, trading halted",
                )
            elif status is HealthStatus.DEGRADED:
                self.log.append(LogLevel.WARN, f"LATENCY DEGRADED: {self.health.latency_ms:.0f}ms")
            else:
                self.log.append(LogLevel.INFO, f"System health restored ({self.health.latency_ms:.0f}ms)")
            self._last_status = status

        stale_now = set()
        for view in views:
            if not view.is_stale:
                continue
            stale_now.add(view.id)
            if view.id not in self._stale_ids:
                self.log.append(
                    LogLevel.WARN,
                    f"STALE TRADE: {view.symbol} held {view.duration_minutes:.0f}m, "
                    f"limit {view.max_duration_minutes:.0f}m",
                )
        self._stale_ids = stale_now

        if _TIER_RANK[dd_tier] > _TIER_RANK[self._last_drawdown_tier]:
            level = LogLevel.CRIT if dd_tier is Tier.CRITICAL else LogLevel.WARN
            self.log.append(level, f"DRAWDOWN {dd_tier.value}: {self.drawdown:.2f} of {self.config.max_drawdown:.2f} limit")
        self._last_drawdown_tier = dd_tier

    def _publish(self) -> DashboardSnapshot:
        views = self._classify()
        dd_tier = drawdown_tier(self.drawdown, self.config.max_drawdown)
        self._log_transitions(views, dd_tier)

        self._seq += 1
        snapshot = DashboardSnapshot(
            seq=self._seq,
            published_at=self._clock(),
            daily_pnl=self.daily_pnl,
            win_rate=self.win_rate,
            drawdown=self.drawdown,
            max_drawdown=self.config.max_drawdown,
            drawdown_tier=dd_tier,
            health=self.health.snapshot(),
            positions=tuple(views),
            logs=self.log.tail(self.log.capacity),
        )
        self._snapshot = snapshot

        for callback in list(self._subscribers.values()):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")
        return snapshot

    # --- rendering-side surface ---

    def get_snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Call ``callback`` after every publication. Returns an unsubscribe function."""
        sub_id = next(self._subscriber_ids)
        self._subscribers[sub_id] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(sub_id, None)

        return unsubscribe

    # --- open / close feed ---

    def open_position(self, position: Position) -> DashboardSnapshot:
        if self._torn_down:
            logger.warning("Dashboard torn down, ignoring open of %s", position.id)
            return self._snapshot
        is_new = self.book.upsert(position)
        if is_new:
            self.log.append(LogLevel.INFO, f"POSITION OPENED: {position.symbol} {position.side.value}")
        else:
            # A replacement is a brand-new record: drop hold progress and stale history
            self._drop_gate(position.id)
            self._stale_ids.discard(position.id)
            self.log.append(LogLevel.INFO, f"POSITION REPLACED: {position.symbol} {position.side.value}")
        return self._publish()

    def close_position(self, position_id: str, reason: str = "external close") -> Optional[Position]:
        """Close notified by the feed. Raises NotFound for an unknown id."""
        if self._torn_down:
            logger.warning("Dashboard torn down, ignoring close of %s", position_id)
            return None
        position = self.book.remove(position_id)
        self._drop_gate(position_id)
        self._record_close(position)
        self.log.append(LogLevel.INFO, f"POSITION CLOSED: {position.symbol} ({reason})")
        self._publish()
        return position

    def liquidate(self, position_id: str) -> Optional[Position]:
        """Manual kill, fired by a completed hold gate."""
        if self._torn_down:
            return None
        try:
            position = self.book.remove(position_id)
        except NotFound:
            self.log.append(LogLevel.WARN, f"MANUAL LIQUIDATION: position {position_id} already closed")
            self._publish()
            return None
        self._drop_gate(position_id)
        self._record_close(position)
        self.log.append(LogLevel.WARN, f"MANUAL LIQUIDATION: {position.symbol} CLOSED")
        self._publish()
        return position

    def _record_close(self, position: Position) -> None:
        self._closed_trades += 1
        if position.pnl > 0:
            self._winning_trades += 1
        self._stale_ids.discard(position.id)

    # --- hold-to-confirm ---

    def request_hold(self, position_id: str) -> bool:
        """Start (or keep) holding the kill switch for a position."""
        if self._torn_down:
            return False
        if position_id not in self.book:
            raise NotFound(position_id)
        gate = self._gates.get(position_id)
        if gate is None:
            gate = HoldToConfirmGate(
                on_confirm=functools.partial(self.liquidate, position_id),
                scheduler=self._scheduler,
                hold_ms=self.config.hold_duration_ms,
                step_ms=self.config.hold_step_ms,
                name=position_id,
            )
            self._gates[position_id] = gate
        return gate.press()

    def cancel_hold(self, position_id: str) -> None:
        gate = self._gates.get(position_id)
        if gate is not None:
            gate.release()

    def hold_state(self, position_id: str) -> HoldStateResponse:
        gate = self._gates.get(position_id)
        if gate is None:
            if position_id not in self.book:
                raise NotFound(position_id)
            return HoldStateResponse(position_id=position_id, state=GateState.IDLE, elapsed_ms=0, progress=0.0)
        return HoldStateResponse(
            position_id=position_id, state=gate.state, elapsed_ms=gate.elapsed_ms, progress=gate.progress
        )

    def _drop_gate(self, position_id: str) -> None:
        gate = self._gates.pop(position_id, None)
        if gate is not None:
            gate.cancel()

    # --- lifecycle ---

    def teardown(self) -> None:
        """Stop every hold timer; no mutation is accepted afterwards."""
        if self._torn_down:
            return
        for gate in self._gates.values():
            gate.cancel()
        self._gates.clear()
        self._subscribers.clear()
        self._torn_down = True
        logger.info("Dashboard state torn down")
