("""DashboardState: tick ordering, transition logging, hold-to-kill and publication.

Each tick is one virtual minute so staleness scenarios read in whole minutes.
""")

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from config import DashboardConfig
from dashboard import DashboardState
from errors import NotFound
from models import HealthStatus, HealthTick, LogLevel, Position, PositionTick, Side, TickBatch, Tier
from scheduler import VirtualScheduler

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_position(id="1", symbol="BTC/USD", duration=14.0, max_duration=45.0, pnl=450.0):
	return Position(
		id=id, symbol=symbol, side=Side.LONG, pnl=pnl,
		entry_price=64000, mark_price=64500, z_score=-2.4,
		duration_minutes=duration, max_duration_minutes=max_duration,
		history_length=8,
	)


def make_batch(latency=45.0, quota=1, memory=450.0, **kwargs):
	return TickBatch(health=HealthTick(latency_ms=latency, quota_delta=quota, memory_used_mb=memory), **kwargs)


def make_state(positions=(), **overrides):
	settings = dict(tick_interval_ms=60_000, seed_demo_positions=False)
	settings.update(overrides)
	scheduler = VirtualScheduler()
	state = DashboardState(DashboardConfig(**settings), scheduler, clock=lambda: FIXED, positions=positions)
	return state, scheduler


def messages(snapshot):
	return [entry.message for entry in snapshot.logs]


def test_initial_snapshot():
	state, _ = make_state([make_position()])
	snap = state.get_snapshot()
	assert snap.seq == 1
	assert snap.daily_pnl == 1240.50
	assert snap.win_rate == 68.0
	assert snap.health.status is HealthStatus.ALIVE
	assert [p.id for p in snap.positions] == ["1"]
	assert messages(snap) == ["System initialized"]


def test_tick_advances_health_positions_and_account():
	state, _ = make_state([make_position()])
	snap = state.apply_tick(make_batch(
		latency=80.0,
		positions=[PositionTick("1", mark_price_delta=10.0, pnl_delta=-5.0)],
		daily_pnl_delta=20.0,
	))
	assert snap.seq == 2
	assert snap.health.latency_ms == 80.0
	assert snap.health.api_requests_remaining == 1849
	pos = snap.positions[0]
	assert pos.mark_price == 64510.0
	assert pos.pnl == 445.0
	assert pos.duration_minutes == 15.0
	assert pos.price_history[-1] == 64510.0
	assert snap.daily_pnl == 1260.50


def test_positions_without_delta_still_age_and_unknown_ids_are_ignored():
	state, _ = make_state([make_position()])
	snap = state.apply_tick(make_batch(positions=[PositionTick("ghost", 1.0, 1.0)]))
	assert snap.positions[0].duration_minutes == 15.0
	assert snap.positions[0].mark_price == 64500.0
	assert len(snap.positions) == 1


def test_repeated_updates_for_one_position_add_up():
	state, _ = make_state([make_position()])
	snap = state.apply_tick(make_batch(positions=[PositionTick("1", 1.0, 2.0), PositionTick("1", 1.0, 2.0)]))
	pos = snap.positions[0]
	assert pos.mark_price == 64502.0
	assert pos.pnl == 454.0
	assert pos.duration_minutes == 15.0
	assert pos.price_history[-2:] == (64500.0, 64502.0)


def test_staleness_warning_then_stale_logged_once():
	state, _ = make_state([make_position(duration=40)])
	assert state.get_snapshot().positions[0].staleness_tier is Tier.WARNING
	for _ in range(6):
		snap = state.apply_tick(make_batch())
	pos = snap.positions[0]
	assert pos.duration_minutes == 46.0
	assert pos.staleness_tier is Tier.CRITICAL
	assert pos.is_stale
	assert pos.duration_progress == 1.0
	for _ in range(3):
		snap = state.apply_tick(make_batch())
	stale_logs = [e for e in snap.logs if e.message.startswith("STALE TRADE: BTC/USD")]
	assert len(stale_logs) == 1
	assert stale_logs[0].level is LogLevel.WARN


def test_health_transitions_are_logged():
	state, _ = make_state()
	snap = state.apply_tick(make_batch(latency=301.0))
	assert snap.health.status is HealthStatus.DEGRADED
	assert snap.logs[-1].level is LogLevel.WARN
	assert snap.logs[-1].message == "LATENCY DEGRADED: 301ms"
	snap = state.apply_tick(make_batch(latency=320.0))
	assert snap.logs[-1].message == "LATENCY DEGRADED: 301ms"
	snap = state.apply_tick(make_batch(latency=50.0))
	assert snap.health.status is HealthStatus.ALIVE
	assert snap.logs[-1].level is LogLevel.INFO


def test_quota_exhaustion_halts_until_reset():
	state, _ = make_state(api_requests_remaining=2)
	state.apply_tick(make_batch())
	snap = state.apply_tick(make_batch(latency=900.0))
	assert snap.health.status is HealthStatus.HALTED
	assert snap.health.api_requests_remaining == 0
	assert snap.logs[-1].level is LogLevel.CRIT
	snap = state.apply_tick(make_batch(quota=0, quota_reset=True))
	assert snap.health.status is HealthStatus.ALIVE
	assert snap.health.api_requests_remaining == 2000


def test_drawdown_escalation():
	state, _ = make_state(initial_daily_pnl=0.0)
	snap = state.apply_tick(make_batch(daily_pnl_delta=-450.0))
	assert snap.drawdown == -450.0
	assert snap.drawdown_tier is Tier.CRITICAL
	assert snap.logs[-1].level is LogLevel.CRIT


def test_drawdown_measured_from_peak():
	state, _ = make_state(initial_daily_pnl=0.0)
	state.apply_tick(make_batch(daily_pnl_delta=300.0))
	snap = state.apply_tick(make_batch(daily_pnl_delta=-300.0))
	assert snap.daily_pnl == 0.0
	assert snap.drawdown == -300.0
	assert snap.drawdown_tier is Tier.WARNING


def test_feed_notes_go_to_log_and_log_is_bounded():
	state, _ = make_state(log_capacity=5)
	for i in range(10):
		snap = state.apply_tick(make_batch(notes=[f"Strategy Heartbeat {i}"]))
	assert len(snap.logs) == 5
	assert messages(snap)[-1] == "Strategy Heartbeat 9"


def test_one_bad_position_does_not_block_others():
	class CorruptPosition(Position):
		def add_price(self, price):
			raise RuntimeError("corrupt history")

	bad = CorruptPosition(id="bad", symbol="BAD/USD", side=Side.LONG, entry_price=1, mark_price=1,
						  max_duration_minutes=45)
	state, _ = make_state([bad, make_position("2", "ETH/USD")])
	snap = state.apply_tick(make_batch())
	assert snap.seq == 2
	eth = [p for p in snap.positions if p.id == "2"][0]
	assert eth.duration_minutes == 15.0


def test_unclassifiable_position_stays_visible_as_critical():
	state, _ = make_state([make_position("1"), make_position("2", "ETH/USD")])
	# Only reachable by mutating the live record: the constructor rejects a zero limit
	state.book.get("1").max_duration_minutes = 0
	snap = state.apply_tick(make_batch())
	assert [p.id for p in snap.positions] == ["1", "2"]
	btc = snap.positions[0]
	assert btc.staleness_tier is Tier.CRITICAL
	assert btc.size_tier is Tier.CRITICAL
	assert btc.duration_progress == 1.0
	assert btc.mark_price == 64500.0
	assert snap.positions[1].staleness_tier is Tier.NORMAL
	assert snap.logs[-1].level is LogLevel.WARN
	assert snap.logs[-1].message == "RISK UNAVAILABLE: BTC/USD shown as CRITICAL"

	snap = state.apply_tick(make_batch())
	assert messages(snap).count("RISK UNAVAILABLE: BTC/USD shown as CRITICAL") == 1
	assert len(snap.positions) == 2


def test_hold_to_kill_liquidates_position():
	state, scheduler = make_state([make_position("1"), make_position("2", "ETH/USD")])
	assert state.request_hold("1") is True
	scheduler.advance(800)
	snap = state.get_snapshot()
	assert "1" not in state.book
	assert [p.id for p in snap.positions] == ["2"]
	assert snap.logs[-1].level is LogLevel.WARN
	assert snap.logs[-1].message == "MANUAL LIQUIDATION: BTC/USD CLOSED"


def test_liquidating_a_closed_position_warns_instead_of_raising():
	state, _ = make_state([make_position("1")])
	assert state.liquidate("gone") is None
	snap = state.get_snapshot()
	assert snap.seq == 2
	assert [p.id for p in snap.positions] == ["1"]
	assert snap.logs[-1].level is LogLevel.WARN
	assert snap.logs[-1].message == "MANUAL LIQUIDATION: position gone already closed"


def test_cancel_hold_keeps_position():
	state, scheduler = make_state([make_position("1")])
	state.request_hold("1")
	scheduler.advance(750)
	assert state.hold_state("1").progress == pytest.approx(750 / 800)
	state.cancel_hold("1")
	scheduler.advance(2000)
	assert "1" in state.book
	hold = state.hold_state("1")
	assert hold.elapsed_ms == 0
	assert hold.progress == 0.0


def test_hold_on_unknown_position_raises_not_found():
	state, _ = make_state()
	with pytest.raises(NotFound):
		state.request_hold("404")
	with pytest.raises(NotFound):
		state.hold_state("404")
	state.cancel_hold("404")


def test_external_close_cancels_pending_hold():
	state, scheduler = make_state([make_position("1")])
	state.request_hold("1")
	scheduler.advance(400)
	state.close_position("1", reason="take profit")
	scheduler.advance(1000)
	assert scheduler.active_timers == 0
	snap = state.get_snapshot()
	assert snap.positions == ()
	assert snap.logs[-1].message == "POSITION CLOSED: BTC/USD (take profit)"
	assert not any(m.startswith("MANUAL LIQUIDATION") for m in messages(snap))
	with pytest.raises(NotFound):
		state.close_position("1")


def test_replacing_a_position_resets_its_hold():
	state, scheduler = make_state([make_position("1", duration=40)])
	state.request_hold("1")
	scheduler.advance(400)
	state.open_position(make_position("1", duration=0))
	scheduler.advance(1000)
	assert "1" in state.book
	assert state.get_snapshot().positions[0].duration_minutes == 0.0


def test_win_rate_tracks_closed_trades():
	state, scheduler = make_state(
		[make_position("1", pnl=50.0), make_position("2", "ETH/USD", pnl=-20.0)],
		initial_closed_trades=0, initial_win_rate=0.0,
	)
	state.request_hold("1")
	scheduler.advance(800)
	assert state.get_snapshot().win_rate == 100.0
	state.close_position("2")
	assert state.get_snapshot().win_rate == 50.0


def test_subscribers_see_every_publication():
	state, _ = make_state([make_position()])
	received = []
	unsubscribe = state.subscribe(received.append)
	published = state.apply_tick(make_batch())
	assert received == [published]
	assert state.get_snapshot() == published
	assert state.get_snapshot().model_dump() == published.model_dump()
	unsubscribe()
	state.apply_tick(make_batch())
	assert len(received) == 1


def test_failing_subscriber_is_isolated():
	state, _ = make_state()
	received = []

	def broken(snapshot):
		raise ValueError("render failed")

	state.subscribe(broken)
	state.subscribe(received.append)
	state.apply_tick(make_batch())
	assert len(received) == 1


def test_snapshot_is_immutable():
	state, _ = make_state([make_position()])
	snap = state.get_snapshot()
	with pytest.raises(ValidationError):
		snap.daily_pnl = 0.0
	with pytest.raises(ValidationError):
		snap.positions[0].pnl = 0.0
	assert isinstance(snap.positions, tuple)


def test_teardown_stops_timers_and_mutation():
	state, scheduler = make_state([make_position("1")])
	state.request_hold("1")
	scheduler.advance(400)
	before = state.get_snapshot()
	state.teardown()
	assert scheduler.active_timers == 0
	scheduler.advance(2000)
	assert state.apply_tick(make_batch()) is before
	assert "1" in state.book
	assert state.request_hold("1") is False
