# stream_stub.py
# Async tick emitter standing in for the real market/health feed (simulated ticks).
# Usage example:
#   import asyncio
#   from stream_stub import mock_tick_stream
#   async def main():
#       async for batch in mock_tick_stream(lambda: ["1", "2"], interval_ms=1000):
#           print(batch)
#   asyncio.run(main())

import asyncio
import random
import time
from typing import AsyncIterator, Callable, Iterable, List, Optional

from models import HealthTick, Position, PositionTick, Side, TickBatch

NOTES = ("Order Book Update", "Latency Spike", "Garbage Collection", "Strategy Heartbeat")


def seed_positions(history_length: int = 8) -> List[Position]:
    """Demo book the dashboard starts with when no open-position feed is wired."""
    return [
        Position(
            id="1", symbol="BTC/USD", side=Side.LONG, pnl=450.00,
            entry_price=64000, mark_price=64500, z_score=-2.4,
            duration_minutes=14, max_duration_minutes=45,
            price_history=[64000, 63950, 63900, 64100, 64200, 64150, 64300, 64500],
            history_length=history_length,
        ),
        Position(
            id="2", symbol="ETH/USD", side=Side.SHORT, pnl=-120.50,
            entry_price=3400, mark_price=3420, z_score=1.8,
            duration_minutes=180, max_duration_minutes=60,
            price_history=[3400, 3390, 3380, 3410, 3415, 3425, 3420, 3420],
            history_length=history_length,
        ),
        Position(
            id="3", symbol="SOL/USD", side=Side.LONG, pnl=85.20,
            entry_price=145, mark_price=148, z_score=-1.1,
            duration_minutes=5, max_duration_minutes=45,
            price_history=[145, 144, 146, 145, 147, 146, 147, 148],
            history_length=history_length,
        ),
    ]


async def mock_tick_stream(position_ids: Callable[[], Iterable[str]],
                           interval_ms: int = 1000,
                           latency_ms: float = 45.0,
                           memory_mb: float = 450.0,
                           total_memory_mb: float = 1024.0,
                           note_probability: float = 0.1,
                           rng: Optional[random.Random] = None) -> AsyncIterator[TickBatch]:
    """Yield one TickBatch every ~interval_ms.

    Latency and memory follow noisy random walks (latency floored at 20ms),
    each tick spends one API request, and P&L/price deltas are small symmetric
    jitter with a slight positive drift on the daily P&L.
    ``position_ids`` is called every tick so newly opened positions get deltas.
    """
    rng = rng or random.Random()
    while True:
        latency_ms = max(20.0, float(int(latency_ms + (rng.random() - 0.5) * 40)))
        memory_mb = min(total_memory_mb, max(0.0, memory_mb + (rng.random() - 0.5) * 8))
        notes = [rng.choice(NOTES)] if rng.random() < note_probability else []
        yield TickBatch(
            health=HealthTick(latency_ms=latency_ms, quota_delta=1, memory_used_mb=memory_mb),
            positions=[
                PositionTick(
                    position_id=pid,
                    mark_price_delta=(rng.random() - 0.5) * 10,
                    pnl_delta=(rng.random() - 0.5) * 10,
                )
                for pid in list(position_ids())
            ],
            daily_pnl_delta=(rng.random() - 0.45) * 50,
            notes=notes,
            ts=time.time(),
        )
        await asyncio.sleep(max(0.0, interval_ms / 1000.0))


if __name__ == "__main__":
    async def _demo():
        ids = [p.id for p in seed_positions()]
        async for batch in mock_tick_stream(lambda: ids, interval_ms=200):
            print(batch)
    asyncio.run(_demo())
