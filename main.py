# src/main.py
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from config import DashboardConfig, load_config
from dashboard import DashboardState
from errors import NotFound
from logging_setup import setup_logging
from models import (
    DashboardSnapshot,
    HealthSnapshot,
    HoldStateResponse,
    LogEntry,
    Position,
    PositionIn,
    TickBatch,
)
from scheduler import AsyncioScheduler
from stream_stub import mock_tick_stream, seed_positions

logger = logging.getLogger(__name__)


def mock_feed(dashboard: DashboardState, config: DashboardConfig) -> AsyncIterator[TickBatch]:
    """Simulated feed; swap ``app.state.feed_factory`` for a real transport."""
    return mock_tick_stream(
        lambda: dashboard.book.ids(),
        interval_ms=config.tick_interval_ms,
        latency_ms=config.initial_latency_ms,
        memory_mb=config.memory_usage_mb,
        total_memory_mb=config.total_memory_mb,
    )


# --- 1) ASYNC TICK CONSUMER (Runs in the background) ---

async def tick_consumer_task(dashboard: DashboardState, feed: AsyncIterator[TickBatch]):
    """Feed every tick batch into the dashboard; one bad batch never stops the loop."""
    logger.info("Starting tick consumer")
    try:
        async for batch in feed:
            try:
                dashboard.apply_tick(batch)
            except Exception:
                logger.exception("Tick batch failed, continuing with next tick")
    except asyncio.CancelledError:
        logger.info("Tick consumer task cancelled.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = app.state.config or load_config()
    setup_logging(config.log_file, config.log_level)
    positions = seed_positions(config.price_history_length) if config.seed_demo_positions else []
    dashboard = DashboardState(config, AsyncioScheduler(), positions=positions)
    app.state.dashboard = dashboard
    # Start the background consumer task when the server starts
    consumer_task = asyncio.create_task(tick_consumer_task(dashboard, app.state.feed_factory(dashboard, config)))
    try:
        yield
    finally:
        # Stop the tick timer first, then every hold timer
        consumer_task.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await consumer_task
        finally:
            dashboard.teardown()


app = FastAPI(title="Trading Monitor Service", lifespan=lifespan)
app.state.feed_factory = mock_feed
app.state.config = None


def get_dashboard() -> DashboardState:
    return app.state.dashboard


# --- 2) Read endpoints ---

@app.get("/snapshot", response_model=DashboardSnapshot, tags=["Dashboard"])
async def get_snapshot():
    """Latest published snapshot; never a partially updated tick."""
    return get_dashboard().get_snapshot()


@app.get("/health", response_model=HealthSnapshot, tags=["Dashboard"])
async def get_health():
    return get_dashboard().get_snapshot().health


@app.get("/logs", response_model=List[LogEntry], tags=["Dashboard"])
async def get_logs(n: int = Query(default=50, ge=0)):
    return list(get_dashboard().log.tail(n))


# --- 3) Open / close feed ---

@app.post("/positions", response_model=DashboardSnapshot, status_code=status.HTTP_201_CREATED, tags=["Positions"])
async def open_position(body: PositionIn):
    dashboard = get_dashboard()
    position = Position(
        history_length=dashboard.config.price_history_length,
        **body.model_dump(),
    )
    return dashboard.open_position(position)


@app.delete("/positions/{position_id}", response_model=DashboardSnapshot, tags=["Positions"])
async def close_position(position_id: str, reason: str = "external close"):
    dashboard = get_dashboard()
    try:
        dashboard.close_position(position_id, reason=reason)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return dashboard.get_snapshot()


# --- 4) Hold-to-kill ---

@app.post("/positions/{position_id}/hold", response_model=HoldStateResponse,
          status_code=status.HTTP_202_ACCEPTED, tags=["Hold"])
async def request_hold(position_id: str):
    """Press: liquidation fires once the hold has been kept for the full duration."""
    dashboard = get_dashboard()
    try:
        dashboard.request_hold(position_id)
        return dashboard.hold_state(position_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.delete("/positions/{position_id}/hold", response_model=HoldStateResponse, tags=["Hold"])
async def cancel_hold(position_id: str):
    """Release: discards all progress."""
    dashboard = get_dashboard()
    dashboard.cancel_hold(position_id)
    try:
        return dashboard.hold_state(position_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.get("/positions/{position_id}/hold", response_model=HoldStateResponse, tags=["Hold"])
async def get_hold(position_id: str):
    try:
        return get_dashboard().hold_state(position_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# --- 5) WS /ws/snapshot ---

@app.websocket("/ws/snapshot")
async def websocket_snapshot(websocket: WebSocket):
    """Stream every published snapshot to the client."""
    await websocket.accept()
    dashboard = get_dashboard()
    queue: asyncio.Queue = asyncio.Queue(maxsize=16)

    def on_snapshot(snapshot: DashboardSnapshot) -> None:
        # Slow clients only ever miss intermediate snapshots, never the latest
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    unsubscribe = dashboard.subscribe(on_snapshot)
    try:
        # Send the current snapshot immediately so clients receive something on connect
        await websocket.send_json(dashboard.get_snapshot().model_dump(mode="json"))
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot.model_dump(mode="json"))
    except WebSocketDisconnect:
        logger.info("Client disconnected from snapshot WebSocket.")
    except Exception as exc:
        logger.warning("Snapshot WebSocket error: %s", exc)
    finally:
        unsubscribe()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("DASHBOARD_HOST", "127.0.0.1"),
        port=int(os.getenv("DASHBOARD_PORT", "8000")),
        log_level="info",
    )
