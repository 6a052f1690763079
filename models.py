# src/models.py
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from errors import InvalidConfiguration


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Tier(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class HealthStatus(str, Enum):
    ALIVE = "ALIVE"
    DEGRADED = "DEGRADED"
    HALTED = "HALTED"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    CRIT = "CRIT"


class GateState(str, Enum):
    IDLE = "IDLE"
    PRESSING = "PRESSING"
    COMPLETED = "COMPLETED"


# Data classes for one tick of the incoming feed (matches stream_stub.py output)
@dataclass
class PositionTick:
    position_id: str
    mark_price_delta: float
    pnl_delta: float


@dataclass
class HealthTick:
    latency_ms: float
    quota_delta: int
    memory_used_mb: float


@dataclass
class TickBatch:
    health: HealthTick
    positions: List[PositionTick] = field(default_factory=list)
    daily_pnl_delta: float = 0.0
    quota_reset: bool = False
    notes: List[str] = field(default_factory=list)
    ts: float = 0.0  # epoch seconds


# The live record for one open trade, owned and mutated by the PositionBook
class Position:
    def __init__(
        self,
        id: str,
        symbol: str,
        side: Side,
        entry_price: float,
        mark_price: float,
        pnl: float = 0.0,
        z_score: float = 0.0,
        duration_minutes: float = 0.0,
        max_duration_minutes: float = 45.0,
        quantity: float = 1.0,
        price_history: Optional[Iterable[float]] = None,
        history_length: int = 8,
    ):
        if max_duration_minutes <= 0:
            raise InvalidConfiguration(f"max_duration_minutes must be > 0 for position {id}")
        if quantity <= 0:
            raise InvalidConfiguration(f"quantity must be > 0 for position {id}")
        if history_length <= 0:
            raise InvalidConfiguration("history_length must be > 0")

        self.id = id
        self.symbol = symbol
        self.side = Side(side)
        self.entry_price = float(entry_price)
        self.mark_price = float(mark_price)
        self.pnl = float(pnl)
        self.z_score = float(z_score)
        self.duration_minutes = max(0.0, float(duration_minutes))
        self.max_duration_minutes = float(max_duration_minutes)
        self.quantity = float(quantity)

        # Fixed-length window: short histories are left-padded with their oldest sample
        samples = [float(p) for p in (price_history or ())][-history_length:]
        if not samples:
            samples = [self.mark_price]
        samples = [samples[0]] * (history_length - len(samples)) + samples
        self.price_history: deque[float] = deque(samples, maxlen=history_length)

    @property
    def notional(self) -> float:
        return abs(self.quantity * self.mark_price)

    def add_price(self, price: float):
        # maxlen drops the oldest sample
        self.price_history.append(price)

    def __repr__(self) -> str:
        return f"Position(id={self.id!r}, symbol={self.symbol!r}, side={self.side.value}, pnl={self.pnl:.2f})"


# --- Published (read-only) views ---

class LogEntry(BaseModel):
    model_config = {"frozen": True}

    id: int
    timestamp: datetime
    level: LogLevel
    message: str


class HealthSnapshot(BaseModel):
    model_config = {"frozen": True}

    latency_ms: float
    api_requests_remaining: int
    api_limit_max: int
    memory_usage_mb: float
    total_memory_mb: float
    status: HealthStatus
    api_remaining_ratio: float  # remaining / max, for the quota bar
    memory_ratio: float


class PositionView(BaseModel):
    model_config = {"frozen": True}

    id: str
    symbol: str
    side: Side
    pnl: float
    entry_price: float
    mark_price: float
    z_score: float
    duration_minutes: float
    max_duration_minutes: float
    quantity: float
    price_history: Tuple[float, ...]
    notional: float
    staleness_tier: Tier
    is_stale: bool
    duration_progress: float  # [0, 1]
    size_tier: Tier


class DashboardSnapshot(BaseModel):
    model_config = {"frozen": True}

    seq: int
    published_at: datetime
    daily_pnl: float
    win_rate: float
    drawdown: float
    max_drawdown: float
    drawdown_tier: Tier
    health: HealthSnapshot
    positions: Tuple[PositionView, ...]
    logs: Tuple[LogEntry, ...]


# --- Request / response bodies for the service ---

class PositionIn(BaseModel):
    id: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    side: Side
    entry_price: float
    mark_price: float
    pnl: float = 0.0
    z_score: float = 0.0
    duration_minutes: float = Field(default=0.0, ge=0)
    max_duration_minutes: float = Field(gt=0)
    quantity: float = Field(default=1.0, gt=0)
    price_history: Tuple[float, ...] = ()


class HoldStateResponse(BaseModel):
    position_id: str
    state: GateState
    elapsed_ms: int
    progress: float  # [0, 1]
