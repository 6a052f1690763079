# src/config.py
"""Service configuration.

Defaults reproduce the reference dashboard. ``load_config`` layers an
optional YAML file (argument or ``DASHBOARD_CONFIG``) and ``DASHBOARD_*``
environment overrides on top, e.g. ``DASHBOARD_TICK_INTERVAL_MS=500``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ValidationError, model_validator

from errors import InvalidConfiguration

logger = logging.getLogger(__name__)

ENV_PREFIX = "DASHBOARD_"


class DashboardConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    # Tick cycle
    tick_interval_ms: int = 1000
    price_history_length: int = 8

    # Activity log
    log_capacity: int = 50

    # Hold-to-confirm
    hold_duration_ms: int = 800
    hold_step_ms: int = 50

    # Health
    latency_degraded_ms: float = 300.0
    initial_latency_ms: float = 45.0
    api_limit_max: int = 2000
    api_requests_remaining: int = 1850
    total_memory_mb: float = 1024.0
    memory_usage_mb: float = 450.0

    # Account and risk limits
    initial_daily_pnl: float = 1240.50
    initial_win_rate: float = 68.0
    initial_closed_trades: int = 25
    max_drawdown: float = -500.0
    max_position_notional: float = 100_000.0

    # Service
    seed_demo_positions: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __init__(self, **data: Any) -> None:
        # Bad values surface as the project's own error whichever way the config is built
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidConfiguration(str(exc)) from exc

    @model_validator(mode="after")
    def _check_limits(self) -> "DashboardConfig":
        positive = (
            "tick_interval_ms",
            "price_history_length",
            "log_capacity",
            "hold_duration_ms",
            "hold_step_ms",
            "latency_degraded_ms",
            "api_limit_max",
            "total_memory_mb",
            "max_position_notional",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.max_drawdown >= 0:
            raise ValueError("max_drawdown must be negative")
        if not 0 <= self.api_requests_remaining <= self.api_limit_max:
            raise ValueError("api_requests_remaining must be within [0, api_limit_max]")
        if not 0 <= self.memory_usage_mb <= self.total_memory_mb:
            raise ValueError("memory_usage_mb must be within [0, total_memory_mb]")
        if not 0 <= self.initial_win_rate <= 100:
            raise ValueError("initial_win_rate must be a percentage")
        if self.initial_closed_trades < 0:
            raise ValueError("initial_closed_trades must be >= 0")
        return self

    @property
    def tick_interval_minutes(self) -> float:
        return self.tick_interval_ms / 60_000.0


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in DashboardConfig.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            overrides[name] = raw
    return overrides


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> DashboardConfig:
    """Build a validated config; any bad value raises InvalidConfiguration."""
    environ = dict(os.environ) if environ is None else environ
    data: Dict[str, Any] = {}

    path = path or environ.get(ENV_PREFIX + "CONFIG")
    if path:
        resolved = Path(path)
        try:
            with open(resolved, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise InvalidConfiguration(f"Cannot read config file {resolved}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise InvalidConfiguration(f"Malformed YAML in {resolved}: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidConfiguration(f"Config file {resolved} must contain a mapping")
        logger.info("Config loaded from %s", resolved)

    data.update(_env_overrides(environ))
    return DashboardConfig(**data)
