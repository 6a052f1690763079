# src/hold_gate.py
import logging
from typing import Callable, Optional

from errors import InvalidConfiguration
from models import GateState
from scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class HoldToConfirmGate:
    """Time-gated confirmation for one destructive action.

    press() starts a repeating step timer; once the held time reaches
    ``hold_ms`` the callback fires exactly once and the gate returns to IDLE.
    release() before that discards all progress: a later press starts from 0.
    """

    def __init__(
        self,
        on_confirm: Callable[[], None],
        scheduler: Scheduler,
        hold_ms: int = 800,
        step_ms: int = 50,
        name: str = "",
    ):
        if hold_ms <= 0 or step_ms <= 0:
            raise InvalidConfiguration("hold_ms and step_ms must be > 0")
        self._on_confirm = on_confirm
        self._scheduler = scheduler
        self.hold_ms = hold_ms
        self.step_ms = step_ms
        self.name = name
        self.state = GateState.IDLE
        self.elapsed_ms = 0
        self._timer: Optional[TimerHandle] = None

    @property
    def progress(self) -> float:
        return min(1.0, self.elapsed_ms / self.hold_ms)

    def press(self) -> bool:
        """Start holding. Returns False if a hold is already running (idempotent)."""
        if self.state is not GateState.IDLE:
            logger.debug("Gate %s already %s, ignoring press", self.name, self.state.value)
            return False
        self.state = GateState.PRESSING
        self.elapsed_ms = 0
        self._timer = self._scheduler.call_repeating(self.step_ms, self._step)
        return True

    def release(self) -> None:
        if self.state is GateState.PRESSING:
            logger.debug("Gate %s released at %dms", self.name, self.elapsed_ms)
        self._stop_timer()
        if self.state is not GateState.COMPLETED:
            self.state = GateState.IDLE
            self.elapsed_ms = 0

    def cancel(self) -> None:
        """Teardown: stop the timer and forget any progress."""
        self._stop_timer()
        self.state = GateState.IDLE
        self.elapsed_ms = 0

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _step(self) -> None:
        if self.state is not GateState.PRESSING:
            return
        self.elapsed_ms += self.step_ms
        if self.elapsed_ms < self.hold_ms:
            return

        self._stop_timer()
        self.state = GateState.COMPLETED
        logger.info("Gate %s confirmed after %dms", self.name, self.elapsed_ms)
        try:
            self._on_confirm()
        finally:
            self.state = GateState.IDLE
            self.elapsed_ms = 0
