"""RelayController: rate-limited power-cycle policy for unsafe pump states."""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from core.config import ConfigurationHub, PowerSettings
from core.contracts import ActionLog, PumpReading, PumpStatus

from .base import Actuator

L = logging.getLogger("pump_runtime.actuator")

ACTION_POWER_CYCLE = "PowerCycle"

_REASONS = {
    PumpStatus.RAPID_CYCLE: "RapidCycling",
    PumpStatus.DRY: "DryCondition",
}


class RelayController:
    def __init__(
        self,
        actuator: Actuator,
        hub: ConfigurationHub,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.actuator = actuator
        self.hub = hub
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._last_cycle_at: datetime | None = None
        self._day: date | None = None
        self._daily_cycles = 0

    @property
    def daily_cycles(self) -> int:
        with self._lock:
            self._roll_day(self._clock())
            return self._daily_cycles

    @property
    def last_cycle_at(self) -> datetime | None:
        return self._last_cycle_at

    def _roll_day(self, now: datetime):
        today = now.astimezone(timezone.utc).date()
        if self._day != today:
            self._day = today
            self._daily_cycles = 0

    def wants_action(self, reading: PumpReading, power: PowerSettings) -> bool:
        if not reading.is_valid:
            return False
        if reading.status == PumpStatus.RAPID_CYCLE:
            return True
        return reading.status == PumpStatus.DRY and power.enable_dry_condition_cycling

    def handle(
        self, reading: PumpReading, cancel_evt: threading.Event | None = None
    ) -> ActionLog | None:
        """Power-cycle on an actionable reading; None when the reading needs no action."""
        power = self.hub.current().power
        if not self.wants_action(reading, power):
            return None
        reason = _REASONS[reading.status]
        blocked = self._check_limits(power)
        if blocked:
            L.warning("Power cycle suppressed (%s): %s", reason, blocked)
            return ActionLog(
                action=ACTION_POWER_CYCLE,
                reason=reason,
                success=False,
                detail=blocked,
                status=reading.status,
            )
        return self.power_cycle(reason, power, status=reading.status, cancel_evt=cancel_evt)

    def _check_limits(self, power: PowerSettings) -> str | None:
        if not power.enable_auto_actions:
            return "auto actions disabled"
        now = self._clock()
        with self._lock:
            self._roll_day(now)
            if self._daily_cycles >= power.max_daily_cycles:
                return f"daily cycle limit reached ({power.max_daily_cycles})"
            if self._last_cycle_at is not None:
                min_gap = timedelta(minutes=power.minimum_cycle_interval_minutes)
                elapsed = now - self._last_cycle_at
                if elapsed < min_gap:
                    remaining = (min_gap - elapsed).total_seconds()
                    return f"minimum interval not elapsed ({remaining:.0f}s remaining)"
        return None

    def power_cycle(
        self,
        reason: str,
        power: PowerSettings,
        *,
        status: PumpStatus | None = None,
        cancel_evt: threading.Event | None = None,
    ) -> ActionLog:
        t0 = time.perf_counter()
        with self._lock:
            now = self._clock()
            self._roll_day(now)
            self._last_cycle_at = now
            self._daily_cycles += 1
            count = self._daily_cycles
        L.warning(
            "Power cycling pump (%s): off for %ss [%d/%d today]",
            reason,
            power.power_cycle_delay_seconds,
            count,
            power.max_daily_cycles,
        )
        success = False
        detail = ""
        try:
            self.actuator.set_state(False)
            cancelled = _wait(cancel_evt, float(power.power_cycle_delay_seconds))
            detail = "cancelled" if cancelled else "completed"
            success = not cancelled
        except Exception as e:
            L.exception("Power cycle failed while switching off")
            detail = f"actuator error: {e}"
        finally:
            try:
                self.actuator.set_state(True)
            except Exception as e:
                L.exception("Power cycle failed to restore power")
                success = False
                detail = f"actuator error: {e}"
        duration_ms = (time.perf_counter() - t0) * 1000
        log_fn = L.info if success else L.error
        log_fn("Power cycle %s in %.0fms (%s)", detail, duration_ms, reason)
        return ActionLog(
            action=ACTION_POWER_CYCLE,
            reason=reason,
            success=success,
            detail=detail,
            status=status,
            duration_ms=duration_ms,
        )


def _wait(cancel_evt: threading.Event | None, seconds: float) -> bool:
    if cancel_evt is None:
        time.sleep(seconds)
        return False
    return cancel_evt.wait(seconds)


__all__ = ["ACTION_POWER_CYCLE", "RelayController"]
