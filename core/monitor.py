"""One monitoring cycle: capture, OCR, analyze, alert, act, record."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from core.config import ConfigurationHub
from core.contracts import PumpReading, PumpStatus

if TYPE_CHECKING:  # pragma: no cover
    from actuator import RelayController
    from camera import BaseCamera
    from ocr import OcrPipeline
    from output.manager import OutputManager

L = logging.getLogger("pump_runtime.runtime")

ALERT_DRY = "DryRun"
ALERT_RAPID_CYCLE = "RapidCycling"


class AlertTracker:
    """Counts consecutive unsafe readings and raises rate-limited alerts."""

    def __init__(
        self,
        hub: ConfigurationHub,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.hub = hub
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.dry_count = 0
        self.rcyc_count = 0
        self._last_alert: dict[str, datetime] = {}

    def observe(self, reading: PumpReading) -> str | None:
        alerts = self.hub.current().alerts
        if reading.status == PumpStatus.DRY:
            self.dry_count += 1
        else:
            self.dry_count = 0
        if reading.status == PumpStatus.RAPID_CYCLE:
            self.rcyc_count += 1
        else:
            self.rcyc_count = 0

        if self.dry_count >= alerts.dry_count_threshold:
            return self._raise(ALERT_DRY, self.dry_count, alerts.cooldown_minutes)
        if self.rcyc_count >= alerts.rcyc_count_threshold:
            return self._raise(ALERT_RAPID_CYCLE, self.rcyc_count, alerts.cooldown_minutes)
        return None

    def _raise(self, kind: str, count: int, cooldown_minutes: int) -> str | None:
        now = self._clock()
        last = self._last_alert.get(kind)
        if last is not None and now - last < timedelta(minutes=cooldown_minutes):
            return None
        self._last_alert[kind] = now
        L.warning("ALERT %s: %d consecutive readings", kind, count)
        return kind


class MonitoringCycle:
    def __init__(
        self,
        camera: BaseCamera,
        pipeline: OcrPipeline,
        output: OutputManager,
        *,
        relay: RelayController | None = None,
        alerts: AlertTracker | None = None,
    ):
        self.camera = camera
        self.pipeline = pipeline
        self.output = output
        self.relay = relay
        self.alerts = alerts
        self._lock = threading.Lock()
        self.cycles = 0
        self.capture_failures = 0

    def run_once(self, cancel_evt: threading.Event | None = None) -> PumpReading | None:
        """Run one cycle; None when capture failed or the cycle was cancelled."""
        with self._lock:
            self.cycles += 1
            seq = self.cycles
        t0 = time.perf_counter()
        capture = self.camera.capture_once(cancel_evt)
        if not capture.success or capture.image is None:
            self.capture_failures += 1
            L.warning(
                "[%5s] capture failed: %s (attempts=%s)",
                seq,
                capture.error or "unknown",
                ", ".join(capture.attempts) or "-",
            )
            return None

        reading = self.pipeline.process_image(capture.image.data, cancel_evt)
        if reading.metadata.get("error") == "cancelled":
            L.info("[%5s] cycle cancelled during OCR", seq)
            return None
        reading.metadata["capture_backend"] = capture.image.backend
        reading.metadata["capture_ms"] = capture.image.duration_ms

        alert = self.alerts.observe(reading) if self.alerts else None
        if alert:
            reading.metadata["alert"] = alert
        self.output.publish(reading)
        if self.relay is not None:
            action = self.relay.handle(reading, cancel_evt)
            if action is not None:
                self.output.publish_action(action)

        L.info(
            "[%5s] status=%s valid=%s capture=%.0fms total=%.0fms",
            seq,
            reading.status.value,
            reading.is_valid,
            capture.image.duration_ms,
            (time.perf_counter() - t0) * 1000,
        )
        return reading


__all__ = ["ALERT_DRY", "ALERT_RAPID_CYCLE", "AlertTracker", "MonitoringCycle"]
