"""Core runtime: SystemRuntime orchestration and runtime assembly."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from core.config import ConfigSource, ConfigurationHub, FileConfigSource
from camera.save_utils import prune_debug_images

from .monitor import AlertTracker, MonitoringCycle
from .worker import PeriodicWorker

if TYPE_CHECKING:  # pragma: no cover
    from actuator import Actuator
    from camera import BaseCamera
    from ocr import OcrPipeline
    from output.manager import OutputManager

L = logging.getLogger("pump_runtime.runtime")

MAINTENANCE_INTERVAL_S = 24 * 3600.0


@dataclass
class RuntimeBuildConfig:
    save_dir: str
    history_size: int = 50
    write_csv: bool = True
    remote_source_path: str = ""


def build_runtime_config_from_loaded_config(cfg) -> RuntimeBuildConfig:
    return RuntimeBuildConfig(
        save_dir=cfg.runtime.save_dir,
        history_size=cfg.runtime.history_size,
        write_csv=cfg.runtime.write_csv,
        remote_source_path=cfg.remote.source_path if cfg.remote.enabled else "",
    )


class SystemRuntime:
    """Coordinates periodic workers, outputs, and the camera session.

    One stop event is shared by every worker and handed to each task as its
    cancellation signal, so a stop request aborts in-flight capture, OCR backoff
    and relay delays.
    """

    def __init__(
        self,
        hub: ConfigurationHub,
        cycle: MonitoringCycle,
        output_mgr: OutputManager,
        *,
        config_source: Optional[ConfigSource] = None,
    ):
        self.hub = hub
        self.cycle = cycle
        self.output_mgr = output_mgr
        self.config_source = config_source

        self._stop_evt = threading.Event()
        self._camera_session_stack: ExitStack | None = None
        self._started = False
        self._stopped = False
        self.workers = self._build_workers()

    @property
    def camera(self) -> BaseCamera:
        return self.cycle.camera

    @property
    def pipeline(self) -> OcrPipeline:
        return self.cycle.pipeline

    def _build_workers(self) -> list[PeriodicWorker]:
        monitoring = lambda: self.hub.current().monitoring  # noqa: E731
        workers = [
            PeriodicWorker(
                "MonitoringWorker",
                lambda: monitoring().interval_seconds,
                self.cycle.run_once,
                stop_evt=self._stop_evt,
            ),
            PeriodicWorker(
                "TelemetryWorker",
                lambda: monitoring().telemetry_interval_minutes * 60.0,
                self.report_statistics,
                stop_evt=self._stop_evt,
                run_immediately=False,
            ),
            PeriodicWorker(
                "MaintenanceWorker",
                lambda: MAINTENANCE_INTERVAL_S,
                self.run_maintenance,
                stop_evt=self._stop_evt,
                run_immediately=False,
            ),
        ]
        if self.config_source is not None:
            workers.append(
                PeriodicWorker(
                    "ConfigRefreshWorker",
                    lambda: monitoring().sync_interval_hours * 3600.0,
                    self.refresh_config,
                    stop_evt=self._stop_evt,
                )
            )
        return workers

    def start(self):
        if self._started:
            raise RuntimeError(
                "SystemRuntime is single-use; start() may only be called once"
            )
        if self._stopped:
            raise RuntimeError("SystemRuntime is stopped and cannot be started again")
        self._started = True
        try:
            self._enter_camera_session()
            self.output_mgr.start()
            for w in self.workers:
                w.start()
        except Exception:
            L.exception("Runtime start failed; rolling back partial startup")
            try:
                self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise

    def request_stop(self):
        self._stop_evt.set()

    def run(self, runtime_limit_s: float | None = None):
        if not self._started:
            raise RuntimeError("SystemRuntime.run() requires start() first")
        start_ts = time.perf_counter()
        try:
            while not self._stop_evt.wait(0.1):
                self._raise_if_worker_stopped()
                if (
                    runtime_limit_s is not None
                    and (time.perf_counter() - start_ts) >= runtime_limit_s
                ):
                    L.info(
                        "Runtime limit reached (%ss); shutting down service",
                        runtime_limit_s,
                    )
                    self.request_stop()
        finally:
            self.stop()

    def _raise_if_worker_stopped(self):
        for w in self.workers:
            if w.has_started and not w.is_alive and not self._stop_evt.is_set():
                err = w.last_error
                if err is not None:
                    raise RuntimeError(
                        f"{w.name} stopped unexpectedly ({type(err).__name__})"
                    ) from err
                raise RuntimeError(f"{w.name} stopped unexpectedly")

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        self._stop_evt.set()
        stop_t0 = time.perf_counter()
        stage_t0 = stop_t0

        def _log_stage(name: str):
            nonlocal stage_t0
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now

        def _run_stage(name: str, fn: Callable[[], None]):
            try:
                fn()
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                _log_stage(name)

        def _stop_workers():
            for w in self.workers:
                if w.has_started:
                    w.stop()

        _run_stage("workers", _stop_workers)
        _run_stage("ocr_providers", self.pipeline.dispose)
        _run_stage("output_manager", self.output_mgr.stop)
        _run_stage("camera_session", self._exit_camera_session)
        L.debug(
            "Shutdown stage=total elapsed=%.1fms",
            (time.perf_counter() - stop_t0) * 1000,
        )

    # ---- periodic tasks ----

    def report_statistics(self, cancel_evt: threading.Event | None = None):
        ocr = self.pipeline.statistics()
        out = self.output_mgr.stats()
        L.info(
            "Telemetry: readings=%d invalid=%d dry=%d rapidcycle=%d | "
            "ocr ops=%d ok=%.0f%% avg=%.0fms conf=%.2f | capture_failures=%d",
            out["total"],
            out["invalid"],
            out["dry"],
            out["rapidcycle"],
            ocr.total_operations,
            ocr.success_rate * 100,
            ocr.average_processing_ms,
            ocr.average_confidence,
            self.cycle.capture_failures,
        )

    def refresh_config(self, cancel_evt: threading.Event | None = None) -> bool:
        if self.config_source is None:
            return False
        document = self.config_source.fetch_latest()
        if document is None:
            return False
        changed = self.hub.apply_document(document)
        if not changed:
            L.debug("Remote config unchanged")
        return changed

    def run_maintenance(self, cancel_evt: threading.Event | None = None):
        snapshot = self.hub.current()
        self.output_mgr.prune_history(snapshot.monitoring.data_retention_days)
        debug_dir = snapshot.camera.debug_image_path
        if debug_dir:
            removed = prune_debug_images(debug_dir, snapshot.debug.image_retention_days)
            if removed:
                L.info("Removed %d expired debug images from %s", removed, debug_dir)

    # ---- camera session ----

    def _enter_camera_session(self):
        if self._camera_session_stack is not None:
            return
        stack = ExitStack()
        stack.enter_context(self.camera.session())
        self._camera_session_stack = stack

    def _exit_camera_session(self):
        stack = self._camera_session_stack
        if stack is None:
            return
        self._camera_session_stack = None
        stack.close()


def _build_output_manager(cfg: RuntimeBuildConfig):
    from output.manager import LoggingSink, OutputManager, ReadingStore

    store = ReadingStore(
        base_dir=cfg.save_dir,
        max_records=cfg.history_size,
        write_csv=cfg.write_csv,
    )
    output_mgr = OutputManager(store)
    output_mgr.add_sink(LoggingSink())
    return output_mgr


def build_runtime(
    camera: BaseCamera,
    hub: ConfigurationHub,
    *,
    config: RuntimeBuildConfig,
    pipeline: OcrPipeline | None = None,
    actuator: Actuator | None = None,
    config_source: ConfigSource | None = None,
) -> SystemRuntime:
    from actuator import RelayController, SimulatedRelay
    from ocr import OcrPipeline

    cfg = config
    pipeline = pipeline or OcrPipeline(hub)
    output_mgr = _build_output_manager(cfg)
    relay = RelayController(actuator or SimulatedRelay(), hub)
    cycle = MonitoringCycle(
        camera,
        pipeline,
        output_mgr,
        relay=relay,
        alerts=AlertTracker(hub),
    )
    if config_source is None and cfg.remote_source_path:
        config_source = FileConfigSource(cfg.remote_source_path)
    return SystemRuntime(hub, cycle, output_mgr, config_source=config_source)


def build_runtime_from_loaded_config(
    camera: BaseCamera,
    cfg,
    hub: ConfigurationHub,
    *,
    pipeline: OcrPipeline | None = None,
    actuator: Actuator | None = None,
) -> SystemRuntime:
    return build_runtime(
        camera,
        hub,
        config=build_runtime_config_from_loaded_config(cfg),
        pipeline=pipeline,
        actuator=actuator,
    )


__all__ = [
    "RuntimeBuildConfig",
    "SystemRuntime",
    "build_runtime",
    "build_runtime_config_from_loaded_config",
    "build_runtime_from_loaded_config",
]
