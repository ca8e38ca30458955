import logging
import threading
import time
from typing import Callable

L = logging.getLogger("pump_runtime.workers")


class BaseWorker:
    def __init__(self, name: str = "", stop_evt: threading.Event | None = None):
        self.name = name or self.__class__.__name__
        self._stop_evt = stop_evt or threading.Event()
        self._thread: threading.Thread | None = None
        self._last_error: Exception | None = None

    def start(self):
        if self._thread is not None:
            raise RuntimeError(
                f"{self.name} is single-use; start() may only be called once"
            )
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                L.warning("%s worker thread did not exit cleanly", self.name)

    def _run(self):
        try:
            self.run()
        except Exception as e:
            self._last_error = e
            L.exception("%s worker error", self.name)

    @property
    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @property
    def has_started(self) -> bool:
        return self._thread is not None

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def run(self):
        raise NotImplementedError


class PeriodicWorker(BaseWorker):
    """Runs ``task(stop_evt)`` then waits ``interval_fn()`` seconds, until stopped.

    The interval is re-read before every wait so hub changes apply on the next cycle.
    A failing cycle is logged and the schedule continues.
    """

    def __init__(
        self,
        name: str,
        interval_fn: Callable[[], float],
        task: Callable[[threading.Event], None],
        *,
        stop_evt: threading.Event | None = None,
        run_immediately: bool = True,
    ):
        super().__init__(name, stop_evt)
        self.interval_fn = interval_fn
        self.task = task
        self.run_immediately = run_immediately
        self.cycles = 0
        self.failures = 0

    def run(self):
        if not self.run_immediately and self._stop_evt.wait(self._interval()):
            return
        while not self._stop_evt.is_set():
            t0 = time.perf_counter()
            self.cycles += 1
            try:
                self.task(self._stop_evt)
            except Exception:
                self.failures += 1
                L.exception("%s cycle %d failed", self.name, self.cycles)
            L.debug(
                "%s cycle %d took %.1fms",
                self.name,
                self.cycles,
                (time.perf_counter() - t0) * 1000,
            )
            if self._stop_evt.wait(self._interval()):
                break

    def _interval(self) -> float:
        try:
            return max(0.01, float(self.interval_fn()))
        except Exception:
            L.exception("%s interval lookup failed; retrying in 60s", self.name)
            return 60.0


__all__ = ["BaseWorker", "PeriodicWorker"]
