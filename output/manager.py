"""OutputManager: keep reading history, persist CSV, and fan out to sinks."""

import csv
import logging
import os
import queue
import shutil
import threading
from collections import deque
from datetime import date, datetime, timedelta, timezone
from typing import Protocol

from core.contracts import ActionLog, PumpReading, PumpStatus

L = logging.getLogger("pump_runtime.output")

READING_COLUMNS = [
    "date",
    "time",
    "status",
    "current_amps",
    "confidence",
    "is_valid",
    "raw_text",
    "provider",
    "remark",
]
ACTION_COLUMNS = ["date", "time", "action", "reason", "success", "detail", "duration_ms"]


class OutputSink(Protocol):
    def start(self): ...
    def stop(self): ...
    def record_reading(self, reading: PumpReading): ...
    def record_action(self, action: ActionLog): ...


class ReadingStore:
    _STOP_SENTINEL = None

    def __init__(self, base_dir: str, max_records: int = 50, write_csv: bool = True):
        self.base_dir = base_dir
        self.csv_root_dir = os.path.join(base_dir, "readings")
        self._max_records = max_records
        self._readings: deque[PumpReading] = deque(maxlen=max_records)
        self._actions: deque[ActionLog] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self.total_count = 0
        self.invalid_count = 0
        self.status_counts: dict[str, int] = {s.value: 0 for s in PumpStatus}
        self._write_queue: queue.Queue | None = queue.Queue() if write_csv else None
        self._writer_thread = (
            threading.Thread(target=self._writer_loop, daemon=True)
            if write_csv
            else None
        )
        if write_csv:
            os.makedirs(self.csv_root_dir, exist_ok=True)
        if self._writer_thread:
            self._writer_thread.start()

    def stop(self):
        thread = self._writer_thread
        q = self._write_queue
        if thread is None or q is None:
            return
        q.put(self._STOP_SENTINEL)
        thread.join()
        self._writer_thread = None
        self._write_queue = None

    def submit(self, reading: PumpReading):
        with self._lock:
            self._readings.appendleft(reading)
            self.total_count += 1
            self.status_counts[reading.status.value] += 1
            if not reading.is_valid:
                self.invalid_count += 1
        if self._write_queue is not None:
            self._write_queue.put(reading)

    def submit_action(self, action: ActionLog):
        with self._lock:
            self._actions.appendleft(action)
        if self._write_queue is not None:
            self._write_queue.put(action)

    def reset(self):
        with self._lock:
            self._readings.clear()
            self._actions.clear()
            self.total_count = 0
            self.invalid_count = 0
            self.status_counts = {s.value: 0 for s in PumpStatus}

    @property
    def latest_readings(self) -> list[PumpReading]:
        with self._lock:
            return list(self._readings)

    @property
    def latest_actions(self) -> list[ActionLog]:
        with self._lock:
            return list(self._actions)

    @property
    def max_records(self) -> int:
        return self._max_records

    def stats(self):
        with self._lock:
            total = self.total_count
            invalid = self.invalid_count
            counts = dict(self.status_counts)
        return {
            "total": total,
            "invalid": invalid,
            "valid_rate": ((total - invalid) / total) if total else 0.0,
            **{k.lower(): v for k, v in counts.items()},
        }

    def _writer_loop(self):
        queue_ref = self._write_queue
        if queue_ref is None:
            raise RuntimeError("writer queue missing")
        while True:
            item = queue_ref.get()
            try:
                if item is None:
                    break
                if isinstance(item, ActionLog):
                    self._append_action(item)
                else:
                    self._append_reading(item)
            except OSError:
                L.exception("CSV append failed")
            finally:
                queue_ref.task_done()

    def _append_reading(self, reading: PumpReading):
        d, t = _fmt_date_time(reading.timestamp)
        meta = reading.metadata or {}
        row = [
            d,
            t,
            reading.status.value,
            "" if reading.current_amps is None else f"{reading.current_amps:.2f}",
            f"{reading.confidence:.3f}",
            int(bool(reading.is_valid)),
            reading.raw_text,
            meta.get("ocr_provider", ""),
            meta.get("reason") or meta.get("error") or "",
        ]
        self._append_row(self._csv_path(d, "readings.csv"), READING_COLUMNS, row)

    def _append_action(self, action: ActionLog):
        d, t = _fmt_date_time(action.occurred_at)
        row = [
            d,
            t,
            action.action,
            action.reason,
            int(bool(action.success)),
            action.detail,
            f"{(action.duration_ms or 0.0):.1f}",
        ]
        self._append_row(self._csv_path(d, "actions.csv"), ACTION_COLUMNS, row)

    def _append_row(self, path: str, header: list[str], row: list):
        write_header = not os.path.exists(path)
        with open(path, "a", encoding="utf-8", newline="") as f:
            w = csv.writer(f)
            if write_header:
                w.writerow(header)
            w.writerow(row)

    def prune(self, retention_days: int, *, today: date | None = None) -> int:
        """Delete per-day CSV folders older than ``retention_days``; returns the count removed."""
        if not os.path.isdir(self.csv_root_dir):
            return 0
        cutoff = (today or datetime.now(timezone.utc).date()) - timedelta(days=retention_days)
        removed = 0
        for name in sorted(os.listdir(self.csv_root_dir)):
            try:
                day = date.fromisoformat(name)
            except ValueError:
                continue
            if day < cutoff:
                shutil.rmtree(os.path.join(self.csv_root_dir, name), ignore_errors=True)
                removed += 1
        if removed:
            L.info("Pruned %d reading folders older than %s", removed, cutoff.isoformat())
        return removed

    def _csv_path(self, date_key: str, filename: str) -> str:
        day_dir = os.path.join(self.csv_root_dir, date_key)
        os.makedirs(day_dir, exist_ok=True)
        return os.path.join(day_dir, filename)


def _fmt_date_time(dt: datetime | None) -> tuple[str, str]:
    ref = _to_utc(dt)
    return ref.date().isoformat(), ref.strftime("%H:%M:%S.%f")[:-3] + "Z"


def _to_utc(dt: datetime | None) -> datetime:
    ref = dt or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


class LoggingSink:
    """Logs each reading at INFO (WARNING for unsafe states)."""

    def start(self):
        pass

    def stop(self):
        pass

    def record_reading(self, reading: PumpReading):
        unsafe = reading.status in (PumpStatus.DRY, PumpStatus.RAPID_CYCLE)
        log_fn = L.warning if unsafe else L.info
        log_fn(
            "Reading status=%s current=%s conf=%.2f valid=%s text=%r",
            reading.status.value,
            "-" if reading.current_amps is None else f"{reading.current_amps:.2f}A",
            reading.confidence,
            reading.is_valid,
            reading.raw_text,
        )

    def record_action(self, action: ActionLog):
        L.info(
            "Action %s reason=%s success=%s detail=%s",
            action.action,
            action.reason,
            action.success,
            action.detail,
        )


class OutputManager:
    def __init__(self, store: ReadingStore):
        self._store = store
        self._sinks: list[OutputSink] = []

    def add_sink(self, sink: OutputSink):
        self._sinks.append(sink)

    def publish(self, reading: PumpReading):
        self._store.submit(reading)
        for sink in self._sinks:
            try:
                sink.record_reading(reading)
            except Exception:
                L.exception("Sink %s failed to record reading", type(sink).__name__)

    def publish_action(self, action: ActionLog):
        self._store.submit_action(action)
        for sink in self._sinks:
            try:
                sink.record_action(action)
            except Exception:
                L.exception("Sink %s failed to record action", type(sink).__name__)

    def start(self):
        for sink in self._sinks:
            sink.start()

    def stop(self):
        for sink in self._sinks:
            try:
                sink.stop()
            except Exception:
                L.exception("Sink %s stop failed", type(sink).__name__)
        self._store.stop()

    def reset(self):
        self._store.reset()

    @property
    def latest_readings(self):
        return self._store.latest_readings

    @property
    def latest_actions(self):
        return self._store.latest_actions

    def prune_history(self, retention_days: int) -> int:
        return self._store.prune(retention_days)

    def stats(self):
        return self._store.stats()


__all__ = ["LoggingSink", "OutputManager", "OutputSink", "ReadingStore"]
