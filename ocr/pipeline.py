"""OcrPipeline: provider selection, retry/fallback, quality gate, and statistics."""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from analysis import PumpStatusAnalyzer, clean_text
from core.config import ConfigSnapshot, ConfigurationHub, OcrSettings
from core.contracts import OcrResult, OcrStatistics, PumpReading, PumpStatus

from .base import OcrProvider, OcrProviderDescriptor, create_default_providers
from .null import NullOcrProvider
from .preprocess import encode_png, preprocess_image

L = logging.getLogger("pump_runtime.ocr")

SELF_TEST_TEXT = "12.5"


class OcrPipeline:
    """Runs extraction against a primary provider with retries, then one fallback try.

    Concurrency across callers is capped by a semaphore sized to the CPU count.
    """

    def __init__(
        self,
        hub: ConfigurationHub,
        providers: Optional[list[OcrProvider]] = None,
        *,
        analyzer: PumpStatusAnalyzer | None = None,
        backoff_base_s: float = 1.0,
        max_concurrency: int | None = None,
        sleep_fn: Callable[[threading.Event | None, float], bool] | None = None,
    ):
        self.hub = hub
        self.analyzer = analyzer or PumpStatusAnalyzer(hub)
        self.backoff_base_s = float(backoff_base_s)
        self._sleep = sleep_fn or _wait_or_cancel
        self._lock = threading.Lock()
        self._stats = OcrStatistics()
        self._semaphore = threading.BoundedSemaphore(
            max(1, int(max_concurrency or os.cpu_count() or 1))
        )
        settings_fn = lambda: self.hub.current().ocr  # noqa: E731
        self._providers = (
            list(providers) if providers is not None else create_default_providers(settings_fn)
        )
        if not any(p.name == "null" for p in self._providers):
            self._providers.append(NullOcrProvider(settings_fn))
        self._initialize_providers()
        self._unsubscribe = hub.subscribe(self._on_config_change)

    # ---- providers ----

    def _initialize_providers(self):
        for p in self._providers:
            ready = p.initialize()
            L.info("OCR provider %s (%s): %s", p.name, p.capability.value, "ready" if ready else "unavailable")
        primary, fallback = self.select_providers(self.hub.current().ocr)
        L.info(
            "OCR primary=%s fallback=%s",
            primary.name,
            fallback.name if fallback else "none",
        )

    def _on_config_change(self, old: ConfigSnapshot, new: ConfigSnapshot):
        if old.ocr.tesseract != new.ocr.tesseract or old.ocr.cloud != new.ocr.cloud:
            L.info("OCR engine settings changed; re-initializing providers")
            self._initialize_providers()

    def select_providers(
        self, settings: OcrSettings
    ) -> Tuple[OcrProvider, OcrProvider | None]:
        available = [p for p in self._providers if p.is_available]
        if not available:
            null = next((p for p in self._providers if p.name == "null"), None)
            return (null or self._providers[0]), None
        preferred = str(settings.provider or "").lower()
        primary = next((p for p in available if p.name == preferred), available[0])
        fallback = next(
            (p for p in available if p.name not in (primary.name, "null")), None
        )
        return primary, fallback

    def provider_status(self) -> list[OcrProviderDescriptor]:
        return [p.describe() for p in self._providers]

    def test_providers(self) -> dict[str, bool]:
        """Run every ready provider on a rendered digit image."""
        img = np.full((80, 240, 3), 255, dtype=np.uint8)
        cv2.putText(
            img, SELF_TEST_TEXT, (20, 60), cv2.FONT_HERSHEY_SIMPLEX, 1.8, (0, 0, 0), 4
        )
        data = encode_png(img)
        out: dict[str, bool] = {}
        for p in self._providers:
            if not p.is_available:
                out[p.name] = False
                continue
            result = p.extract(data)
            ok = bool(result.success and (p.name == "null" or any(ch.isdigit() for ch in result.raw_text)))
            L.info(
                "OCR self-test %s: %s text=%r conf=%.2f err=%s",
                p.name,
                "ok" if ok else "failed",
                result.raw_text,
                result.confidence,
                result.error or "",
            )
            out[p.name] = ok
        return out

    def dispose(self):
        self._unsubscribe()
        for p in self._providers:
            try:
                p.dispose()
            except Exception:
                L.exception("OCR provider %s dispose failed", p.name)

    # ---- extraction ----

    def extract_text(
        self, image: bytes, cancel_evt: threading.Event | None = None
    ) -> OcrResult:
        start = time.perf_counter()
        snapshot = self.hub.current()
        if not image:
            result = OcrResult(success=False, error="empty image")
        else:
            with self._semaphore:
                result = self._extract_with_retry(image, snapshot, cancel_evt)
        result.duration_ms = (time.perf_counter() - start) * 1000
        result.processed_at = datetime.now(timezone.utc)
        self._update_statistics(result)
        return result

    def _extract_with_retry(
        self,
        image: bytes,
        snapshot: ConfigSnapshot,
        cancel_evt: threading.Event | None,
    ) -> OcrResult:
        settings = snapshot.ocr
        log = L.info if snapshot.debug.verbose_ocr_logging else L.debug
        steps: list[str] = []
        data = image
        if settings.enable_preprocessing:
            data, steps = preprocess_image(image, settings.preprocessing, log_fn=log)

        primary, fallback = self.select_providers(settings)
        max_attempts = settings.max_retry_attempts
        last = OcrResult(success=False, provider=primary.name, error="no OCR attempts made")
        for attempt in range(1, max_attempts + 1):
            if cancel_evt is not None and cancel_evt.is_set():
                return _cancelled(steps, attempt - 1)
            result = self._run_provider(primary, data, steps)
            log(
                "OCR attempt %d/%d via %s: text=%r conf=%.2f err=%s",
                attempt,
                max_attempts,
                primary.name,
                result.processed_text,
                result.confidence,
                result.error or "",
            )
            if self._passes_quality(result, settings):
                result.retry_attempts = attempt
                return result
            last = result
            if attempt < max_attempts:
                delay = self.backoff_base_s * (2 ** (attempt - 1))
                if self._sleep(cancel_evt, delay):
                    return _cancelled(steps, attempt)

        if fallback is not None:
            if cancel_evt is not None and cancel_evt.is_set():
                return _cancelled(steps, max_attempts)
            L.warning(
                "OCR primary %s exhausted %d attempts; trying fallback %s",
                primary.name,
                max_attempts,
                fallback.name,
            )
            result = self._run_provider(fallback, data, steps)
            if self._passes_quality(result, settings):
                result.retry_attempts = max_attempts
                return result
            if result.error or not last.error:
                last = result

        detail = last.error or (
            f"confidence {last.confidence:.2f} below minimum "
            f"{settings.minimum_confidence:.2f} or empty text"
        )
        L.warning("OCR failed after %d attempts: %s", max_attempts, detail)
        return dataclasses.replace(
            last,
            success=False,
            error=f"OCR failed after {max_attempts} attempts: {detail}",
            retry_attempts=max_attempts,
            passed_quality_validation=False,
        )

    def _run_provider(
        self, provider: OcrProvider, data: bytes, steps: list[str]
    ) -> OcrResult:
        result = provider.extract(data)
        result.processed_text = clean_text(result.raw_text)
        result.preprocessing_steps = list(steps)
        return result

    def _passes_quality(self, result: OcrResult, settings: OcrSettings) -> bool:
        ok = (
            result.success
            and result.confidence >= settings.minimum_confidence
            and bool(result.processed_text.strip())
        )
        result.passed_quality_validation = ok
        return ok

    def process_image(
        self, image: bytes, cancel_evt: threading.Event | None = None
    ) -> PumpReading:
        result = self.extract_text(image, cancel_evt)
        if result.success:
            reading = self.analyzer.analyze(result.raw_text, result.confidence)
        else:
            reading = PumpReading(
                status=PumpStatus.UNKNOWN,
                raw_text=result.raw_text,
                confidence=0.0,
                is_valid=False,
                metadata={"error": result.error or "ocr_failed"},
            )
        reading.metadata.update(
            {
                "ocr_confidence": result.confidence,
                "ocr_provider": result.provider,
                "processing_duration_ms": result.duration_ms,
                "retry_attempts": result.retry_attempts,
            }
        )
        return reading

    # ---- statistics ----

    def _update_statistics(self, result: OcrResult):
        with self._lock:
            s = self._stats
            s.total_operations += 1
            if not result.success:
                s.failed_operations += 1
                return
            s.successful_operations += 1
            n = s.successful_operations
            s.average_processing_ms += (result.duration_ms - s.average_processing_ms) / n
            s.average_confidence += (result.confidence - s.average_confidence) / n

    def statistics(self) -> OcrStatistics:
        with self._lock:
            return dataclasses.replace(self._stats)

    def reset_statistics(self):
        with self._lock:
            self._stats = OcrStatistics()
        L.info("OCR statistics reset")


def _wait_or_cancel(cancel_evt: threading.Event | None, delay_s: float) -> bool:
    """Sleep ``delay_s``; True if cancellation fired first."""
    if delay_s <= 0:
        return bool(cancel_evt is not None and cancel_evt.is_set())
    if cancel_evt is None:
        time.sleep(delay_s)
        return False
    return cancel_evt.wait(delay_s)


def _cancelled(steps: list[str], attempts: int) -> OcrResult:
    return OcrResult(
        success=False,
        error="cancelled",
        retry_attempts=attempts,
        preprocessing_steps=list(steps),
    )


__all__ = ["OcrPipeline"]
