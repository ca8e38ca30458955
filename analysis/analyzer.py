"""PumpStatusAnalyzer: classify cleaned display text into a PumpReading."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from analysis.text import clean_text, match_keyword
from core.config import AnalyzerThresholds, ConfigurationHub
from core.contracts import PumpReading, PumpStatus

L = logging.getLogger("pump_runtime.analysis")

KEYWORD_CONFIDENCE = 0.9
CLEAN_DECIMAL_BONUS = 0.2

# Most specific first; within a pattern the first in-range match wins.
_CURRENT_PATTERNS = (
    re.compile(r"\b(\d{1,2}\.\d{1,2})\b"),
    re.compile(r"\b(\d{1,2}\.\d)\b"),
    re.compile(r"\b(\d{1,2})\.\b"),
    re.compile(r"\b(\d{1,2})\b"),
)
_CLEAN_DECIMAL_RE = re.compile(r"^\d+\.?\d*$")


def extract_current(text: str, max_valid: float) -> tuple[float, str] | None:
    for pattern in _CURRENT_PATTERNS:
        for match in pattern.finditer(text):
            try:
                value = float(match.group(1))
            except ValueError:
                continue
            if 0.0 <= value <= max_valid:
                return value, match.group(0)
    return None


def parse_confidence(text: str, matched: str) -> float:
    if not text or not matched:
        return 0.0
    conf = len(matched) / len(text)
    if _CLEAN_DECIMAL_RE.match(text):
        conf += CLEAN_DECIMAL_BONUS
    return min(1.0, conf)


def status_from_current(amps: float, t: AnalyzerThresholds) -> PumpStatus:
    if amps < t.off_current_threshold:
        return PumpStatus.OFF
    if amps < t.idle_current_threshold:
        return PumpStatus.IDLE
    if t.normal_current_min <= amps <= t.normal_current_max:
        return PumpStatus.NORMAL
    return PumpStatus.UNKNOWN


class PumpStatusAnalyzer:
    def __init__(self, hub: ConfigurationHub):
        self.hub = hub

    def analyze(self, text: str | None, confidence: float = 1.0) -> PumpReading:
        # Thresholds are read per call so a config swap applies on the next reading.
        t = self.hub.current().analysis
        raw = text or ""
        now = datetime.now(timezone.utc)
        cleaned = clean_text(raw, uppercase=not t.case_sensitive)
        if not cleaned:
            L.debug("Empty OCR text; reading is Unknown")
            return PumpReading(
                status=PumpStatus.UNKNOWN,
                raw_text=raw,
                confidence=0.0,
                is_valid=False,
                timestamp=now,
                metadata={"cleaned_text": cleaned, "reason": "empty_text"},
            )

        for status, keywords in (
            (PumpStatus.DRY, t.dry_keywords),
            (PumpStatus.RAPID_CYCLE, t.rapid_cycle_keywords),
        ):
            keyword = match_keyword(cleaned, keywords, case_sensitive=t.case_sensitive)
            if keyword is not None:
                L.warning("%s status detected from display text %r", status.value, raw)
                return PumpReading(
                    status=status,
                    current_amps=None,
                    raw_text=raw,
                    confidence=KEYWORD_CONFIDENCE,
                    is_valid=True,
                    timestamp=now,
                    metadata={"cleaned_text": cleaned, "matched_keyword": keyword},
                )

        found = extract_current(cleaned, t.max_valid_current)
        if found is None:
            L.warning("Could not extract a current reading from %r", raw)
            return PumpReading(
                status=PumpStatus.UNKNOWN,
                raw_text=raw,
                confidence=0.0,
                is_valid=False,
                timestamp=now,
                metadata={"cleaned_text": cleaned, "reason": "no_match"},
            )

        amps, matched = found
        parse_conf = parse_confidence(cleaned, matched)
        status = status_from_current(amps, t)
        metadata: dict[str, object] = {
            "cleaned_text": cleaned,
            "parse_confidence": parse_conf,
        }
        if status is PumpStatus.UNKNOWN:
            metadata["reason"] = (
                "above_high_threshold"
                if amps > t.high_current_threshold
                else "outside_bands"
            )
            L.info("Current %.2fA outside configured bands (%s)", amps, metadata["reason"])
        L.debug("Current reading %.2fA -> %s", amps, status.value)
        return PumpReading(
            status=status,
            current_amps=amps,
            raw_text=raw,
            confidence=max(0.0, min(1.0, float(confidence))) * parse_conf,
            is_valid=True,
            timestamp=now,
            metadata=metadata,
        )


__all__ = [
    "PumpStatusAnalyzer",
    "extract_current",
    "parse_confidence",
    "status_from_current",
]
