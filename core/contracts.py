"""Data contracts for capture, OCR, analysis, and actuation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class PumpStatus(str, Enum):
    UNKNOWN = "Unknown"
    OFF = "Off"
    IDLE = "Idle"
    NORMAL = "Normal"
    DRY = "Dry"
    RAPID_CYCLE = "RapidCycle"


@dataclass(slots=True)
class CapturedImage:
    data: bytes = b""
    duration_ms: float = 0.0
    backend: str = ""
    captured_at: datetime | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class CaptureResult:
    success: bool = False
    image: CapturedImage | None = None
    error: str | None = None
    attempts: list[str] = field(default_factory=list)
    timings: dict[str, float] | None = None


@dataclass(slots=True)
class BoundingBox:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


@dataclass(slots=True)
class CharacterResult:
    char: str = ""
    confidence: float = 0.0
    box: BoundingBox | None = None


@dataclass(slots=True)
class TextRegion:
    text: str = ""
    confidence: float = 0.0
    box: BoundingBox | None = None


@dataclass(slots=True)
class OcrResult:
    success: bool = False
    raw_text: str = ""
    processed_text: str = ""
    confidence: float = 0.0  # normalized to 0..1
    provider: str = ""
    processed_at: datetime | None = None
    duration_ms: float = 0.0
    error: str | None = None
    retry_attempts: int = 0
    characters: list[CharacterResult] = field(default_factory=list)
    text_regions: list[TextRegion] = field(default_factory=list)
    preprocessing_steps: list[str] = field(default_factory=list)
    passed_quality_validation: bool = False


@dataclass(slots=True)
class PumpReading:
    status: PumpStatus = PumpStatus.UNKNOWN
    current_amps: float | None = None
    raw_text: str = ""
    confidence: float = 0.0
    is_valid: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class OcrStatistics:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    average_processing_ms: float = 0.0
    average_confidence: float = 0.0
    last_reset_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success_rate(self) -> float:
        if not self.total_operations:
            return 0.0
        return self.successful_operations / self.total_operations


@dataclass(slots=True)
class ActionLog:
    action: str = ""
    reason: str = ""
    success: bool = False
    detail: str = ""
    status: PumpStatus | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: float | None = None


__all__ = [
    "PumpStatus",
    "CapturedImage",
    "CaptureResult",
    "BoundingBox",
    "CharacterResult",
    "TextRegion",
    "OcrResult",
    "PumpReading",
    "OcrStatistics",
    "ActionLog",
]
