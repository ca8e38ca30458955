"""Typed config schema blocks shared by loader/validator/hub/runtime."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


class ConfigError(Exception):
    pass


EXPOSURE_MODES = (
    "auto",
    "normal",
    "sport",
    "night",
    "backlight",
    "spotlight",
    "beach",
    "snow",
    "fireworks",
    "party",
    "candlelight",
    "barcode",
    "macro",
    "landscape",
    "portrait",
    "antishake",
    "fixedfps",
)

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


# ---- Local-only blocks (read once at startup) ----


@dataclass
class RuntimeConfig:
    save_dir: str = "data"
    max_runtime_s: float = 0.0
    camera_type: str = "still"
    capture_backends: List[str] = field(
        default_factory=lambda: ["libcamera-still", "rpicam-still"]
    )
    image_dir: str = ""
    history_size: int = 50
    write_csv: bool = True
    opencv_num_threads: int = 0


@dataclass
class RemoteConfig:
    enabled: bool = False
    source_path: str = ""


# ---- Hot-swappable snapshot blocks ----


@dataclass(frozen=True)
class CaptureSettings:
    width: int = 1920
    height: int = 1080
    quality: int = 95
    timeout_ms: int = 5000
    warmup_ms: int = 2000
    enable_preview: bool = False
    debug_image_path: str = ""
    rotation: int = 0
    brightness: int = 50
    contrast: int = 0
    saturation: int = 0
    gain: float = 1.0
    shutter_us: int = 0
    auto_exposure: bool = True
    auto_white_balance: bool = True
    exposure_mode: str = "auto"


@dataclass(frozen=True)
class TesseractSettings:
    language: str = "eng"
    engine_mode: int = 3
    page_segmentation_mode: int = 7
    char_whitelist: str = "0123456789.DryAMPSrcyc "
    data_path: str = ""


@dataclass(frozen=True)
class CloudOcrSettings:
    endpoint: str = ""
    api_key: str = ""
    region: str = "eastus"
    api_version: str = "2023-10-01"


@dataclass(frozen=True)
class PreprocessingSettings:
    grayscale: bool = True
    contrast_enhancement: bool = True
    contrast_factor: float = 1.5
    brightness_enabled: bool = True
    brightness_adjustment: int = 10
    noise_reduction: bool = True
    edge_enhancement: bool = False
    scaling: bool = True
    scale_factor: float = 2.0
    binary_thresholding: bool = True
    binary_threshold: int = 128


@dataclass(frozen=True)
class OcrSettings:
    provider: str = "tesseract"
    minimum_confidence: float = 0.7
    max_retry_attempts: int = 3
    timeout_seconds: int = 30
    enable_preprocessing: bool = True
    tesseract: TesseractSettings = field(default_factory=TesseractSettings)
    cloud: CloudOcrSettings = field(default_factory=CloudOcrSettings)
    preprocessing: PreprocessingSettings = field(default_factory=PreprocessingSettings)


@dataclass(frozen=True)
class AnalyzerThresholds:
    off_current_threshold: float = 0.1
    idle_current_threshold: float = 0.5
    normal_current_min: float = 3.0
    normal_current_max: float = 8.0
    high_current_threshold: float = 20.0
    max_valid_current: float = 25.0
    dry_keywords: Tuple[str, ...] = ("Dry", "No Water", "Empty", "Well Dry")
    rapid_cycle_keywords: Tuple[str, ...] = (
        "rcyc",
        "Rapid Cycle",
        "Cycling",
        "Fault",
        "Error",
    )
    case_sensitive: bool = False


@dataclass(frozen=True)
class DebugSettings:
    debug_mode: bool = False
    image_save_enabled: bool = False
    image_retention_days: int = 7
    log_level: str = "info"
    verbose_ocr_logging: bool = False


@dataclass(frozen=True)
class MonitoringSettings:
    interval_seconds: int = 30
    telemetry_interval_minutes: int = 5
    sync_interval_hours: int = 1
    data_retention_days: int = 30


@dataclass(frozen=True)
class PowerSettings:
    enable_auto_actions: bool = True
    power_cycle_delay_seconds: int = 5
    minimum_cycle_interval_minutes: int = 30
    max_daily_cycles: int = 10
    enable_dry_condition_cycling: bool = False


@dataclass(frozen=True)
class AlertSettings:
    dry_count_threshold: int = 3
    rcyc_count_threshold: int = 2
    cooldown_minutes: int = 15


@dataclass(frozen=True)
class ConfigSnapshot:
    """One validated, immutable bundle of every hot-swappable tunable."""

    camera: CaptureSettings = field(default_factory=CaptureSettings)
    ocr: OcrSettings = field(default_factory=OcrSettings)
    analysis: AnalyzerThresholds = field(default_factory=AnalyzerThresholds)
    debug: DebugSettings = field(default_factory=DebugSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    power: PowerSettings = field(default_factory=PowerSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig
    remote: RemoteConfig
    snapshot: ConfigSnapshot
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "EXPOSURE_MODES",
    "LOG_LEVELS",
    "RuntimeConfig",
    "RemoteConfig",
    "CaptureSettings",
    "TesseractSettings",
    "CloudOcrSettings",
    "PreprocessingSettings",
    "OcrSettings",
    "AnalyzerThresholds",
    "DebugSettings",
    "MonitoringSettings",
    "PowerSettings",
    "AlertSettings",
    "ConfigSnapshot",
    "LoadedConfig",
]
