"""Config value validation.

Local startup config is validated strictly (``ConfigError``). Snapshots headed for the
hub are sanitized field by field: an out-of-range value is replaced with the schema
default and logged, so one malformed remote setting never blocks an update.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Iterable, TypeVar

from .schema import (
    EXPOSURE_MODES,
    LOG_LEVELS,
    AlertSettings,
    AnalyzerThresholds,
    CaptureSettings,
    CloudOcrSettings,
    ConfigError,
    ConfigSnapshot,
    DebugSettings,
    LoadedConfig,
    MonitoringSettings,
    OcrSettings,
    PowerSettings,
    PreprocessingSettings,
    TesseractSettings,
)

L = logging.getLogger("pump_runtime.config")

T = TypeVar("T")

MAX_PATH_LEN = 260
VALID_ROTATIONS = (0, 90, 180, 270)
_PROVIDER_ALIASES = {
    "tesseract": "tesseract",
    "offline": "tesseract",
    "cloud": "cloud",
    "azure": "cloud",
    "null": "null",
}
_LOG_LEVEL_ALIASES = {"information": "info", "warn": "warning", "trace": "debug"}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    if not str(cfg.runtime.save_dir or "").strip():
        raise ConfigError("runtime.save_dir must not be empty")
    _require_float("runtime.max_runtime_s", cfg.runtime.max_runtime_s, min_v=0.0)
    _require_int("runtime.history_size", cfg.runtime.history_size, min_v=1)
    _require_int("runtime.opencv_num_threads", cfg.runtime.opencv_num_threads, min_v=0)
    if not str(cfg.runtime.camera_type or "").strip():
        raise ConfigError("runtime.camera_type must not be empty")
    _require_str_list("runtime.capture_backends", cfg.runtime.capture_backends)
    if not cfg.runtime.capture_backends:
        raise ConfigError("runtime.capture_backends must list at least one command")

    # remote
    if cfg.remote.enabled and not str(cfg.remote.source_path or "").strip():
        raise ConfigError("remote.source_path is required when remote.enabled is true")


def sanitize_snapshot(snapshot: ConfigSnapshot) -> ConfigSnapshot:
    return ConfigSnapshot(
        camera=sanitize_capture(snapshot.camera),
        ocr=sanitize_ocr(snapshot.ocr),
        analysis=sanitize_thresholds(snapshot.analysis),
        debug=sanitize_debug(snapshot.debug),
        monitoring=sanitize_monitoring(snapshot.monitoring),
        power=sanitize_power(snapshot.power),
        alerts=sanitize_alerts(snapshot.alerts),
    )


def sanitize_capture(cfg: CaptureSettings) -> CaptureSettings:
    d = CaptureSettings()
    timeout_ms = _soft_int("camera.timeout_ms", cfg.timeout_ms, d.timeout_ms, 1000, 30000)
    warmup_ms = _soft_int("camera.warmup_ms", cfg.warmup_ms, d.warmup_ms, 500, 8000)
    if timeout_ms <= warmup_ms:
        L.warning(
            "Config camera.timeout_ms (%d) must exceed camera.warmup_ms (%d); using defaults %d/%d",
            timeout_ms,
            warmup_ms,
            d.timeout_ms,
            d.warmup_ms,
        )
        timeout_ms, warmup_ms = d.timeout_ms, d.warmup_ms
    return CaptureSettings(
        width=_soft_int("camera.width", cfg.width, d.width, 320, 4096),
        height=_soft_int("camera.height", cfg.height, d.height, 240, 2160),
        quality=_soft_int("camera.quality", cfg.quality, d.quality, 1, 100),
        timeout_ms=timeout_ms,
        warmup_ms=warmup_ms,
        enable_preview=_soft_bool(
            "camera.enable_preview", cfg.enable_preview, d.enable_preview
        ),
        debug_image_path=_soft_path(
            "camera.debug_image_path", cfg.debug_image_path, d.debug_image_path
        ),
        rotation=_soft(
            "camera.rotation",
            d.rotation,
            lambda: _require_choice(
                "camera.rotation",
                _require_int("camera.rotation", cfg.rotation),
                VALID_ROTATIONS,
            ),
        ),
        brightness=_soft_int("camera.brightness", cfg.brightness, d.brightness, 0, 100),
        contrast=_soft_int("camera.contrast", cfg.contrast, d.contrast, -100, 100),
        saturation=_soft_int("camera.saturation", cfg.saturation, d.saturation, -100, 100),
        gain=_soft_float("camera.gain", cfg.gain, d.gain, 0.0, 16.0),
        shutter_us=_soft_int("camera.shutter_us", cfg.shutter_us, d.shutter_us, 0, 10_000_000),
        auto_exposure=_soft_bool("camera.auto_exposure", cfg.auto_exposure, d.auto_exposure),
        auto_white_balance=_soft_bool(
            "camera.auto_white_balance", cfg.auto_white_balance, d.auto_white_balance
        ),
        exposure_mode=_soft(
            "camera.exposure_mode",
            d.exposure_mode,
            lambda: _require_choice(
                "camera.exposure_mode",
                str(cfg.exposure_mode or "").strip().lower(),
                EXPOSURE_MODES,
            ),
        ),
    )


def sanitize_ocr(cfg: OcrSettings) -> OcrSettings:
    d = OcrSettings()
    return OcrSettings(
        provider=_soft(
            "ocr.provider",
            d.provider,
            lambda: _PROVIDER_ALIASES[
                _require_choice(
                    "ocr.provider",
                    str(cfg.provider or "").strip().lower(),
                    tuple(_PROVIDER_ALIASES),
                )
            ],
        ),
        minimum_confidence=_soft_float(
            "ocr.minimum_confidence", cfg.minimum_confidence, d.minimum_confidence, 0.0, 1.0
        ),
        max_retry_attempts=_soft_int(
            "ocr.max_retry_attempts", cfg.max_retry_attempts, d.max_retry_attempts, 1, 10
        ),
        timeout_seconds=_soft_int(
            "ocr.timeout_seconds", cfg.timeout_seconds, d.timeout_seconds, 1, 300
        ),
        enable_preprocessing=_soft_bool(
            "ocr.enable_preprocessing", cfg.enable_preprocessing, d.enable_preprocessing
        ),
        tesseract=_sanitize_tesseract(cfg.tesseract),
        cloud=_sanitize_cloud(cfg.cloud),
        preprocessing=_sanitize_preprocessing(cfg.preprocessing),
    )


def _sanitize_tesseract(cfg: TesseractSettings) -> TesseractSettings:
    d = TesseractSettings()
    return TesseractSettings(
        language=_soft(
            "ocr.tesseract.language",
            d.language,
            lambda: _require_language("ocr.tesseract.language", cfg.language),
        ),
        engine_mode=_soft_int("ocr.tesseract.engine_mode", cfg.engine_mode, d.engine_mode, 0, 3),
        page_segmentation_mode=_soft_int(
            "ocr.tesseract.page_segmentation_mode",
            cfg.page_segmentation_mode,
            d.page_segmentation_mode,
            0,
            13,
        ),
        char_whitelist=_soft_str(
            "ocr.tesseract.char_whitelist", cfg.char_whitelist, d.char_whitelist
        ),
        data_path=_soft_path("ocr.tesseract.data_path", cfg.data_path, d.data_path),
    )


def _sanitize_cloud(cfg: CloudOcrSettings) -> CloudOcrSettings:
    d = CloudOcrSettings()
    return CloudOcrSettings(
        endpoint=_soft(
            "ocr.cloud.endpoint",
            d.endpoint,
            lambda: _require_endpoint("ocr.cloud.endpoint", cfg.endpoint),
        ),
        api_key=_soft_str("ocr.cloud.api_key", cfg.api_key, d.api_key),
        region=_soft_str("ocr.cloud.region", cfg.region, d.region) or d.region,
        api_version=_soft_str("ocr.cloud.api_version", cfg.api_version, d.api_version)
        or d.api_version,
    )


def _sanitize_preprocessing(cfg: PreprocessingSettings) -> PreprocessingSettings:
    d = PreprocessingSettings()
    prefix = "ocr.preprocessing"
    return PreprocessingSettings(
        grayscale=_soft_bool(f"{prefix}.grayscale", cfg.grayscale, d.grayscale),
        contrast_enhancement=_soft_bool(
            f"{prefix}.contrast_enhancement", cfg.contrast_enhancement, d.contrast_enhancement
        ),
        contrast_factor=_soft_float(
            f"{prefix}.contrast_factor", cfg.contrast_factor, d.contrast_factor, 0.1, 5.0
        ),
        brightness_enabled=_soft_bool(
            f"{prefix}.brightness_enabled", cfg.brightness_enabled, d.brightness_enabled
        ),
        brightness_adjustment=_soft_int(
            f"{prefix}.brightness_adjustment",
            cfg.brightness_adjustment,
            d.brightness_adjustment,
            -100,
            100,
        ),
        noise_reduction=_soft_bool(
            f"{prefix}.noise_reduction", cfg.noise_reduction, d.noise_reduction
        ),
        edge_enhancement=_soft_bool(
            f"{prefix}.edge_enhancement", cfg.edge_enhancement, d.edge_enhancement
        ),
        scaling=_soft_bool(f"{prefix}.scaling", cfg.scaling, d.scaling),
        scale_factor=_soft_float(
            f"{prefix}.scale_factor", cfg.scale_factor, d.scale_factor, 0.5, 4.0
        ),
        binary_thresholding=_soft_bool(
            f"{prefix}.binary_thresholding", cfg.binary_thresholding, d.binary_thresholding
        ),
        binary_threshold=_soft_int(
            f"{prefix}.binary_threshold", cfg.binary_threshold, d.binary_threshold, 0, 255
        ),
    )


def sanitize_thresholds(cfg: AnalyzerThresholds) -> AnalyzerThresholds:
    d = AnalyzerThresholds()
    prefix = "analysis"
    normal_min = _soft_float(
        f"{prefix}.normal_current_min", cfg.normal_current_min, d.normal_current_min, 0.0, 100.0
    )
    normal_max = _soft_float(
        f"{prefix}.normal_current_max", cfg.normal_current_max, d.normal_current_max, 0.0, 100.0
    )
    if normal_min > normal_max:
        L.warning(
            "Config analysis normal band inverted (%g > %g); using defaults [%g, %g]",
            normal_min,
            normal_max,
            d.normal_current_min,
            d.normal_current_max,
        )
        normal_min, normal_max = d.normal_current_min, d.normal_current_max
    return AnalyzerThresholds(
        off_current_threshold=_soft_float(
            f"{prefix}.off_current_threshold",
            cfg.off_current_threshold,
            d.off_current_threshold,
            0.0,
            100.0,
        ),
        idle_current_threshold=_soft_float(
            f"{prefix}.idle_current_threshold",
            cfg.idle_current_threshold,
            d.idle_current_threshold,
            0.0,
            100.0,
        ),
        normal_current_min=normal_min,
        normal_current_max=normal_max,
        high_current_threshold=_soft_float(
            f"{prefix}.high_current_threshold",
            cfg.high_current_threshold,
            d.high_current_threshold,
            0.0,
            100.0,
        ),
        max_valid_current=_soft_float(
            f"{prefix}.max_valid_current", cfg.max_valid_current, d.max_valid_current, 0.1, 100.0
        ),
        dry_keywords=_soft(
            f"{prefix}.dry_keywords",
            d.dry_keywords,
            lambda: _require_keywords(f"{prefix}.dry_keywords", cfg.dry_keywords),
        ),
        rapid_cycle_keywords=_soft(
            f"{prefix}.rapid_cycle_keywords",
            d.rapid_cycle_keywords,
            lambda: _require_keywords(
                f"{prefix}.rapid_cycle_keywords", cfg.rapid_cycle_keywords
            ),
        ),
        case_sensitive=_soft_bool(
            f"{prefix}.case_sensitive", cfg.case_sensitive, d.case_sensitive
        ),
    )


def sanitize_debug(cfg: DebugSettings) -> DebugSettings:
    d = DebugSettings()
    return DebugSettings(
        debug_mode=_soft_bool("debug.debug_mode", cfg.debug_mode, d.debug_mode),
        image_save_enabled=_soft_bool(
            "debug.image_save_enabled", cfg.image_save_enabled, d.image_save_enabled
        ),
        image_retention_days=_soft_int(
            "debug.image_retention_days", cfg.image_retention_days, d.image_retention_days, 1, 365
        ),
        log_level=_soft(
            "debug.log_level",
            d.log_level,
            lambda: _require_log_level("debug.log_level", cfg.log_level),
        ),
        verbose_ocr_logging=_soft_bool(
            "debug.verbose_ocr_logging", cfg.verbose_ocr_logging, d.verbose_ocr_logging
        ),
    )


def sanitize_monitoring(cfg: MonitoringSettings) -> MonitoringSettings:
    d = MonitoringSettings()
    return MonitoringSettings(
        interval_seconds=_soft_int(
            "monitoring.interval_seconds", cfg.interval_seconds, d.interval_seconds, 5, 3600
        ),
        telemetry_interval_minutes=_soft_int(
            "monitoring.telemetry_interval_minutes",
            cfg.telemetry_interval_minutes,
            d.telemetry_interval_minutes,
            1,
            1440,
        ),
        sync_interval_hours=_soft_int(
            "monitoring.sync_interval_hours", cfg.sync_interval_hours, d.sync_interval_hours, 1, 168
        ),
        data_retention_days=_soft_int(
            "monitoring.data_retention_days",
            cfg.data_retention_days,
            d.data_retention_days,
            1,
            3650,
        ),
    )


def sanitize_power(cfg: PowerSettings) -> PowerSettings:
    d = PowerSettings()
    return PowerSettings(
        enable_auto_actions=_soft_bool(
            "power.enable_auto_actions", cfg.enable_auto_actions, d.enable_auto_actions
        ),
        power_cycle_delay_seconds=_soft_int(
            "power.power_cycle_delay_seconds",
            cfg.power_cycle_delay_seconds,
            d.power_cycle_delay_seconds,
            1,
            60,
        ),
        minimum_cycle_interval_minutes=_soft_int(
            "power.minimum_cycle_interval_minutes",
            cfg.minimum_cycle_interval_minutes,
            d.minimum_cycle_interval_minutes,
            1,
            1440,
        ),
        max_daily_cycles=_soft_int(
            "power.max_daily_cycles", cfg.max_daily_cycles, d.max_daily_cycles, 1, 100
        ),
        enable_dry_condition_cycling=_soft_bool(
            "power.enable_dry_condition_cycling",
            cfg.enable_dry_condition_cycling,
            d.enable_dry_condition_cycling,
        ),
    )


def sanitize_alerts(cfg: AlertSettings) -> AlertSettings:
    d = AlertSettings()
    return AlertSettings(
        dry_count_threshold=_soft_int(
            "alerts.dry_count_threshold", cfg.dry_count_threshold, d.dry_count_threshold, 1, 100
        ),
        rcyc_count_threshold=_soft_int(
            "alerts.rcyc_count_threshold", cfg.rcyc_count_threshold, d.rcyc_count_threshold, 1, 100
        ),
        cooldown_minutes=_soft_int(
            "alerts.cooldown_minutes", cfg.cooldown_minutes, d.cooldown_minutes, 0, 1440
        ),
    )


# ---- fail-soft wrappers ----


def _soft(name: str, default: T, check: Callable[[], T]) -> T:
    try:
        return check()
    except ConfigError as e:
        L.warning("Config %s rejected (%s); using default %r", name, e, default)
        return default


def _soft_int(name: str, value: Any, default: int, min_v: int, max_v: int) -> int:
    return _soft(name, default, lambda: _require_int(name, value, min_v=min_v, max_v=max_v))


def _soft_float(
    name: str, value: Any, default: float, min_v: float, max_v: float
) -> float:
    return _soft(
        name, default, lambda: _require_float(name, value, min_v=min_v, max_v=max_v)
    )


def _soft_bool(name: str, value: Any, default: bool) -> bool:
    return _soft(name, default, lambda: _require_bool(name, value))


def _soft_str(name: str, value: Any, default: str) -> str:
    return _soft(name, default, lambda: _require_str(name, value))


def _soft_path(name: str, value: Any, default: str) -> str:
    return _soft(name, default, lambda: _require_path(name, value))


# ---- strict checks ----


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        raise ConfigError(f"{name} must be >= {min_v}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number")
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if not math.isfinite(fv):
        raise ConfigError(f"{name} must be a finite number")
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in ("true", "yes", "on", "1"):
            return True
        if raw in ("false", "no", "off", "0"):
            return False
    raise ConfigError(f"{name} must be a boolean")


def _require_str(name: str, value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a string")
    return value


def _require_path(name: str, value: Any) -> str:
    raw = _require_str(name, value).strip()
    if len(raw) > MAX_PATH_LEN:
        raise ConfigError(f"{name} must be at most {MAX_PATH_LEN} characters")
    return raw


def _require_choice(name: str, value: T, choices: Iterable[T]) -> T:
    allowed = tuple(choices)
    if value not in allowed:
        raise ConfigError(f"{name} must be one of {', '.join(map(str, allowed))}")
    return value


def _require_language(name: str, value: Any) -> str:
    raw = _require_str(name, value).strip()
    if not raw or not all(ch.isalnum() or ch in "+_" for ch in raw):
        raise ConfigError(f"{name} must be a tesseract language code like 'eng'")
    return raw


def _require_endpoint(name: str, value: Any) -> str:
    raw = _require_str(name, value).strip().rstrip("/")
    if raw and not raw.startswith(("https://", "http://")):
        raise ConfigError(f"{name} must be an http(s) URL")
    return raw


def _require_log_level(name: str, value: Any) -> str:
    raw = _require_str(name, value).strip().lower()
    raw = _LOG_LEVEL_ALIASES.get(raw, raw)
    return _require_choice(name, raw, LOG_LEVELS)


def _require_keywords(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ConfigError(f"{name} must be a list of strings")
    out: list[str] = []
    for i, item in enumerate(items):
        if not isinstance(item, str):
            raise ConfigError(f"{name}[{i}] must be a string")
        if item.strip():
            out.append(item.strip())
    if not out:
        raise ConfigError(f"{name} must contain at least one keyword")
    return tuple(out)


def _require_str_list(name: str, value: Any) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list of strings")
    for i, item in enumerate(value):
        if not isinstance(item, str):
            raise ConfigError(f"{name}[{i}] must be a string")
    return value


__all__ = [
    "validate_config",
    "sanitize_snapshot",
    "sanitize_capture",
    "sanitize_ocr",
    "sanitize_thresholds",
    "sanitize_debug",
    "sanitize_monitoring",
    "sanitize_power",
    "sanitize_alerts",
]
