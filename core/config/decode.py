"""Normalize config documents into a ConfigSnapshot.

Two shapes are accepted and may be mixed in one document:

* nested sections (``Camera: {Width: 1280}`` or ``camera: {width: 1280}``)
* the legacy flat key-per-setting form (``cameraWidth: 1280``)

Flat keys are applied first and nested sections second, so a nested value wins when
both set the same field. Keys absent from the document keep the value of ``base``.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Mapping

from .schema import ConfigError, ConfigSnapshot

L = logging.getLogger("pump_runtime.config")

# section path -> attribute chain on ConfigSnapshot
_SECTION_PATHS: dict[str, tuple[str, ...]] = {
    "camera": ("camera",),
    "ocr": ("ocr",),
    "ocr.tesseract": ("ocr", "tesseract"),
    "ocr.cloud": ("ocr", "cloud"),
    "ocr.preprocessing": ("ocr", "preprocessing"),
    "analysis": ("analysis",),
    "debug": ("debug",),
    "monitoring": ("monitoring",),
    "power": ("power",),
    "alerts": ("alerts",),
}

_TOP_SECTIONS = {
    "camera": "camera",
    "ocr": "ocr",
    "analysis": "analysis",
    "pumpanalysis": "analysis",
    "statusdetection": "analysis",
    "debug": "debug",
    "monitoring": "monitoring",
    "power": "power",
    "powermanagement": "power",
    "alerts": "alerts",
    "alert": "alerts",
}

_OCR_SUBSECTIONS = {
    "tesseract": "ocr.tesseract",
    "cloud": "ocr.cloud",
    "azure": "ocr.cloud",
    "preprocessing": "ocr.preprocessing",
    "imagepreprocessing": "ocr.preprocessing",
}

_SUBBLOCK_FIELDS = {"ocr": ("tesseract", "cloud", "preprocessing")}

# Field names whose normalized form differs from the schema attribute.
_FIELD_ALIASES: dict[str, dict[str, str]] = {
    "camera": {
        "warmuptimems": "warmup_ms",
        "shutterspeedmicroseconds": "shutter_us",
        "shutter": "shutter_us",
    },
    "ocr.cloud": {"key": "api_key", "subscriptionkey": "api_key"},
    "ocr.preprocessing": {
        "enablegrayscale": "grayscale",
        "enablecontrastenhancement": "contrast_enhancement",
        "enablebrightnessadjustment": "brightness_enabled",
        "enablenoisereduction": "noise_reduction",
        "enableedgeenhancement": "edge_enhancement",
        "enablescaling": "scaling",
        "enablebinarythresholding": "binary_thresholding",
    },
    "analysis": {"statusmessagecasesensitive": "case_sensitive"},
    "debug": {"enableverboseocrlogging": "verbose_ocr_logging"},
    "monitoring": {"monitoringintervalseconds": "interval_seconds"},
}

_LEGACY_FLAT_KEYS: dict[str, tuple[str, str]] = {
    "cameraWidth": ("camera", "width"),
    "cameraHeight": ("camera", "height"),
    "cameraQuality": ("camera", "quality"),
    "cameraTimeoutMs": ("camera", "timeout_ms"),
    "cameraWarmupTimeMs": ("camera", "warmup_ms"),
    "cameraRotation": ("camera", "rotation"),
    "cameraBrightness": ("camera", "brightness"),
    "cameraContrast": ("camera", "contrast"),
    "cameraSaturation": ("camera", "saturation"),
    "cameraEnablePreview": ("camera", "enable_preview"),
    "cameraDebugImagePath": ("camera", "debug_image_path"),
    "cameraGain": ("camera", "gain"),
    "cameraShutter": ("camera", "shutter_us"),
    "cameraShutterSpeedMicroseconds": ("camera", "shutter_us"),
    "cameraAutoExposure": ("camera", "auto_exposure"),
    "cameraAutoWhiteBalance": ("camera", "auto_white_balance"),
    "cameraExposureMode": ("camera", "exposure_mode"),
    "ocrProvider": ("ocr", "provider"),
    "ocrMode": ("ocr", "provider"),
    "ocrMinimumConfidence": ("ocr", "minimum_confidence"),
    "ocrMaxRetryAttempts": ("ocr", "max_retry_attempts"),
    "ocrTimeoutSeconds": ("ocr", "timeout_seconds"),
    "ocrEnablePreprocessing": ("ocr", "enable_preprocessing"),
    "ocrTesseractLanguage": ("ocr.tesseract", "language"),
    "ocrTesseractEngineMode": ("ocr.tesseract", "engine_mode"),
    "ocrTesseractPageSegmentationMode": ("ocr.tesseract", "page_segmentation_mode"),
    "ocrTesseractCharWhitelist": ("ocr.tesseract", "char_whitelist"),
    "ocrAzureEndpoint": ("ocr.cloud", "endpoint"),
    "ocrAzureKey": ("ocr.cloud", "api_key"),
    "ocrAzureRegion": ("ocr.cloud", "region"),
    "ocrImageScaling": ("ocr.preprocessing", "scaling"),
    "ocrImageScaleFactor": ("ocr.preprocessing", "scale_factor"),
    "ocrImageBinaryThreshold": ("ocr.preprocessing", "binary_threshold"),
    "ocrImageBrightnessAdjustment": ("ocr.preprocessing", "brightness_adjustment"),
    "ocrImageContrastFactor": ("ocr.preprocessing", "contrast_factor"),
    "debugMode": ("debug", "debug_mode"),
    "debugImageSaveEnabled": ("debug", "image_save_enabled"),
    "debugImageRetentionDays": ("debug", "image_retention_days"),
    "enableVerboseOcrLogging": ("debug", "verbose_ocr_logging"),
    "logLevel": ("debug", "log_level"),
    "monitoringIntervalSeconds": ("monitoring", "interval_seconds"),
    "telemetryIntervalMinutes": ("monitoring", "telemetry_interval_minutes"),
    "syncIntervalHours": ("monitoring", "sync_interval_hours"),
    "dataRetentionDays": ("monitoring", "data_retention_days"),
}
_LEGACY_BY_NORM = {_k.replace("_", "").lower(): _v for _k, _v in _LEGACY_FLAT_KEYS.items()}


def decode_document(
    document: Mapping[str, Any] | None,
    base: ConfigSnapshot | None = None,
    *,
    strict: bool = False,
    origin: str = "remote",
) -> ConfigSnapshot:
    """Overlay ``document`` onto ``base``; values are not range-checked here."""
    base = base or ConfigSnapshot()
    if not document:
        return base
    if not isinstance(document, Mapping):
        raise ConfigError(f"{origin} config must be a mapping")

    flat: dict[str, dict[str, Any]] = {}
    nested: dict[str, dict[str, Any]] = {}
    for key, value in document.items():
        key = str(key)
        if key.startswith("$"):
            continue
        norm = _norm(key)
        section = _TOP_SECTIONS.get(norm)
        if section is not None and isinstance(value, Mapping):
            _collect_section(nested, section, value, strict=strict, origin=origin)
            continue
        legacy = _LEGACY_BY_NORM.get(norm)
        if legacy is not None:
            path, attr = legacy
            flat.setdefault(path, {})[attr] = value
            continue
        _unknown(f"{key}", strict=strict, origin=origin)

    merged = flat
    for path, values in nested.items():
        merged.setdefault(path, {}).update(values)
    return _apply(base, merged)


def _collect_section(
    out: dict[str, dict[str, Any]],
    section: str,
    data: Mapping[str, Any],
    *,
    strict: bool,
    origin: str,
) -> None:
    block_cls = type(_resolve(ConfigSnapshot(), _SECTION_PATHS[section]))
    fields = {_norm(f.name): f.name for f in dataclasses.fields(block_cls)}
    aliases = _FIELD_ALIASES.get(section, {})
    for key, value in data.items():
        norm = _norm(str(key))
        if section == "ocr" and norm in _OCR_SUBSECTIONS and isinstance(value, Mapping):
            _collect_section(out, _OCR_SUBSECTIONS[norm], value, strict=strict, origin=origin)
            continue
        attr = aliases.get(norm) or fields.get(norm)
        if attr is None or attr in _SUBBLOCK_FIELDS.get(section, ()):
            _unknown(f"{section}.{key}", strict=strict, origin=origin)
            continue
        out.setdefault(section, {})[attr] = value


def _apply(base: ConfigSnapshot, updates: dict[str, dict[str, Any]]) -> ConfigSnapshot:
    snapshot = base
    # Sub-blocks first so the parent replace() below sees the updated child.
    for path in sorted(updates, key=lambda p: -p.count(".")):
        chain = _SECTION_PATHS[path]
        block = dataclasses.replace(_resolve(snapshot, chain), **updates[path])
        snapshot = _replace_at(snapshot, chain, block)
    return snapshot


def _resolve(obj: Any, chain: tuple[str, ...]) -> Any:
    for attr in chain:
        obj = getattr(obj, attr)
    return obj


def _replace_at(obj: Any, chain: tuple[str, ...], value: Any) -> Any:
    head, *rest = chain
    if not rest:
        return dataclasses.replace(obj, **{head: value})
    return dataclasses.replace(
        obj, **{head: _replace_at(getattr(obj, head), tuple(rest), value)}
    )


def _unknown(key: str, *, strict: bool, origin: str) -> None:
    if strict:
        raise ConfigError(f"Unknown field {key} in {origin} config")
    L.warning("Ignoring unknown %s config key: %s", origin, key)


def _norm(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


__all__ = ["decode_document"]
