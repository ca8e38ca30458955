"""Config package facade."""

from .decode import decode_document
from .hub import ConfigurationHub, diff_snapshots
from .loader import load_config, read_document
from .schema import (
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
    RemoteConfig,
    RuntimeConfig,
    TesseractSettings,
)
from .source import ConfigSource, FileConfigSource
from .validate import sanitize_snapshot, validate_config

__all__ = [
    "AlertSettings",
    "AnalyzerThresholds",
    "CaptureSettings",
    "CloudOcrSettings",
    "ConfigError",
    "ConfigSnapshot",
    "ConfigSource",
    "ConfigurationHub",
    "DebugSettings",
    "FileConfigSource",
    "LoadedConfig",
    "MonitoringSettings",
    "OcrSettings",
    "PowerSettings",
    "PreprocessingSettings",
    "RemoteConfig",
    "RuntimeConfig",
    "TesseractSettings",
    "decode_document",
    "diff_snapshots",
    "load_config",
    "read_document",
    "sanitize_snapshot",
    "validate_config",
]
