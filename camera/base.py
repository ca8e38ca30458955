# -- coding: utf-8 --

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Type

from camera.save_utils import (
    DEFAULT_DEBUG_DIR,
    LARGE_IMAGE_BYTES,
    inspect_image_bytes,
    save_debug_copy,
)
from core.config import ConfigSnapshot, ConfigurationHub
from core.contracts import CapturedImage, CaptureResult
from core.registry import register_named, resolve_registered

L = logging.getLogger("pump_runtime.camera")

CameraFactory = Dict[str, Type["BaseCamera"]]
_registry: CameraFactory = {}


@dataclass
class CameraConfig:
    backends: list[str] = field(
        default_factory=lambda: ["libcamera-still", "rpicam-still"]
    )
    image_dir: str = ""
    temp_dir: str = ""


def build_camera_config(runtime_cfg) -> CameraConfig:
    return CameraConfig(
        backends=[str(b) for b in runtime_cfg.capture_backends],
        image_dir=str(runtime_cfg.image_dir or ""),
    )


class BaseCamera(ABC):
    """Produces one encoded still per call, reading settings from the hub each time."""

    name = "camera"

    def __init__(self, cfg: CameraConfig, hub: ConfigurationHub):
        self.cfg = cfg
        self.hub = hub
        self.lock = threading.Lock()

    @abstractmethod
    def _capture(
        self, snapshot: ConfigSnapshot, cancel_evt: threading.Event | None
    ) -> CaptureResult:
        """Backend-specific capture; must not raise."""

    @contextmanager
    @abstractmethod
    def session(self):
        """Manage camera lifecycle."""
        yield

    def capture_once(self, cancel_evt: threading.Event | None = None) -> CaptureResult:
        snapshot = self.hub.current()
        with self.lock:
            result = self._capture(snapshot, cancel_evt)
        if result.success and result.image is not None:
            self._check_quality(result.image)
            self._maybe_save_debug(result.image, snapshot)
        return result

    def capture_test_image(
        self, cancel_evt: threading.Event | None = None
    ) -> str | None:
        """Capture and store ``test_exposure_<ts>.jpg`` for exposure tuning."""
        result = self.capture_once(cancel_evt)
        if not result.success or result.image is None:
            L.error("Test capture failed: %s", result.error)
            return None
        debug_dir = self.hub.current().camera.debug_image_path or DEFAULT_DEBUG_DIR
        path = save_debug_copy(
            result.image.data,
            debug_dir,
            prefix="test_exposure",
            ts_utc=result.image.captured_at,
        )
        L.info("Test image saved: %s (%d bytes)", path, result.image.size)
        return path

    def _check_quality(self, image: CapturedImage):
        for msg in inspect_image_bytes(image.data):
            L.warning("Capture quality (%s): %s", image.backend, msg)
        if image.size > LARGE_IMAGE_BYTES:
            L.info("Capture is large: %d bytes (%s)", image.size, image.backend)

    def _maybe_save_debug(self, image: CapturedImage, snapshot: ConfigSnapshot):
        if not snapshot.debug.image_save_enabled:
            return
        debug_dir = snapshot.camera.debug_image_path
        if not debug_dir:
            L.warning(
                "Debug image saving enabled but camera.debug_image_path is not set"
            )
            return
        try:
            path = save_debug_copy(image.data, debug_dir, ts_utc=image.captured_at)
        except OSError as e:
            L.warning("Debug image save failed (%s): %s", debug_dir, e)
            return
        L.debug("Debug image saved: %s", path)


def register_camera(name: str):
    return register_named(_registry, name)


def create_camera(name: str, cfg: CameraConfig, hub: ConfigurationHub) -> BaseCamera:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "camera",
        unknown_label="camera type",
    )
    return cls(cfg, hub)


def create_camera_from_loaded_config(cfg, hub: ConfigurationHub) -> BaseCamera:
    return create_camera(cfg.runtime.camera_type, build_camera_config(cfg.runtime), hub)


__all__ = [
    "CameraConfig",
    "CaptureResult",
    "build_camera_config",
    "BaseCamera",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
]
