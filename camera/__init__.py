from .args import build_still_args, parse_still_args, resolve_exposure_mode
from .base import (
    CameraConfig,
    CaptureResult,
    build_camera_config,
    BaseCamera,
    register_camera,
    create_camera,
    create_camera_from_loaded_config,
)

__all__ = [
    "CameraConfig",
    "CaptureResult",
    "build_camera_config",
    "build_still_args",
    "parse_still_args",
    "resolve_exposure_mode",
    "BaseCamera",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
]
