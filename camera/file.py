# -- coding: utf-8 --

import logging
import os
import re
import time
from contextlib import contextmanager
from datetime import datetime, timezone

from camera.base import BaseCamera, CameraConfig, register_camera
from core.config import ConfigurationHub
from core.contracts import CapturedImage, CaptureResult

L = logging.getLogger("pump_runtime.camera.file")

_SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".bmp"}


def _natural_key(name: str):
    parts = re.split(r"(\d+)", name)
    key = []
    for part in parts:
        if part.isdigit():
            key.append(int(part))
        else:
            key.append(part.lower())
    return key


def _resolve_image_dir(path: str) -> str:
    base = str(path or "").strip()
    if not base:
        raise RuntimeError("runtime.image_dir is required for the file camera")
    if not os.path.isabs(base):
        base = os.path.abspath(os.path.join(os.getcwd(), base))
    if not os.path.isdir(base):
        raise RuntimeError(f"file camera image_dir not found: {base}")
    return base


def _list_images(root_dir: str) -> list[str]:
    files = []
    for name in os.listdir(root_dir):
        full = os.path.join(root_dir, name)
        if not os.path.isfile(full):
            continue
        if os.path.splitext(name)[1].lower() in _SUPPORTED_EXTS:
            files.append(full)
    return sorted(files, key=lambda p: _natural_key(os.path.basename(p)))


@register_camera("file")
class FileCamera(BaseCamera):
    """Replays stored display photos in natural name order, looping at the end."""

    name = "file"

    def __init__(self, cfg: CameraConfig, hub: ConfigurationHub):
        super().__init__(cfg, hub)
        self._paths: list[str] = []
        self._pos = 0

    def _next_path(self) -> str | None:
        if not self._paths:
            return None
        path = self._paths[self._pos % len(self._paths)]
        self._pos += 1
        return path

    def _capture(self, snapshot, cancel_evt) -> CaptureResult:
        path = self._next_path()
        if not path:
            return CaptureResult(success=False, error="no_images")
        start = time.perf_counter()
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            return CaptureResult(success=False, error=f"read_failed: {e}", attempts=["file"])
        read_ms = (time.perf_counter() - start) * 1000
        if not data:
            return CaptureResult(
                success=False, error=f"empty image file: {path}", attempts=["file"]
            )
        L.info("file capture @ %s", os.path.basename(path))
        return CaptureResult(
            success=True,
            image=CapturedImage(
                data=data,
                duration_ms=read_ms,
                backend="file",
                captured_at=datetime.now(timezone.utc),
            ),
            attempts=["file"],
            timings={"grab_ms": read_ms},
        )

    @contextmanager
    def session(self):
        root_dir = _resolve_image_dir(self.cfg.image_dir)
        self._paths = _list_images(root_dir)
        if not self._paths:
            raise RuntimeError(f"no images found in {root_dir}")
        self._pos = 0
        yield self


__all__ = ["FileCamera"]
