# -- coding: utf-8 --

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from camera.args import build_still_args
from camera.base import BaseCamera, CameraConfig, register_camera
from core.config import ConfigSnapshot, ConfigurationHub
from core.contracts import CapturedImage, CaptureResult

L = logging.getLogger("pump_runtime.camera.still")

_POLL_S = 0.1


def _remove_quietly(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        L.warning("Could not remove temp capture %s: %s", path, e)


def _read_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError:
        return b""


@register_camera("still")
class StillCamera(BaseCamera):
    """Shells out to libcamera-still, falling back to rpicam-still with the same args."""

    name = "still"

    def __init__(self, cfg: CameraConfig, hub: ConfigurationHub):
        super().__init__(cfg, hub)
        self._temp_dir = cfg.temp_dir or tempfile.gettempdir()

    def _capture(self, snapshot: ConfigSnapshot, cancel_evt) -> CaptureResult:
        settings = snapshot.camera
        path = os.path.join(self._temp_dir, f"pump_capture_{uuid.uuid4().hex}.jpg")
        args = build_still_args(settings, path)
        attempts: list[str] = []
        last_error = "no capture backends configured"
        start = time.perf_counter()
        try:
            for backend in self.cfg.backends:
                if cancel_evt is not None and cancel_evt.is_set():
                    return CaptureResult(success=False, error="cancelled", attempts=attempts)
                _remove_quietly(path)
                attempts.append(backend)
                t0 = time.perf_counter()
                error = self._run_backend(
                    backend, args, path, settings.timeout_ms, cancel_evt
                )
                if error == "cancelled":
                    return CaptureResult(success=False, error=error, attempts=attempts)
                if error is None:
                    data = _read_bytes(path)
                    if data:
                        grab_ms = (time.perf_counter() - t0) * 1000
                        L.debug(
                            "Captured %d bytes via %s in %.1fms",
                            len(data),
                            backend,
                            grab_ms,
                        )
                        return CaptureResult(
                            success=True,
                            image=CapturedImage(
                                data=data,
                                duration_ms=grab_ms,
                                backend=backend,
                                captured_at=datetime.now(timezone.utc),
                            ),
                            attempts=attempts,
                            timings={
                                "grab_ms": grab_ms,
                                "total_ms": (time.perf_counter() - start) * 1000,
                            },
                        )
                    error = "output file is empty"
                last_error = f"{backend}: {error}"
                L.warning("Capture backend failed: %s", last_error)
        finally:
            _remove_quietly(path)
        return CaptureResult(
            success=False,
            error=f"all capture backends failed ({last_error})",
            attempts=attempts,
            timings={"total_ms": (time.perf_counter() - start) * 1000},
        )

    def _run_backend(
        self,
        backend: str,
        args: list[str],
        output_path: str,
        timeout_ms: int,
        cancel_evt: threading.Event | None,
    ) -> str | None:
        """Run one backend; returns None on success or an error description."""
        exe = shutil.which(backend)
        if exe is None:
            return "command not found on PATH"
        try:
            proc = subprocess.Popen(
                [exe, *args], stdout=subprocess.PIPE, stderr=subprocess.PIPE
            )
        except OSError as e:
            return f"failed to start: {e}"
        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            try:
                _, stderr = proc.communicate(timeout=_POLL_S)
                break
            except subprocess.TimeoutExpired:
                if cancel_evt is not None and cancel_evt.is_set():
                    proc.kill()
                    proc.communicate()
                    return "cancelled"
                if time.monotonic() >= deadline:
                    proc.kill()
                    proc.communicate()
                    return f"timed out after {timeout_ms} ms"
        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()
            return f"exit code {proc.returncode}: {detail[:300]}"
        if not os.path.exists(output_path):
            return "output file missing"
        return None

    @contextmanager
    def session(self):
        found = [b for b in self.cfg.backends if shutil.which(b)]
        if found:
            L.info("Still capture backends available: %s", ", ".join(found))
        else:
            L.warning(
                "No still capture backend on PATH (tried: %s); captures will fail",
                ", ".join(self.cfg.backends),
            )
        yield self


__all__ = ["StillCamera"]
