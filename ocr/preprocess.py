"""OpenCV preprocessing applied to a capture before text extraction."""

from __future__ import annotations

import logging
from typing import Callable

import cv2
import numpy as np

from core.config import PreprocessingSettings

L = logging.getLogger("pump_runtime.ocr.preprocess")

LogFn = Callable[..., None]


def decode_image(data: bytes) -> np.ndarray:
    arr = np.frombuffer(data, dtype=np.uint8)
    if arr.size == 0:
        raise ValueError("empty image buffer")
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("opencv_imdecode_failed")
    return img


def encode_png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ValueError("opencv_imencode_failed")
    return buf.tobytes()


def _to_gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return img
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


def apply_steps(
    img: np.ndarray, cfg: PreprocessingSettings, log_fn: LogFn | None = None
) -> tuple[np.ndarray, list[str]]:
    log = log_fn or L.debug
    steps: list[str] = []

    def _done(step: str):
        steps.append(step)
        log("Preprocess step %d: %s -> %s", len(steps), step, "x".join(map(str, img.shape)))

    if cfg.grayscale:
        img = _to_gray(img)
        _done("grayscale")
    if cfg.brightness_enabled and cfg.brightness_adjustment:
        img = cv2.convertScaleAbs(img, alpha=1.0, beta=float(cfg.brightness_adjustment))
        _done(f"brightness{cfg.brightness_adjustment:+d}")
    if cfg.contrast_enhancement and cfg.contrast_factor != 1.0:
        # Contrast pivots on mid-grey (128).
        beta = 128.0 * (1.0 - cfg.contrast_factor)
        img = cv2.convertScaleAbs(img, alpha=float(cfg.contrast_factor), beta=beta)
        _done(f"contrast x{cfg.contrast_factor:g}")
    if cfg.noise_reduction:
        img = cv2.medianBlur(img, 3)
        _done("noise_reduction")
    if cfg.edge_enhancement:
        blurred = cv2.GaussianBlur(img, (0, 0), 3)
        img = cv2.addWeighted(img, 1.5, blurred, -0.5, 0)
        _done("edge_enhancement")
    if cfg.scaling and cfg.scale_factor != 1.0:
        img = cv2.resize(
            img,
            None,
            fx=cfg.scale_factor,
            fy=cfg.scale_factor,
            interpolation=cv2.INTER_CUBIC,
        )
        _done(f"scale x{cfg.scale_factor:g}")
    if cfg.binary_thresholding:
        _, img = cv2.threshold(
            _to_gray(img), int(cfg.binary_threshold), 255, cv2.THRESH_BINARY
        )
        _done(f"threshold {cfg.binary_threshold}")
    return img, steps


def preprocess_image(
    data: bytes, cfg: PreprocessingSettings, log_fn: LogFn | None = None
) -> tuple[bytes, list[str]]:
    """Return (image bytes for the provider, applied step names).

    Any failure falls back to the untouched capture with no steps recorded.
    """
    try:
        img, steps = apply_steps(decode_image(data), cfg, log_fn)
        if not steps:
            return data, []
        return encode_png(img), steps
    except (cv2.error, ValueError) as e:
        L.warning("Preprocessing failed, using original image: %s", e)
        return data, []


__all__ = ["apply_steps", "decode_image", "encode_png", "preprocess_image"]
