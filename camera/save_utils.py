from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone

L = logging.getLogger("pump_runtime.camera")

JPEG_MAGIC = b"\xff\xd8"
MIN_EXPECTED_BYTES = 5000
LARGE_IMAGE_BYTES = 1_000_000
DEFAULT_DEBUG_DIR = "/tmp/pump-runtime-debug"


def normalize_utc_datetime(value: datetime | None) -> datetime:
    ref = value or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


def format_debug_filename(prefix: str, ts_utc: datetime | None = None) -> str:
    ref = normalize_utc_datetime(ts_utc)
    return f"{prefix}_{ref.strftime('%Y%m%d_%H%M%S')}_{ref.microsecond // 1000:03d}.jpg"


def resolve_debug_dir(path: str) -> str:
    base = str(path or "").strip()
    if not os.path.isabs(base):
        base = os.path.abspath(os.path.join(os.getcwd(), base))
    return base


def save_debug_copy(
    data: bytes,
    debug_dir: str,
    *,
    prefix: str = "pump_reading",
    ts_utc: datetime | None = None,
) -> str:
    target_dir = resolve_debug_dir(debug_dir)
    os.makedirs(target_dir, exist_ok=True)
    name = format_debug_filename(prefix, ts_utc)
    path = os.path.join(target_dir, name)
    stem, ext = os.path.splitext(name)
    n = 1
    while os.path.exists(path):
        path = os.path.join(target_dir, f"{stem}_{n}{ext}")
        n += 1
    with open(path, "wb") as f:
        f.write(data)
    return path


def inspect_image_bytes(data: bytes) -> list[str]:
    """Cheap sanity checks on an encoded capture; returns warnings (never raises)."""
    warnings: list[str] = []
    size = len(data)
    if size < MIN_EXPECTED_BYTES:
        warnings.append(f"image is only {size} bytes; capture may be blank or failed")
    if not data.startswith(JPEG_MAGIC):
        warnings.append("image does not start with JPEG magic bytes FF D8")
    return warnings


def prune_debug_images(
    debug_dir: str, retention_days: int, *, now: float | None = None
) -> int:
    """Remove debug .jpg files older than ``retention_days``; returns the count removed."""
    target_dir = resolve_debug_dir(debug_dir)
    if not os.path.isdir(target_dir):
        return 0
    cutoff = (now if now is not None else time.time()) - retention_days * 86400
    removed = 0
    for name in os.listdir(target_dir):
        if not name.lower().endswith(".jpg"):
            continue
        path = os.path.join(target_dir, name)
        try:
            if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                os.remove(path)
                removed += 1
        except OSError as e:
            L.warning("Debug image cleanup failed for %s: %s", path, e)
    return removed


__all__ = [
    "DEFAULT_DEBUG_DIR",
    "LARGE_IMAGE_BYTES",
    "format_debug_filename",
    "inspect_image_bytes",
    "normalize_utc_datetime",
    "prune_debug_images",
    "resolve_debug_dir",
    "save_debug_copy",
]
