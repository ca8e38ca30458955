"""Still-capture command line built from CaptureSettings, and its inverse."""

from __future__ import annotations

from core.config.schema import CaptureSettings

NEUTRAL_BRIGHTNESS = 50
IMMEDIATE_WARMUP_MS = 2000

_INT_OPTIONS = {"width", "height", "quality", "timeout", "rotation", "shutter"}
_FLOAT_OPTIONS = {"brightness", "contrast", "saturation", "gain"}
_FLAG_OPTIONS = {"immediate", "nopreview"}


def resolve_exposure_mode(settings: CaptureSettings) -> str | None:
    """Exposure mode to request, or None to leave the tool on auto."""
    mode = str(settings.exposure_mode or "auto").strip().lower()
    if mode != "auto":
        return mode
    # Manual shutter needs a mode that honours it.
    if settings.shutter_us > 0:
        return "normal"
    if not settings.auto_exposure:
        return "normal"
    return None


def build_still_args(settings: CaptureSettings, output_path: str) -> list[str]:
    args = [
        "--output",
        output_path,
        "--width",
        str(settings.width),
        "--height",
        str(settings.height),
        "--quality",
        str(settings.quality),
        "--timeout",
        str(settings.warmup_ms),
        "--encoding",
        "jpg",
    ]
    if settings.warmup_ms <= IMMEDIATE_WARMUP_MS:
        args.append("--immediate")
    if settings.rotation != 0:
        args += ["--rotation", str(settings.rotation)]
    if settings.brightness != NEUTRAL_BRIGHTNESS:
        args += ["--brightness", f"{settings.brightness / 100:.2f}"]
    if settings.contrast != 0:
        args += ["--contrast", f"{settings.contrast / 100:.2f}"]
    if settings.saturation != 0:
        args += ["--saturation", f"{settings.saturation / 100:.2f}"]
    if settings.gain > 1.0:
        args += ["--gain", f"{settings.gain:.1f}"]
    if settings.shutter_us > 0:
        args += ["--shutter", str(settings.shutter_us)]
    mode = resolve_exposure_mode(settings)
    if mode:
        args += ["--exposure", mode]
    if not settings.auto_white_balance:
        args += ["--awb", "auto"]
    if not settings.enable_preview:
        args.append("--nopreview")
    return args


def parse_still_args(args: list[str]) -> dict[str, object]:
    """Parse an argument list produced by build_still_args back into values."""
    out: dict[str, object] = {}
    i = 0
    while i < len(args):
        token = args[i]
        if not token.startswith("--"):
            raise ValueError(f"unexpected argument {token!r}")
        name = token[2:]
        if name in _FLAG_OPTIONS:
            out[name] = True
            i += 1
            continue
        if i + 1 >= len(args):
            raise ValueError(f"missing value for {token}")
        raw = args[i + 1]
        if name in _INT_OPTIONS:
            out[name] = int(raw)
        elif name in _FLOAT_OPTIONS:
            out[name] = float(raw)
        else:
            out[name] = raw
        i += 2
    return out


__all__ = ["build_still_args", "parse_still_args", "resolve_exposure_mode"]
