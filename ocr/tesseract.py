import logging
import shlex

import pytesseract

from core.config import OcrSettings, TesseractSettings
from core.contracts import BoundingBox, OcrResult, TextRegion

from .base import Capability, OcrProvider, register_provider, split_word_characters
from .preprocess import decode_image

L = logging.getLogger("pump_runtime.ocr.tesseract")


def build_tesseract_config(cfg: TesseractSettings) -> str:
    parts = [f"--oem {int(cfg.engine_mode)}", f"--psm {int(cfg.page_segmentation_mode)}"]
    if cfg.data_path:
        parts.append(f"--tessdata-dir {shlex.quote(cfg.data_path)}")
    if cfg.char_whitelist:
        parts.append("-c " + shlex.quote(f"tessedit_char_whitelist={cfg.char_whitelist}"))
    return " ".join(parts)


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0


def parse_image_data(data: dict) -> OcrResult:
    """Fold pytesseract ``image_to_data`` output into an OcrResult."""
    lines: dict[tuple, list[str]] = {}
    confs: list[float] = []
    regions: list[TextRegion] = []
    characters = []
    texts = data.get("text") or []
    raw_confs = data.get("conf") or []
    zeros = [0] * len(texts)
    for i, token in enumerate(texts):
        token = str(token or "").strip()
        conf = _to_float(raw_confs[i]) if i < len(raw_confs) else -1.0
        if not token or conf < 0:
            continue
        conf01 = max(0.0, min(1.0, conf / 100.0))
        box = BoundingBox(
            x=int(data["left"][i]),
            y=int(data["top"][i]),
            width=int(data["width"][i]),
            height=int(data["height"][i]),
        )
        key = (
            data.get("block_num", zeros)[i],
            data.get("par_num", zeros)[i],
            data.get("line_num", zeros)[i],
        )
        lines.setdefault(key, []).append(token)
        confs.append(conf01)
        regions.append(TextRegion(text=token, confidence=conf01, box=box))
        characters.extend(split_word_characters(token, conf01, box))
    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    return OcrResult(
        success=True,
        raw_text=text,
        confidence=(sum(confs) / len(confs)) if confs else 0.0,
        characters=characters,
        text_regions=regions,
    )


@register_provider("tesseract", "offline")
class TesseractProvider(OcrProvider):
    name = "tesseract"
    capability = Capability.OFFLINE

    def _initialize(self, settings: OcrSettings) -> bool:
        version = pytesseract.get_tesseract_version()
        L.info(
            "Tesseract %s ready (lang=%s oem=%d psm=%d)",
            version,
            settings.tesseract.language,
            settings.tesseract.engine_mode,
            settings.tesseract.page_segmentation_mode,
        )
        return True

    def _extract(self, image: bytes, settings: OcrSettings) -> OcrResult:
        img = decode_image(image)
        data = pytesseract.image_to_data(
            img,
            lang=settings.tesseract.language,
            config=build_tesseract_config(settings.tesseract),
            output_type=pytesseract.Output.DICT,
            timeout=settings.timeout_seconds,
        )
        return parse_image_data(data)


__all__ = ["TesseractProvider", "build_tesseract_config", "parse_image_data"]
