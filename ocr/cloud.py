import logging
from typing import Any

import requests

from core.config import OcrSettings
from core.contracts import BoundingBox, OcrResult, TextRegion

from .base import Capability, OcrProvider, SettingsFn, register_provider, split_word_characters

L = logging.getLogger("pump_runtime.ocr.cloud")

ANALYZE_PATH = "/computervision/imageanalysis:analyze"


def _polygon_box(polygon: list[dict[str, Any]] | None) -> BoundingBox | None:
    if not polygon:
        return None
    xs = [int(p.get("x", 0)) for p in polygon]
    ys = [int(p.get("y", 0)) for p in polygon]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


def parse_read_result(payload: dict[str, Any]) -> OcrResult:
    """Image Analysis 4.0 ``readResult`` -> OcrResult."""
    read = payload.get("readResult") or {}
    lines: list[str] = []
    confs: list[float] = []
    regions: list[TextRegion] = []
    characters = []
    for block in read.get("blocks") or []:
        for line in block.get("lines") or []:
            text = str(line.get("text") or "").strip()
            if not text:
                continue
            lines.append(text)
            line_confs = []
            for word in line.get("words") or []:
                conf = float(word.get("confidence", 0.0))
                line_confs.append(conf)
                characters.extend(
                    split_word_characters(
                        str(word.get("text") or ""),
                        conf,
                        _polygon_box(word.get("boundingPolygon")),
                    )
                )
            confs.extend(line_confs)
            regions.append(
                TextRegion(
                    text=text,
                    confidence=(sum(line_confs) / len(line_confs)) if line_confs else 0.0,
                    box=_polygon_box(line.get("boundingPolygon")),
                )
            )
    return OcrResult(
        success=True,
        raw_text="\n".join(lines),
        confidence=(sum(confs) / len(confs)) if confs else 0.0,
        characters=characters,
        text_regions=regions,
    )


@register_provider("cloud", "azure")
class CloudVisionProvider(OcrProvider):
    """Azure AI Vision Image Analysis ``read`` feature over REST."""

    name = "cloud"
    capability = Capability.CLOUD

    def __init__(self, settings_fn: SettingsFn, session: requests.Session | None = None):
        super().__init__(settings_fn)
        self._session = session

    def _initialize(self, settings: OcrSettings) -> bool:
        cloud = settings.cloud
        if not cloud.endpoint or not cloud.api_key:
            L.info("Cloud OCR not configured (endpoint/api_key missing)")
            return False
        if self._session is None:
            self._session = requests.Session()
        L.info("Cloud OCR ready: %s (region=%s)", cloud.endpoint, cloud.region)
        return True

    def _extract(self, image: bytes, settings: OcrSettings) -> OcrResult:
        cloud = settings.cloud
        if self._session is None:
            return OcrResult(success=False, error="cloud OCR session not initialized")
        resp = self._session.post(
            cloud.endpoint.rstrip("/") + ANALYZE_PATH,
            params={"features": "read", "api-version": cloud.api_version},
            headers={
                "Ocp-Apim-Subscription-Key": cloud.api_key,
                "Content-Type": "application/octet-stream",
            },
            data=image,
            timeout=settings.timeout_seconds,
        )
        resp.raise_for_status()
        return parse_read_result(resp.json())

    def dispose(self):
        super().dispose()
        if self._session is not None:
            self._session.close()
            self._session = None


__all__ = ["CloudVisionProvider", "parse_read_result"]
