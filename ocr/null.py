from core.config import OcrSettings
from core.contracts import OcrResult

from .base import Capability, OcrProvider, register_provider


@register_provider("null")
class NullOcrProvider(OcrProvider):
    """Always ready; yields an empty, zero-confidence result."""

    name = "null"
    capability = Capability.NONE

    def _initialize(self, settings: OcrSettings) -> bool:
        return True

    def _extract(self, image: bytes, settings: OcrSettings) -> OcrResult:
        return OcrResult(success=True, raw_text="", confidence=0.0)


__all__ = ["NullOcrProvider"]
