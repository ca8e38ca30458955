import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Type

from core.config import OcrSettings
from core.contracts import BoundingBox, CharacterResult, OcrResult
from core.registry import register_named, resolve_registered

L = logging.getLogger("pump_runtime.ocr")

SettingsFn = Callable[[], OcrSettings]

DEFAULT_PROVIDER_ORDER = ("tesseract", "cloud", "null")
_MODULE_ALIASES = {"offline": "tesseract", "azure": "cloud"}


class Capability(str, Enum):
    OFFLINE = "offline"
    CLOUD = "cloud"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class OcrProviderDescriptor:
    name: str
    available: bool
    capability: Capability


class OcrProvider(ABC):
    """One text-extraction backend owning its engine/client handle exclusively.

    ``initialize`` and ``extract`` never raise: readiness is a boolean and extraction
    failures come back as ``OcrResult(success=False)``.
    """

    name = ""
    capability = Capability.NONE

    def __init__(self, settings_fn: SettingsFn):
        self._settings_fn = settings_fn
        self._ready = False

    @property
    def is_available(self) -> bool:
        return self._ready

    def describe(self) -> OcrProviderDescriptor:
        return OcrProviderDescriptor(self.name, self._ready, self.capability)

    def initialize(self) -> bool:
        try:
            self._ready = bool(self._initialize(self._settings_fn()))
        except Exception as e:
            L.warning("OCR provider %s failed to initialize: %s", self.name, e)
            self._ready = False
        return self._ready

    def extract(self, image: bytes) -> OcrResult:
        start = time.perf_counter()
        try:
            result = self._extract(image, self._settings_fn())
        except Exception as e:
            L.warning("OCR provider %s extraction failed: %s", self.name, e)
            result = OcrResult(success=False, error=f"{type(e).__name__}: {e}")
        result.provider = self.name
        result.duration_ms = (time.perf_counter() - start) * 1000
        result.processed_at = datetime.now(timezone.utc)
        return result

    def dispose(self):
        self._ready = False

    @abstractmethod
    def _initialize(self, settings: OcrSettings) -> bool: ...

    @abstractmethod
    def _extract(self, image: bytes, settings: OcrSettings) -> OcrResult: ...


def split_word_characters(
    word: str, confidence: float, box: BoundingBox | None
) -> list[CharacterResult]:
    """Spread a word-level box evenly across its characters."""
    chars = [c for c in word if not c.isspace()]
    if not chars:
        return []
    out = []
    for i, ch in enumerate(chars):
        char_box = None
        if box is not None:
            w = box.width / len(chars)
            char_box = BoundingBox(
                x=int(box.x + i * w), y=box.y, width=max(1, int(w)), height=box.height
            )
        out.append(CharacterResult(char=ch, confidence=confidence, box=char_box))
    return out


ProviderFactory = Dict[str, Type[OcrProvider]]
_registry: ProviderFactory = {}


def register_provider(name: str, *aliases: str):
    return register_named(_registry, name, *aliases)


def create_provider(name: str, settings_fn: SettingsFn, **kwargs) -> OcrProvider:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "ocr",
        unknown_label="OCR provider",
        module_aliases=_MODULE_ALIASES,
    )
    return cls(settings_fn, **kwargs)


def create_default_providers(settings_fn: SettingsFn) -> list[OcrProvider]:
    providers: list[OcrProvider] = []
    for name in DEFAULT_PROVIDER_ORDER:
        try:
            providers.append(create_provider(name, settings_fn))
        except ValueError as e:
            # Optional engine libraries may be missing on a given device.
            L.warning("OCR provider %s unavailable: %s", name, e)
    return providers


__all__ = [
    "Capability",
    "OcrProvider",
    "OcrProviderDescriptor",
    "SettingsFn",
    "create_default_providers",
    "create_provider",
    "register_provider",
    "split_word_characters",
]
