from .base import (
    Capability,
    OcrProvider,
    OcrProviderDescriptor,
    create_default_providers,
    create_provider,
    register_provider,
)
from .null import NullOcrProvider
from .pipeline import OcrPipeline
from .preprocess import apply_steps, preprocess_image

__all__ = [
    "Capability",
    "NullOcrProvider",
    "OcrPipeline",
    "OcrProvider",
    "OcrProviderDescriptor",
    "apply_steps",
    "create_default_providers",
    "create_provider",
    "preprocess_image",
    "register_provider",
]
