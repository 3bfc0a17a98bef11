# styletransform/providers/__init__.py
"""
Image provider adapters.

Importing this package registers every adapter on `registry`, so tier names
from configuration can be resolved with `registry.create(name, config)`.
"""

from __future__ import annotations

from .image_base import (
    ErrorKind,
    ImageProvider,
    ProviderConfig,
    ProviderError,
    RawProviderResult,
    registry,
)
from .mock import MOCK_METHOD, MockPlaceholder
from .pollinations import ImageStager, KontextProvider, PollinationsProvider
from .prodia import ProdiaProvider
from .replicate import ReplicateProvider

__all__ = [
    "ErrorKind",
    "ImageProvider",
    "ImageStager",
    "KontextProvider",
    "MOCK_METHOD",
    "MockPlaceholder",
    "PollinationsProvider",
    "ProdiaProvider",
    "ProviderConfig",
    "ProviderError",
    "RawProviderResult",
    "ReplicateProvider",
    "registry",
]
