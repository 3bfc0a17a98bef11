# styletransform/runtime/normalizer.py
"""
Map provider-native responses onto one GenerationResult.

Each provider tag has its own extractor registered on `normalizers`; the
orchestrator never guesses field names itself.
"""

from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlsplit

from styletransform.providers.image_base import ErrorKind, ProviderError, RawProviderResult
from styletransform.runtime.models import GenerationResult, GenerationStatus

Extractor = Callable[[Dict[str, Any]], Optional[str]]

DEFAULT_PRICES: Dict[str, Decimal] = {"replicate": Decimal("0.0025")}
THUMBNAIL_TRANSFORM = "w_300,h_300,c_fill"
_FALLBACK_KEYS = ("image_url", "imageUrl", "secure_url", "url")


class NormalizerRegistry:
    def __init__(self):
        self._extractors: dict[str, Extractor] = {}

    def register(self, *providers: str):
        def deco(fn: Extractor) -> Extractor:
            for p in providers:
                self._extractors[p] = fn
            return fn

        return deco

    def extractor_for(self, provider: str) -> Extractor:
        return self._extractors.get(provider, _first_present)


normalizers = NormalizerRegistry()


def _first_present(payload: Dict[str, Any]) -> Optional[str]:
    for key in _FALLBACK_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@normalizers.register("replicate")
def _replicate(payload: Dict[str, Any]) -> Optional[str]:
    output = payload.get("output")
    if isinstance(output, list):
        return output[0] if output else None
    return output if isinstance(output, str) else None


@normalizers.register("prodia")
def _prodia(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("imageUrl")


@normalizers.register("pollinations", "kontext")
def _pollinations(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("data_uri") or payload.get("image_url")


@normalizers.register("cloudinary")
def _cloudinary(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("secure_url")


@normalizers.register("mock")
def _mock(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("image_url")


# ---- helpers ----------------------------------------------------------------

def is_absolute_uri(value: Any) -> bool:
    if not isinstance(value, str) or not value or any(c.isspace() for c in value[:64]):
        return False
    parts = urlsplit(value)
    if not parts.scheme:
        return False
    if parts.scheme == "data":
        return "," in parts.path
    return bool(parts.netloc)


def thumbnail_for(image_url: str) -> str:
    """Cloudinary delivery URLs get a resize transform; anything else passes through."""
    parts = urlsplit(image_url)
    if parts.scheme in ("http", "https") and "/image/upload/" in parts.path:
        return image_url.replace("/upload/", f"/upload/{THUMBNAIL_TRANSFORM}/", 1)
    return image_url


def cost_for(tier_method: str, price_table: Optional[Mapping[str, Decimal]] = None) -> Decimal:
    table = DEFAULT_PRICES if price_table is None else price_table
    return Decimal(str(table.get(tier_method, 0)))


def derived_id(provider: str, image_url: str) -> str:
    digest = hashlib.sha256(f"{provider}|{image_url}".encode("utf-8")).hexdigest()
    return f"gen_{digest[:16]}"


def normalize(
    raw: RawProviderResult,
    tier_method: str,
    result_id: Optional[str] = None,
    price_table: Optional[Mapping[str, Decimal]] = None,
) -> GenerationResult:
    image_url = normalizers.extractor_for(raw.provider)(raw.payload or {})
    if not is_absolute_uri(image_url):
        raise ProviderError(
            ErrorKind.UPSTREAM_FAILED,
            f"response has no usable image URL ({str(image_url)[:80]!r})",
            provider=raw.provider,
        )

    meta: Dict[str, Any] = dict(raw.meta or {})
    meta["provider"] = raw.provider
    job_id = raw.payload.get("id") or raw.payload.get("job")
    if job_id:
        meta["provider_job_id"] = job_id
    for key in ("seed", "model", "prompt", "input_image"):
        if raw.payload.get(key) is not None:
            meta.setdefault(key, raw.payload[key])

    return GenerationResult(
        id=result_id or derived_id(raw.provider, image_url),
        image_url=image_url,
        thumbnail_url=thumbnail_for(image_url),
        method=tier_method,
        cost=cost_for(tier_method, price_table),
        status=GenerationStatus.COMPLETED,
        meta=meta,
    )
