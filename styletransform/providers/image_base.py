# styletransform/providers/image_base.py
from __future__ import annotations

import hashlib
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

from styletransform.runtime.models import GenerationRequest


def prompt_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


# ---------- Errors ----------

class ErrorKind(str, Enum):
    UNSUPPORTED = "Unsupported"
    AUTH = "AuthError"
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"
    UPSTREAM_FAILED = "UpstreamFailed"
    UNAVAILABLE = "Unavailable"  # network failure or 5xx


class ProviderError(Exception):
    """Typed failure of a single provider tier."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.kind = ErrorKind(kind)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"{self.provider}: " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"


def kind_for_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.UNAVAILABLE
    return ErrorKind.UPSTREAM_FAILED


def raise_for_provider(resp: requests.Response, provider: str) -> None:
    """Like `raise_for_status`, but raises a typed ProviderError."""
    status = resp.status_code
    if status < 400:
        return
    body = (getattr(resp, "text", "") or "")[:200]
    raise ProviderError(
        kind_for_status(status),
        f"HTTP {status}: {body}".strip(),
        provider=provider,
        status_code=status,
    )


def json_body(resp: requests.Response, provider: str) -> Any:
    """Decode a JSON response body; a malformed one raises UpstreamFailed."""
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderError(
            ErrorKind.UPSTREAM_FAILED,
            f"malformed JSON body: {e}",
            provider=provider,
            status_code=resp.status_code,
        ) from e


def translate_request_error(err: requests.RequestException, provider: str) -> ProviderError:
    return ProviderError(ErrorKind.UNAVAILABLE, f"{err.__class__.__name__}: {err}", provider=provider)


# ---------- Config + raw result ----------

@dataclass
class ProviderConfig:
    base_url: str
    api_token: Optional[str] = None
    enabled: bool = True
    timeout: float = 30.0
    poll_interval: float = 3.0
    poll_budget: float = 180.0
    model: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.base_url = (self.base_url or "").rstrip("/")


@dataclass
class RawProviderResult:
    """Provider-native response, tagged with the provider that produced it."""

    provider: str
    payload: Dict[str, Any]
    meta: Dict[str, Any] = field(default_factory=dict)


# ---------- Provider Base & Registry ----------

class ImageProvider(ABC):
    name: str = "base"
    supports_image_to_image: bool = False

    def __init__(
        self,
        config: ProviderConfig,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled)

    @abstractmethod
    def generate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> RawProviderResult:
        """
        Produce one image for `request` or raise ProviderError.

        `deadline` is an absolute value of this provider's clock; polling
        providers stop waiting at whichever comes first, the deadline or
        their own poll budget.
        """
        raise NotImplementedError

    def available_models(self) -> list[str]:
        return [self.config.model] if self.config.model else []

    def _error(self, kind: ErrorKind, message: str, status_code: Optional[int] = None) -> ProviderError:
        return ProviderError(kind, message, provider=self.name, status_code=status_code)


class ProviderRegistry:
    def __init__(self):
        self._providers: dict[str, type[ImageProvider]] = {}

    def register(self, provider_cls: type[ImageProvider]):
        name = getattr(provider_cls, "name", None)
        if not name or name == "base":
            raise ValueError("Provider class must define a 'name' attribute")
        self._providers[name] = provider_cls
        return provider_cls

    def create(self, name: str, config: ProviderConfig, **kwargs: Any) -> ImageProvider:
        if name not in self._providers:
            raise ValueError(
                f"Unknown image provider '{name}'. Registered: {sorted(self._providers.keys())}"
            )
        return self._providers[name](config, **kwargs)

    def get(self, name: str) -> Optional[type[ImageProvider]]:
        return self._providers.get(name)

    def available(self) -> list[str]:
        return sorted(self._providers.keys())


registry = ProviderRegistry()
