from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4


class GenerationMode(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"


class GenerationStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GenerationSettings:
    width: int = 512
    height: int = 512
    model: Optional[str] = None
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError("width and height must be positive")
        self.width = int(self.width)
        self.height = int(self.height)

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class GenerationRequest:
    """
    One generation call, built by the request handler (or CLI) and thrown
    away after the orchestrator returns.

    `caller_id` is an already-verified identity; the core only uses it for
    attribution in logs.
    """

    prompt: str
    mode: GenerationMode = GenerationMode.TEXT_TO_IMAGE
    input_image_ref: Optional[str] = None
    style_preset: Optional[str] = None
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    request_id: str = field(default_factory=lambda: uuid4().hex)
    caller_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.prompt = (self.prompt or "").strip()
        if not self.prompt:
            raise ValueError("prompt is required")
        self.mode = GenerationMode(self.mode)
        if self.input_image_ref is not None:
            self.input_image_ref = self.input_image_ref.strip() or None
        if self.mode is GenerationMode.IMAGE_TO_IMAGE and not self.input_image_ref:
            raise ValueError("image-to-image generation requires an input image")

    @property
    def is_image_to_image(self) -> bool:
        return self.mode is GenerationMode.IMAGE_TO_IMAGE


@dataclass
class ProviderAttempt:
    provider_name: str
    started_at: datetime = field(default_factory=utcnow)
    succeeded: bool = False
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int = 0

    def to_chain_entry(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "ts": self.started_at.isoformat(),
            "kind": self.error_kind,
            "message": self.error_message,
            "retry_count": self.retry_count,
        }


@dataclass
class GenerationResult:
    id: str
    image_url: str
    thumbnail_url: str
    method: str
    cost: Decimal = Decimal("0")
    status: GenerationStatus = GenerationStatus.COMPLETED
    created_at: datetime = field(default_factory=utcnow)
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "image_url": self.image_url,
            "thumbnail_url": self.thumbnail_url,
            "method": self.method,
            "cost": str(self.cost),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "meta": dict(self.meta),
        }
