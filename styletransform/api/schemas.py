# styletransform/api/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from typing_extensions import Literal

from styletransform.runtime.models import GenerationMode


# ---------- Core envelopes ----------
class ErrorObject(BaseModel):
    code: str = Field(..., description="Machine-readable code, e.g. VALIDATION_ERROR")
    message: str = Field(..., description="Human-readable message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Optional structured context")


class ErrorEnvelope(BaseModel):
    ok: Literal[False] = False
    error: ErrorObject
    request_id: str


class OkEnvelope(BaseModel):
    ok: Literal[True] = True
    data: Any
    request_id: Optional[str] = None


class ListEnvelope(BaseModel):
    ok: Literal[True] = True
    data: List[Any]
    next_cursor: Optional[str] = Field(default=None, description="Opaque cursor for pagination")
    request_id: Optional[str] = None


# ---------- Generation request ----------
class GenerationSettingsIn(BaseModel):
    width: int = Field(512, ge=64, le=2048)
    height: int = Field(512, ge=64, le=2048)
    model: Optional[str] = None
    seed: Optional[int] = Field(default=None, ge=0)


class GenerateBody(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    mode: GenerationMode = Field(
        default=GenerationMode.TEXT_TO_IMAGE,
        validation_alias=AliasChoices("mode", "type"),
    )
    image_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image_url", "imageUrl", "input_image_ref"),
    )
    style_preset: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("style_preset", "stylePreset"),
    )
    settings: GenerationSettingsIn = Field(default_factory=GenerationSettingsIn)

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt is required")
        return v

    @model_validator(mode="after")
    def _image_required_for_img2img(self):
        if self.mode is GenerationMode.IMAGE_TO_IMAGE and not (self.image_url or "").strip():
            raise ValueError("image_url is required for image-to-image generation")
        return self


# ---------- Generation response ----------
class GenerationOut(BaseModel):
    id: str
    type: str
    prompt: str
    style_preset: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    input_image_url: Optional[str] = None
    image_url: str
    thumbnail_url: Optional[str] = None
    method: str
    cost: Decimal
    status: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class UsageOut(BaseModel):
    user_id: str
    generations_used: int
    total_generations: int
    generation_limit: int
    generations_remaining: int
    is_premium: bool
    last_generation_at: Optional[datetime] = None
