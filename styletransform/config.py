# styletransform/config.py
from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_TIERS = "pollinations:kontext:prodia:replicate"


class Settings(BaseSettings):
    # ---- core ----
    STYLETRANSFORM_HOST: str = "127.0.0.1"
    STYLETRANSFORM_PORT: int = 8000
    STYLETRANSFORM_API_VERSION: str = "1.0"
    STYLETRANSFORM_STORAGE_DIR: str = str((ROOT / ".styletransform").resolve())

    # ---- cors ----
    CORS_ALLOW_ORIGINS: str = ""  # comma-separated list

    # ---- persistence ----
    DB_URL: str = ""  # if empty, sqlite file next to the project

    # ---- tier order (colon separated, highest priority first) ----
    GENERATION_TIERS: str = DEFAULT_TIERS

    # ---- pollinations (free, direct URL) ----
    POLLINATIONS_ENABLED: bool = True
    POLLINATIONS_BASE_URL: str = "https://image.pollinations.ai/prompt"
    POLLINATIONS_API_TOKEN: str = ""
    POLLINATIONS_MODEL: str = "flux"
    POLLINATIONS_TIMEOUT_SECS: float = 30.0
    POLLINATIONS_MAX_URL_LENGTH: int = 2000
    POLLINATIONS_INLINE_IMAGES: bool = False

    # ---- kontext (pollinations image-to-image, token required) ----
    KONTEXT_ENABLED: bool = True
    KONTEXT_BASE_URL: str = "https://image.pollinations.ai/prompt"
    KONTEXT_API_TOKEN: str = ""
    KONTEXT_MODEL: str = "kontext"
    KONTEXT_TIMEOUT_SECS: float = 60.0

    # ---- prodia (free tier, polling) ----
    PRODIA_ENABLED: bool = True
    PRODIA_BASE_URL: str = "https://api.prodia.com/v1"
    PRODIA_API_TOKEN: str = ""
    PRODIA_MODEL: str = "sd_xl_base_1.0.safetensors [be9edd61]"
    PRODIA_TIMEOUT_SECS: float = 30.0
    PRODIA_POLL_INTERVAL_SECS: float = 10.0
    PRODIA_POLL_BUDGET_SECS: float = 300.0

    # ---- replicate (paid, polling) ----
    REPLICATE_ENABLED: bool = True
    REPLICATE_BASE_URL: str = "https://api.replicate.com/v1"
    REPLICATE_API_TOKEN: str = ""
    REPLICATE_MODEL: str = (
        "stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
    )
    REPLICATE_TIMEOUT_SECS: float = 30.0
    REPLICATE_POLL_INTERVAL_SECS: float = 3.0
    REPLICATE_POLL_BUDGET_SECS: float = 180.0

    # ---- retry ----
    RETRY_MAX_ATTEMPTS: int = Field(3, ge=1, le=10)
    RETRY_BASE_DELAY_SECS: float = Field(3.0, ge=0)
    RETRY_BACKOFF: str = Field("linear", pattern="^(linear|exponential)$")

    # ---- pricing (tier name -> cost per image) ----
    TIER_PRICES: Dict[str, Decimal] = Field(
        default_factory=lambda: {"replicate": Decimal("0.0025")}
    )

    # ---- mock fallback ----
    MOCK_PLACEHOLDER_BASE_URL: str = "https://placehold.co"

    # ---- cloudinary (input staging + optional result re-hosting) ----
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_UPLOAD_RESULTS: bool = True
    CLOUDINARY_INPUT_FOLDER: str = "styletransform/inputs"
    CLOUDINARY_RESULT_FOLDER: str = "styletransform"

    # ---- identity ----
    IDENTITY_VERIFY_URL: str = ""
    IDENTITY_TIMEOUT_SECS: float = 10.0
    AUTH_ALLOW_DEV_TOKENS: bool = True

    # ---- usage limits ----
    FREE_GENERATION_LIMIT: int = 5
    PREMIUM_GENERATION_LIMIT: int = 100

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=ROOT / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("GENERATION_TIERS")
    @classmethod
    def _tiers_not_blank(cls, v: str) -> str:
        return (v or "").strip() or DEFAULT_TIERS

    # ---- derived helpers ----
    @property
    def cors_origins(self) -> list[str]:
        raw = (self.CORS_ALLOW_ORIGINS or "").strip()
        return [o.strip() for o in raw.split(",") if o.strip()]

    @property
    def tier_order(self) -> List[str]:
        """Tier names in priority order, lower-cased and de-duplicated."""
        seen = set()
        chain: List[str] = []
        for p in self.GENERATION_TIERS.split(":"):
            p = p.strip().lower()
            if p and p not in seen:
                chain.append(p)
                seen.add(p)
        return chain

    def resolved_db_url(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return f"sqlite:///{(ROOT / 'styletransform.db').resolve()}"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.CLOUDINARY_CLOUD_NAME
            and self.CLOUDINARY_API_KEY
            and self.CLOUDINARY_API_SECRET
        )

    # ---- storage helpers ----
    @property
    def storage_dir(self) -> Path:
        return Path(self.STYLETRANSFORM_STORAGE_DIR).resolve()

    @property
    def events_dir(self) -> Path:
        return self.storage_dir / "events"

    def ensure_storage_dirs(self) -> None:
        """Create required storage subdirectories if missing."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.events_dir.mkdir(parents=True, exist_ok=True)


# singleton
settings = Settings()
