# styletransform/storage/cloudinary.py
"""
Cloudinary uploads through the official SDK, used for two things:

- staging an input image (data: URI or private URL) at a stable https URL so
  image-to-image providers can fetch it;
- re-hosting a generated image so it gets a CDN URL and a thumbnail. This
  step is optional: any failure keeps the provider's URL.

Credentials travel with each upload call, so the SDK's global config is
never touched and several uploaders can coexist.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

import cloudinary.exceptions
import cloudinary.uploader

from styletransform.config import Settings
from styletransform.runtime.models import GenerationResult
from styletransform.runtime.normalizer import is_absolute_uri, normalizers, thumbnail_for

log = logging.getLogger(__name__)

INPUT_TRANSFORMATION: List[Dict[str, Any]] = [
    {"crop": "limit", "width": 1024, "height": 1024},
    {"quality": "auto"},
]
RESULT_TRANSFORMATION: List[Dict[str, Any]] = [
    {"quality": "auto"},
    {"fetch_format": "auto"},
]


class CloudinaryError(RuntimeError):
    pass


class CloudinaryUploader:
    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        input_folder: str = "styletransform/inputs",
        result_folder: str = "styletransform",
        timeout: float = 60.0,
    ):
        if not (cloud_name and api_key and api_secret):
            raise CloudinaryError("Cloudinary credentials are not configured")
        self.cloud_name = cloud_name
        self.api_key = api_key
        self._api_secret = api_secret
        self.input_folder = input_folder
        self.result_folder = result_folder
        self.timeout = timeout

    @classmethod
    def from_settings(cls, cfg: Settings, **kwargs: Any) -> "CloudinaryUploader":
        return cls(
            cloud_name=cfg.CLOUDINARY_CLOUD_NAME,
            api_key=cfg.CLOUDINARY_API_KEY,
            api_secret=cfg.CLOUDINARY_API_SECRET,
            input_folder=cfg.CLOUDINARY_INPUT_FOLDER,
            result_folder=cfg.CLOUDINARY_RESULT_FOLDER,
            **kwargs,
        )

    def upload(
        self,
        source: str,
        folder: str,
        public_id: Optional[str] = None,
        transformation: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "folder": folder,
            "resource_type": "image",
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self._api_secret,
            "timeout": self.timeout,
        }
        if public_id:
            options["public_id"] = public_id
        if transformation:
            options["transformation"] = transformation

        try:
            payload = cloudinary.uploader.upload(source, **options)
        except cloudinary.exceptions.Error as e:
            raise CloudinaryError(f"upload failed: {e}") from e

        url = normalizers.extractor_for("cloudinary")(payload or {})
        if not is_absolute_uri(url):
            raise CloudinaryError("upload response has no secure_url")
        return payload

    # ImageStager
    def stage(self, image_ref: str, *, public_id: Optional[str] = None) -> str:
        payload = self.upload(
            image_ref,
            folder=self.input_folder,
            public_id=public_id,
            transformation=INPUT_TRANSFORMATION,
        )
        log.info("event=image.staged public_id=%s", payload.get("public_id"))
        return payload["secure_url"]

    def rehost(self, result: GenerationResult, public_id: Optional[str] = None) -> GenerationResult:
        """Best effort: on any upload problem the original result comes back untouched."""
        try:
            payload = self.upload(
                result.image_url,
                folder=self.result_folder,
                public_id=public_id or result.id,
                transformation=RESULT_TRANSFORMATION,
            )
        except CloudinaryError as e:
            log.warning("event=image.rehost.fail id=%s error=%s", result.id, e)
            return result

        secure_url = payload["secure_url"]
        meta = dict(result.meta)
        meta["direct_url"] = result.image_url
        meta["cdn_public_id"] = payload.get("public_id")
        return replace(
            result,
            image_url=secure_url,
            thumbnail_url=thumbnail_for(secure_url),
            meta=meta,
        )
