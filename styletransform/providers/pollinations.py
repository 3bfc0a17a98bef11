# styletransform/providers/pollinations.py
from __future__ import annotations

import base64
import io
import logging
import random
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote, urlencode

import requests
from PIL import Image, UnidentifiedImageError

from styletransform.runtime.models import GenerationRequest
from styletransform.runtime.styles import enhance_prompt

from .image_base import (
    ErrorKind,
    ImageProvider,
    ProviderConfig,
    RawProviderResult,
    prompt_hash,
    raise_for_provider,
    registry,
    translate_request_error,
)

log = logging.getLogger(__name__)

USER_AGENT = "StyleTransform/1.0"
DEFAULT_MAX_URL_LENGTH = 2000


class ImageStager(Protocol):
    """Collaborator that makes an image reachable at a stable http(s) URL."""

    def stage(self, image_ref: str, *, public_id: Optional[str] = None) -> str: ...


def fit_prompt(prompt: str, compose, max_length: int) -> Optional[str]:
    """
    Return the longest word-boundary prefix of `prompt` whose composed URL
    fits in `max_length`, or None when not even one word fits.
    """
    words = prompt.split()
    lo, hi = 0, len(words)
    # invariant: words[:lo] fits (or lo == 0), words[:hi+1] does not
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if len(compose(" ".join(words[:mid]))) <= max_length:
            lo = mid
        else:
            hi = mid - 1
    if lo == 0:
        return None
    return " ".join(words[:lo])


@registry.register
class PollinationsProvider(ImageProvider):
    """
    Free text-to-image service addressed entirely through the URL:
      GET {base_url}/{prompt}?width=&height=&model=&enhance=&nologo=&seed=

    One HTTP call; "success" only means the call did not error. With
    `extra["inline"]` the body is decoded with Pillow and returned as a
    data: URI instead of the direct URL.
    """

    name = "pollinations"
    supports_image_to_image = False
    default_model = "flux"

    @property
    def max_url_length(self) -> int:
        return int(self.config.extra.get("max_url_length", DEFAULT_MAX_URL_LENGTH))

    @property
    def inline(self) -> bool:
        return bool(self.config.extra.get("inline", False))

    def generate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> RawProviderResult:
        prompt = enhance_prompt(request.prompt, request.style_preset)
        seed = request.settings.seed
        if seed is None:
            seed = random.randint(0, 999_999)
        input_url = self._input_url_for(request)
        params = self._params(request, seed, input_url)

        url, sent_prompt = self._compose_within_limit(prompt, params)
        log.info(
            "provider=%s event=image.request url_len=%s prompt_hash=%s",
            self.name,
            len(url),
            prompt_hash(sent_prompt),
        )

        payload: Dict[str, Any] = {
            "image_url": url,
            "prompt": sent_prompt,
            "model": params.get("model"),
            "seed": seed,
        }
        if input_url:
            payload["input_image"] = input_url
        try:
            resp = self._session.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=self.config.timeout,
                stream=not self.inline,
            )
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e
        try:
            raise_for_provider(resp, self.name)
            if self.inline:
                payload["data_uri"] = self._to_data_uri(resp.content)
        finally:
            resp.close()

        return RawProviderResult(
            provider=self.name,
            payload=payload,
            meta={"truncated": sent_prompt != prompt, "size": request.settings.size},
        )

    # ---- helpers ----

    def _input_url_for(self, request: GenerationRequest) -> Optional[str]:
        return None

    def _params(
        self, request: GenerationRequest, seed: int, input_url: Optional[str] = None
    ) -> Dict[str, str]:
        params = {
            "width": str(request.settings.width),
            "height": str(request.settings.height),
            "model": request.settings.model or self.config.model or self.default_model,
            "enhance": "true",
            "nologo": "true",
            "seed": str(seed),
        }
        if self.config.api_token:
            params["token"] = self.config.api_token
        return params

    def _compose(self, prompt: str, params: Dict[str, str]) -> str:
        return f"{self.config.base_url}/{quote(prompt, safe='')}?{urlencode(params)}"

    def _compose_within_limit(self, prompt: str, params: Dict[str, str]) -> tuple[str, str]:
        url = self._compose(prompt, params)
        if len(url) <= self.max_url_length:
            return url, prompt

        # single re-attempt: cut the prompt at a word boundary
        shorter = fit_prompt(prompt, lambda p: self._compose(p, params), self.max_url_length)
        if shorter is None:
            raise self._error(
                ErrorKind.UNSUPPORTED,
                f"request URL exceeds {self.max_url_length} characters even with a one-word prompt",
            )
        log.warning(
            "provider=%s event=prompt.truncated from_words=%s to_words=%s",
            self.name,
            len(prompt.split()),
            len(shorter.split()),
        )
        return self._compose(shorter, params), shorter

    def _to_data_uri(self, content: bytes) -> str:
        try:
            with Image.open(io.BytesIO(content)) as img:
                fmt = img.format or "PNG"
        except (UnidentifiedImageError, OSError) as e:
            raise self._error(ErrorKind.UPSTREAM_FAILED, f"response is not an image: {e}") from e
        mime = Image.MIME.get(fmt.upper(), "image/png")
        return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"

    def available_models(self) -> list[str]:
        return ["flux", "turbo"]


@registry.register
class KontextProvider(PollinationsProvider):
    """
    Image-to-image through the same URL service (`model=kontext`).

    The service fetches the input image itself, so it must sit at a stable
    http(s) URL; anything else is handed to the injected stager first.
    """

    name = "kontext"
    supports_image_to_image = True
    default_model = "kontext"
    max_side = 1024

    def __init__(self, config: ProviderConfig, stager: Optional[ImageStager] = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.stager = stager

    def generate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> RawProviderResult:
        if not self.config.api_token:
            raise self._error(ErrorKind.AUTH, "kontext model requires an API token")
        return super().generate(request, deadline=deadline)

    def _input_url_for(self, request: GenerationRequest) -> Optional[str]:
        if request.is_image_to_image:
            return self._stable_input_url(request)
        return None

    def _params(
        self, request: GenerationRequest, seed: int, input_url: Optional[str] = None
    ) -> Dict[str, str]:
        params = {
            "model": request.settings.model or self.config.model or self.default_model,
            "token": self.config.api_token or "",
        }
        if input_url:
            params["image"] = input_url
        params.update(
            width=str(min(request.settings.width, self.max_side)),
            height=str(min(request.settings.height, self.max_side)),
            seed=str(seed),
        )
        return params

    def _stable_input_url(self, request: GenerationRequest) -> str:
        ref = request.input_image_ref or ""
        if ref.startswith(("http://", "https://")):
            return ref
        if self.stager is None:
            raise self._error(
                ErrorKind.UNSUPPORTED,
                "input image is not at a fetchable URL and no image stager is configured",
            )
        try:
            return self.stager.stage(ref, public_id=f"input_{request.request_id}")
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e
        except RuntimeError as e:
            raise self._error(ErrorKind.UPSTREAM_FAILED, f"could not stage input image: {e}") from e

    def available_models(self) -> list[str]:
        return ["kontext", "gptimage"]
