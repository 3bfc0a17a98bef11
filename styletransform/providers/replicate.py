# styletransform/providers/replicate.py
from __future__ import annotations

import logging
import random
from typing import Any, Dict, Optional

import requests

from styletransform.runtime.models import GenerationRequest
from styletransform.runtime.styles import enhance_prompt

from .image_base import (
    ErrorKind,
    ImageProvider,
    RawProviderResult,
    prompt_hash,
    json_body,
    raise_for_provider,
    registry,
    translate_request_error,
)
from .polling import poll_until

log = logging.getLogger(__name__)

TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}
NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, deformed, bad anatomy, extra limbs, "
    "worst quality, duplicate, mutation"
)


@registry.register
class ReplicateProvider(ImageProvider):
    """
    Paid prediction service (submit, then poll):
      POST {base_url}/predictions           -> {"id", "status", ...}
      GET  {base_url}/predictions/{id}      -> until succeeded|failed|canceled

    Image-to-image is supported by passing the input URL as the model's
    `image` input.
    """

    name = "replicate"
    supports_image_to_image = True

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.config.api_token}",
            "Content-Type": "application/json",
        }

    def _check_token(self) -> None:
        token = self.config.api_token or ""
        if not token or "your_replicate" in token:
            raise self._error(ErrorKind.AUTH, "REPLICATE_API_TOKEN missing or placeholder")

    def generate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> RawProviderResult:
        self._check_token()
        prediction = self._create(request)
        log.info(
            "provider=%s event=prediction.created id=%s status=%s",
            self.name,
            prediction.get("id"),
            prediction.get("status"),
        )

        final = poll_until(
            fetch=lambda: self._fetch(prediction["id"]),
            is_terminal=lambda p: p.get("status") in TERMINAL_STATUSES,
            interval=self.config.poll_interval,
            budget=self.config.poll_budget,
            provider=self.name,
            clock=self._clock,
            sleep=self._sleep,
            deadline=deadline,
            initial=prediction,
        )

        status = final.get("status")
        if status == "failed":
            raise self._error(
                ErrorKind.UPSTREAM_FAILED, f"prediction failed: {final.get('error') or 'unknown error'}"
            )
        if status == "canceled":
            raise self._error(ErrorKind.UPSTREAM_FAILED, "prediction was canceled")
        if not final.get("output"):
            raise self._error(ErrorKind.UPSTREAM_FAILED, "prediction succeeded without output")

        return RawProviderResult(
            provider=self.name,
            payload=final,
            meta={"model": self.config.model, "size": request.settings.size},
        )

    # ---- helpers ----

    def _input(self, request: GenerationRequest) -> Dict[str, Any]:
        prompt = enhance_prompt(request.prompt, request.style_preset)
        seed = request.settings.seed
        if seed is None:
            seed = random.randint(0, 999_999)
        body: Dict[str, Any] = {
            "prompt": prompt,
            "negative_prompt": NEGATIVE_PROMPT,
            "width": request.settings.width,
            "height": request.settings.height,
            "num_inference_steps": 25,
            "guidance_scale": 7.5,
            "num_outputs": 1,
            "seed": seed,
        }
        if request.is_image_to_image:
            body["image"] = request.input_image_ref
        return body

    def _create(self, request: GenerationRequest) -> Dict[str, Any]:
        body = {
            "version": request.settings.model or self.config.model,
            "input": self._input(request),
        }
        log.debug("provider=%s event=prediction.create prompt_hash=%s", self.name, prompt_hash(request.prompt))
        try:
            resp = self._session.post(
                f"{self.config.base_url}/predictions",
                headers=self._headers(),
                json=body,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e
        raise_for_provider(resp, self.name)
        data = json_body(resp, self.name) or {}
        if not data.get("id"):
            raise self._error(ErrorKind.UPSTREAM_FAILED, "prediction response has no id")
        return data

    def _fetch(self, prediction_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self._session.get(
                f"{self.config.base_url}/predictions/{prediction_id}",
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            log.warning("provider=%s event=poll.error error=%s", self.name, e)
            return None
        if resp.status_code == 404:
            raise self._error(ErrorKind.UPSTREAM_FAILED, "prediction not found", status_code=404)
        if resp.status_code == 429 or resp.status_code >= 500:
            log.warning("provider=%s event=poll.transient status=%s", self.name, resp.status_code)
            return None
        raise_for_provider(resp, self.name)
        return json_body(resp, self.name)
