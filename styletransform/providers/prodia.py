# styletransform/providers/prodia.py
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
    json_body,
    raise_for_provider,
    registry,
    translate_request_error,
)
from .polling import poll_until
from .replicate import NEGATIVE_PROMPT

log = logging.getLogger(__name__)


@registry.register
class ProdiaProvider(ImageProvider):
    """Free-tier job service: POST /sd/generate, then poll GET /job/{id}."""

    name = "prodia"
    supports_image_to_image = False

    def _headers(self) -> Dict[str, str]:
        return {"X-Prodia-Key": self.config.api_token or "", "Content-Type": "application/json"}

    def generate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> RawProviderResult:
        if not self.config.api_token:
            raise self._error(ErrorKind.AUTH, "PRODIA_API_TOKEN missing")

        seed = request.settings.seed
        body = {
            "prompt": enhance_prompt(request.prompt, request.style_preset),
            "negative_prompt": NEGATIVE_PROMPT,
            "model": request.settings.model or self.config.model,
            "steps": 20,
            "cfg_scale": 7,
            "width": request.settings.width,
            "height": request.settings.height,
            "seed": seed if seed is not None else random.randint(0, 999_999),
        }
        try:
            resp = self._session.post(
                f"{self.config.base_url}/sd/generate",
                headers=self._headers(),
                json=body,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e
        raise_for_provider(resp, self.name)
        job_id = (json_body(resp, self.name) or {}).get("job")
        if not job_id:
            raise self._error(ErrorKind.UPSTREAM_FAILED, "no job id returned")
        log.info("provider=%s event=job.created job=%s", self.name, job_id)

        final = poll_until(
            fetch=lambda: self._fetch(job_id),
            is_terminal=lambda j: j.get("status") in ("succeeded", "failed"),
            interval=self.config.poll_interval,
            budget=self.config.poll_budget,
            provider=self.name,
            clock=self._clock,
            sleep=self._sleep,
            deadline=deadline,
        )
        if final.get("status") == "failed":
            raise self._error(ErrorKind.UPSTREAM_FAILED, "generation failed")

        payload: Dict[str, Any] = dict(final)
        payload.setdefault("job", job_id)
        return RawProviderResult(provider=self.name, payload=payload, meta={"model": body["model"]})

    def _fetch(self, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self._session.get(
                f"{self.config.base_url}/job/{job_id}",
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            log.warning("provider=%s event=poll.error error=%s", self.name, e)
            return None
        if resp.status_code == 429 or resp.status_code >= 500:
            log.warning("provider=%s event=poll.transient status=%s", self.name, resp.status_code)
            return None
        raise_for_provider(resp, self.name)
        return json_body(resp, self.name)

    def available_models(self) -> list[str]:
        return [
            "sd_xl_base_1.0.safetensors [be9edd61]",
            "juggernaut_aftermath.safetensors [5e20c455]",
            "absolutereality_V16.safetensors [37db0fc3]",
            "dreamlike-anime-1.0.safetensors [4520e090]",
            "deliberate_v2.safetensors [10ec4b29]",
        ]
