from __future__ import annotations

from urllib.parse import urlencode

from styletransform.runtime.models import GenerationRequest
from styletransform.runtime.styles import DEFAULT_COLOR, infer_preset

from .image_base import RawProviderResult, prompt_hash

MOCK_METHOD = "mock-fallback"
DEFAULT_PLACEHOLDER_BASE = "https://placehold.co"
LABEL_CHARS = 30


class MockPlaceholder:
    """
    Last resort when every real tier failed. No network, no randomness:
    the same request always maps to the same placeholder URL.
    """

    name = "mock"

    def __init__(self, base_url: str = DEFAULT_PLACEHOLDER_BASE):
        self.base_url = (base_url or DEFAULT_PLACEHOLDER_BASE).rstrip("/")

    def generate(self, request: GenerationRequest) -> RawProviderResult:
        preset = infer_preset(request.prompt, request.style_preset)
        if preset is not None:
            color, label = preset.color, f"{preset.name} Style"
        else:
            color, label = DEFAULT_COLOR, request.prompt[:LABEL_CHARS].strip()

        size = f"{request.settings.width}x{request.settings.height}"
        url = f"{self.base_url}/{size}/{color}/FFFFFF?{urlencode({'text': label})}"
        return RawProviderResult(
            provider=self.name,
            payload={"image_url": url},
            meta={
                "prompt_hash": prompt_hash(request.prompt),
                "preset": preset.name if preset else None,
                "size": size,
            },
        )
