"""Style presets shared by the adapters (prompt enhancement) and the mock placeholder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class StylePreset:
    name: str
    description: str
    color: str  # placeholder background, hex without '#'
    keywords: tuple = ()


STYLE_PRESETS: Dict[str, StylePreset] = {
    p.name: p
    for p in (
        StylePreset(
            "Modern Casual",
            "modern casual outfit, trendy streetwear, contemporary fashion",
            "3B82F6",
            ("casual",),
        ),
        StylePreset(
            "Business Professional",
            "professional business attire, formal suit, corporate style",
            "1F2937",
            ("business", "professional", "suit"),
        ),
        StylePreset(
            "Vintage Chic",
            "vintage fashion, retro style, classic elegant clothing",
            "8B5CF6",
            ("vintage", "retro"),
        ),
        StylePreset(
            "Street Style",
            "urban streetwear, hip-hop fashion, edgy modern style",
            "EF4444",
            ("street", "urban"),
        ),
        StylePreset(
            "Elegant Evening",
            "elegant evening wear, formal dress, sophisticated style",
            "F59E0B",
            ("elegant", "evening", "formal"),
        ),
        StylePreset(
            "Bohemian Free",
            "bohemian style, flowing fabrics, free-spirited fashion",
            "10B981",
            ("bohemian", "boho"),
        ),
    )
}

DEFAULT_COLOR = "6366F1"
QUALITY_SUFFIX = "high quality, detailed, professional photography"


def enhance_prompt(prompt: str, style_preset: Optional[str] = None) -> str:
    """Append the preset description (or the raw preset text) and a quality suffix."""
    preset = STYLE_PRESETS.get(style_preset or "")
    style = preset.description if preset else (style_preset or "").strip()
    parts = [prompt.strip()]
    if style:
        parts.append(style)
    parts.append(QUALITY_SUFFIX)
    return ", ".join(parts)


def infer_preset(prompt: str, style_preset: Optional[str] = None) -> Optional[StylePreset]:
    """Explicit preset wins; otherwise the first preset whose keyword appears in the prompt."""
    if style_preset and style_preset in STYLE_PRESETS:
        return STYLE_PRESETS[style_preset]
    lowered = (prompt or "").lower()
    for preset in STYLE_PRESETS.values():
        if any(k in lowered for k in preset.keywords):
            return preset
    return None


def list_presets() -> List[dict]:
    return [{"name": p.name, "description": p.description} for p in STYLE_PRESETS.values()]
