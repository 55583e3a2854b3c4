"""Tag color palette and color resolution."""
import re
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

DEFAULT_COLOR = "slate"


class ColorPreset(BaseModel):
    """A named preset color offered to users."""

    value: str = Field(..., description="Preset key stored on tags")
    label: str = Field(..., description="Display label")
    hex_color: str = Field(..., description="Representative hex value")

    model_config = {"frozen": True}


PRESET_COLORS: List[ColorPreset] = [
    ColorPreset(value="slate", label="Slate", hex_color="#64748B"),
    ColorPreset(value="green", label="Emerald", hex_color="#10B981"),
    ColorPreset(value="red", label="Rose", hex_color="#EF4444"),
    ColorPreset(value="yellow", label="Amber", hex_color="#F59E0B"),
    ColorPreset(value="purple", label="Violet", hex_color="#8B5CF6"),
    ColorPreset(value="pink", label="Sakura", hex_color="#EC4899"),
    ColorPreset(value="orange", label="Tangerine", hex_color="#F97316"),
    ColorPreset(value="teal", label="Teal", hex_color="#14B8A6"),
    ColorPreset(value="indigo", label="Indigo", hex_color="#6366F1"),
    ColorPreset(value="violet", label="Lavender", hex_color="#7C3AED"),
]

_PRESETS_BY_VALUE: Dict[str, ColorPreset] = {p.value: p for p in PRESET_COLORS}


def is_valid_color(color: str) -> bool:
    """Return True for a preset key or a #RGB / #RRGGBB hex string."""
    return color in _PRESETS_BY_VALUE or bool(HEX_COLOR_PATTERN.match(color))


def to_hex(color: str) -> str:
    """Convert a stored color to a hex string (unknown values map to the default)."""
    if HEX_COLOR_PATTERN.match(color):
        return color.upper()
    preset = _PRESETS_BY_VALUE.get(color) or _PRESETS_BY_VALUE[DEFAULT_COLOR]
    return preset.hex_color


def resolve_color(
    tag_name: str,
    color_map: Mapping[str, str],
    fallback: Optional[str] = None,
) -> str:
    """Resolve the color shown for a tag.

    The color map (keyed by tag name) wins; otherwise the tag's own color
    (``fallback``) if it is valid; otherwise the default slate preset.
    """
    saved = color_map.get(tag_name)
    if saved and is_valid_color(saved):
        return saved
    if fallback and is_valid_color(fallback):
        return fallback
    return DEFAULT_COLOR
