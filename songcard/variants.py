"""
SongCard - Card variants and themes

Pure data: canvas size, default element placement and the drawing rules
that differ between the three card layouts.

- ``poster``: 1140x1740 album poster, codepoint-truncated title/artist
- ``spotify``: 1140x1740 player-style card, width-truncated text
- ``phone``: 1000x1500 phone screenshot with a device frame overlay
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from songcard.config import PHONE_TEMPLATE
from songcard.errors import UnsupportedVariant
from songcard.models import ELEMENT_NAMES, ElementConfig, Theme


@dataclass(frozen=True)
class PaletteRow:
    """Row of colour swatches under the cover."""

    x: float = 60
    y: float = 1120
    height: float = 44
    slots: int = 6
    margin: float = 60

    def swatch_width(self, canvas_width: int) -> float:
        return (canvas_width - 2 * self.margin) / self.slots


@dataclass(frozen=True)
class VariantProfile:
    name: str
    width: int
    height: int
    elements: Mapping[str, ElementConfig]
    default_theme: str = "default"

    # Cover
    cover_radius_fraction: float = 0.1
    cover_radius_max: float = 60
    cover_radius_fixed: Optional[float] = None
    cover_outline: Optional[str] = None

    # Text
    codepoint_limits: Mapping[str, int] = field(default_factory=dict)
    text_margin: float = 60
    text_width_fraction: Optional[float] = None  # fixed budget as share of W
    combined_title: bool = False  # draw "artist/title" on one line
    title_baseline: str = "bottom"
    lyrics_baseline: str = "top"
    lyrics_bold: bool = False
    lyrics_color: Optional[str] = None
    lyrics_line_height: float = 1.2
    skip_blank_lyrics: bool = False
    show_play_duration: bool = False
    play_duration_x: float = 0.1

    # Layers
    palette: Optional[PaletteRow] = None
    overlay_template: Optional[str] = None
    palette_backdrop: bool = False  # derive the backdrop from the cover
    custom_background: bool = False  # accepts a user BackgroundConfig

    def cover_radius(self, size: float) -> float:
        if self.cover_radius_fixed is not None:
            return self.cover_radius_fixed
        return min(size * self.cover_radius_fraction, self.cover_radius_max)

    def text_budget(self, element: ElementConfig) -> float:
        """Widest a line of text may be when anchored at *element*."""
        if self.text_width_fraction is not None:
            return self.width * self.text_width_fraction
        return self.width - element.x * self.width - self.text_margin

    def merged_elements(
        self, overrides: Optional[Mapping[str, ElementConfig]] = None
    ) -> Dict[str, ElementConfig]:
        merged = dict(self.elements)
        for name, config in (overrides or {}).items():
            if name not in ELEMENT_NAMES:
                raise ValueError(f"Unknown element: {name}")
            merged[name] = config
        return merged


# ---------------------------------------------------------------------------
# Element defaults
# ---------------------------------------------------------------------------
_ALBUM_ELEMENTS = {
    "cover": ElementConfig(x=0.053, y=0.034, size=1020),
    "title": ElementConfig(x=0.053, y=0.73, size=64),
    "artist": ElementConfig(x=0.053, y=0.749, size=48),
    "lyrics": ElementConfig(x=0.053, y=0.801, size=40),
    "duration": ElementConfig(x=0.947, y=0.73, size=36),
}

_PHONE_ELEMENTS = {
    "cover": ElementConfig(x=0.1, y=0.04, size=800),
    "title": ElementConfig(x=0.1, y=0.693, size=48),
    "artist": ElementConfig(x=0.1, y=0.693, size=48),
    "lyrics": ElementConfig(x=0.1, y=0.64, size=50),
    "duration": ElementConfig(x=0.9, y=0.743, size=28),
}

VARIANTS: Dict[str, VariantProfile] = {
    "poster": VariantProfile(
        name="poster",
        width=1140,
        height=1740,
        elements=_ALBUM_ELEMENTS,
        codepoint_limits={"title": 15, "artist": 20},
        palette=PaletteRow(),
    ),
    "spotify": VariantProfile(
        name="spotify",
        width=1140,
        height=1740,
        elements=_ALBUM_ELEMENTS,
        cover_outline="rgba(0, 0, 0, 0.2)",
        lyrics_line_height=1.5,
        skip_blank_lyrics=True,
        palette=PaletteRow(),
    ),
    "phone": VariantProfile(
        name="phone",
        width=1000,
        height=1500,
        elements=_PHONE_ELEMENTS,
        default_theme="phone",
        cover_radius_fixed=40,
        text_width_fraction=0.8,
        combined_title=True,
        lyrics_baseline="bottom",
        lyrics_bold=True,
        lyrics_color="#ffffff",
        show_play_duration=True,
        overlay_template=PHONE_TEMPLATE or None,
        palette_backdrop=True,
        custom_background=True,
    ),
}


# ---------------------------------------------------------------------------
# Themes
# ---------------------------------------------------------------------------
THEMES: Dict[str, Theme] = {
    "default": Theme(
        id="default",
        name="Default",
        background="#191724",
        text_color="#ffffff",
        secondary_text_color="#a6a6a6",
    ),
    "phone": Theme(
        id="phone",
        name="Phone",
        background="#141414",
        text_color="#ededed",
        secondary_text_color="#cccccc",
    ),
}


def get_variant(name: str) -> VariantProfile:
    try:
        return VARIANTS[name]
    except KeyError:
        raise UnsupportedVariant(name) from None


def get_theme(theme_id: Optional[str]) -> Theme:
    """Look up a built-in theme, falling back to ``default``."""
    if theme_id is None:
        return THEMES["default"]
    return THEMES.get(theme_id, THEMES["default"])
