"""
SongCard - Data models

Plain dataclasses shared by the fetch layer, the colour extractor and the
compositor.  Validation happens in ``__post_init__`` and raises
``ValueError``; the API layer turns that into a 400.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

ELEMENT_NAMES = ("cover", "title", "artist", "lyrics", "duration")


def _check_fraction(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


# ---------------------------------------------------------------------------
# Track metadata
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MusicCardInfo:
    """Everything a card shows about one track."""

    title: str
    artist: str
    cover_url: str
    lyrics: str = ""
    duration_seconds: int = 0
    play_duration_seconds: Optional[int] = None

    def with_overrides(self, **fields: Any) -> "MusicCardInfo":
        """Return a copy with user-edited fields applied (``None`` = keep)."""
        changes = {k: v for k, v in fields.items() if v is not None}
        return replace(self, **changes)

    def to_payload(self) -> Dict[str, Any]:
        """Serialise to the JSON shape returned by ``GET /metadata``."""
        payload: Dict[str, Any] = {
            "title": self.title,
            "artist": self.artist,
            "coverUrl": self.cover_url,
            "lyrics": self.lyrics,
            "duration": self.duration_seconds,
        }
        if self.play_duration_seconds is not None:
            payload["playDuration"] = self.play_duration_seconds
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "MusicCardInfo":
        play = data.get("playDuration")
        return cls(
            title=str(data.get("title", "")),
            artist=str(data.get("artist", "")),
            cover_url=str(data.get("coverUrl", "")),
            lyrics=str(data.get("lyrics") or ""),
            duration_seconds=int(data.get("duration") or 0),
            play_duration_seconds=int(play) if play is not None else None,
        )


# ---------------------------------------------------------------------------
# Themes and layout
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Theme:
    id: str
    name: str
    background: str  # colour string, or an image reference
    background_kind: str = "color"  # "color" | "image"
    text_color: str = "#ffffff"
    secondary_text_color: Optional[str] = None

    def __post_init__(self) -> None:
        if self.background_kind not in ("color", "image"):
            raise ValueError(f"Unknown background kind: {self.background_kind}")


@dataclass(frozen=True)
class ElementConfig:
    """Position (canvas fractions), pixel size and visibility of an element."""

    x: float
    y: float
    size: float
    visible: bool = True

    def __post_init__(self) -> None:
        _check_fraction("x", self.x)
        _check_fraction("y", self.y)
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass(frozen=True)
class GradientConfig:
    angle_degrees: float
    colors: List[str]
    stops: List[float]

    def __post_init__(self) -> None:
        if not 0.0 <= self.angle_degrees <= 360.0:
            raise ValueError(f"angle must be within [0, 360], got {self.angle_degrees}")
        if len(self.colors) != len(self.stops):
            raise ValueError("gradient colors and stops must have the same length")
        if len(self.colors) < 2:
            raise ValueError("a gradient needs at least two colours")
        for stop in self.stops:
            _check_fraction("gradient stop", stop)


@dataclass(frozen=True)
class BackgroundConfig:
    """Custom background for the phone card."""

    image_url: Optional[str] = None
    blur_radius: float = 0.0
    opacity: float = 1.0
    gradient: Optional[GradientConfig] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.blur_radius <= 20.0:
            raise ValueError(f"blur must be within [0, 20], got {self.blur_radius}")
        _check_fraction("opacity", self.opacity)


# ---------------------------------------------------------------------------
# Colours
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RGBColor:
    r: int
    g: int
    b: int

    def as_tuple(self) -> tuple:
        return (self.r, self.g, self.b)

    def to_css(self) -> str:
        return f"rgb({self.r}, {self.g}, {self.b})"

    def to_dict(self) -> Dict[str, int]:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class LabColor:
    l: float  # noqa: E741
    a: float
    b: float


# ---------------------------------------------------------------------------
# Fetch policy
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_factor <= 1:
            raise ValueError("backoff_factor must be greater than 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")

