"""
SongCard - Dominant Colour Extractor

Derives a small palette from a cover image so the card can be themed after
its artwork.

Algorithm:
    1. Take every 10th pixel of the RGBA buffer in raster order.
    2. Convert each sample to CIE Lab (sRGB matrix → XYZ → Lab, D65 white).
    3. Walk the samples in order; a sample becomes a new palette colour when
       its Euclidean Lab distance to every colour already accepted is at
       least 20.  At most 6 colours are accepted.
    4. Sort the palette by Lab lightness, lightest first.

The distance is plain Euclidean distance in Lab, not CIEDE2000.  Palette
behaviour downstream (swatches, backdrop choice) is tuned to this looser
threshold.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np
from loguru import logger
from PIL import Image

from songcard.models import LabColor, RGBColor
from songcard.services.cache import TTLCache

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SAMPLE_STRIDE = 10  # every Nth pixel
DELTA_E_THRESHOLD = 20.0
MAX_COLORS = 6

# sRGB → XYZ matrix (rows: X, Y, Z)
_RGB_TO_XYZ = np.array(
    [
        [0.4124, 0.3576, 0.1805],
        [0.2126, 0.7152, 0.0722],
        [0.0193, 0.1192, 0.9505],
    ]
)
# D65 reference white
_WHITE = np.array([95.047, 100.0, 108.883])

# ITU-R BT.601 luma weights (per mille)
_LUMA_WEIGHTS = (299, 587, 114)
DARK_LUMA_LIMIT = 128


# ---------------------------------------------------------------------------
# Colour space conversion
# ---------------------------------------------------------------------------


def _lab_f(t: np.ndarray) -> np.ndarray:
    return np.where(t > 0.008856, np.cbrt(t), 7.787 * t + 16 / 116)


def rgb_array_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert an ``(N, 3)`` array of 0–255 RGB values to ``(N, 3)`` Lab."""
    xyz = (rgb.astype(np.float64) @ _RGB_TO_XYZ.T) / 255.0 * 100.0
    fx, fy, fz = (_lab_f(xyz[:, i] / _WHITE[i]) for i in range(3))
    lab = np.empty_like(xyz)
    lab[:, 0] = 116 * fy - 16
    lab[:, 1] = 500 * (fx - fy)
    lab[:, 2] = 200 * (fy - fz)
    return lab


def rgb_to_lab(color: RGBColor) -> LabColor:
    l, a, b = rgb_array_to_lab(np.array([color.as_tuple()]))[0]
    return LabColor(l=float(l), a=float(a), b=float(b))


def delta_e(first: LabColor, second: LabColor) -> float:
    """Euclidean distance between two Lab colours."""
    return float(
        np.sqrt(
            (second.l - first.l) ** 2
            + (second.a - first.a) ** 2
            + (second.b - first.b) ** 2
        )
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def sample_pixels(image: Image.Image, stride: int = SAMPLE_STRIDE) -> np.ndarray:
    """Return every *stride*-th pixel (RGB only) in raster order."""
    pixels = np.asarray(image.convert("RGBA"), dtype=np.uint8).reshape(-1, 4)
    return pixels[::stride, :3]


def extract_colors(
    image: Image.Image,
    max_colors: int = MAX_COLORS,
    threshold: float = DELTA_E_THRESHOLD,
) -> List[RGBColor]:
    """Extract up to *max_colors* visually distinct colours, lightest first.

    Returns an empty list for an image without pixels; callers fall back to
    a default colour in that case.
    """
    samples = sample_pixels(image)
    if samples.size == 0:
        return []

    labs = rgb_array_to_lab(samples)

    # Samples are visited in order and the accepted set only grows, so the
    # next accepted sample is the first one at or beyond the threshold from
    # everything accepted so far.
    min_distance = np.full(len(labs), np.inf)
    accepted: List[int] = []
    start = 0
    while len(accepted) < max_colors:
        candidates = np.flatnonzero(min_distance[start:] >= threshold)
        if candidates.size == 0:
            break
        index = start + int(candidates[0])
        accepted.append(index)
        distance = np.sqrt(((labs - labs[index]) ** 2).sum(axis=1))
        min_distance = np.minimum(min_distance, distance)
        start = index + 1

    # Stable sort on lightness, descending
    accepted.sort(key=lambda i: -labs[i, 0])
    return [RGBColor(*(int(c) for c in samples[i])) for i in accepted]


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def perceived_luma(color: RGBColor) -> float:
    wr, wg, wb = _LUMA_WEIGHTS
    return (color.r * wr + color.g * wg + color.b * wb) / 1000


def ensure_dark_color(color: RGBColor) -> RGBColor:
    """Scale a colour down to luma 128 when it is brighter than that."""
    luma = perceived_luma(color)
    if luma <= DARK_LUMA_LIMIT:
        return color
    factor = DARK_LUMA_LIMIT / luma
    return RGBColor(
        r=round(color.r * factor),
        g=round(color.g * factor),
        b=round(color.b * factor),
    )


def darken(color: RGBColor, factor: float = 0.1) -> RGBColor:
    """Return *color* scaled by *factor* (the dark end of a backdrop gradient)."""
    return RGBColor(
        r=round(color.r * factor),
        g=round(color.g * factor),
        b=round(color.b * factor),
    )


# ---------------------------------------------------------------------------
# Session-scoped memoisation
# ---------------------------------------------------------------------------


class ColorService:
    """Extracts palettes and remembers them per image URL for the session."""

    def __init__(self, cache: Optional[TTLCache[str, List[RGBColor]]] = None) -> None:
        self.cache: TTLCache[str, List[RGBColor]] = (
            cache if cache is not None else TTLCache(name="colors")
        )

    def colors_for(self, url: str, image: Image.Image) -> List[RGBColor]:
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        colors = extract_colors(image)
        logger.debug("🎨 Extracted {} colours from {}", len(colors), url[:80])
        self.cache.set(url, colors)
        return colors
