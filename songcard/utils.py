"""
SongCard - Shared Utilities

Common helpers used across multiple modules to avoid duplication.
"""

import re
from typing import Tuple

from PIL import ImageColor

RGBA = Tuple[int, int, int, int]

# CSS-style "rgba(r, g, b, a)" with a fractional alpha, which Pillow's
# colour parser does not understand.
_RGBA_FLOAT = re.compile(
    r"^rgba\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*([01]?(?:\.\d+)?)\s*\)$",
    re.IGNORECASE,
)


def sanitize_filename(name: str) -> str:
    """
    Sanitize a string for use as a filename.

    Removes or replaces characters that are problematic on most file systems.
    """
    replacements = {
        "/": "_",
        "\\": "_",
        ":": "-",
        "*": "",
        "?": "",
        '"': "",
        "<": "",
        ">": "",
        "|": "",
    }
    result = name
    for old, new in replacements.items():
        result = result.replace(old, new)

    # Strip leading/trailing whitespace and dots
    result = result.strip(" .")

    return result or "card"


def parse_color(value: str) -> RGBA:
    """
    Parse a CSS colour string into an ``(r, g, b, a)`` tuple.

    Accepts everything Pillow's ImageColor does (``#rgb``, ``#rrggbb``,
    ``rgb()``, named colours) plus ``rgba()`` with a 0–1 alpha.
    Raises ``ValueError`` on unknown input.
    """
    text = value.strip()
    match = _RGBA_FLOAT.match(text)
    if match:
        r, g, b = (min(255, int(match.group(i))) for i in (1, 2, 3))
        alpha = float(match.group(4) or 0)
        return (r, g, b, round(max(0.0, min(1.0, alpha)) * 255))
    return ImageColor.getcolor(text, "RGBA")  # type: ignore[return-value]


def format_duration(seconds: float) -> str:
    """Format a duration as ``m:ss``."""
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
