"""
SongCard - Text Layout Engine

Fits text into element boxes without reshaping or wrapping.  Nothing here
appends an ellipsis: the contract is "never exceed the budget", and an
ellipsis glyph would itself overflow narrow CJK boxes.

The width-based helpers take a ``measure`` callable (usually
``Surface.measure_text`` bound to a font) and rely on it being
non-decreasing in prefix length.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List

Measure = Callable[[str], float]


def truncate_by_codepoints(text: str, max_len: int) -> str:
    """Hard cut at *max_len* codepoints."""
    if max_len <= 0:
        return ""
    return text if len(text) <= max_len else text[:max_len]


def truncate_by_width(measure: Measure, text: str, max_width: float) -> str:
    """Return the longest prefix of *text* whose measured width fits.

    Uses a binary search over the cut position, so it makes
    ``O(log len(text))`` calls to *measure*.  Returns ``""`` when not even
    the first character fits.
    """
    if measure(text) <= max_width:
        return text

    low, high = 0, len(text)
    result = ""
    while low <= high:
        mid = (low + high) // 2
        candidate = text[:mid]
        if measure(candidate) <= max_width:
            result = candidate
            low = mid + 1
        else:
            high = mid - 1
    return result


@dataclass(frozen=True)
class LaidOutLine:
    text: str
    offset_y: float  # relative to the element's anchor


def layout_paragraphs(
    measure: Measure,
    text: str,
    max_width: float,
    font_size: float,
    line_height_factor: float = 1.2,
    skip_blank: bool = False,
) -> List[LaidOutLine]:
    """Lay out multi-line text, one line per paragraph.

    Each paragraph is truncated on its own; nothing is re-wrapped across
    paragraph boundaries.  Line *i* sits ``i * font_size * factor`` below
    the anchor, so blank paragraphs still take up a line even when
    *skip_blank* leaves them out of the result.
    """
    line_height = font_size * line_height_factor
    lines: List[LaidOutLine] = []
    for index, paragraph in enumerate(text.split("\n")):
        if skip_blank and not paragraph.strip():
            continue
        lines.append(
            LaidOutLine(
                text=truncate_by_width(measure, paragraph, max_width),
                offset_y=index * line_height,
            )
        )
    return lines
