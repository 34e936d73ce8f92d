"""
SongCard - Drawing Surface

The compositor draws through the small :class:`Surface` capability
interface so it never touches a graphics library directly.
:class:`PillowSurface` implements it on an RGBA Pillow image:

- every draw call paints into a transparent full-size layer which is then
  alpha-composited onto the canvas;
- an active rounded-rect clip is a greyscale mask multiplied into the
  layer's alpha before compositing;
- gradients are rasterised with numpy (projection of each pixel onto the
  gradient line, then per-channel interpolation between stops).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import lru_cache
from io import BytesIO
from typing import ContextManager, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger
from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont

from songcard.config import FONT_BOLD_PATH, FONT_PATH
from songcard.utils import parse_color

Font = ImageFont.FreeTypeFont
GradientStop = Tuple[float, str]

_ALIGN_ANCHORS = {"left": "l", "center": "m", "right": "r"}
# Pillow "a"/"d" are the ascender/descender lines, the closest match to
# the em-box top/bottom used by HTML canvas baselines.
_BASELINE_ANCHORS = {"top": "a", "middle": "m", "alphabetic": "s", "bottom": "d"}


# ---------------------------------------------------------------------------
# Fonts
# ---------------------------------------------------------------------------

# CJK-capable faces first: titles and lyrics are frequently Chinese.
_REGULAR_CANDIDATES = [
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-microhei.ttc",
    "/usr/share/fonts/truetype/droid/DroidSansFallbackFull.ttf",
    "/System/Library/Fonts/PingFang.ttc",
    "C:/Windows/Fonts/msyh.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "C:/Windows/Fonts/arial.ttf",
]
_BOLD_CANDIDATES = [
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    "C:/Windows/Fonts/msyhbd.ttc",
    "C:/Windows/Fonts/arialbd.ttf",
]


@lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False) -> Font:
    """
    Load a TrueType font at the given pixel size.

    Tries ``FONT_BOLD_PATH`` / ``FONT_PATH`` first, then common system
    fonts, then Pillow's bundled default face.  Sizes below one pixel are
    drawn at one pixel.
    """
    size = max(1, size)
    configured = FONT_BOLD_PATH if bold and FONT_BOLD_PATH else FONT_PATH
    candidates = ([configured] if configured else []) + (
        _BOLD_CANDIDATES + _REGULAR_CANDIDATES if bold else _REGULAR_CANDIDATES
    )

    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue

    logger.debug("No system font found — using Pillow's default face at {}px", size)
    return ImageFont.load_default(size=size)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------------


class Surface(ABC):
    """What the compositor needs from a 2D raster target."""

    width: int
    height: int

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def new_layer(self) -> "Surface":
        """Return an empty off-screen surface of the same size."""

    @abstractmethod
    def fill_rect(self, x: float, y: float, w: float, h: float, color: str) -> None: ...

    @abstractmethod
    def draw_image(
        self,
        image: Image.Image,
        x: float,
        y: float,
        w: float,
        h: float,
        opacity: float = 1.0,
    ) -> None: ...

    @abstractmethod
    def draw_surface(self, other: "Surface", opacity: float = 1.0) -> None: ...

    @abstractmethod
    def clip_rounded_rect(
        self, x: float, y: float, w: float, h: float, radius: float
    ) -> ContextManager[None]: ...

    @abstractmethod
    def stroke_rounded_rect(
        self,
        x: float,
        y: float,
        w: float,
        h: float,
        radius: float,
        color: str,
        line_width: int = 1,
    ) -> None: ...

    @abstractmethod
    def fill_gradient(
        self,
        start: Tuple[float, float],
        end: Tuple[float, float],
        stops: Sequence[GradientStop],
    ) -> None: ...

    @abstractmethod
    def blur(self, radius: float) -> None: ...

    @abstractmethod
    def measure_text(self, text: str, font: Font) -> float: ...

    @abstractmethod
    def draw_text(
        self,
        text: str,
        x: float,
        y: float,
        font: Font,
        color: str,
        align: str = "left",
        baseline: str = "top",
    ) -> None: ...

    @abstractmethod
    def to_png(self) -> bytes: ...


# ---------------------------------------------------------------------------
# Pillow implementation
# ---------------------------------------------------------------------------


class PillowSurface(Surface):
    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        self._clip: Optional[Image.Image] = None

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    # -- state -------------------------------------------------------------

    def clear(self) -> None:
        self.image = Image.new("RGBA", self.size, (0, 0, 0, 0))
        self._clip = None

    def new_layer(self) -> "PillowSurface":
        return PillowSurface(self.width, self.height)

    def _blank(self) -> Image.Image:
        return Image.new("RGBA", self.size, (0, 0, 0, 0))

    def _composite(self, layer: Image.Image) -> None:
        if self._clip is not None:
            layer.putalpha(ImageChops.multiply(layer.getchannel("A"), self._clip))
        self.image.alpha_composite(layer)

    # -- shapes ------------------------------------------------------------

    def fill_rect(self, x: float, y: float, w: float, h: float, color: str) -> None:
        if w <= 0 or h <= 0:
            return
        layer = self._blank()
        ImageDraw.Draw(layer).rectangle(
            _box(x, y, w, h),
            fill=parse_color(color),
        )
        self._composite(layer)

    @contextmanager
    def clip_rounded_rect(
        self, x: float, y: float, w: float, h: float, radius: float
    ) -> Iterator[None]:
        """Restrict drawing to a rounded rectangle until the block exits."""
        mask = Image.new("L", self.size, 0)
        ImageDraw.Draw(mask).rounded_rectangle(
            _box(x, y, w, h), radius=max(0, round(radius)), fill=255
        )
        previous = self._clip
        self._clip = mask if previous is None else ImageChops.multiply(mask, previous)
        try:
            yield
        finally:
            self._clip = previous

    def stroke_rounded_rect(
        self,
        x: float,
        y: float,
        w: float,
        h: float,
        radius: float,
        color: str,
        line_width: int = 1,
    ) -> None:
        layer = self._blank()
        ImageDraw.Draw(layer).rounded_rectangle(
            _box(x, y, w, h),
            radius=max(0, round(radius)),
            outline=parse_color(color),
            width=line_width,
        )
        self._composite(layer)

    def fill_gradient(
        self,
        start: Tuple[float, float],
        end: Tuple[float, float],
        stops: Sequence[GradientStop],
    ) -> None:
        """Fill the whole surface with a linear gradient from *start* to *end*."""
        if not stops:
            return
        ordered = sorted(stops, key=lambda s: s[0])
        offsets = np.array([offset for offset, _ in ordered], dtype=np.float64)
        colors = np.array([parse_color(c) for _, c in ordered], dtype=np.float64)

        (x0, y0), (x1, y1) = start, end
        dx, dy = x1 - x0, y1 - y0
        length_sq = dx * dx + dy * dy or 1.0

        ys, xs = np.mgrid[0 : self.height, 0 : self.width].astype(np.float64)
        t = ((xs + 0.5 - x0) * dx + (ys + 0.5 - y0) * dy) / length_sq
        t = np.clip(t, 0.0, 1.0)

        pixels = np.empty((self.height, self.width, 4), dtype=np.uint8)
        for channel in range(4):
            pixels[..., channel] = np.rint(
                np.interp(t, offsets, colors[:, channel])
            ).astype(np.uint8)
        self._composite(Image.fromarray(pixels, "RGBA"))

    # -- images ------------------------------------------------------------

    def draw_image(
        self,
        image: Image.Image,
        x: float,
        y: float,
        w: float,
        h: float,
        opacity: float = 1.0,
    ) -> None:
        target = (max(1, round(w)), max(1, round(h)))
        source = image.convert("RGBA")
        if source.size != target:
            source = source.resize(target, Image.Resampling.LANCZOS)
        if opacity < 1.0:
            alpha = source.getchannel("A").point(lambda v: round(v * opacity))
            source.putalpha(alpha)

        layer = self._blank()
        layer.paste(source, (round(x), round(y)))
        self._composite(layer)

    def draw_surface(self, other: Surface, opacity: float = 1.0) -> None:
        if not isinstance(other, PillowSurface):
            raise TypeError("PillowSurface can only composite another PillowSurface")
        self.draw_image(other.image, 0, 0, other.width, other.height, opacity)

    def blur(self, radius: float) -> None:
        if radius > 0:
            self.image = self.image.filter(ImageFilter.GaussianBlur(radius=radius))

    # -- text --------------------------------------------------------------

    def measure_text(self, text: str, font: Font) -> float:
        if not text:
            return 0.0
        return float(font.getlength(text))

    def draw_text(
        self,
        text: str,
        x: float,
        y: float,
        font: Font,
        color: str,
        align: str = "left",
        baseline: str = "top",
    ) -> None:
        if not text:
            return
        anchor = _ALIGN_ANCHORS[align] + _BASELINE_ANCHORS[baseline]
        layer = self._blank()
        ImageDraw.Draw(layer).text(
            (x, y), text, font=font, fill=parse_color(color), anchor=anchor
        )
        self._composite(layer)

    # -- export ------------------------------------------------------------

    def to_png(self) -> bytes:
        buf = BytesIO()
        self.image.save(buf, "PNG")
        return buf.getvalue()

    def pixel(self, x: int, y: int) -> Tuple[int, ...]:
        """Read back one RGBA pixel (handy for checks and tests)."""
        return self.image.getpixel((x, y))  # type: ignore[return-value]


def _box(x: float, y: float, w: float, h: float) -> List[int]:
    """Pillow boxes are inclusive on both ends."""
    x0, y0 = round(x), round(y)
    return [x0, y0, max(x0, round(x + w) - 1), max(y0, round(y + h) - 1)]
