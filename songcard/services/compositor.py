"""
SongCard - Card Compositor

Renders a :class:`RenderRequest` onto a fixed-size :class:`Surface`.

Rendering is a strict sequence of stages::

    CLEAR → LOAD_ASSETS → PAINT_BACKGROUND → PAINT_COVER →
    PAINT_OVERLAY_TEMPLATE → PAINT_TEXT_ELEMENTS → PAINT_PALETTE → DONE

Every image is loaded (concurrently) before the first pixel is painted,
so the layer order never depends on which download finishes first.  A
failure in any stage is reported once, as :class:`RenderError` naming the
stage.  The one exception is colour extraction: a cover whose palette
cannot be computed simply gets no swatches and the default backdrop.

The paint stages and the PNG encode run in a worker thread, one stage at
a time, so a render never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger
from PIL import Image

from songcard.config import DEFAULT_BACKDROP, PLAY_DURATION_FRACTION
from songcard.errors import RenderError
from songcard.models import (
    BackgroundConfig,
    ElementConfig,
    GradientConfig,
    MusicCardInfo,
    RGBColor,
    Theme,
)
from songcard.services.colors import ColorService, darken, ensure_dark_color
from songcard.services.image_loader import ImageLoader
from songcard.services.surface import PillowSurface, Surface, load_font
from songcard.services.text_layout import (
    layout_paragraphs,
    truncate_by_codepoints,
    truncate_by_width,
)
from songcard.utils import format_duration
from songcard.variants import VariantProfile, get_theme

SurfaceFactory = Callable[[int, int], Surface]


class RenderStage(str, Enum):
    CLEAR = "clear"
    LOAD_ASSETS = "load_assets"
    PAINT_BACKGROUND = "paint_background"
    PAINT_COVER = "paint_cover"
    PAINT_OVERLAY_TEMPLATE = "paint_overlay_template"
    PAINT_TEXT_ELEMENTS = "paint_text_elements"
    PAINT_PALETTE = "paint_palette"
    DONE = "done"


@dataclass(frozen=True)
class RenderRequest:
    info: MusicCardInfo
    variant: VariantProfile
    theme: Theme
    elements: Mapping[str, ElementConfig]
    background: Optional[BackgroundConfig] = None
    use_gradient: bool = False

    @classmethod
    def build(
        cls,
        info: MusicCardInfo,
        variant: VariantProfile,
        theme: Optional[Theme] = None,
        elements: Optional[Mapping[str, ElementConfig]] = None,
        background: Optional[BackgroundConfig] = None,
        use_gradient: bool = False,
    ) -> "RenderRequest":
        """Fill in the variant's default theme and element placement.

        Only variants with ``custom_background`` take a *background*; for the
        others it is dropped.
        """
        if background is not None and not variant.custom_background:
            logger.debug("Ignoring custom background for {} card", variant.name)
            background = None
        return cls(
            info=info,
            variant=variant,
            theme=theme if theme is not None else get_theme(variant.default_theme),
            elements=variant.merged_elements(elements),
            background=background,
            use_gradient=use_gradient,
        )


@dataclass
class RenderAssets:
    theme_image: Optional[Image.Image] = None
    cover: Optional[Image.Image] = None
    background: Optional[Image.Image] = None
    template: Optional[Image.Image] = None
    palette: List[RGBColor] = field(default_factory=list)


def gradient_line(
    angle_degrees: float, width: float, height: float
) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Endpoints of a gradient at *angle_degrees* through the canvas centre."""
    rad = math.radians(angle_degrees)
    dx, dy = math.cos(rad) * width, math.sin(rad) * height
    cx, cy = width / 2, height / 2
    return (cx - dx, cy - dy), (cx + dx, cy + dy)


class CardCompositor:
    def __init__(
        self,
        loader: ImageLoader,
        colors: ColorService,
        surface_factory: SurfaceFactory = PillowSurface,
        play_fraction: float = PLAY_DURATION_FRACTION,
    ) -> None:
        self.loader = loader
        self.colors = colors
        self.surface_factory = surface_factory
        self.play_fraction = play_fraction

    async def render(self, request: RenderRequest) -> Surface:
        variant = request.variant
        surface = self.surface_factory(variant.width, variant.height)
        paint_steps = [
            (RenderStage.PAINT_BACKGROUND, self._paint_background),
            (RenderStage.PAINT_COVER, self._paint_cover),
            (RenderStage.PAINT_OVERLAY_TEMPLATE, self._paint_overlay),
            (RenderStage.PAINT_TEXT_ELEMENTS, self._paint_text),
            (RenderStage.PAINT_PALETTE, self._paint_palette),
        ]

        stage = RenderStage.CLEAR
        try:
            surface.clear()
            stage = RenderStage.LOAD_ASSETS
            assets = await self._load_assets(request)
            for stage, step in paint_steps:
                await asyncio.to_thread(step, surface, request, assets)
        except Exception as e:
            logger.error(
                "❌ Rendering {} card failed during {}: {}", variant.name, stage.value, e
            )
            raise RenderError(stage.value, e) from e

        logger.info(
            "🎨 Rendered {} card for '{}' ({}x{})",
            variant.name,
            request.info.title,
            variant.width,
            variant.height,
        )
        return surface

    async def render_png(self, request: RenderRequest) -> bytes:
        surface = await self.render(request)
        return await asyncio.to_thread(surface.to_png)

    # ------------------------------------------------------------------
    # LOAD_ASSETS
    # ------------------------------------------------------------------

    async def _load_assets(self, request: RenderRequest) -> RenderAssets:
        theme, variant, info = request.theme, request.variant, request.info
        wanted: Dict[str, str] = {}
        if theme.background_kind == "image":
            wanted["theme_image"] = theme.background
        if request.elements["cover"].visible and info.cover_url:
            wanted["cover"] = info.cover_url
        if request.background is not None and request.background.image_url:
            wanted["background"] = request.background.image_url
        if variant.overlay_template:
            wanted["template"] = variant.overlay_template

        images = await asyncio.gather(*(self.loader.load(url) for url in wanted.values()))
        assets = RenderAssets(**dict(zip(wanted, images)))

        if assets.cover is not None and self._needs_palette(request):
            assets.palette = await self._extract_palette(info.cover_url, assets.cover)
        return assets

    @staticmethod
    def _needs_palette(request: RenderRequest) -> bool:
        variant = request.variant
        if variant.palette is not None:
            return True
        has_custom = request.background is not None and bool(request.background.image_url)
        return variant.palette_backdrop and not has_custom

    async def _extract_palette(self, url: str, image: Image.Image) -> List[RGBColor]:
        try:
            return await asyncio.to_thread(self.colors.colors_for, url, image)
        except Exception as e:
            logger.warning("⚠️ Colour extraction failed for {}: {}", url[:120], e)
            return []

    # ------------------------------------------------------------------
    # PAINT_BACKGROUND
    # ------------------------------------------------------------------

    def _paint_background(
        self, surface: Surface, request: RenderRequest, assets: RenderAssets
    ) -> None:
        W, H = surface.width, surface.height
        if request.background is not None and assets.background is not None:
            self._paint_custom_background(surface, request, assets.background)
        elif assets.theme_image is not None:
            surface.draw_image(assets.theme_image, 0, 0, W, H)
        elif request.variant.palette_backdrop:
            self._paint_palette_backdrop(surface, request, assets.palette)
        else:
            surface.fill_rect(0, 0, W, H, request.theme.background)

    def _paint_custom_background(
        self, surface: Surface, request: RenderRequest, image: Image.Image
    ) -> None:
        config = request.background
        assert config is not None
        W, H = surface.width, surface.height

        # Scale to cover the canvas, centred
        scale = max(W / image.width, H / image.height)
        w, h = image.width * scale, image.height * scale
        layer = surface.new_layer()
        layer.draw_image(image, (W - w) / 2, (H - h) / 2, w, h)
        if config.blur_radius > 0:
            layer.blur(config.blur_radius)
        surface.draw_surface(layer, opacity=config.opacity)

        if request.use_gradient and config.gradient is not None:
            self._paint_gradient(surface, config.gradient)

    @staticmethod
    def _paint_gradient(surface: Surface, gradient: GradientConfig) -> None:
        start, end = gradient_line(gradient.angle_degrees, surface.width, surface.height)
        surface.fill_gradient(start, end, list(zip(gradient.stops, gradient.colors)))

    @staticmethod
    def _paint_palette_backdrop(
        surface: Surface, request: RenderRequest, palette: List[RGBColor]
    ) -> None:
        W, H = surface.width, surface.height
        if not palette:
            surface.fill_rect(0, 0, W, H, RGBColor(*DEFAULT_BACKDROP).to_css())
            return

        main = ensure_dark_color(palette[0])
        if request.use_gradient:
            surface.fill_gradient(
                (0, 0), (0, H), [(0.0, darken(main).to_css()), (1.0, main.to_css())]
            )
        else:
            surface.fill_rect(0, 0, W, H, main.to_css())

    # ------------------------------------------------------------------
    # PAINT_COVER / PAINT_OVERLAY_TEMPLATE
    # ------------------------------------------------------------------

    @staticmethod
    def _paint_cover(
        surface: Surface, request: RenderRequest, assets: RenderAssets
    ) -> None:
        config = request.elements["cover"]
        if not config.visible or assets.cover is None:
            return

        variant = request.variant
        x, y, size = config.x * surface.width, config.y * surface.height, config.size
        radius = variant.cover_radius(size)
        with surface.clip_rounded_rect(x, y, size, size, radius):
            surface.draw_image(assets.cover, x, y, size, size)
        if variant.cover_outline:
            surface.stroke_rounded_rect(x, y, size, size, radius, variant.cover_outline, 2)

    @staticmethod
    def _paint_overlay(
        surface: Surface, request: RenderRequest, assets: RenderAssets
    ) -> None:
        if assets.template is not None:
            surface.draw_image(assets.template, 0, 0, surface.width, surface.height)

    # ------------------------------------------------------------------
    # PAINT_TEXT_ELEMENTS
    # ------------------------------------------------------------------

    def _paint_text(
        self, surface: Surface, request: RenderRequest, assets: RenderAssets
    ) -> None:
        info, variant, theme = request.info, request.variant, request.theme
        elements = request.elements

        title = f"{info.artist}/{info.title}" if variant.combined_title else info.title
        self._draw_line(
            surface, request, "title", title, bold=True, baseline=variant.title_baseline
        )
        if not variant.combined_title:
            self._draw_line(surface, request, "artist", info.artist, baseline="top")

        lyrics = elements["lyrics"]
        if lyrics.visible and info.lyrics:
            font = load_font(round(lyrics.size), bold=variant.lyrics_bold)
            x, y = lyrics.x * surface.width, lyrics.y * surface.height
            for line in layout_paragraphs(
                lambda s: surface.measure_text(s, font),
                info.lyrics,
                variant.text_budget(lyrics),
                lyrics.size,
                variant.lyrics_line_height,
                variant.skip_blank_lyrics,
            ):
                surface.draw_text(
                    line.text,
                    x,
                    y + line.offset_y,
                    font,
                    variant.lyrics_color or theme.text_color,
                    baseline=variant.lyrics_baseline,
                )

        duration = elements["duration"]
        if duration.visible and info.duration_seconds > 0:
            font = load_font(round(duration.size))
            y = duration.y * surface.height
            surface.draw_text(
                format_duration(info.duration_seconds),
                duration.x * surface.width,
                y,
                font,
                theme.text_color,
                align="right",
                baseline="bottom",
            )
            if variant.show_play_duration:
                played = info.play_duration_seconds
                if played is None:
                    played = math.floor(info.duration_seconds * self.play_fraction)
                surface.draw_text(
                    format_duration(played),
                    variant.play_duration_x * surface.width,
                    y,
                    font,
                    theme.text_color,
                    align="left",
                    baseline="bottom",
                )

    @staticmethod
    def _draw_line(
        surface: Surface,
        request: RenderRequest,
        element: str,
        text: str,
        bold: bool = False,
        baseline: str = "top",
    ) -> None:
        config = request.elements[element]
        if not config.visible or not text:
            return

        variant = request.variant
        font = load_font(round(config.size), bold=bold)
        limit = variant.codepoint_limits.get(element)
        if limit is not None:
            text = truncate_by_codepoints(text, limit)
        else:
            text = truncate_by_width(
                lambda s: surface.measure_text(s, font), text, variant.text_budget(config)
            )
        surface.draw_text(
            text,
            config.x * surface.width,
            config.y * surface.height,
            font,
            request.theme.text_color,
            baseline=baseline,
        )

    # ------------------------------------------------------------------
    # PAINT_PALETTE
    # ------------------------------------------------------------------

    @staticmethod
    def _paint_palette(
        surface: Surface, request: RenderRequest, assets: RenderAssets
    ) -> None:
        row = request.variant.palette
        if row is None or not assets.palette:
            return
        width = row.swatch_width(surface.width)
        for index, color in enumerate(assets.palette[: row.slots]):
            surface.fill_rect(row.x + width * index, row.y, width, row.height, color.to_css())
