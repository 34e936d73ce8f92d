"""
SongCard - JSON API Routes

Provides the HTTP endpoints for:
- Track metadata lookup (cached)
- Image proxy for cross-origin artwork
- Share-link resolution
- Card rendering to PNG
- Health check

Errors raised as :class:`songcard.errors.CardError` are turned into JSON
responses by the exception handler registered in :mod:`songcard.main`.
"""

import time
from typing import Dict, List, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from songcard.config import APP_VERSION, METADATA_CACHE_CONTROL, PROXY_CACHE_CONTROL
from songcard.errors import CardError, InvalidRequest, MissingParameter, UpstreamTimeout
from songcard.models import (
    BackgroundConfig,
    ElementConfig,
    GradientConfig,
    MusicCardInfo,
    Theme,
)
from songcard.services.compositor import RenderRequest
from songcard.services.context import CardServices
from songcard.services.image_proxy import (
    CORS_HEADERS,
    PREFLIGHT_HEADERS,
    fetch_upstream_image,
    weak_etag,
)
from songcard.services.metadata import process_lyrics, resolve_share_url
from songcard.variants import VariantProfile, get_theme, get_variant

router = APIRouter(tags=["API"])

# Track startup time for health check
_START_TIME = time.time()


def _services(request: Request) -> CardServices:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TrackInfoBody(_CamelModel):
    title: str = ""
    artist: str = ""
    cover_url: str = Field("", alias="coverUrl")
    lyrics: str = ""
    duration: int = 0
    play_duration: Optional[int] = Field(None, alias="playDuration")


class ElementBody(_CamelModel):
    x: Optional[float] = None
    y: Optional[float] = None
    size: Optional[float] = None
    visible: Optional[bool] = None


class GradientBody(_CamelModel):
    angle: float = 180
    colors: List[str] = Field(
        default_factory=lambda: ["rgba(0, 0, 0, 0.7)", "rgba(0, 0, 0, 0.3)"]
    )
    stops: List[float] = Field(default_factory=lambda: [0.0, 1.0])


class BackgroundBody(_CamelModel):
    image_url: Optional[str] = Field(None, alias="imageUrl")
    blur: float = 0
    opacity: float = 1
    gradient: Optional[GradientBody] = None


class ThemeBody(_CamelModel):
    id: str = "custom"
    name: str = "Custom"
    background: str
    background_kind: str = Field("color", alias="backgroundKind")
    text_color: str = Field("#ffffff", alias="textColor")
    secondary_text_color: Optional[str] = Field(None, alias="secondaryTextColor")


class RenderBody(_CamelModel):
    info: Optional[TrackInfoBody] = None
    platform: Optional[str] = None
    id: Optional[str] = None
    variant: str = "poster"
    theme_id: Optional[str] = Field(None, alias="themeId")
    theme: Optional[ThemeBody] = None
    elements: Dict[str, ElementBody] = Field(default_factory=dict)
    background: Optional[BackgroundBody] = None
    use_gradient: bool = Field(False, alias="useGradient")


def _build_render_request(
    body: RenderBody, info: MusicCardInfo, variant: VariantProfile
) -> RenderRequest:
    """Translate the JSON body into validated render inputs."""
    try:
        if body.theme is not None:
            theme = Theme(
                id=body.theme.id,
                name=body.theme.name,
                background=body.theme.background,
                background_kind=body.theme.background_kind,
                text_color=body.theme.text_color,
                secondary_text_color=body.theme.secondary_text_color,
            )
        else:
            theme = get_theme(body.theme_id or variant.default_theme)

        elements: Dict[str, ElementConfig] = {}
        for name, override in body.elements.items():
            if name not in variant.elements:
                raise ValueError(f"Unknown element: {name}")
            base = variant.elements[name]
            elements[name] = ElementConfig(
                x=base.x if override.x is None else override.x,
                y=base.y if override.y is None else override.y,
                size=base.size if override.size is None else override.size,
                visible=base.visible if override.visible is None else override.visible,
            )

        background = None
        if body.background is not None:
            gradient = None
            if body.background.gradient is not None:
                gradient = GradientConfig(
                    angle_degrees=body.background.gradient.angle,
                    colors=list(body.background.gradient.colors),
                    stops=list(body.background.gradient.stops),
                )
            background = BackgroundConfig(
                image_url=body.background.image_url,
                blur_radius=body.background.blur,
                opacity=body.background.opacity,
                gradient=gradient,
            )

        return RenderRequest.build(
            info,
            variant,
            theme=theme,
            elements=elements,
            background=background,
            use_gradient=body.use_gradient,
        )
    except ValueError as e:
        raise InvalidRequest(str(e)) from e


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the service."""
    uptime = round(time.time() - _START_TIME, 2)
    return {
        "status": "ok",
        "version": APP_VERSION,
        "uptime_seconds": uptime,
        "caches": _services(request).cache_sizes(),
    }


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------
@router.get("/metadata")
async def api_metadata(
    request: Request,
    platform: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
):
    """Look up a track on a streaming platform."""
    if not platform or not id:
        raise MissingParameter("Missing required parameters: platform, id")

    info = await _services(request).metadata.get(platform, id)
    return JSONResponse(
        info.to_payload(), headers={"Cache-Control": METADATA_CACHE_CONTROL}
    )


# ---------------------------------------------------------------------------
# Image proxy
# ---------------------------------------------------------------------------
@router.get("/image-proxy")
async def api_image_proxy(request: Request, url: Optional[str] = Query(None)):
    """Stream third-party artwork with permissive CORS and long caching."""
    if not url:
        return JSONResponse(
            {"error": "Missing image URL", "code": MissingParameter.code},
            status_code=400,
            headers=CORS_HEADERS,
        )

    etag = weak_etag(url)
    cache_headers = {
        **CORS_HEADERS,
        "Cache-Control": PROXY_CACHE_CONTROL,
        "ETag": etag,
    }
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=cache_headers)

    try:
        upstream = await fetch_upstream_image(_services(request).client, url)
    except UpstreamTimeout as e:
        return JSONResponse(e.to_dict(), status_code=504, headers=CORS_HEADERS)
    except CardError as e:
        status = getattr(e, "status", None) or e.status_code
        return JSONResponse(e.to_dict(), status_code=status, headers=CORS_HEADERS)

    return StreamingResponse(
        upstream.iter_bytes(),
        media_type=upstream.content_type,
        headers=cache_headers,
        background=BackgroundTask(upstream.aclose),
    )


@router.options("/image-proxy")
async def api_image_proxy_preflight():
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------
@router.get("/resolve")
async def api_resolve(request: Request, url: Optional[str] = Query(None)):
    """Expand a (short) share link to its final URL."""
    if not url:
        raise MissingParameter("URL parameter must not be empty")

    try:
        final = await resolve_share_url(_services(request).client, url)
    except MissingParameter:
        raise
    except CardError as e:
        logger.error("❌ Failed to resolve {}: {}", url, e)
        return JSONResponse({"error": e.message}, status_code=500)
    return {"url": final}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
@router.post("/render")
async def api_render(request: Request, body: RenderBody):
    """Render a card and return it as PNG.

    The track comes from ``info`` or, when absent, from a metadata lookup
    of ``platform`` + ``id`` (lyrics trimmed to a short excerpt).
    """
    services = _services(request)
    variant = get_variant(body.variant)

    if body.info is not None:
        info = MusicCardInfo(
            title=body.info.title,
            artist=body.info.artist,
            cover_url=body.info.cover_url,
            lyrics=body.info.lyrics,
            duration_seconds=body.info.duration,
            play_duration_seconds=body.info.play_duration,
        )
    elif body.platform and body.id:
        fetched = await services.metadata.get(body.platform, body.id)
        line_count = 1 if variant.name == "phone" else 5
        info = fetched.with_overrides(lyrics=process_lyrics(fetched.lyrics, line_count))
    else:
        raise MissingParameter("Provide either info or platform and id")

    render_request = _build_render_request(body, info, variant)
    png = await services.compositor.render_png(render_request)
    return Response(content=png, media_type="image/png")
