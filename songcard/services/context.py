"""
SongCard - Service context

One :class:`CardServices` instance owns the shared ``httpx.AsyncClient``
and every cache.  The FastAPI lifespan creates it on startup and closes it
on shutdown; the CLI does the same around a single render.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import httpx
from loguru import logger
from PIL import Image

from songcard.config import METADATA_CACHE_TTL
from songcard.models import MusicCardInfo, RGBColor
from songcard.services.cache import TTLCache
from songcard.services.colors import ColorService
from songcard.services.compositor import CardCompositor
from songcard.services.image_loader import ImageLoader
from songcard.services.metadata import MetadataService, NeteaseClient


def build_client(timeout: float = 30.0) -> httpx.AsyncClient:
    limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
    return httpx.AsyncClient(timeout=timeout, limits=limits)


@dataclass
class CardServices:
    client: httpx.AsyncClient
    metadata_cache: TTLCache[str, MusicCardInfo]
    image_cache: TTLCache[str, Image.Image]
    color_cache: TTLCache[str, List[RGBColor]]
    metadata: MetadataService
    images: ImageLoader
    colors: ColorService
    compositor: CardCompositor

    @classmethod
    def create(
        cls,
        client: Optional[httpx.AsyncClient] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        netease: Optional[NeteaseClient] = None,
        **loader_options,
    ) -> "CardServices":
        """Wire every service around one HTTP client."""
        client = client if client is not None else build_client()
        metadata_cache: TTLCache[str, MusicCardInfo] = TTLCache(
            ttl=METADATA_CACHE_TTL, clock=clock, name="metadata"
        )
        image_cache: TTLCache[str, Image.Image] = TTLCache(clock=clock, name="images")
        color_cache: TTLCache[str, List[RGBColor]] = TTLCache(clock=clock, name="colors")

        images = ImageLoader(client, image_cache, **loader_options)
        colors = ColorService(color_cache)
        metadata = MetadataService(
            metadata_cache, netease if netease is not None else NeteaseClient(client)
        )
        return cls(
            client=client,
            metadata_cache=metadata_cache,
            image_cache=image_cache,
            color_cache=color_cache,
            metadata=metadata,
            images=images,
            colors=colors,
            compositor=CardCompositor(images, colors),
        )

    def cache_sizes(self) -> Dict[str, int]:
        return {
            cache.name: len(cache)
            for cache in (self.metadata_cache, self.image_cache, self.color_cache)
        }

    async def aclose(self) -> None:
        await self.client.aclose()
        logger.debug("🔌 HTTP client closed")
