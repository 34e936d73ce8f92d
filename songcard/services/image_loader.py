"""
SongCard - Image loader

Turns an image reference into a decoded Pillow bitmap.  References come in
three shapes:

- ``data:`` URIs are decoded in place;
- ``/``-rooted paths are static assets read from ``ASSETS_DIR``;
- anything else is remote.  When ``IMAGE_PROXY_BASE_URL`` is configured the
  request goes through ``{base}/image-proxy?url=...``, otherwise straight
  to the origin with browser-like headers.

Every load has a hard timeout and decoded images are remembered per
original reference for the life of the loader.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from io import BytesIO
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote_to_bytes

import aiofiles
import httpx
from loguru import logger
from PIL import Image, UnidentifiedImageError

from songcard.config import ASSETS_DIR, IMAGE_LOAD_TIMEOUT, IMAGE_PROXY_BASE_URL
from songcard.errors import ImageLoadError
from songcard.services.cache import TTLCache
from songcard.services.image_proxy import browser_headers


def proxied_url(url: str, proxy_base_url: str = IMAGE_PROXY_BASE_URL) -> str:
    """Rewrite a remote URL to go through the image proxy.

    Local asset paths, data URIs and an empty proxy base are left alone.
    """
    if not proxy_base_url or url.startswith("/") or url.startswith("data:"):
        return url
    return f"{proxy_base_url.rstrip('/')}/image-proxy?url={quote(url, safe='')}"


def decode_data_uri(uri: str) -> bytes:
    """Return the payload of a ``data:[<mediatype>][;base64],<data>`` URI."""
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ValueError("data URI has no payload separator")
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=False)
    return unquote_to_bytes(payload)


class ImageLoader:
    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[TTLCache[str, Image.Image]] = None,
        *,
        assets_dir: Path = ASSETS_DIR,
        proxy_base_url: str = IMAGE_PROXY_BASE_URL,
        timeout: float = IMAGE_LOAD_TIMEOUT,
    ) -> None:
        self.client = client
        self.cache: TTLCache[str, Image.Image] = (
            cache if cache is not None else TTLCache(name="images")
        )
        self.assets_dir = Path(assets_dir)
        self.proxy_base_url = proxy_base_url
        self.timeout = timeout

    def resolve_url(self, url: str) -> str:
        return proxied_url(url, self.proxy_base_url)

    async def load(self, url: str) -> Image.Image:
        """Load and decode *url*, raising :class:`ImageLoadError` on failure."""
        if not url:
            raise ImageLoadError(url, ImageLoadError.NETWORK, "empty image reference")

        cached = self.cache.get(url)
        if cached is not None:
            return cached

        try:
            data = await asyncio.wait_for(self._read(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("⏱️ Image load timed out after {}s: {}", self.timeout, url[:120])
            raise ImageLoadError(
                url, ImageLoadError.TIMEOUT, f"no response within {self.timeout}s"
            ) from None

        image = _decode(url, data)
        self.cache.set(url, image)
        logger.debug("🖼️ Loaded image {}x{} from {}", image.width, image.height, url[:120])
        return image

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def _read(self, url: str) -> bytes:
        if url.startswith("data:"):
            try:
                return decode_data_uri(url)
            except (ValueError, binascii.Error) as e:
                raise ImageLoadError(url, ImageLoadError.DECODE, str(e)) from e
        if url.startswith("/"):
            return await self._read_asset(url)
        return await self._fetch(url)

    async def _read_asset(self, url: str) -> bytes:
        root = self.assets_dir.resolve()
        path = (root / url.lstrip("/")).resolve()
        if root != path and root not in path.parents:
            raise ImageLoadError(url, ImageLoadError.NETWORK, "path escapes the assets directory")
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise ImageLoadError(url, ImageLoadError.NETWORK, str(e)) from e

    async def _fetch(self, url: str) -> bytes:
        target = self.resolve_url(url)
        headers = {} if target != url else browser_headers(url)
        try:
            response = await self.client.get(target, headers=headers, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise ImageLoadError(url, ImageLoadError.TIMEOUT, str(e)) from e
        except httpx.HTTPError as e:
            raise ImageLoadError(url, ImageLoadError.NETWORK, str(e)) from e

        if not response.is_success:
            raise ImageLoadError(
                url, ImageLoadError.NETWORK, f"HTTP {response.status_code}"
            )
        return response.content


def _decode(url: str, data: bytes) -> Image.Image:
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageLoadError(url, ImageLoadError.DECODE, str(e)) from e
