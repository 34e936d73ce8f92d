"""
SongCard - Image proxy

Fetches third-party artwork on behalf of the browser so cover pixels can be
read back from a canvas (origin servers rarely send CORS headers).  The
upstream body is streamed through untouched; the route adds long-lived
cache headers, a weak ETag and ``Access-Control-Allow-Origin: *``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import AsyncIterator, Dict
from urllib.parse import urlsplit

import httpx
from loguru import logger

from songcard.config import BROWSER_USER_AGENT, NETEASE_REFERER, PROXY_TIMEOUT
from songcard.errors import InvalidRequest, UpstreamError, UpstreamTimeout

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}

# NetEase's CDN refuses hot-linked artwork without a music.163.com referer
_NETEASE_HOSTS = ("music.126.net", "music.163.com", "163.com")


def referer_for(url: str) -> str:
    """Pick the Referer an origin expects for one of its own images."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if any(host == h or host.endswith("." + h) for h in _NETEASE_HOSTS):
        return NETEASE_REFERER
    return f"{parts.scheme}://{parts.netloc}/"


def browser_headers(url: str) -> Dict[str, str]:
    return {
        "User-Agent": BROWSER_USER_AGENT,
        "Referer": referer_for(url),
        "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    }


def weak_etag(url: str) -> str:
    """The proxied bytes are treated as immutable per URL."""
    return 'W/"{}"'.format(hashlib.sha1(url.encode("utf-8")).hexdigest())


def validate_image_url(url: str) -> str:
    scheme = urlsplit(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidRequest("Image URL must be an absolute http(s) URL")
    return url


@dataclass
class ProxiedImage:
    """An open upstream response whose body has not been read yet."""

    response: httpx.Response
    content_type: str
    etag: str

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()


async def fetch_upstream_image(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = PROXY_TIMEOUT,
) -> ProxiedImage:
    """
    Start streaming *url* from its origin.

    Raises :class:`UpstreamTimeout` when the origin does not answer in
    time and :class:`UpstreamError` (carrying the upstream status when
    there is one) for transport failures and non-2xx answers.  The caller
    owns the returned response and must :meth:`ProxiedImage.aclose` it.
    """
    validate_image_url(url)
    request = client.build_request(
        "GET", url, headers=browser_headers(url), timeout=timeout
    )
    try:
        response = await client.send(request, stream=True, follow_redirects=True)
    except httpx.TimeoutException as e:
        logger.warning("⏱️ Image proxy timed out fetching {}: {}", url, e)
        raise UpstreamTimeout(f"Timed out fetching image: {url}") from e
    except httpx.HTTPError as e:
        logger.warning("⚠️ Image proxy failed fetching {}: {}", url, e)
        raise UpstreamError(f"Failed to fetch image: {e}") from e

    if not response.is_success:
        status = response.status_code
        await response.aclose()
        logger.warning("⚠️ Image proxy got HTTP {} for {}", status, url)
        raise UpstreamError(f"Failed to fetch image: HTTP {status}", status=status)

    content_type = response.headers.get("content-type", "image/jpeg")
    logger.debug("🖼️ Proxying {} ({})", url, content_type)
    return ProxiedImage(response=response, content_type=content_type, etag=weak_etag(url))
