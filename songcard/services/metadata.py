"""
SongCard - Track metadata

Looks up title, artist, artwork, duration and lyrics for a track on a
streaming platform and shapes them into a :class:`MusicCardInfo`.

Only NetEase Cloud Music is supported.  Its song detail and lyric
endpoints are queried concurrently under a single deadline; each call is
retried on its own.  Successful lookups are cached for
``METADATA_CACHE_TTL`` seconds under ``platform:id``.

Also hosts the lyric post-processing used to pick the excerpt printed on
a card, and the share-link resolver that expands short links.
"""

from __future__ import annotations

import asyncio
import math
import re
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from loguru import logger

from songcard.config import (
    BROWSER_USER_AGENT,
    METADATA_DEADLINE,
    NETEASE_API_URL,
    NETEASE_REFERER,
    SUPPORTED_PLATFORMS,
    UPSTREAM_REQUEST_TIMEOUT,
)
from songcard.errors import (
    MissingParameter,
    UnsupportedPlatform,
    UpstreamError,
    UpstreamTimeout,
)
from songcard.models import MusicCardInfo, RetryPolicy
from songcard.services.cache import TTLCache
from songcard.services.retry import Sleep, gather_with_deadline, retry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
METADATA_RETRY = RetryPolicy(max_attempts=2, initial_delay_ms=500, max_delay_ms=2000)
RESOLVE_RETRY = RetryPolicy(max_attempts=3, initial_delay_ms=1000, max_delay_ms=5000)

NETEASE_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Referer": NETEASE_REFERER,
    "Accept": "application/json, text/plain, */*",
}

_LRC_TIMESTAMP = re.compile(r"\[\d{2}:\d{2}\.\d{2,3}\]")
_URL_IN_TEXT = re.compile(r"https?://[^\s]+")

# Credit lines ("lyrics by", "composed by") are never worth printing
_CREDIT_MARKERS = ("作词", "作曲")

# Shown when a track has no usable lyrics
MUSIC_QUOTES = [
    "音乐是流动的建筑，是时光的低语",
    "旋律是心灵的共鸣，节奏是生命的脉动",
    "在音符的海洋里，找寻内心的平静",
    "让音乐带我们去往心灵的远方",
]


# ---------------------------------------------------------------------------
# Lyrics
# ---------------------------------------------------------------------------


def strip_timestamps(lrc: str) -> str:
    """Turn an LRC document into plain text, one non-empty line per lyric."""
    lines = (_LRC_TIMESTAMP.sub("", line).strip() for line in lrc.split("\n"))
    return "\n".join(line for line in lines if line)


def process_lyrics(lyrics: Optional[str], line_count: int = 5) -> str:
    """
    Pick the excerpt printed on a card.

    Timestamps and credit lines are removed.  Short lyrics are returned
    whole; longer ones yield *line_count* lines starting a third of the way
    in, which is usually where the chorus starts.  Without lyrics the first
    *line_count* entries of :data:`MUSIC_QUOTES` are used instead.
    """
    if not lyrics:
        return "\n".join(MUSIC_QUOTES[:line_count])

    lines = [
        line
        for line in (_LRC_TIMESTAMP.sub("", raw).strip() for raw in lyrics.split("\n"))
        if line and not any(marker in line for marker in _CREDIT_MARKERS)
    ]
    if len(lines) <= line_count:
        return "\n".join(lines)

    start = len(lines) // 3
    return "\n".join(lines[start : start + line_count])


# ---------------------------------------------------------------------------
# NetEase adapter
# ---------------------------------------------------------------------------


class NeteaseClient:
    """Talks to the public NetEase Cloud Music web API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = NETEASE_API_URL,
        *,
        request_timeout: float = UPSTREAM_REQUEST_TIMEOUT,
        deadline: float = METADATA_DEADLINE,
        policy: RetryPolicy = METADATA_RETRY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.deadline = deadline
        self.policy = policy
        self.sleep = sleep

    async def fetch(self, track_id: str) -> MusicCardInfo:
        """Fetch detail and lyrics concurrently and merge them."""

        async def detail(abort: asyncio.Event) -> Dict[str, Any]:
            return await retry(
                lambda: self._song_detail(track_id),
                self.policy,
                abort=abort,
                sleep=self.sleep,
                label=f"netease detail {track_id}",
            )

        async def lyric(abort: asyncio.Event) -> Dict[str, Any]:
            return await retry(
                lambda: self._get_json(
                    "/song/lyric", {"id": track_id, "lv": "1", "kv": "1", "tv": "-1"}
                ),
                self.policy,
                abort=abort,
                sleep=self.sleep,
                label=f"netease lyric {track_id}",
            )

        song, lyric_data = await gather_with_deadline(
            detail, lyric, timeout=self.deadline, label=f"netease {track_id}"
        )
        return self._to_info(song, lyric_data)

    async def _song_detail(self, track_id: str) -> Dict[str, Any]:
        data = await self._get_json(
            "/song/detail/", {"id": track_id, "ids": f"[{track_id}]"}
        )
        songs = data.get("songs") or []
        if not songs:
            raise UpstreamError(f"Song not found: {track_id}")
        return songs[0]

    async def _get_json(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = await self.client.get(
                self.base_url + path,
                params=params,
                headers=NETEASE_HEADERS,
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"NetEase request timed out: {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"NetEase request failed: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(
                f"NetEase answered HTTP {resp.status_code} for {path}",
                status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"NetEase returned malformed JSON for {path}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"NetEase returned an unexpected payload for {path}")
        return data

    @staticmethod
    def _to_info(song: Dict[str, Any], lyric_data: Dict[str, Any]) -> MusicCardInfo:
        artists = ", ".join(a.get("name", "") for a in song.get("artists") or [])
        album = song.get("album") or {}
        raw_lyrics = (lyric_data.get("lrc") or {}).get("lyric") or ""
        return MusicCardInfo(
            title=song.get("name", ""),
            artist=artists,
            cover_url=album.get("picUrl", ""),
            lyrics=strip_timestamps(raw_lyrics),
            duration_seconds=math.floor((song.get("duration") or 0) / 1000),
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

Fetcher = Callable[[str], Awaitable[MusicCardInfo]]


class MetadataService:
    """Read-through cache in front of the platform adapters."""

    def __init__(
        self,
        cache: TTLCache[str, MusicCardInfo],
        netease: NeteaseClient,
    ) -> None:
        self.cache = cache
        self._fetchers: Dict[str, Fetcher] = {"netease": netease.fetch}

    async def get(self, platform: str, track_id: str) -> MusicCardInfo:
        if not platform or not track_id:
            raise MissingParameter("Missing required parameters: platform, id")

        platform = platform.lower()
        if platform not in SUPPORTED_PLATFORMS or platform not in self._fetchers:
            raise UnsupportedPlatform(platform)

        key = f"{platform}:{track_id}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("📦 Metadata cache hit for {}", key)
            return cached

        logger.info("🔍 Fetching metadata for {}", key)
        info = await self._fetchers[platform](track_id)
        self.cache.set(key, info)
        logger.success("✅ Metadata for {}: '{}' by '{}'", key, info.title, info.artist)
        return info


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


def extract_url(text: str) -> Optional[str]:
    """Return the first http(s) URL in a pasted share message."""
    match = _URL_IN_TEXT.search(text or "")
    return match.group(0) if match else None


async def resolve_share_url(
    client: httpx.AsyncClient,
    text: str,
    *,
    policy: RetryPolicy = RESOLVE_RETRY,
    sleep: Sleep = asyncio.sleep,
    timeout: float = UPSTREAM_REQUEST_TIMEOUT,
) -> str:
    """Follow the redirects of the first URL in *text* and return where they end."""
    url = extract_url(text)
    if not url:
        raise MissingParameter("No URL found in the given text")

    async def attempt() -> str:
        try:
            resp = await client.get(
                url,
                headers={"User-Agent": BROWSER_USER_AGENT},
                follow_redirects=True,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Timed out resolving {url}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to resolve {url}: {e}") from e
        if resp.status_code >= 400:
            raise UpstreamError(
                f"HTTP error! status: {resp.status_code}", status=resp.status_code
            )
        return str(resp.url)

    final = await retry(attempt, policy, sleep=sleep, label=f"resolve {url}")
    logger.info("🔗 Resolved {} → {}", url, final)
    return final
