"""
SongCard - Pytest Configuration & Shared Fixtures

Provides reusable fixtures for:
- Sample track metadata and NetEase API payloads
- Solid-colour test images (as Pillow images, PNG bytes and data URIs)
- A controllable clock for cache expiry
- A recording sleep so retry tests never actually wait
- httpx clients backed by ``httpx.MockTransport``
- A fully wired ``CardServices`` for compositor and API tests
"""

import base64
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest
from PIL import Image

from songcard.models import MusicCardInfo
from songcard.services.context import CardServices

# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def make_image(color: Tuple[int, int, int], size: Tuple[int, int] = (40, 40)) -> Image.Image:
    return Image.new("RGBA", size, color + (255,))


def image_bytes(color: Tuple[int, int, int], size: Tuple[int, int] = (40, 40)) -> bytes:
    buf = BytesIO()
    make_image(color, size).save(buf, "PNG")
    return buf.getvalue()


def data_uri(color: Tuple[int, int, int], size: Tuple[int, int] = (40, 40)) -> str:
    encoded = base64.b64encode(image_bytes(color, size)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


@pytest.fixture
def red_png() -> bytes:
    return image_bytes((255, 0, 0))


@pytest.fixture
def assets_dir(tmp_path: Path) -> Path:
    """Assets directory holding a phone frame template."""
    d = tmp_path / "assets"
    (d / "templates").mkdir(parents=True)
    frame = Image.new("RGBA", (100, 150), (0, 0, 0, 0))
    frame.save(d / "templates" / "phone.png")
    return d


# ---------------------------------------------------------------------------
# Track metadata
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_track() -> MusicCardInfo:
    return MusicCardInfo(
        title="晴天",
        artist="周杰伦",
        cover_url=data_uri((200, 40, 40)),
        lyrics="故事的小黄花\n从出生那年就飘着\n童年的荡秋千",
        duration_seconds=269,
    )


@pytest.fixture
def netease_detail() -> Dict[str, Any]:
    return {
        "songs": [
            {
                "name": "Test Song",
                "duration": 215_999,
                "artists": [{"name": "Artist A"}, {"name": "Artist B"}],
                "album": {"picUrl": "https://p1.music.126.net/cover.jpg"},
            }
        ],
        "code": 200,
    }


@pytest.fixture
def netease_lyric() -> Dict[str, Any]:
    return {
        "lrc": {
            "lyric": "[00:00.00] 作词 : Someone\n[00:01.50]First line\n\n"
            "[00:05.123]Second line\n[00:09.00]   \n"
        },
        "code": 200,
    }


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def mock_client() -> Callable[[Handler], httpx.AsyncClient]:
    """Factory: build an AsyncClient whose requests are answered by *handler*."""

    def factory(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def make_services(mock_client, assets_dir, clock):
    """Factory: wire CardServices around a mocked upstream."""

    def factory(handler: Handler, **options: Any) -> CardServices:
        options.setdefault("assets_dir", assets_dir)
        options.setdefault("proxy_base_url", "")
        return CardServices.create(mock_client(handler), clock=clock, **options)

    return factory
