"""
SongCard - API Tests

Tests for songcard/routes/api.py and the app factory in songcard/main.py.
Validates:
- /health reports version and cache sizes
- /metadata: payload shape, cache header, 400/502/504 mapping, caching
- /image-proxy: streaming, CORS, ETag / 304, upstream status propagation
- /resolve: redirect following and error shapes
- /render: PNG output, metadata-backed renders and validation errors
"""

from io import BytesIO
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import data_uri, image_bytes
from songcard.errors import RetryExhausted, UpstreamError
from songcard.main import create_app
from songcard.services.image_proxy import weak_etag
from songcard.services.metadata import MetadataService, NeteaseClient


def upstream(netease_detail, netease_lyric, calls):
    """One fake internet: NetEase, an image CDN and a link shortener."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        host, path = request.url.host, request.url.path
        if host == "music.163.com" and path.endswith("/song/detail/"):
            if request.url.params.get("id") == "404":
                return httpx.Response(200, json={"songs": []})
            return httpx.Response(200, json=netease_detail)
        if host == "music.163.com" and path.endswith("/song/lyric"):
            return httpx.Response(200, json=netease_lyric)
        if host == "img.test" and path == "/cover.png":
            return httpx.Response(
                200, content=image_bytes((0, 255, 0)), headers={"content-type": "image/png"}
            )
        if host == "img.test" and path == "/slow.png":
            raise httpx.ReadTimeout("slow", request=request)
        if host == "163cn.tv":
            return httpx.Response(
                302, headers={"location": "https://music.163.com/song?id=12345"}
            )
        if host == "music.163.com" and path == "/song":
            return httpx.Response(200, text="<html></html>")
        return httpx.Response(404)

    return handler


@pytest.fixture
def calls():
    return []


@pytest.fixture
def client(make_services, netease_detail, netease_lyric, calls, no_sleep):
    netease_detail["songs"][0]["album"]["picUrl"] = "https://img.test/cover.png"
    services = make_services(upstream(netease_detail, netease_lyric, calls))
    services.metadata = MetadataService(
        services.metadata_cache, NeteaseClient(services.client, sleep=no_sleep)
    )
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client


# ===========================================================================
# Health
# ===========================================================================


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert set(body["caches"]) == {"metadata", "images", "colors"}


# ===========================================================================
# Metadata
# ===========================================================================


class TestMetadataEndpoint:
    def test_payload_and_cache_header(self, client):
        resp = client.get("/metadata", params={"platform": "netease", "id": "12345"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=3600"
        assert resp.json() == {
            "title": "Test Song",
            "artist": "Artist A, Artist B",
            "coverUrl": "https://img.test/cover.png",
            "lyrics": "作词 : Someone\nFirst line\nSecond line",
            "duration": 215,
        }

    def test_second_call_served_from_cache(self, client, calls):
        client.get("/metadata", params={"platform": "netease", "id": "12345"})
        client.get("/metadata", params={"platform": "netease", "id": "12345"})
        assert len(calls) == 2

    def test_missing_params(self, client):
        resp = client.get("/metadata", params={"platform": "netease"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "missing_parameter"

    def test_unsupported_platform(self, client):
        resp = client.get("/metadata", params={"platform": "spotify", "id": "1"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_platform"

    def test_song_not_found_is_502(self, client):
        resp = client.get("/metadata", params={"platform": "netease", "id": "404"})
        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "retry_exhausted"
        assert body["attempts"] == 2


# ===========================================================================
# Image proxy
# ===========================================================================


class TestImageProxy:
    def test_streams_image_with_headers(self, client):
        url = "https://img.test/cover.png"
        resp = client.get("/image-proxy", params={"url": url})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "max-age=31536000" in resp.headers["cache-control"]
        assert resp.headers["etag"] == weak_etag(url)
        assert Image.open(BytesIO(resp.content)).getpixel((0, 0))[:3] == (0, 255, 0)

    def test_missing_url(self, client):
        resp = client.get("/image-proxy")
        assert resp.status_code == 400
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_not_modified(self, client, calls):
        url = "https://img.test/cover.png"
        resp = client.get(
            "/image-proxy", params={"url": url}, headers={"If-None-Match": weak_etag(url)}
        )
        assert resp.status_code == 304
        assert calls == []

    def test_upstream_status_propagated(self, client):
        resp = client.get("/image-proxy", params={"url": "https://img.test/nope.png"})
        assert resp.status_code == 404

    def test_upstream_timeout(self, client):
        resp = client.get("/image-proxy", params={"url": "https://img.test/slow.png"})
        assert resp.status_code == 504

    def test_rejects_non_http(self, client):
        resp = client.get("/image-proxy", params={"url": "file:///etc/passwd"})
        assert resp.status_code == 400

    def test_preflight(self, client):
        resp = client.options("/image-proxy")
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-methods"] == "GET, OPTIONS"
        assert resp.headers["access-control-allow-headers"] == "Content-Type"
        assert resp.headers["access-control-max-age"] == "86400"


# ===========================================================================
# Resolve
# ===========================================================================


class TestResolve:
    def test_follows_share_link(self, client):
        resp = client.get("/resolve", params={"url": "听听这首 https://163cn.tv/xyz 好听"})
        assert resp.status_code == 200
        assert resp.json() == {"url": "https://music.163.com/song?id=12345"}

    def test_missing_url(self, client):
        assert client.get("/resolve").status_code == 400

    def test_text_without_url(self, client):
        assert client.get("/resolve", params={"url": "no link"}).status_code == 400

    def test_failure_is_500(self, client):
        failure = RetryExhausted(3, UpstreamError("HTTP error! status: 404", status=404))
        with patch("songcard.routes.api.resolve_share_url", side_effect=failure):
            resp = client.get("/resolve", params={"url": "https://img.test/missing"})
        assert resp.status_code == 500
        assert "error" in resp.json()


# ===========================================================================
# Render
# ===========================================================================


class TestRender:
    def _info(self):
        return {
            "title": "Song",
            "artist": "Artist",
            "coverUrl": data_uri((10, 120, 200)),
            "lyrics": "la la la",
            "duration": 200,
        }

    def test_render_poster_png(self, client):
        resp = client.post("/render", json={"info": self._info()})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert Image.open(BytesIO(resp.content)).size == (1140, 1740)

    def test_render_phone_with_background(self, client):
        body = {
            "info": self._info(),
            "variant": "phone",
            "background": {"imageUrl": data_uri((90, 90, 90)), "blur": 4, "opacity": 0.8},
            "useGradient": True,
        }
        resp = client.post("/render", json=body)
        assert resp.status_code == 200
        assert Image.open(BytesIO(resp.content)).size == (1000, 1500)

    def test_render_from_metadata(self, client, calls):
        resp = client.post("/render", json={"platform": "netease", "id": "12345"})
        assert resp.status_code == 200
        assert any(r.url.host == "img.test" for r in calls)

    def test_element_override(self, client):
        body = {"info": self._info(), "elements": {"lyrics": {"visible": False}}}
        assert client.post("/render", json=body).status_code == 200

    def test_unknown_variant(self, client):
        resp = client.post("/render", json={"info": self._info(), "variant": "vinyl"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_variant"

    def test_invalid_element(self, client):
        body = {"info": self._info(), "elements": {"cover": {"x": 1.5}}}
        resp = client.post("/render", json=body)
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_request"

    def test_invalid_blur(self, client):
        body = {"info": self._info(), "variant": "phone", "background": {"blur": 50}}
        assert client.post("/render", json=body).status_code == 400

    def test_no_track(self, client):
        resp = client.post("/render", json={"variant": "poster"})
        assert resp.status_code == 400

    def test_broken_cover_is_render_error(self, client):
        info = {**self._info(), "coverUrl": "https://img.test/nope.png"}
        resp = client.post("/render", json={"info": info})
        assert resp.status_code == 500
        assert resp.json()["code"] == "render_error"
