"""Shared fixtures: a fake origin site and a gateway wired against it."""

import asyncio
import os
from dataclasses import dataclass, field
from typing import List

import pytest
from aiohttp import web

from pahe_gateway.models import GatewaySettings
from pahe_gateway.stream.transmux import TransmuxSupervisor
from pahe_gateway.utils.token_store import SessionTokenStore
from pahe_gateway.web.app import create_app

MASTER_PLAYLIST = "\n".join(
    [
        "#EXTM3U",
        '#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=1280x720,CODECS="avc1.64001f,mp4a.40.2"',
        "720/index.m3u8",
        '#EXT-X-STREAM-INF:BANDWIDTH=900000,CODECS="av01.0.05M.08"',
        "av1/index.m3u8",
        "",
    ]
)

MEDIA_PLAYLIST = "\n".join(
    [
        "#EXTM3U",
        "#EXT-X-TARGETDURATION:4",
        '#EXT-X-KEY:METHOD=AES-128,URI="key.bin"',
        "#EXTINF:4.0,",
        "seg-0.ts",
        "#EXT-X-ENDLIST",
        "",
    ]
)

SEGMENT_BYTES = bytes(range(256)) * 4
KEY_BYTES = b"0123456789abcdef"


@dataclass
class Origin:
    base: str
    requests: List[web.Request] = field(default_factory=list)

    def seen(self, path: str) -> List[web.Request]:
        return [request for request in self.requests if request.path == path]


def build_origin_app(origin: Origin) -> web.Application:
    @web.middleware
    async def record(request, handler):
        origin.requests.append(request)
        return await handler(request)

    async def api(request):
        if request.query.get("m") == "search":
            return web.json_response({"data": [{"title": "Show", "session": "show"}]})
        return web.json_response(
            {
                "data": [{"episode": 2, "session": "sess-2"}, {"episode": 1, "session": "sess-1"}],
                "last_page": 1,
            }
        )

    async def play(request):
        src = f"{request.url.origin()}/e/abc"
        return web.Response(
            text=(
                f'<button data-src="{src}" data-audio="jpn" data-resolution="720" data-av1="0">720p</button>'
                f'<button data-src="{src}" data-audio="eng" data-resolution="1080" data-av1="0">1080p</button>'
            ),
            content_type="text/html",
        )

    async def redirector(request):
        return web.Response(text="<script>eval(packed)</script>", content_type="text/html")

    async def anime(request):
        return web.Response(
            text=(
                '<html><head><meta property="og:title" content="Show Title">'
                '<meta property="og:image" content="https://img.example/p.jpg"></head></html>'
            ),
            content_type="text/html",
        )

    async def master(request):
        return web.Response(text=MASTER_PLAYLIST, content_type="application/vnd.apple.mpegurl")

    async def media(request):
        return web.Response(text=MEDIA_PLAYLIST, content_type="application/vnd.apple.mpegurl")

    async def segment(request):
        headers = {"Accept-Ranges": "bytes", "Content-Type": "video/mp2t"}
        range_header = request.headers.get("Range", "")
        if range_header.startswith("bytes="):
            start, end = (int(value) for value in range_header[6:].split("-"))
            headers["Content-Range"] = f"bytes {start}-{end}/{len(SEGMENT_BYTES)}"
            return web.Response(status=206, body=SEGMENT_BYTES[start : end + 1], headers=headers)
        return web.Response(body=SEGMENT_BYTES, headers=headers)

    async def key(request):
        return web.Response(body=KEY_BYTES, content_type="application/octet-stream")

    async def broken(request):
        return web.Response(status=500, text="boom")

    async def poster(request):
        return web.Response(body=b"\xff\xd8\xff", content_type="image/png")

    async def not_an_image(request):
        return web.Response(text="<html></html>", content_type="text/html")

    app = web.Application(middlewares=[record])
    app.router.add_get("/api", api)
    app.router.add_get("/play/{slug}/{session}", play)
    app.router.add_get("/e/abc", redirector)
    app.router.add_get("/anime/{slug}", anime)
    app.router.add_get("/hls/master.m3u8", master)
    app.router.add_get("/hls/720/index.m3u8", media)
    app.router.add_get("/hls/720/seg-0.ts", segment)
    app.router.add_get("/hls/720/key.bin", key)
    app.router.add_get("/hls/broken.m3u8", broken)
    app.router.add_get("/img/poster.png", poster)
    app.router.add_get("/img/page.html", not_an_image)
    return app


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


class FakeSandbox:
    def __init__(self, url: str) -> None:
        self.url = url
        self.pages: List[str] = []

    async def extract(self, html: str) -> str:
        self.pages.append(html)
        return self.url


class IdleProcess:
    pid = 1234
    returncode = None

    def __init__(self) -> None:
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.returncode = -15
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class WritingSpawner:
    """Stands in for ffmpeg by writing the playlists a run would produce."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.segments = 3

    async def __call__(self, args):
        self.calls.append(args)
        output_dir = os.path.dirname(args[-1])
        if self.segments:
            with open(os.path.join(output_dir, "master.m3u8"), "w", encoding="utf-8") as handle:
                handle.write('#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nstream.m3u8\n')
            with open(args[-1], "w", encoding="utf-8") as handle:
                handle.write("#EXTM3U\n" + "#EXTINF:3.0,\nseg.m4s\n" * self.segments)
        return IdleProcess()


@dataclass
class Gateway:
    client: object
    origin: Origin
    store: SessionTokenStore
    clock: FakeClock
    sandbox: FakeSandbox
    spawner: WritingSpawner
    settings: GatewaySettings


@pytest.fixture
async def origin(aiohttp_server):
    origin = Origin(base="")
    server = await aiohttp_server(build_origin_app(origin))
    origin.base = str(server.make_url("")).rstrip("/")
    return origin


@pytest.fixture
async def gateway(aiohttp_client, origin, tmp_path):
    settings = GatewaySettings(
        origin_host=origin.base,
        cache_root=str(tmp_path / "cache"),
        static_dir=str(tmp_path / "public"),
        prepare_min_segments=2,
        ready_timeout=0.3,
    )
    clock = FakeClock()
    store = SessionTokenStore(ttl=3600, clock=clock)
    spawner = WritingSpawner()
    supervisor = TransmuxSupervisor(
        settings.cache_root,
        min_segments=settings.prepare_min_segments,
        ready_timeout=settings.ready_timeout,
        spawner=spawner,
        file_poll_interval=0.02,
        segment_poll_interval=0.02,
    )
    sandbox = FakeSandbox(f"{origin.base}/hls/master.m3u8")
    app = create_app(settings, token_store=store, supervisor=supervisor, sandbox=sandbox)
    client = await aiohttp_client(app)
    return Gateway(client, origin, store, clock, sandbox, spawner, settings)
