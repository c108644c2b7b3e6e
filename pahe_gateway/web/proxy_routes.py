"""Watch entry point and the token-scoped playlist/segment/key proxies."""

from __future__ import annotations

import logging
from typing import Dict

import aiohttp
from aiohttp import web

from ..api.play_api import PlayAPI
from ..models import GatewaySettings, SessionContext
from ..stream.m3u8_rewriter import rewrite_playlist
from ..stream.transmux import TransmuxSupervisor
from ..utils.http_client import HttpClient, UpstreamFetchError, build_upstream_headers, gen_cookie
from ..utils.token_store import SessionTokenStore
from .middlewares import NO_CACHE_HEADERS

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
RELAY_HEADERS = ("Content-Type", "Content-Length", "Accept-Ranges", "Content-Range")
CHUNK_SIZE = 1 << 16


def _upstream_debug_headers(status: int, content_type: str, url: str) -> Dict[str, str]:
    return {
        "X-Upstream-Status": str(status),
        "X-Upstream-CT": content_type,
        "X-Upstream-URL": url,
    }


class ProxyRoutes:
    """Handlers that hand rewritten manifests to players and relay their follow-up requests."""

    def __init__(
        self,
        settings: GatewaySettings,
        http_client: HttpClient,
        play_api: PlayAPI,
        token_store: SessionTokenStore,
        supervisor: TransmuxSupervisor,
    ) -> None:
        self.settings = settings
        self._client = http_client
        self._play = play_api
        self._tokens = token_store
        self._supervisor = supervisor

    def register(self, app: web.Application) -> None:
        app.router.add_get("/watch/{slug}/{episode}/master.m3u8", self.watch)
        app.router.add_get("/proxy/playlist", self.proxy_playlist)
        app.router.add_get("/proxy/segment", self.proxy_binary)
        app.router.add_get("/proxy/key", self.proxy_binary)

    async def watch(self, request: web.Request) -> web.StreamResponse:
        slug = request.match_info["slug"]
        episode = request.match_info["episode"]
        audio = request.query.get("audio", "")
        resolution = request.query.get("resolution", "")
        transmux = request.query.get("transmux") == "1"
        sid = request.query.get("sid", "")

        cookie = gen_cookie()
        m3u8_url = await self._play.resolve_manifest_url(slug, episode, audio, resolution, cookie)
        if not m3u8_url:
            raise web.HTTPNotFound(text="not found")

        if transmux:
            job = await self._supervisor.prepare(m3u8_url, audio, resolution)
            raise web.HTTPFound(job.redirect_url(sid))

        token = self._tokens.create(SessionContext(cookie=cookie))
        headers = {"cookie": cookie, "referer": self.settings.referer}
        text = await self._client.fetch_text(m3u8_url, headers)
        return web.Response(
            text=rewrite_playlist(text, m3u8_url, token),
            content_type=PLAYLIST_CONTENT_TYPE,
            headers=NO_CACHE_HEADERS,
        )

    async def proxy_playlist(self, request: web.Request) -> web.Response:
        token = request.query.get("token", "")
        url = request.query.get("url", "")
        ref = request.query.get("ref", "")
        context = self._tokens.require(token)

        headers = build_upstream_headers(context.cookie, ref, request.headers)
        async with self._client.stream(url, headers) as upstream:
            try:
                text = await upstream.text(errors="replace")
            except aiohttp.ClientError as exc:
                raise UpstreamFetchError(url, reason=str(exc)) from exc
            status = upstream.status
            upstream_ct = upstream.headers.get("Content-Type", "")

        response_headers = dict(NO_CACHE_HEADERS)
        response_headers.update(_upstream_debug_headers(status, upstream_ct, url))
        return web.Response(
            status=status,
            text=rewrite_playlist(text, url, token),
            content_type=PLAYLIST_CONTENT_TYPE,
            headers=response_headers,
        )

    async def proxy_binary(self, request: web.Request) -> web.StreamResponse:
        """Relays segments, init maps and keys byte-for-byte."""

        token = request.query.get("token", "")
        url = request.query.get("url", "")
        ref = request.query.get("ref", "")
        context = self._tokens.require(token)

        headers = build_upstream_headers(context.cookie, ref, request.headers)
        async with self._client.stream(url, headers) as upstream:
            response = web.StreamResponse(status=upstream.status)
            response.headers.update(NO_CACHE_HEADERS)
            response.headers.update(
                _upstream_debug_headers(upstream.status, upstream.headers.get("Content-Type", ""), url)
            )
            for name in RELAY_HEADERS:
                value = upstream.headers.get(name)
                if value:
                    response.headers[name] = value
            if "Content-Encoding" in upstream.headers:
                # aiohttp already decoded the body, the upstream length no longer applies.
                response.headers.pop("Content-Length", None)

            await response.prepare(request)
            try:
                async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                    await response.write(chunk)
            except aiohttp.ClientError as exc:
                logging.warning("Upstream body for %s broke off: %s", url, exc)
                return response
            await response.write_eof()
            return response
