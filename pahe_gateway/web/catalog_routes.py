"""JSON catalog endpoints, the image relay, cached transmux output, and health."""

from __future__ import annotations

import logging
import os
import time
from urllib.parse import urlsplit

from aiohttp import web

from ..api.catalog_api import CatalogAPI
from ..api.play_api import PlayAPI, list_choices
from ..models import GatewaySettings
from ..utils.file_utils import resolve_inside
from ..utils.http_client import HttpClient, UpstreamFetchError, gen_cookie
from .middlewares import NO_CACHE_HEADERS

IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"
CACHE_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".m4s": "video/iso.segment",
}


def _failure(name: str) -> web.Response:
    return web.json_response({"error": f"{name}_failed"}, status=500)


class CatalogRoutes:
    """Thin JSON wrappers over the origin plus local file serving."""

    def __init__(
        self,
        settings: GatewaySettings,
        http_client: HttpClient,
        catalog: CatalogAPI,
        play_api: PlayAPI,
    ) -> None:
        self.settings = settings
        self._client = http_client
        self._catalog = catalog
        self._play = play_api

    def register(self, app: web.Application) -> None:
        app.router.add_get("/api/search", self.search)
        app.router.add_get("/api/anime/{slug}/episodes", self.episodes)
        app.router.add_get("/api/anime/{slug}/meta", self.meta)
        app.router.add_get("/api/options/{slug}/{episode}", self.options)
        app.router.add_get("/img", self.image)
        app.router.add_get("/cache/{path:.+}", self.cache_file)
        app.router.add_get("/health", self.health)
        app.router.add_get("/favicon.ico", self.favicon)

    async def search(self, request: web.Request) -> web.Response:
        query = request.query.get("q", "").strip()
        if not query:
            return web.json_response({"error": "missing q"}, status=400)
        try:
            data = await self._catalog.search(query, gen_cookie())
        except UpstreamFetchError as exc:
            logging.warning("Search for %r failed: %s", query, exc)
            return _failure("search")
        return web.json_response(data)

    async def episodes(self, request: web.Request) -> web.Response:
        slug = request.match_info["slug"]
        try:
            episodes = await self._catalog.get_all_episodes(slug, gen_cookie())
        except UpstreamFetchError as exc:
            logging.warning("Episode listing for %s failed: %s", slug, exc)
            return _failure("episodes")
        return web.json_response({"data": [item.raw for item in episodes]})

    async def options(self, request: web.Request) -> web.Response:
        slug = request.match_info["slug"]
        episode = request.match_info["episode"]
        try:
            html = await self._play.get_play_page(slug, episode, gen_cookie())
        except UpstreamFetchError as exc:
            logging.warning("Options for %s episode %s failed: %s", slug, episode, exc)
            return _failure("options")
        if html is None:
            return web.json_response({"error": "not_found"}, status=404)
        choices = [{"audio": audio, "resolution": resolution} for audio, resolution in list_choices(html)]
        return web.json_response({"options": choices})

    async def meta(self, request: web.Request) -> web.Response:
        slug = request.match_info["slug"]
        try:
            meta = await self._catalog.get_meta(slug, gen_cookie())
        except UpstreamFetchError as exc:
            logging.warning("Metadata for %s failed: %s", slug, exc)
            return _failure("meta")
        return web.json_response(meta.model_dump())

    async def image(self, request: web.Request) -> web.StreamResponse:
        url = request.query.get("url", "")
        if not url:
            return web.Response(status=400, text="missing url")
        parts = urlsplit(url)
        referer = f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else self.settings.referer
        headers = {"referer": referer, "accept": IMAGE_ACCEPT}

        async with self._client.stream(url, headers) as upstream:
            if upstream.status >= 400:
                return web.Response(status=upstream.status)
            content_type = upstream.headers.get("Content-Type", "")
            if not content_type.lower().startswith("image/"):
                content_type = "image/jpeg"
            body = await upstream.read()
        return web.Response(body=body, headers={"Content-Type": content_type, "Cache-Control": "no-store"})

    async def cache_file(self, request: web.Request) -> web.StreamResponse:
        path = resolve_inside(self.settings.cache_root, request.match_info["path"])
        if path is None or not os.path.isfile(path):
            raise web.HTTPNotFound()
        headers = dict(NO_CACHE_HEADERS)
        content_type = CACHE_CONTENT_TYPES.get(os.path.splitext(path)[1].lower())
        if content_type:
            headers["Content-Type"] = content_type
        return web.FileResponse(path, headers=headers)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "time": int(time.time() * 1000)})

    async def favicon(self, request: web.Request) -> web.Response:
        return web.Response(status=204)
