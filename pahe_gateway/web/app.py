"""Application factory wiring the gateway components into an aiohttp app."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import AsyncIterator, Optional

from aiohttp import web

from ..api.catalog_api import CatalogAPI
from ..api.play_api import PlayAPI
from ..models import GatewaySettings
from ..stream.script_sandbox import ScriptSandbox
from ..stream.transmux import TransmuxSupervisor
from ..utils.http_client import HttpClient
from ..utils.token_store import SessionTokenStore
from .catalog_routes import CatalogRoutes
from .middlewares import access_log_middleware, error_middleware
from .proxy_routes import ProxyRoutes

SETTINGS_KEY = web.AppKey("settings", GatewaySettings)
HTTP_CLIENT_KEY = web.AppKey("http_client", HttpClient)
TOKEN_STORE_KEY = web.AppKey("token_store", SessionTokenStore)
SUPERVISOR_KEY = web.AppKey("supervisor", TransmuxSupervisor)


async def _sweep_tokens(store: SessionTokenStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        store.purge_expired()


async def _lifecycle(app: web.Application) -> AsyncIterator[None]:
    settings = app[SETTINGS_KEY]
    sweeper = asyncio.create_task(_sweep_tokens(app[TOKEN_STORE_KEY], settings.token_sweep_interval))
    logging.info("Gateway ready (origin %s, cache %s)", settings.origin_host, settings.cache_root)
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await app[SUPERVISOR_KEY].shutdown()
    await app[HTTP_CLIENT_KEY].close()


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    http_client: Optional[HttpClient] = None,
    token_store: Optional[SessionTokenStore] = None,
    supervisor: Optional[TransmuxSupervisor] = None,
    sandbox: Optional[ScriptSandbox] = None,
) -> web.Application:
    if settings is None:
        settings = GatewaySettings()
    if http_client is None:
        http_client = HttpClient(timeout=settings.http_timeout)
    # The store defines __len__, so an empty one is falsy.
    if token_store is None:
        token_store = SessionTokenStore(ttl=settings.token_ttl)
    if supervisor is None:
        supervisor = TransmuxSupervisor(
            settings.cache_root,
            min_segments=settings.prepare_min_segments,
            ready_timeout=settings.ready_timeout,
            ffmpeg_bin=settings.ffmpeg_bin,
        )
    if sandbox is None:
        sandbox = ScriptSandbox(timeout=settings.sandbox_timeout)

    catalog = CatalogAPI(http_client, settings.origin_host)
    play_api = PlayAPI(http_client, catalog, sandbox)

    app = web.Application(middlewares=[access_log_middleware, error_middleware])
    app[SETTINGS_KEY] = settings
    app[HTTP_CLIENT_KEY] = http_client
    app[TOKEN_STORE_KEY] = token_store
    app[SUPERVISOR_KEY] = supervisor
    app.cleanup_ctx.append(_lifecycle)

    CatalogRoutes(settings, http_client, catalog, play_api).register(app)
    ProxyRoutes(settings, http_client, play_api, token_store, supervisor).register(app)
    if os.path.isdir(settings.static_dir):
        _mount_static(app, settings.static_dir)
    return app


def _mount_static(app: web.Application, static_dir: str) -> None:
    index_path = os.path.join(static_dir, "index.html")
    if os.path.isfile(index_path):

        async def index(request: web.Request) -> web.FileResponse:
            return web.FileResponse(index_path)

        app.router.add_get("/", index)
    app.router.add_static("/", static_dir, show_index=False)
