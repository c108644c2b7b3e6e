"""Request logging and the single error boundary for every route."""

from __future__ import annotations

import logging
import time

from aiohttp import web

from ..stream.transmux import TransmuxTimeout
from ..utils.http_client import UpstreamFetchError
from ..utils.token_store import TokenInvalid

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


@web.middleware
async def access_log_middleware(request: web.Request, handler):
    started = time.monotonic()
    status = 500
    try:
        response = await handler(request)
        status = response.status
        return response
    except web.HTTPException as exc:
        status = exc.status
        raise
    finally:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logging.info("%s %s -> %s %sms", request.method, request.path_qs, status, elapsed_ms)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except TokenInvalid:
        logging.debug("Rejected proxy request with unknown or expired token on %s", request.path)
        return web.Response(status=403, text="forbidden", headers=NO_CACHE_HEADERS)
    except TransmuxTimeout as exc:
        logging.warning("%s", exc)
        return web.Response(status=504, text="transmux not ready", headers=NO_CACHE_HEADERS)
    except UpstreamFetchError as exc:
        logging.warning("Upstream failure on %s: %s", request.path, exc)
        return web.Response(status=500, text="error", headers=NO_CACHE_HEADERS)
    except Exception:
        logging.exception("Unhandled error serving %s", request.path)
        return web.Response(status=500, text="error", headers=NO_CACHE_HEADERS)
