"""Shared HTTP helpers for the origin API, play pages, and CDN resources."""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlsplit

import aiohttp

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS: Dict[str, str] = {
    "user-agent": USER_AGENT,
    "accept": "*/*",
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "no-cache",
    "pragma": "no-cache",
}

# Client request headers forwarded upstream so range requests keep working.
PASSTHROUGH_HEADERS = ("range", "accept", "accept-language")


class UpstreamFetchError(Exception):
    """Raised when the origin or CDN cannot be reached or answers with an error."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = "") -> None:
        self.url = url
        self.status = status
        self.reason = reason
        detail = f"status {status}" if status is not None else (reason or "network error")
        super().__init__(f"GET {url} failed: {detail}")


def gen_cookie() -> str:
    """Returns a fresh DDoS-guard cookie for one top-level request."""

    return f"__ddg2_={secrets.token_hex(12)}"


def merge_headers(*overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Layers header mappings over the defaults; later names win, case-insensitively."""

    merged = dict(DEFAULT_HEADERS)
    for headers in overrides:
        if not headers:
            continue
        for name, value in headers.items():
            merged[name.lower()] = value
    return merged


def build_upstream_headers(cookie: str, ref: str, incoming: Mapping[str, str]) -> Dict[str, str]:
    """Reconstructs the origin request context for a proxied sub-resource."""

    headers: Dict[str, str] = {}
    if cookie:
        headers["cookie"] = cookie
    if ref:
        headers["referer"] = ref
        parts = urlsplit(ref)
        if parts.scheme and parts.netloc:
            headers["origin"] = f"{parts.scheme}://{parts.netloc}"
    for name in PASSTHROUGH_HEADERS:
        value = incoming.get(name)
        if value:
            headers[name] = value
    return headers


class HttpClient:
    """Owns the outbound aiohttp session used for every upstream call."""

    def __init__(self, timeout: float = 20.0) -> None:
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def fetch_text(self, url: str, headers: Optional[Mapping[str, str]] = None) -> str:
        """GET a resource as text (play pages, m3u8); raises on non-success."""

        async with self.stream(url, headers) as resp:
            if resp.status >= 400:
                logging.warning("Upstream GET %s returned %s", url, resp.status)
                raise UpstreamFetchError(url, resp.status)
            return await resp.text(errors="replace")

    async def fetch_json(self, url: str, headers: Optional[Mapping[str, str]] = None) -> Any:
        """GET a JSON document from the origin API."""

        async with self.stream(url, headers) as resp:
            if resp.status >= 400:
                logging.warning("Upstream GET %s returned %s", url, resp.status)
                raise UpstreamFetchError(url, resp.status)
            try:
                return await resp.json(content_type=None)
            except ValueError as exc:
                raise UpstreamFetchError(url, resp.status, "invalid json") from exc

    @asynccontextmanager
    async def stream(
        self, url: str, headers: Optional[Mapping[str, str]] = None
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Opens a GET without checking its status; the body is left unread."""

        session = await self._get_session()
        try:
            resp = await session.get(url, headers=merge_headers(headers), allow_redirects=True)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logging.warning("Upstream GET %s failed: %s", url, exc)
            raise UpstreamFetchError(url, reason=str(exc) or type(exc).__name__) from exc
        try:
            yield resp
        finally:
            resp.release()

    async def _get_session(self) -> aiohttp.ClientSession:
        current_loop = asyncio.get_running_loop()
        if self._session:
            if self._session.closed or self._loop is not current_loop:
                await self.close()

        if self._session_lock is None:
            self._session_lock = asyncio.Lock()

        async with self._session_lock:
            if self._session and not self._session.closed:
                return self._session
            # Segment bodies can take long to stream, so only connect and idle reads are bounded.
            timeout = aiohttp.ClientTimeout(total=None, connect=self.timeout, sock_read=self.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                connector=aiohttp.TCPConnector(limit=0),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
            self._loop = current_loop
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            try:
                await self._session.close()
            except (aiohttp.ClientError, RuntimeError) as exc:  # pragma: no cover - shutdown races
                logging.debug("Closing upstream session failed: %s", exc)
        self._session = None
        self._loop = None
        self._session_lock = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.close()
