"""Rewrites HLS playlists so every referenced resource flows through the gateway proxy."""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import quote, urljoin

PLAYLIST = "playlist"
SEGMENT = "segment"
KEY = "key"

STREAM_INF = "#EXT-X-STREAM-INF"
I_FRAME_STREAM_INF = "#EXT-X-I-FRAME-STREAM-INF"
MAP = "#EXT-X-MAP"
KEY_TAG = "#EXT-X-KEY"
MEDIA = "#EXT-X-MEDIA:"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_PLAYLIST_RE = re.compile(r"\.m3u8(\?|$)", re.IGNORECASE)
_URI_ATTR_RE = re.compile(r'URI="([^"]+)"')
_CODECS_ATTR_RE = re.compile(r'CODECS="([^"]*)"', re.IGNORECASE)


def abs_url(url: str, base: str) -> str:
    """Resolves a playlist reference against the playlist's own URL."""

    if _SCHEME_RE.match(url):
        return url
    if url.startswith("//"):
        return "https:" + url
    try:
        return urljoin(base, url)
    except ValueError:
        return url


def is_playlist_url(url: str) -> bool:
    return bool(_PLAYLIST_RE.search(url))


def proxy_url(kind: str, token: str, url: str, ref: str) -> str:
    return (
        f"/proxy/{kind}?token={quote(token, safe='')}"
        f"&url={quote(url, safe='')}&ref={quote(ref, safe='')}"
    )


def is_av1_stream(stream_inf: str) -> bool:
    """True when any codec listed by a STREAM-INF line belongs to the AV1 family."""

    match = _CODECS_ATTR_RE.search(stream_inf)
    if not match:
        return False
    codecs = [codec.strip().lower() for codec in match.group(1).split(",")]
    return any(codec.startswith(("av01", "av1")) for codec in codecs)


def _rewrite_uri_attr(line: str, kind: Optional[str], base: str, token: str) -> str:
    match = _URI_ATTR_RE.search(line)
    if not match:
        return line
    target = abs_url(match.group(1), base)
    if kind is None:
        kind = PLAYLIST if is_playlist_url(target) else SEGMENT
    replacement = f'URI="{proxy_url(kind, token, target, base)}"'
    return line[: match.start()] + replacement + line[match.end():]


def _rewrite_line(line: str, base: str, token: str) -> str:
    stripped = line.strip()
    if line.startswith(I_FRAME_STREAM_INF):
        return _rewrite_uri_attr(line, PLAYLIST, base, token)
    if line.startswith(MAP):
        return _rewrite_uri_attr(line, SEGMENT, base, token)
    if line.startswith(KEY_TAG):
        return _rewrite_uri_attr(line, KEY, base, token)
    if line.startswith(MEDIA):
        return _rewrite_uri_attr(line, None, base, token)
    if line.startswith("#") or not stripped:
        return line
    target = abs_url(stripped, base)
    kind = PLAYLIST if is_playlist_url(target) else SEGMENT
    return proxy_url(kind, token, target, base)


def rewrite_playlist(content: str, base: str, token: str) -> str:
    """Returns ``content`` with variant, segment, key and map URIs proxied.

    Variants advertising AV1 are dropped together with their URI line.
    Tags sitting between a variant descriptor and its URI keep their
    position, even when the variant itself is dropped. Line endings and
    every other tag are preserved as-is.
    """

    out: List[str] = []
    pending: Optional[str] = None
    drop_pending = False
    held: List[str] = []

    def flush_pending() -> None:
        if not drop_pending:
            out.append(pending)
        out.extend(held)
        held.clear()

    for line in content.split("\n"):
        stripped = line.strip()

        if line.startswith(STREAM_INF):
            if pending is not None:
                logging.warning("Variant descriptor has no URI line: %s", pending)
                flush_pending()
            pending = line
            drop_pending = is_av1_stream(line)
            continue

        if pending is None:
            out.append(_rewrite_line(line, base, token))
        elif stripped and not stripped.startswith("#"):
            flush_pending()
            if not drop_pending:
                out.append(proxy_url(PLAYLIST, token, abs_url(stripped, base), base))
            pending = None
            drop_pending = False
        else:
            held.append(_rewrite_line(line, base, token))

    if pending is not None:
        flush_pending()
    return "\n".join(out)
