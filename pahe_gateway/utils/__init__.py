"""Utility helpers for HTTP, proxy sessions, and filesystem operations."""

from .http_client import HttpClient, UpstreamFetchError, gen_cookie
from .file_utils import count_segments, ensure_directory, resolve_inside
from .token_store import SessionTokenStore, TokenInvalid

__all__ = [
    "HttpClient",
    "UpstreamFetchError",
    "gen_cookie",
    "count_segments",
    "ensure_directory",
    "resolve_inside",
    "SessionTokenStore",
    "TokenInvalid",
]
