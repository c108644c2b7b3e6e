"""In-memory store binding opaque proxy tokens to upstream session context."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..models.session_models import SessionContext

DEFAULT_TOKEN_TTL = 60 * 60


class TokenInvalid(Exception):
    """Raised when a proxy token was never issued or has expired."""


class SessionTokenStore:
    """Thread-safe token map with a fixed time-to-live per entry.

    Expiry is checked on every lookup, so a token stops working the instant
    its TTL elapses; :meth:`purge_expired` only reclaims memory.
    """

    def __init__(self, ttl: float = DEFAULT_TOKEN_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[SessionContext, float]] = {}

    def create(self, context: SessionContext) -> str:
        if not context.created_at:
            context = context.model_copy(update={"created_at": time.time()})
        with self._lock:
            token = secrets.token_hex(16)
            while token in self._entries:
                token = secrets.token_hex(16)
            self._entries[token] = (context, self._clock() + self.ttl)
        return token

    def lookup(self, token: str) -> Optional[SessionContext]:
        if not token:
            return None
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            context, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[token]
                return None
            return context

    def require(self, token: str) -> SessionContext:
        context = self.lookup(token)
        if context is None:
            raise TokenInvalid(token)
        return context

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [token for token, (_, expires_at) in self._entries.items() if now >= expires_at]
            for token in expired:
                del self._entries[token]
        if expired:
            logging.debug("Purged %s expired proxy tokens", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
