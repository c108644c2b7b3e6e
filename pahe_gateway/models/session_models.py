"""Models related to proxy sessions."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SessionContext(BaseModel):
    """Upstream authentication context bound to a proxy token."""

    model_config = ConfigDict(frozen=True)

    cookie: str
    created_at: float = 0.0
