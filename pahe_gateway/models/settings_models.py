"""Runtime settings for the gateway process."""

from __future__ import annotations

import os
import tempfile

from pydantic import BaseModel, Field

DEFAULT_CACHE_ROOT = os.path.join(tempfile.gettempdir(), "ap-transmux")


class GatewaySettings(BaseModel):
    """Resolved configuration (CLI flags over environment over defaults)."""

    host: str = "0.0.0.0"
    port: int = 3001
    origin_host: str = "https://animepahe.si"
    cache_root: str = DEFAULT_CACHE_ROOT
    static_dir: str = "public"
    token_ttl: float = Field(default=3600.0, gt=0)
    token_sweep_interval: float = Field(default=60.0, gt=0)
    prepare_min_segments: int = Field(default=6, ge=1)
    ready_timeout: float = Field(default=20.0, gt=0)
    sandbox_timeout: float = Field(default=2.0, gt=0)
    ffmpeg_bin: str = "ffmpeg"
    http_timeout: float = Field(default=20.0, gt=0)

    @property
    def referer(self) -> str:
        return self.origin_host
