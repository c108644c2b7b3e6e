"""Pydantic models that describe catalog episodes and play-page stream options."""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class Episode(BaseModel):
    """A single entry of the release listing API."""

    episode: float
    session: str
    snapshot: Optional[str] = None
    duration: Optional[str] = None
    raw: Dict[str, Any] = {}

    @classmethod
    def from_api(cls, entry: Dict[str, Any]) -> "Episode":
        return cls(
            episode=float(entry.get("episode") or 0),
            session=str(entry.get("session") or ""),
            snapshot=entry.get("snapshot"),
            duration=entry.get("duration"),
            raw=entry,
        )


class StreamOption(BaseModel):
    """A ``button[data-src]`` choice found on a play page."""

    audio: str
    resolution: str
    av1: str = ""
    src: str

    @property
    def is_av1(self) -> bool:
        return self.av1 != "0"

    @property
    def resolution_value(self) -> int:
        try:
            return int(self.resolution or 0)
        except ValueError:
            return 0


class AnimeMeta(BaseModel):
    """Title and poster scraped from an anime page."""

    title: str
    poster: str = ""
