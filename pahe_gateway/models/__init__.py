"""Data models for catalog entries, proxy sessions, transmux jobs, and settings."""

from .catalog_models import AnimeMeta, Episode, StreamOption
from .session_models import SessionContext
from .settings_models import GatewaySettings
from .transmux_models import TransmuxJob, TransmuxProfile

__all__ = [
    "AnimeMeta",
    "Episode",
    "StreamOption",
    "SessionContext",
    "GatewaySettings",
    "TransmuxJob",
    "TransmuxProfile",
]
