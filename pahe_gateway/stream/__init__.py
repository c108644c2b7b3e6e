"""Playlist rewriting, player-script extraction, and transmux supervision."""

from .m3u8_rewriter import rewrite_playlist
from .script_sandbox import ScriptSandbox
from .transmux import TransmuxSupervisor, TransmuxTimeout

__all__ = ["rewrite_playlist", "ScriptSandbox", "TransmuxSupervisor", "TransmuxTimeout"]
