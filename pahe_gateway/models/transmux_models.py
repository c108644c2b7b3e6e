"""Models describing transmux jobs and the transcoder argument contract."""

from __future__ import annotations

import os
from typing import List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict

from ..utils.http_client import USER_AGENT


class TransmuxProfile(BaseModel):
    """Fixed fragmented-MP4 HLS output profile handed to ffmpeg.

    The fields are the argument contract of the transcoder: the video
    stream is copied, the audio stream is normalized to stereo AAC-LC, and
    the output is an event playlist that ffmpeg appends to while it runs.
    """

    model_config = ConfigDict(frozen=True)

    user_agent: str = USER_AGENT
    log_level: str = "error"
    video_map: str = "v:0"
    video_codec: str = "copy"
    audio_map: str = "a:0"
    audio_codec: str = "aac"
    audio_profile: str = "aac_low"
    audio_channels: int = 2
    audio_bitrate: str = "128k"
    segment_seconds: int = 3
    list_size: int = 0
    segment_type: str = "fmp4"
    hls_flags: str = "append_list+independent_segments+omit_endlist+temp_file"
    playlist_type: str = "event"
    segment_pattern: str = "seg-%04d.m4s"
    master_name: str = "master.m3u8"
    media_name: str = "stream.m3u8"

    def build_args(self, input_url: str, output_dir: str, binary: str = "ffmpeg") -> List[str]:
        """Renders the profile into an ffmpeg command line."""

        return [
            binary,
            "-loglevel", self.log_level,
            "-user_agent", self.user_agent,
            "-headers", f"Referer: {input_url}\r\n",
            "-i", input_url,
            "-map", self.video_map, "-c:v", self.video_codec,
            "-map", self.audio_map, "-c:a", self.audio_codec,
            "-profile:a", self.audio_profile,
            "-ac", str(self.audio_channels),
            "-b:a", self.audio_bitrate,
            "-hls_time", str(self.segment_seconds),
            "-hls_list_size", str(self.list_size),
            "-hls_segment_type", self.segment_type,
            "-hls_flags", self.hls_flags,
            "-hls_playlist_type", self.playlist_type,
            "-hls_segment_filename", os.path.join(output_dir, self.segment_pattern),
            "-master_pl_name", self.master_name,
            os.path.join(output_dir, self.media_name),
        ]


class TransmuxJob(BaseModel):
    """Where a deduplicated transmux rendition lives on disk and over HTTP.

    The live process handle is tracked by the supervisor, not here; the
    files outlive both.
    """

    key: str
    source_url: str
    output_dir: str
    media_path: str
    master_path: str

    @property
    def cache_url(self) -> str:
        return f"/cache/{self.key}/{os.path.basename(self.master_path)}"

    def redirect_url(self, sid: Optional[str] = None) -> str:
        if not sid:
            return self.cache_url
        return f"{self.cache_url}?sid={quote(sid, safe='')}"
