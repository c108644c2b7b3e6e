"""Supervises ffmpeg processes that re-package upstream streams into the local cache."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import subprocess
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..models import TransmuxJob, TransmuxProfile
from ..utils.file_utils import count_segments, ensure_directory, file_exists

MODE_TAG = "event"
DEFAULT_MIN_SEGMENTS = 6
DEFAULT_READY_TIMEOUT = 20.0
FILE_POLL_INTERVAL = 0.3
SEGMENT_POLL_INTERVAL = 0.4

Spawner = Callable[[List[str]], Awaitable[asyncio.subprocess.Process]]


class TransmuxTimeout(Exception):
    """Raised when a rendition is not playable within the readiness window."""

    def __init__(self, key: str, phase: str) -> None:
        self.key = key
        self.phase = phase
        super().__init__(f"transmux {key} not ready: {phase}")


def dedup_key(url: str, audio: Optional[str], resolution: Optional[str], mode: str = MODE_TAG) -> str:
    base = f"{url}|{audio or ''}|{resolution or ''}|{mode}"
    return hashlib.md5(base.encode("utf-8")).hexdigest()


async def spawn_ffmpeg(args: List[str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
    )


async def wait_for_file(path: str, timeout: float, interval: float = FILE_POLL_INTERVAL) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if file_exists(path):
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)


async def wait_for_segments(
    playlist_path: str,
    min_segments: int,
    timeout: float,
    interval: float = SEGMENT_POLL_INTERVAL,
) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if count_segments(playlist_path) >= min_segments:
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)


class TransmuxSupervisor:
    """Keeps at most one ffmpeg per (url, audio, resolution) and reports readiness.

    Output directories double as a cache: once ``master.m3u8`` exists a job
    is never respawned, and a process that outlives a timed-out request keeps
    writing for the next one.
    """

    def __init__(
        self,
        cache_root: str,
        profile: Optional[TransmuxProfile] = None,
        min_segments: int = DEFAULT_MIN_SEGMENTS,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        ffmpeg_bin: str = "ffmpeg",
        spawner: Optional[Spawner] = None,
        file_poll_interval: float = FILE_POLL_INTERVAL,
        segment_poll_interval: float = SEGMENT_POLL_INTERVAL,
    ) -> None:
        self.cache_root = ensure_directory(cache_root)
        self.profile = profile or TransmuxProfile()
        self.min_segments = min_segments
        self.ready_timeout = ready_timeout
        self.ffmpeg_bin = ffmpeg_bin
        self.file_poll_interval = file_poll_interval
        self.segment_poll_interval = segment_poll_interval
        self._spawn = spawner or spawn_ffmpeg
        self._procs: Dict[str, asyncio.subprocess.Process] = {}
        self._watchers: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    def job_for(self, url: str, audio: Optional[str], resolution: Optional[str]) -> TransmuxJob:
        key = dedup_key(url, audio, resolution)
        output_dir = os.path.join(self.cache_root, key)
        return TransmuxJob(
            key=key,
            source_url=url,
            output_dir=output_dir,
            media_path=os.path.join(output_dir, self.profile.media_name),
            master_path=os.path.join(output_dir, self.profile.master_name),
        )

    def is_running(self, key: str) -> bool:
        return key in self._procs

    @property
    def running_keys(self) -> List[str]:
        return list(self._procs)

    async def ensure_started(self, url: str, audio: Optional[str], resolution: Optional[str]) -> TransmuxJob:
        job = self.job_for(url, audio, resolution)
        async with self._lock:
            if job.key in self._procs:
                logging.debug("Transmux %s already running", job.key)
                return job
            if file_exists(job.master_path):
                logging.debug("Transmux %s served from cache", job.key)
                return job
            ensure_directory(job.output_dir)
            args = self.profile.build_args(url, job.output_dir, self.ffmpeg_bin)
            proc = await self._spawn(args)
            self._procs[job.key] = proc
            watcher = asyncio.create_task(self._watch(job.key, proc))
            self._watchers.add(watcher)
            watcher.add_done_callback(self._watchers.discard)
        logging.info("Started transmux %s (pid %s) for %s", job.key, proc.pid, url)
        return job

    async def wait_ready(self, job: TransmuxJob) -> TransmuxJob:
        if not await wait_for_file(job.master_path, self.ready_timeout, self.file_poll_interval):
            raise TransmuxTimeout(job.key, "master playlist missing")
        if not await wait_for_segments(
            job.media_path, self.min_segments, self.ready_timeout, self.segment_poll_interval
        ):
            raise TransmuxTimeout(job.key, f"fewer than {self.min_segments} segments")
        return job

    async def prepare(self, url: str, audio: Optional[str], resolution: Optional[str]) -> TransmuxJob:
        """Starts (or reuses) the job and waits until it is playable."""

        job = await self.ensure_started(url, audio, resolution)
        return await self.wait_ready(job)

    async def _watch(self, key: str, proc: asyncio.subprocess.Process) -> None:
        try:
            returncode = await proc.wait()
        finally:
            if self._procs.get(key) is proc:
                del self._procs[key]
        if returncode:
            logging.warning("Transmux %s exited with code %s", key, returncode)
        else:
            logging.info("Transmux %s finished", key)

    async def shutdown(self) -> None:
        """Terminates still-running transcoders; their output stays on disk."""

        for key, proc in list(self._procs.items()):
            if proc.returncode is None:
                logging.info("Stopping transmux %s (pid %s)", key, proc.pid)
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)
