"""Play-page scraping and manifest URL resolution for a single episode."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from urllib.parse import quote

from bs4 import BeautifulSoup

from ..models import StreamOption
from ..stream.script_sandbox import ScriptSandbox
from ..utils.http_client import HttpClient
from .catalog_api import CatalogAPI


def collect_options(html: str) -> List[StreamOption]:
    """Reads the player buttons, non-AV1 first and highest resolution next."""

    soup = BeautifulSoup(html, "html.parser")
    seen = set()
    options: List[StreamOption] = []
    for button in soup.select("button[data-src]"):
        option = StreamOption(
            audio=(button.get("data-audio") or "").lower(),
            resolution=button.get("data-resolution") or "",
            av1=button.get("data-av1") or "",
            src=button.get("data-src") or "",
        )
        identity = (option.audio, option.resolution, option.av1, option.src)
        if option.src and identity not in seen:
            seen.add(identity)
            options.append(option)

    options.sort(key=lambda item: (item.is_av1, -item.resolution_value))
    return options


def pick_option(options: List[StreamOption], audio: str = "", resolution: str = "") -> Optional[StreamOption]:
    """Narrows by audio then resolution; a filter that matches nothing is ignored."""

    pool = options
    if audio:
        matches = [item for item in pool if item.audio == audio.lower()]
        pool = matches or pool
    if resolution:
        matches = [item for item in pool if item.resolution == str(resolution)]
        pool = matches or pool
    return pool[0] if pool else None


def list_choices(html: str) -> List[Tuple[str, str]]:
    """Unique (audio, resolution) pairs in page order."""

    soup = BeautifulSoup(html, "html.parser")
    seen = set()
    choices: List[Tuple[str, str]] = []
    for button in soup.select("button[data-src]"):
        pair = ((button.get("data-audio") or "").lower(), button.get("data-resolution") or "")
        if pair not in seen:
            seen.add(pair)
            choices.append(pair)
    return choices


class PlayAPI:
    """Follows episode -> play page -> redirector page -> manifest URL."""

    def __init__(self, http_client: HttpClient, catalog: CatalogAPI, sandbox: ScriptSandbox) -> None:
        self._client = http_client
        self._catalog = catalog
        self._sandbox = sandbox

    def play_url(self, slug: str, session: str) -> str:
        return f"{self._catalog.origin_host}/play/{quote(slug, safe='')}/{session}"

    async def get_play_page(self, slug: str, episode: str, cookie: str) -> Optional[str]:
        item = await self._catalog.find_episode(slug, episode, cookie)
        if item is None:
            logging.info("Episode %s of %s not found", episode, slug)
            return None
        headers = {"cookie": cookie, "referer": self._catalog.origin_host}
        return await self._client.fetch_text(self.play_url(slug, item.session), headers)

    async def resolve_manifest_url(
        self,
        slug: str,
        episode: str,
        audio: str,
        resolution: str,
        cookie: str,
    ) -> str:
        """Returns the episode's m3u8 URL, or ``""`` when any step comes up empty."""

        html = await self.get_play_page(slug, episode, cookie)
        if html is None:
            return ""
        option = pick_option(collect_options(html), audio, resolution)
        if option is None:
            logging.info("No player options on play page for %s episode %s", slug, episode)
            return ""

        headers = {"cookie": cookie, "referer": self._catalog.origin_host}
        redirector_html = await self._client.fetch_text(option.src, headers)
        url = await self._sandbox.extract(redirector_html)
        if url:
            logging.info("Resolved %s episode %s (%s/%s) to %s", slug, episode, option.audio, option.resolution, url)
        return url
