"""API client for search, release listings, and anime metadata."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from ..models import AnimeMeta, Episode
from ..utils.http_client import HttpClient


class CatalogAPI:
    """Wraps the origin's JSON API and anime pages."""

    def __init__(self, http_client: HttpClient, origin_host: str) -> None:
        self._client = http_client
        self.origin_host = origin_host.rstrip("/")
        self.api_url = f"{self.origin_host}/api"

    def _headers(self, cookie: str, referer: bool = False) -> Dict[str, str]:
        headers = {"cookie": cookie}
        if referer:
            headers["referer"] = self.origin_host
        return headers

    async def search(self, query: str, cookie: str) -> Any:
        url = f"{self.api_url}?m=search&q={quote(query, safe='')}"
        return await self._client.fetch_json(url, self._headers(cookie))

    async def get_release_page(self, slug: str, page: int, cookie: str) -> Dict[str, Any]:
        url = f"{self.api_url}?m=release&id={quote(slug, safe='')}&sort=episode_asc&page={page}"
        data = await self._client.fetch_json(url, self._headers(cookie))
        return data if isinstance(data, dict) else {}

    async def get_all_episodes(self, slug: str, cookie: str) -> List[Episode]:
        first = await self.get_release_page(slug, 1, cookie)
        entries: List[Dict[str, Any]] = list(first.get("data") or [])
        last_page = int(first.get("last_page") or 1)
        if last_page > 1:
            pages = await asyncio.gather(
                *(self.get_release_page(slug, page, cookie) for page in range(2, last_page + 1))
            )
            for page in pages:
                entries.extend(page.get("data") or [])

        episodes = [Episode.from_api(entry) for entry in entries if isinstance(entry, dict)]
        episodes.sort(key=lambda item: item.episode)
        logging.debug("Loaded %s episodes for %s", len(episodes), slug)
        return episodes

    async def find_episode(self, slug: str, episode: str, cookie: str) -> Optional[Episode]:
        try:
            wanted = float(episode)
        except (TypeError, ValueError):
            return None
        for item in await self.get_all_episodes(slug, cookie):
            if item.episode == wanted:
                return item
        return None

    async def get_meta(self, slug: str, cookie: str) -> AnimeMeta:
        url = f"{self.origin_host}/anime/{quote(slug, safe='')}"
        html = await self._client.fetch_text(url, self._headers(cookie, referer=True))
        soup = BeautifulSoup(html, "html.parser")

        title_tag = soup.find("meta", attrs={"property": "og:title"})
        title = title_tag.get("content") if title_tag else None
        if not title and soup.title:
            title = soup.title.get_text().strip()
        poster_tag = soup.find("meta", attrs={"property": "og:image"})
        poster = poster_tag.get("content") if poster_tag else ""
        return AnimeMeta(title=title or "", poster=poster or "")
