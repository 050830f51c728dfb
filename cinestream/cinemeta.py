from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from .models import MediaItem, MediaType

logger = logging.getLogger(__name__)

CINEMETA_BASE = "https://v3-cinemeta.strem.io"
SEARCH_LIMIT = 60

DEFAULT_HEADERS = {
    "User-Agent": os.environ.get(
        "CINESTREAM_HTTP_UA",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    ),
    "Accept": "application/json",
    "Accept-Language": os.environ.get("CINESTREAM_HTTP_LANG", "en-US,en;q=0.9"),
}


def _maybe_proxy(url: str) -> str:
    """If CINESTREAM_PROXY_PREFIX is set, wrap the URL behind it.

    Expects prefix like: https://host/path?destination=
    """
    pref = os.environ.get("CINESTREAM_PROXY_PREFIX")
    if not pref:
        return url
    return f"{pref}{quote(url, safe=':/?&=%')}"


def parse_year(raw: Any) -> Optional[int]:
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        return int(raw) or None
    if isinstance(raw, str):
        # Series come as ranges like "2011-2019" or "2020-"
        head = raw.strip().split("-", 1)[0].split("–", 1)[0].strip()
        if head.isdigit():
            return int(head)
    return None


class CinemetaClient:
    def __init__(self, session: Optional[requests.Session] = None, *, base: str = CINEMETA_BASE, timeout: float = 20) -> None:
        self.base = base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str) -> Dict[str, Any]:
        r = self.session.get(_maybe_proxy(url), headers=DEFAULT_HEADERS, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def fetch_catalog(self, media_type: str, catalog_path: str) -> List[MediaItem]:
        url = f"{self.base}/catalog/{media_type}/{catalog_path}.json"
        data = self._get_json(url)
        items: List[MediaItem] = []
        for it in data.get("metas", []):
            if not isinstance(it, dict):
                continue
            mid = it.get("id")
            name = it.get("name")
            if not mid or not name:
                continue
            items.append(
                MediaItem(
                    id=str(mid),
                    name=str(name),
                    type=it.get("type") or media_type,
                    year=parse_year(it.get("year") or it.get("releaseInfo")),
                    poster=it.get("poster"),
                )
            )
        return items

    def popular(self) -> Tuple[List[MediaItem], List[MediaItem]]:
        movies = self.fetch_catalog(MediaType.movie.value, "top")
        shows = self.fetch_catalog(MediaType.series.value, "top")
        return movies, shows

    def search(self, query: str) -> List[MediaItem]:
        query = (query or "").strip()
        if not query:
            return []
        path = f"top/search={quote(query, safe='')}"
        # Both lookups always run to completion; the first error wins afterwards
        with ThreadPoolExecutor(max_workers=2) as pool:
            fut_movies = pool.submit(self.fetch_catalog, MediaType.movie.value, path)
            fut_shows = pool.submit(self.fetch_catalog, MediaType.series.value, path)
            wait([fut_movies, fut_shows])
        for fut in (fut_movies, fut_shows):
            err = fut.exception()
            if err is not None:
                logger.debug("Cinemeta search for %r failed: %s", query, err)
                raise err
        results = fut_movies.result() + fut_shows.result()
        return results[:SEARCH_LIMIT]

    def series_episodes(self, imdb_id: str) -> Dict[int, List[int]]:
        url = f"{self.base}/meta/series/{quote(imdb_id, safe='')}.json"
        data = self._get_json(url)
        by_season: Dict[int, List[int]] = {}
        for v in (data.get("meta") or {}).get("videos") or []:
            if not isinstance(v, dict):
                continue
            try:
                season = int(v.get("season") or 0)
                episode = int(v.get("episode") or v.get("number") or 0)
            except (TypeError, ValueError):
                continue
            if season < 1 or episode < 1:
                continue
            by_season.setdefault(season, []).append(episode)
        for season, eps in by_season.items():
            by_season[season] = sorted(set(eps))
        if not by_season:
            by_season[1] = [1]
        return by_season
