from __future__ import annotations

import logging
import os
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from .models import StreamDescriptor

logger = logging.getLogger(__name__)

TORRENTIO_BASE = "https://torrentio.strem.fun"

DEFAULT_HEADERS = {
    "User-Agent": os.environ.get(
        "CINESTREAM_HTTP_UA",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": os.environ.get("CINESTREAM_HTTP_LANG", "en-US,en;q=0.9"),
    "Referer": "https://torrentio.strem.fun/",
    "Origin": "https://torrentio.strem.fun",
    "Connection": "keep-alive",
}


def _maybe_proxy(url: str) -> str:
    """If CINESTREAM_PROXY_PREFIX is set and URL targets Torrentio, wrap it.

    Expects prefix like: https://host/path?destination=
    """
    pref = os.environ.get("CINESTREAM_PROXY_PREFIX")
    if not pref:
        return url
    host = url.split("//", 1)[-1].split("/", 1)[0]
    if host.endswith("torrentio.strem.fun"):
        return f"{pref}{quote(url, safe=':/?&=%')}"
    return url


def parse_optional_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


def _torrentio_url(media_type: str, imdb_id: str, season: Optional[int] = None, episode: Optional[int] = None) -> str:
    mt = media_type.lower().strip()
    if mt == "movie":
        return _maybe_proxy(f"{TORRENTIO_BASE}/stream/movie/{quote(imdb_id, safe='')}.json")
    if mt in {"series", "tv"}:
        if season is None or episode is None:
            raise ValueError("season and episode are required for series")
        # Torrentio expects series path with imdb:season:episode
        return _maybe_proxy(f"{TORRENTIO_BASE}/stream/series/{quote(imdb_id, safe='')}:{season}:{episode}.json")
    raise ValueError("media_type must be 'movie' or 'series'")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def get_streams(
    media_type: str,
    imdb_id: str,
    *,
    season: Optional[int] = None,
    episode: Optional[int] = None,
    session: Optional[requests.Session] = None,
    timeout: float = 15,
) -> List[StreamDescriptor]:
    url = _torrentio_url(media_type, imdb_id, season, episode)
    http = session or requests.Session()
    r = http.get(url, headers=DEFAULT_HEADERS, timeout=timeout)
    # If forbidden, retry with an alternate UA
    if r.status_code == 403:
        logger.debug("Torrentio returned 403, retrying with alternate User-Agent")
        alt_headers = DEFAULT_HEADERS.copy()
        alt_headers["User-Agent"] = os.environ.get(
            "CINESTREAM_HTTP_UA_ALT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
        )
        r = http.get(url, headers=alt_headers, timeout=timeout)
    r.raise_for_status()
    data = r.json()
    out: List[StreamDescriptor] = []
    for s in data.get("streams", []):
        if not isinstance(s, dict):
            continue
        entry = StreamDescriptor(
            name=_text(s.get("name")),
            title=_text(s.get("title")),
            url=_text(s.get("url")),
            info_hash=_text(s.get("infoHash")),
            file_idx=parse_optional_int(s.get("fileIdx")),
            sources=[src for src in (s.get("sources") or []) if isinstance(src, str)],
        )
        if not entry.has_source():
            continue
        out.append(entry)
    logger.debug("Torrentio listed %d stream(s) for %s", len(out), imdb_id)
    return out
