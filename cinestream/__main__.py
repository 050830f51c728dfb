from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional

import requests

from .cinemeta import CinemetaClient
from .config import ConfigManager, Settings
from .errors import NoPlayableSource, PlayerError
from .magnet import classify
from .models import MediaItem, MediaType, Resolution, StreamDescriptor
from .player import launch
from .realdebrid import CancelToken, RealDebridClient
from .resolver import StreamResolver
from .torrentio import get_streams
from .ui import pick_index


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # urllib3 logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load_settings() -> Settings:
    cfg = ConfigManager().load()
    if cfg.proxy_prefix and not os.environ.get("CINESTREAM_PROXY_PREFIX"):
        os.environ["CINESTREAM_PROXY_PREFIX"] = cfg.proxy_prefix
    return cfg


def _resolver(cfg: Settings) -> StreamResolver:
    return StreamResolver(RealDebridClient(cfg.realdebrid_token))


def cmd_setup() -> int:
    ConfigManager().interactive_setup()
    return 0


def _resolve_interruptibly(resolver: StreamResolver, stream: StreamDescriptor, *, unlock_enabled: bool, deadline: float) -> Resolution:
    """Resolve on a worker thread so Ctrl-C cancels the unlock instead of killing the process."""
    token = CancelToken(deadline=deadline)
    with ThreadPoolExecutor(max_workers=1) as pool:
        fut = pool.submit(resolver.resolve_detailed, stream, unlock_enabled, cancel=token)
        try:
            while not fut.done():
                wait([fut], timeout=0.25)
        except KeyboardInterrupt:
            print("Cancelling unlock...", file=sys.stderr)
            token.cancel()
        return fut.result()


def _report(res: Resolution) -> None:
    if res.timed_out:
        print("Real-Debrid did not finish in time; using the stream as is.", file=sys.stderr)
    elif res.cancelled:
        print("Unlock cancelled; using the stream as is.", file=sys.stderr)
    elif res.fallback_reason:
        print(f"Real-Debrid unlock failed ({res.fallback_reason}); using the stream as is.", file=sys.stderr)
    elif res.unlocked:
        print("Unlocked via Real-Debrid.", file=sys.stderr)


def _fetch_streams(media_type: str, imdb_id: str, season: Optional[int], episode: Optional[int], timeout: float) -> Optional[List[StreamDescriptor]]:
    try:
        if media_type == MediaType.movie.value:
            return get_streams("movie", imdb_id, timeout=timeout)
        return get_streams("series", imdb_id, season=season, episode=episode, timeout=timeout)
    except (requests.RequestException, ValueError) as e:
        print(f"Failed to fetch Torrentio streams: {e}")
        return None


def _play(cfg: Settings, stream: StreamDescriptor, *, title: str, unlock: bool, launch_player: bool) -> int:
    resolver = _resolver(cfg)
    enabled = unlock and cfg.unlock_enabled
    if enabled:
        print(f"Resolving via Real-Debrid: {title}", file=sys.stderr)
    try:
        res = _resolve_interruptibly(resolver, stream, unlock_enabled=enabled, deadline=cfg.resolve_deadline)
    except NoPlayableSource as e:
        print(f"Cannot play: {e}")
        return 1
    _report(res)
    if not launch_player:
        print(res.url)
        return 0
    try:
        # An unlocked URL is a single file; only raw magnets need the index
        file_idx = stream.file_idx if res.url.lower().startswith("magnet:") else None
        launch(res.url, cfg.player, title=title, file_idx=file_idx)
    except PlayerError as e:
        print(str(e))
        print(f"URL: {res.url}")
        return 1
    print(f"Launching {cfg.player} -> {title}")
    return 0


def _pick_episode(cinemeta: CinemetaClient, item: MediaItem) -> Optional[tuple[int, int]]:
    try:
        by_season = cinemeta.series_episodes(item.id)
    except requests.RequestException as e:
        print(f"Failed to fetch episodes: {e}")
        return None
    seasons = sorted(by_season)
    s_idx = pick_index([f"Season {s:02d}  ({len(by_season[s])} eps)" for s in seasons], header="Season")
    if s_idx is None:
        return None
    season = seasons[s_idx]
    episodes = by_season[season]
    e_idx = pick_index([f"S{season:02d}E{e:02d}" for e in episodes], header="Episode")
    if e_idx is None:
        return None
    return season, episodes[e_idx]


def _browse(cfg: Settings, items: List[MediaItem], *, unlock: bool) -> int:
    if not items:
        print("No results.")
        return 0
    idx = pick_index([it.display_title() for it in items], header="Title")
    if idx is None:
        print("Nothing selected.")
        return 1
    item = items[idx]
    season = episode = None
    title = item.name
    if item.is_series:
        picked = _pick_episode(CinemetaClient(timeout=cfg.request_timeout), item)
        if not picked:
            print("No episode selected.")
            return 1
        season, episode = picked
        title = f"{item.name} S{season:02d}E{episode:02d}"
    streams = _fetch_streams(item.type, item.id, season, episode, cfg.request_timeout)
    if streams is None:
        return 1
    if not streams:
        print("No Torrentio streams found.")
        return 0
    s_idx = pick_index([s.display() for s in streams], header="Stream")
    if s_idx is None:
        print("Nothing selected.")
        return 1
    return _play(cfg, streams[s_idx], title=title, unlock=unlock, launch_player=True)


def _print_items(items: List[MediaItem]) -> None:
    print(json.dumps([it.model_dump() for it in items], ensure_ascii=False))


def cmd_popular(json_out: bool, unlock: bool) -> int:
    cfg = _load_settings()
    try:
        movies, shows = CinemetaClient(timeout=cfg.request_timeout).popular()
    except requests.RequestException as e:
        print(f"Failed to fetch popular titles: {e}")
        return 1
    if json_out:
        _print_items(movies + shows)
        return 0
    return _browse(cfg, movies + shows, unlock=unlock)


def cmd_search(query: Optional[str], json_out: bool, unlock: bool) -> int:
    cfg = _load_settings()
    if not query:
        try:
            query = input("Search query: ").strip()
        except (KeyboardInterrupt, EOFError):
            return 1
    if not query:
        print("No query provided.")
        return 1
    print(f"Searching Cinemeta for: {query} ...", file=sys.stderr)
    try:
        items = CinemetaClient(timeout=cfg.request_timeout).search(query)
    except requests.RequestException as e:
        print(f"Search failed: {e}")
        return 1
    if json_out:
        _print_items(items)
        return 0
    return _browse(cfg, items, unlock=unlock)


def _normalize_type(media_type: str) -> str:
    return MediaType.series.value if media_type in {"series", "tv"} else MediaType.movie.value


def cmd_streams(media_type: str, imdb_id: str, season: Optional[int], episode: Optional[int], json_out: bool) -> int:
    cfg = _load_settings()
    mt = _normalize_type(media_type)
    if mt == MediaType.series.value and (not season or not episode):
        print("For series, --season and --episode are required.")
        return 2
    streams = _fetch_streams(mt, imdb_id, season, episode, cfg.request_timeout)
    if streams is None:
        return 1
    if json_out:
        out = []
        for s in streams:
            row = s.model_dump()
            ref = classify(s)
            row["kind"] = ref.kind.value
            row["reference"] = ref.reference
            out.append(row)
        print(json.dumps(out, ensure_ascii=False))
        return 0
    if not streams:
        print("No Torrentio streams found.")
        return 0
    for i, s in enumerate(streams):
        print(f"{i:3d}. {s.display()}")
    return 0


def cmd_resolve(media_type: str, imdb_id: str, season: Optional[int], episode: Optional[int], index: int, unlock: bool, launch_player: bool) -> int:
    cfg = _load_settings()
    mt = _normalize_type(media_type)
    if mt == MediaType.series.value and (not season or not episode):
        print("For series, --season and --episode are required.")
        return 2
    streams = _fetch_streams(mt, imdb_id, season, episode, cfg.request_timeout)
    if streams is None:
        return 1
    if not streams:
        print("No Torrentio streams found.")
        return 1
    if not 0 <= index < len(streams):
        print(f"--index must be between 0 and {len(streams) - 1}.")
        return 2
    title = imdb_id if mt == MediaType.movie.value else f"{imdb_id} S{season:02d}E{episode:02d}"
    return _play(cfg, streams[index], title=title, unlock=unlock, launch_player=launch_player)


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    p = argparse.ArgumentParser(prog="cinestream", description="Cinemeta/Torrentio terminal browser with Real-Debrid unlocking")
    # Global options
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    p.add_argument("-p", "--proxy", help="HTTPS proxy prefix to wrap catalog requests, e.g. https://host/path?destination=")
    p.add_argument("--no-unlock", action="store_true", help="Never use Real-Debrid, even if a token is configured")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("setup", help="Interactive configuration")

    p_pop = sub.add_parser("popular", help="Browse popular movies and series")
    p_pop.add_argument("--json", action="store_true", help="Output JSON instead of browsing")

    p_search = sub.add_parser("search", help="Search movies/series")
    p_search.add_argument("query", nargs="?", help="Search query")
    p_search.add_argument("--json", action="store_true", help="Output JSON instead of browsing")

    def _add_target(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("media_type", choices=["movie", "series", "tv"], help="Media type")
        sp.add_argument("imdb_id", help="IMDb ID, e.g. tt0133093")
        sp.add_argument("-s", "--season", type=int, help="Season (series)")
        sp.add_argument("-e", "--episode", type=int, help="Episode (series)")

    p_streams = sub.add_parser("streams", help="List Torrentio streams for a title")
    _add_target(p_streams)
    p_streams.add_argument("--json", action="store_true", help="Output JSON")

    for name, help_text in (("resolve", "Resolve a stream and print its playable URL"), ("play", "Resolve a stream and launch the player")):
        sp = sub.add_parser(name, help=help_text)
        _add_target(sp)
        sp.add_argument("-i", "--index", type=int, default=0, help="Stream position from 'streams' (default: first)")

    args = p.parse_args(argv)
    _setup_logging(args.verbose)

    # Apply proxy for downstream modules via env var
    if getattr(args, "proxy", None):
        os.environ["CINESTREAM_PROXY_PREFIX"] = args.proxy
    unlock = not args.no_unlock

    if args.cmd == "setup":
        return cmd_setup()
    if args.cmd == "popular":
        return cmd_popular(args.json, unlock)
    if args.cmd == "search":
        return cmd_search(args.query, args.json, unlock)
    if args.cmd == "streams":
        return cmd_streams(args.media_type, args.imdb_id, args.season, args.episode, args.json)
    if args.cmd in {"resolve", "play"}:
        return cmd_resolve(
            args.media_type,
            args.imdb_id,
            args.season,
            args.episode,
            args.index,
            unlock,
            launch_player=(args.cmd == "play"),
        )

    # No subcommand: browse popular titles by default
    return cmd_popular(False, unlock)


if __name__ == "__main__":
    raise SystemExit(main())
