from __future__ import annotations

import logging
import shutil
import subprocess
from typing import List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from .errors import PlayerError

logger = logging.getLogger(__name__)

SUPPORTED_PLAYERS = ("mpv", "vlc", "clapper")


def choose_player(preferred: str) -> Optional[str]:
    if preferred and shutil.which(preferred):
        return preferred
    # Fallback order: mpv, vlc, clapper
    for cand in SUPPORTED_PLAYERS:
        if shutil.which(cand):
            return cand
    return None


def has_webtorrent() -> bool:
    return shutil.which("webtorrent") is not None


def sanitize_url(u: str) -> str:
    """Percent-encode spaces and other unsafe characters in URLs for players like VLC.

    Leaves already-encoded sequences intact. Encodes path and query separately.
    """
    sp = urlsplit(u)
    # Safe chars include RFC3986 unreserved + common sub-delims and path separators
    safe_path = "/:@!$&'()*+,;=-._~%"
    path = quote(sp.path, safe=safe_path)
    # For query, keep separators like &= and commas/semicolons
    safe_query = "=&,:@!$'()*+;/-._~%"
    query = quote(sp.query, safe=safe_query)
    return urlunsplit((sp.scheme, sp.netloc, path, query, sp.fragment))


def build_command(url: str, player: str, *, title: Optional[str] = None, file_idx: Optional[int] = None) -> List[str]:
    if url.lower().startswith("magnet:"):
        if not has_webtorrent():
            raise PlayerError("webtorrent-cli not found on PATH. Install with: npm i -g webtorrent-cli")
        cmd = ["webtorrent", url, f"--{player}"]
        if file_idx is not None:
            cmd += ["--select", str(file_idx)]
        return cmd
    cmd = [player]
    if title and player == "mpv":
        cmd.append(f"--force-media-title={title}")
    cmd.append(sanitize_url(url))
    return cmd


def launch(url: str, preferred: str = "mpv", *, title: Optional[str] = None, file_idx: Optional[int] = None) -> subprocess.Popen:
    player = choose_player(preferred)
    if not player:
        raise PlayerError("No supported player (mpv/vlc/clapper) found on PATH.")
    cmd = build_command(url, player, title=title, file_idx=file_idx)
    logger.info("Launching %s", cmd[0])
    try:
        # Do not block; let player open
        return subprocess.Popen(cmd)
    except OSError as e:
        raise PlayerError(f"Failed to launch {cmd[0]}: {e}") from e
