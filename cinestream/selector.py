from __future__ import annotations

from typing import Optional, Sequence

from .models import TorrentFile


VIDEO_EXTENSIONS = (".mkv", ".mp4", ".avi", ".mov", ".m4v", ".wmv", ".webm", ".ts")

# remote_id sentinel for "no file available"
NO_FILE = 0


def is_likely_video(path: str) -> bool:
    return path.lower().endswith(VIDEO_EXTENSIONS)


def pick_file_id(files: Sequence[TorrentFile], explicit_index: Optional[int] = None) -> int:
    """Choose which file of a torrent manifest to unlock.

    An in-range explicit index always wins. Otherwise the largest video-like
    file is taken (first one on ties), then the first file of the manifest.
    """
    if not files:
        return NO_FILE
    if explicit_index is not None and 0 <= explicit_index < len(files):
        return files[explicit_index].remote_id

    best_id = NO_FILE
    best_bytes = -1
    for f in files:
        if not is_likely_video(f.path):
            continue
        if f.size_bytes > best_bytes:
            best_id = f.remote_id
            best_bytes = f.size_bytes
    if best_id != NO_FILE:
        return best_id
    return files[0].remote_id
