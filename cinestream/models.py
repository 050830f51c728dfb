from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaType(str, Enum):
    movie = "movie"
    series = "series"


class MediaItem(BaseModel):
    id: str
    name: str
    type: str = MediaType.movie.value
    year: Optional[int] = None
    poster: Optional[str] = None

    @property
    def is_series(self) -> bool:
        return self.type == MediaType.series.value

    def display_title(self) -> str:
        yr = f" ({self.year})" if self.year else ""
        prefix = "📺" if self.is_series else "🎬"
        return f"{prefix} {self.name}{yr} [{self.id}]"


class StreamDescriptor(BaseModel):
    """A stream candidate as listed by a source addon, before resolution."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    title: str = ""
    url: str = ""
    info_hash: str = ""
    file_idx: Optional[int] = None
    sources: List[str] = Field(default_factory=list)

    def has_source(self) -> bool:
        return bool(self.url.strip() or self.info_hash.strip())

    def display(self) -> str:
        parts: List[str] = []
        if self.name:
            parts.append(self.name.replace("\n", " "))
        if self.title:
            parts.append(self.title.replace("\n", " "))
        if not parts:
            parts.append(self.info_hash[:12] or self.url[:40])
        idx = f"idx={self.file_idx}" if self.file_idx is not None else "idx=?"
        return f"{ ' | '.join(parts) }  ({idx})"


class StreamKind(str, Enum):
    direct_url = "direct_url"
    magnet_uri = "magnet_uri"
    hash_synthesized = "hash_synthesized"


class NormalizedStream(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: StreamKind
    # Empty only for hash_synthesized without an info-hash
    reference: str = ""

    @property
    def is_torrent(self) -> bool:
        return self.kind is not StreamKind.direct_url


class TorrentHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    remote_id: str


class TorrentFile(BaseModel):
    local_index: int
    remote_id: int
    path: str = ""
    size_bytes: int = 0


class TorrentInfo(BaseModel):
    status: str = ""
    files: List[TorrentFile] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TorrentInfo":
        files: List[TorrentFile] = []
        for pos, f in enumerate(data.get("files") or []):
            if not isinstance(f, dict):
                continue
            files.append(
                TorrentFile(
                    local_index=pos,
                    remote_id=int(f.get("id") or 0),
                    path=f.get("path") or "",
                    size_bytes=int(f.get("bytes") or 0),
                )
            )
        links = [l for l in (data.get("links") or []) if isinstance(l, str) and l]
        return cls(status=data.get("status") or "", files=files, links=links)


class Resolution(BaseModel):
    url: str
    kind: StreamKind
    unlocked: bool = False
    # Set when the unlock pipeline failed and url is the fallback
    fallback_reason: Optional[str] = None
    cancelled: bool = False
    # Cancelled by the umbrella deadline rather than by the caller
    timed_out: bool = False
