from __future__ import annotations

from typing import Iterable, List, Optional
from urllib.parse import quote_plus

from .models import NormalizedStream, StreamDescriptor, StreamKind


TRACKER_PREFIX = "tracker:"


def build_magnet(info_hash: str, sources: Optional[Iterable[str]] = None) -> str:
    """Synthesize a magnet URI from an info-hash and `tracker:` source hints.

    Returns "" when there is no hash to address.
    """
    if not info_hash:
        return ""
    magnet = f"magnet:?xt=urn:btih:{info_hash.lower()}"
    seen: List[str] = []
    for src in sources or []:
        if not isinstance(src, str) or not src.startswith(TRACKER_PREFIX):
            continue
        tr = src[len(TRACKER_PREFIX):].strip()
        if not tr or tr in seen:
            continue
        seen.append(tr)
        magnet += f"&tr={quote_plus(tr)}"
    return magnet


def classify(descriptor: StreamDescriptor) -> NormalizedStream:
    url = descriptor.url
    lower = url.lower()
    if lower.startswith("http"):
        return NormalizedStream(kind=StreamKind.direct_url, reference=url)
    if lower.startswith("magnet:"):
        return NormalizedStream(kind=StreamKind.magnet_uri, reference=url)
    return NormalizedStream(
        kind=StreamKind.hash_synthesized,
        reference=build_magnet(descriptor.info_hash, descriptor.sources),
    )
