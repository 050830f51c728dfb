from __future__ import annotations

import logging
from typing import Optional

from .errors import Cancelled, InvalidSelection, NoPlayableSource, UnlockError
from .magnet import classify
from .models import Resolution, StreamDescriptor, StreamKind
from .realdebrid import CancelToken, LifecycleState, RealDebridClient, TorrentLifecycle
from .selector import NO_FILE, pick_file_id

logger = logging.getLogger(__name__)


class StreamResolver:
    """Turns a stream descriptor into one URL the player can open.

    A failing unlock service never blocks playback: direct links fall back
    to themselves and torrents fall back to their magnet. The only hard
    failure is a descriptor with neither a URL nor an info-hash.
    """

    def __init__(self, unlock: RealDebridClient) -> None:
        self.unlock = unlock

    def resolve(
        self,
        descriptor: StreamDescriptor,
        unlock_enabled: Optional[bool] = None,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        return self.resolve_detailed(descriptor, unlock_enabled, cancel=cancel).url

    def resolve_detailed(
        self,
        descriptor: StreamDescriptor,
        unlock_enabled: Optional[bool] = None,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> Resolution:
        if unlock_enabled is None:
            unlock_enabled = self.unlock.enabled()
        stream = classify(descriptor)

        if not stream.is_torrent:
            if not unlock_enabled:
                return Resolution(url=stream.reference, kind=stream.kind)
            try:
                url = self.unlock.unrestrict_link(stream.reference, cancel=cancel)
            except UnlockError as e:
                return self._fallback(stream.reference, stream.kind, e, cancel)
            return Resolution(url=url, kind=stream.kind, unlocked=True)

        magnet = stream.reference
        if not magnet:
            raise NoPlayableSource()
        if not unlock_enabled:
            return Resolution(url=magnet, kind=stream.kind)
        try:
            url = self.unlock_magnet(magnet, descriptor.file_idx, cancel=cancel)
        except UnlockError as e:
            return self._fallback(magnet, stream.kind, e, cancel)
        return Resolution(url=url, kind=stream.kind, unlocked=True)

    def unlock_magnet(self, magnet: str, file_idx: Optional[int] = None, *, cancel: Optional[CancelToken] = None) -> str:
        """Run one full Real-Debrid lifecycle for `magnet` and return the download URL."""
        lc = TorrentLifecycle(magnet)
        rd = self.unlock
        try:
            lc.handle = rd.add_magnet(magnet, cancel=cancel)
            lc.advance(LifecycleState.registered)

            lc.files = rd.await_metadata(lc.handle, cancel=cancel)
            lc.advance(LifecycleState.metadata_ready)

            lc.file_id = pick_file_id(lc.files, file_idx)
            if lc.file_id == NO_FILE:
                raise InvalidSelection(lc.file_id)
            rd.select_files(lc.handle, lc.file_id, cancel=cancel)
            lc.advance(LifecycleState.file_selected)

            lc.links = rd.await_ready_links(lc.handle, cancel=cancel)
            lc.advance(LifecycleState.links_ready)

            lc.download_url = rd.unrestrict_link(lc.links[0], cancel=cancel)
            lc.advance(LifecycleState.unrestricted)
        except UnlockError as e:
            lc.fail(e)
            raise
        return lc.download_url

    def _fallback(self, url: str, kind: StreamKind, err: UnlockError, cancel: Optional[CancelToken]) -> Resolution:
        cancelled = isinstance(err, Cancelled)
        timed_out = cancelled and cancel is not None and cancel.expired
        if timed_out:
            logger.warning("Unlock ran out of time (%s); using %s as is", err, kind.value)
        elif cancelled:
            logger.info("Unlock cancelled (%s); using %s as is", err, kind.value)
        else:
            logger.warning("Unlock failed (%s); using %s as is", err, kind.value)
        return Resolution(url=url, kind=kind, fallback_reason=str(err), cancelled=cancelled, timed_out=timed_out)
