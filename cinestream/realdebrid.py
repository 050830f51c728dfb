from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from .errors import (
    Cancelled,
    EmptyDownloadURL,
    EmptyHandle,
    InvalidSelection,
    LifecycleError,
    LinksTimeout,
    MetadataTimeout,
    RemoteError,
)
from .models import TorrentFile, TorrentHandle, TorrentInfo

logger = logging.getLogger(__name__)

REALDEBRID_BASE = "https://api.real-debrid.com/rest/1.0"
REQUEST_TIMEOUT = 45.0
ERROR_BODY_LIMIT = 2048
# Umbrella deadline a caller should put on one full resolve
DEFAULT_RESOLVE_DEADLINE = 120.0


@dataclass(frozen=True)
class PollPolicy:
    attempts: int
    interval: float


# Reading the file manifest is quick; waiting for the service to cache content is not
METADATA_POLL = PollPolicy(attempts=8, interval=1.2)
LINKS_POLL = PollPolicy(attempts=30, interval=1.5)


class CancelToken:
    """Cancellation signal shared between a caller and a running resolve.

    With a `deadline` (seconds from creation) the token also cancels itself
    once that much time has passed. `wait()` is an interruptible sleep.
    """

    def __init__(self, deadline: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._expires_at = clock() + deadline if deadline is not None else None
        self._expired = False

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self._expired = True
            self._event.set()
            return True
        return False

    @property
    def expired(self) -> bool:
        """True when the token was cancelled by its deadline rather than by `cancel()`."""
        return self.cancelled and self._expired

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if cancelled meanwhile."""
        if self.cancelled:
            return True
        rem = self.remaining()
        if rem is not None and rem <= seconds:
            if not self._event.wait(rem):
                self._expired = True
                self._event.set()
            return True
        return self._event.wait(seconds)


class LifecycleState(str, Enum):
    new = "new"
    registered = "registered"
    metadata_ready = "metadata_ready"
    file_selected = "file_selected"
    links_ready = "links_ready"
    unrestricted = "unrestricted"
    failed = "failed"


_FORWARD = [
    LifecycleState.new,
    LifecycleState.registered,
    LifecycleState.metadata_ready,
    LifecycleState.file_selected,
    LifecycleState.links_ready,
    LifecycleState.unrestricted,
]


class TorrentLifecycle:
    """State of one unlock attempt for one magnet.

    Moves one step forward at a time; `fail()` is reachable from anywhere
    and is terminal.
    """

    def __init__(self, magnet: str) -> None:
        self.magnet = magnet
        self.state = LifecycleState.new
        self.handle: Optional[TorrentHandle] = None
        self.files: List[TorrentFile] = []
        self.file_id = 0
        self.links: List[str] = []
        self.download_url: Optional[str] = None
        self.failure: Optional[BaseException] = None

    def advance(self, to: LifecycleState) -> None:
        if self.state is LifecycleState.failed:
            raise LifecycleError(f"lifecycle already failed: {self.failure}")
        if to is LifecycleState.failed or _FORWARD.index(to) != _FORWARD.index(self.state) + 1:
            raise LifecycleError(f"illegal transition {self.state.value} -> {to.value}")
        logger.debug("torrent %s: %s -> %s", self.remote_id, self.state.value, to.value)
        self.state = to

    def fail(self, reason: BaseException) -> None:
        logger.debug("torrent %s: %s -> failed (%s)", self.remote_id, self.state.value, reason)
        self.failure = reason
        self.state = LifecycleState.failed

    @property
    def remote_id(self) -> str:
        return self.handle.remote_id if self.handle else "-"


def _error_body(r: requests.Response) -> str:
    return (r.content or b"")[:ERROR_BODY_LIMIT].decode("utf-8", errors="replace").strip()


class RealDebridClient:
    def __init__(
        self,
        token: str,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = REALDEBRID_BASE,
        timeout: float = REQUEST_TIMEOUT,
        metadata_policy: PollPolicy = METADATA_POLL,
        links_policy: PollPolicy = LINKS_POLL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.token = (token or "").strip()
        self.base = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.metadata_policy = metadata_policy
        self.links_policy = links_policy
        self._sleep = sleep

    def enabled(self) -> bool:
        return bool(self.token)

    # --- Transport ---
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}

    def _timeout(self, cancel: Optional[CancelToken], stage: str) -> float:
        if cancel is None:
            return self.timeout
        if cancel.cancelled:
            raise Cancelled(stage)
        rem = cancel.remaining()
        return self.timeout if rem is None else min(self.timeout, rem)

    def _request(
        self,
        method: str,
        route: str,
        *,
        data: Optional[Dict[str, str]] = None,
        cancel: Optional[CancelToken] = None,
        stage: str = "",
    ) -> requests.Response:
        timeout = self._timeout(cancel, stage)
        try:
            r = self.session.request(
                method,
                f"{self.base}{route}",
                data=data,
                headers=self._headers(),
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise RemoteError(0, str(e)) from e
        if not 200 <= r.status_code < 300:
            raise RemoteError(r.status_code, _error_body(r))
        return r

    def _json(self, r: requests.Response) -> Dict[str, Any]:
        try:
            data = r.json()
        except ValueError as e:
            raise RemoteError(r.status_code, "invalid JSON response") from e
        if not isinstance(data, dict):
            raise RemoteError(r.status_code, "unexpected JSON payload")
        return data

    def _wait(self, seconds: float, cancel: Optional[CancelToken]) -> bool:
        if cancel is None:
            self._sleep(seconds)
            return False
        return cancel.wait(seconds)

    # --- Torrent lifecycle ---
    def add_magnet(self, magnet: str, *, cancel: Optional[CancelToken] = None) -> TorrentHandle:
        r = self._request("POST", "/torrents/addMagnet", data={"magnet": magnet}, cancel=cancel, stage="registering")
        remote_id = str(self._json(r).get("id") or "").strip()
        if not remote_id:
            raise EmptyHandle()
        logger.info("Registered torrent %s", remote_id)
        return TorrentHandle(remote_id=remote_id)

    def torrent_info(self, handle: TorrentHandle, *, cancel: Optional[CancelToken] = None) -> TorrentInfo:
        route = f"/torrents/info/{quote(handle.remote_id, safe='')}"
        r = self._request("GET", route, cancel=cancel, stage="polling torrent info")
        data = self._json(r)
        try:
            return TorrentInfo.from_payload(data)
        except (ValueError, TypeError) as e:
            # pydantic's ValidationError is a ValueError
            raise RemoteError(r.status_code, "unexpected torrent info payload") from e

    def _poll(
        self,
        handle: TorrentHandle,
        policy: PollPolicy,
        ready: Callable[[TorrentInfo], bool],
        cancel: Optional[CancelToken],
        stage: str,
    ) -> Optional[TorrentInfo]:
        for attempt in range(1, policy.attempts + 1):
            if cancel is not None and cancel.cancelled:
                raise Cancelled(stage)
            # Remote errors propagate: unreachable is not the same as not ready
            info = self.torrent_info(handle, cancel=cancel)
            if ready(info):
                logger.debug("%s: ready after %d attempt(s)", stage, attempt)
                return info
            logger.debug("%s: attempt %d/%d, status=%s", stage, attempt, policy.attempts, info.status or "?")
            if self._wait(policy.interval, cancel):
                raise Cancelled(stage)
        return None

    def await_metadata(self, handle: TorrentHandle, *, cancel: Optional[CancelToken] = None) -> List[TorrentFile]:
        info = self._poll(handle, self.metadata_policy, lambda i: bool(i.files), cancel, "waiting for metadata")
        if info is None:
            raise MetadataTimeout(self.metadata_policy.attempts)
        return info.files

    def select_files(self, handle: TorrentHandle, file_id: int, *, cancel: Optional[CancelToken] = None) -> None:
        if file_id <= 0:
            raise InvalidSelection(file_id)
        route = f"/torrents/selectFiles/{quote(handle.remote_id, safe='')}"
        self._request("POST", route, data={"files": str(file_id)}, cancel=cancel, stage="selecting file")
        logger.info("Selected file %d on torrent %s", file_id, handle.remote_id)

    def await_ready_links(self, handle: TorrentHandle, *, cancel: Optional[CancelToken] = None) -> List[str]:
        info = self._poll(handle, self.links_policy, lambda i: bool(i.links), cancel, "waiting for links")
        if info is None:
            raise LinksTimeout(self.links_policy.attempts)
        return info.links

    def unrestrict_link(self, link: str, *, cancel: Optional[CancelToken] = None) -> str:
        r = self._request("POST", "/unrestrict/link", data={"link": link}, cancel=cancel, stage="unrestricting")
        download = str(self._json(r).get("download") or "").strip()
        if not download:
            raise EmptyDownloadURL()
        return download
