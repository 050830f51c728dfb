from __future__ import annotations

import threading
import time

import pytest
import requests

from cinestream.errors import (
    Cancelled,
    EmptyDownloadURL,
    EmptyHandle,
    InvalidSelection,
    LifecycleError,
    LinksTimeout,
    MetadataTimeout,
    RemoteError,
)
from cinestream.models import TorrentHandle
from cinestream.realdebrid import (
    LINKS_POLL,
    METADATA_POLL,
    PollPolicy,
    CancelToken,
    LifecycleState,
    RealDebridClient,
    TorrentLifecycle,
)

from conftest import FakeResponse

HANDLE = TorrentHandle(remote_id="ABC123")
FILES = {"status": "waiting_files_selection", "files": [{"id": 1, "path": "/a.mkv", "bytes": 10}], "links": []}
NO_FILES = {"status": "magnet_conversion", "files": [], "links": []}


def _client(session, slept=None):
    return RealDebridClient(" tok ", session=session, sleep=(slept.append if slept is not None else lambda s: None))


def test_poll_budgets_are_fixed() -> None:
    assert (METADATA_POLL.attempts, METADATA_POLL.interval) == (8, 1.2)
    assert (LINKS_POLL.attempts, LINKS_POLL.interval) == (30, 1.5)


def test_enabled_only_with_non_blank_token() -> None:
    assert RealDebridClient("abc").enabled()
    assert not RealDebridClient("   ").enabled()
    assert not RealDebridClient("").enabled()


def test_add_magnet_posts_form_with_bearer(fake_session) -> None:
    fake_session.add("POST", "/torrents/addMagnet", FakeResponse(201, {"id": "ABC123", "uri": "x"}))

    handle = _client(fake_session).add_magnet("magnet:?xt=urn:btih:aa")

    assert handle == HANDLE
    call = fake_session.calls[0]
    assert call.url == "https://api.real-debrid.com/rest/1.0/torrents/addMagnet"
    assert call.data == {"magnet": "magnet:?xt=urn:btih:aa"}
    assert call.headers["Authorization"] == "Bearer tok"


def test_add_magnet_without_id_is_empty_handle(fake_session) -> None:
    fake_session.add("POST", "/torrents/addMagnet", FakeResponse(201, {"id": ""}))

    with pytest.raises(EmptyHandle):
        _client(fake_session).add_magnet("magnet:?xt=urn:btih:aa")


def test_non_2xx_carries_status_and_truncated_body(fake_session) -> None:
    fake_session.add("POST", "/torrents/addMagnet", FakeResponse(401, content=b"x" * 5000))

    with pytest.raises(RemoteError) as exc:
        _client(fake_session).add_magnet("magnet:?xt=urn:btih:aa")

    assert exc.value.status == 401
    assert len(exc.value.body) == 2048


def test_transport_error_is_remote_error_without_status(fake_session) -> None:
    fake_session.add("POST", "/unrestrict/link", requests.ConnectionError("connection refused"))

    with pytest.raises(RemoteError) as exc:
        _client(fake_session).unrestrict_link("https://host/file")

    assert exc.value.status == 0
    assert "connection refused" in exc.value.body


def test_invalid_json_is_remote_error(fake_session) -> None:
    fake_session.add("POST", "/unrestrict/link", FakeResponse(200, content=b"<html>"))

    with pytest.raises(RemoteError) as exc:
        _client(fake_session).unrestrict_link("https://host/file")

    assert exc.value.status == 200


def test_await_metadata_polls_until_files_appear(fake_session) -> None:
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, NO_FILES), FakeResponse(200, NO_FILES), FakeResponse(200, FILES))
    slept = []

    files = _client(fake_session, slept).await_metadata(HANDLE)

    assert [f.remote_id for f in files] == [1]
    assert files[0].local_index == 0
    assert len(fake_session.calls) == 3
    assert slept == [1.2, 1.2]


def test_await_metadata_times_out_after_eight_attempts(fake_session) -> None:
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, NO_FILES))
    slept = []

    with pytest.raises(MetadataTimeout):
        _client(fake_session, slept).await_metadata(HANDLE)

    assert len(fake_session.calls) == 8
    assert slept == [1.2] * 8


def test_remote_error_during_poll_is_not_retried(fake_session) -> None:
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, NO_FILES), FakeResponse(503, content=b"busy"))

    with pytest.raises(RemoteError) as exc:
        _client(fake_session).await_metadata(HANDLE)

    assert exc.value.status == 503
    assert len(fake_session.calls) == 2


class _SkipFirstWait(CancelToken):
    def __init__(self) -> None:
        super().__init__()
        self.waits = []

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if len(self.waits) == 1:
            return False
        return super().wait(seconds)


def test_cancel_during_second_metadata_attempt_stops_promptly(fake_session) -> None:
    token = _SkipFirstWait()
    attempts = []

    def info(call):
        attempts.append(call)
        if len(attempts) == 2:
            token.cancel()
        return FakeResponse(200, NO_FILES)

    fake_session.add("GET", "/torrents/info/ABC123", info)
    client = RealDebridClient("tok", session=fake_session)

    started = time.monotonic()
    with pytest.raises(Cancelled):
        client.await_metadata(HANDLE, cancel=token)

    assert time.monotonic() - started < 1.0
    assert len(attempts) == 2


def test_cancel_interrupts_pending_wait(fake_session) -> None:
    token = CancelToken()
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, NO_FILES))
    client = RealDebridClient("tok", session=fake_session, metadata_policy=PollPolicy(attempts=3, interval=5.0))
    timer = threading.Timer(0.1, token.cancel)

    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(Cancelled):
            client.await_metadata(HANDLE, cancel=token)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 2.0
    assert len(fake_session.calls) == 1


def test_cancel_before_start_makes_no_request(fake_session) -> None:
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        _client(fake_session).await_ready_links(HANDLE, cancel=token)

    assert fake_session.calls == []


def test_await_ready_links_times_out_after_thirty_attempts(fake_session) -> None:
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, FILES))
    slept = []

    with pytest.raises(LinksTimeout):
        _client(fake_session, slept).await_ready_links(HANDLE)

    assert len(fake_session.calls) == 30
    assert set(slept) == {1.5}


def test_await_ready_links_returns_links(fake_session) -> None:
    ready = dict(FILES, status="downloaded", links=["https://real-debrid.com/d/XYZ"])
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, FILES), FakeResponse(200, ready))

    assert _client(fake_session).await_ready_links(HANDLE) == ["https://real-debrid.com/d/XYZ"]


@pytest.mark.parametrize("file_id", [0, -3])
def test_select_files_rejects_sentinel_without_request(fake_session, file_id) -> None:
    with pytest.raises(InvalidSelection):
        _client(fake_session).select_files(HANDLE, file_id)

    assert fake_session.calls == []


def test_select_files_sends_single_id(fake_session) -> None:
    fake_session.add("POST", "/torrents/selectFiles/ABC123", FakeResponse(204))

    _client(fake_session).select_files(HANDLE, 7)

    assert fake_session.calls[0].data == {"files": "7"}


def test_unrestrict_without_download_is_empty_download_url(fake_session) -> None:
    fake_session.add("POST", "/unrestrict/link", FakeResponse(200, {"filename": "a.mkv"}))

    with pytest.raises(EmptyDownloadURL):
        _client(fake_session).unrestrict_link("https://real-debrid.com/d/XYZ")


def test_request_timeout_is_capped_by_deadline(fake_session) -> None:
    now = [100.0]
    token = CancelToken(deadline=10.0, clock=lambda: now[0])
    fake_session.add("POST", "/unrestrict/link", FakeResponse(200, {"download": "https://dl/x"}))

    assert _client(fake_session).unrestrict_link("https://l", cancel=token) == "https://dl/x"
    assert fake_session.calls[0].timeout == 10.0


def test_deadline_expiry_cancels_token() -> None:
    now = [0.0]
    token = CancelToken(deadline=5.0, clock=lambda: now[0])

    assert not token.cancelled
    assert token.remaining() == 5.0
    now[0] = 5.0
    assert token.cancelled
    assert token.wait(1.0)


def test_lifecycle_moves_forward_one_step_at_a_time() -> None:
    lc = TorrentLifecycle("magnet:?xt=urn:btih:aa")
    lc.advance(LifecycleState.registered)

    with pytest.raises(LifecycleError):
        lc.advance(LifecycleState.file_selected)
    with pytest.raises(LifecycleError):
        lc.advance(LifecycleState.registered)

    lc.advance(LifecycleState.metadata_ready)
    assert lc.state is LifecycleState.metadata_ready


def test_lifecycle_failure_is_terminal() -> None:
    lc = TorrentLifecycle("magnet:?xt=urn:btih:aa")
    err = MetadataTimeout(8)

    lc.fail(err)

    assert lc.state is LifecycleState.failed
    assert lc.failure is err
    with pytest.raises(LifecycleError):
        lc.advance(LifecycleState.registered)


def test_malformed_info_payload_is_a_remote_error(fake_session) -> None:
    fake_session.add("GET", "/torrents/info/ABC123", FakeResponse(200, {"files": [{"id": "one"}]}))

    with pytest.raises(RemoteError) as exc:
        _client(fake_session).torrent_info(HANDLE)

    assert exc.value.status == 200


def test_expiry_is_told_apart_from_explicit_cancel() -> None:
    now = [0.0]
    expiring = CancelToken(deadline=5.0, clock=lambda: now[0])
    stopped = CancelToken(deadline=5.0, clock=lambda: now[0])
    stopped.cancel()

    now[0] = 6.0

    assert expiring.cancelled and expiring.expired
    assert stopped.cancelled and not stopped.expired
