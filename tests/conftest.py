from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import pytest
import requests


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, content: Optional[bytes] = None) -> None:
        self.status_code = status
        self._payload = payload
        if content is None:
            content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.content = content

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.content.decode("utf-8"))
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


@dataclass
class Call:
    method: str
    url: str
    data: Optional[Dict[str, str]]
    headers: Optional[Dict[str, str]]
    timeout: Optional[float]

    @property
    def path(self) -> str:
        return urlsplit(self.url).path


Scripted = Union[FakeResponse, Exception, Callable[[Call], Any]]


class FakeSession:
    """Stand-in for requests.Session that replays scripted responses per route.

    Each route holds a queue; the last entry repeats once the queue drains.
    Entries may be responses, exceptions to raise, or callables taking the Call.
    """

    def __init__(self) -> None:
        self.routes: List[Tuple[str, str, List[Scripted]]] = []
        self.calls: List[Call] = []

    def add(self, method: str, path_suffix: str, *responses: Scripted) -> "FakeSession":
        self.routes.append((method.upper(), path_suffix, list(responses)))
        return self

    def request(self, method: str, url: str, data=None, headers=None, timeout=None, params=None):
        call = Call(method.upper(), url, data, headers, timeout)
        self.calls.append(call)
        for m, suffix, queue in self.routes:
            if m == call.method and call.path.endswith(suffix):
                item = queue[0] if len(queue) == 1 else queue.pop(0)
                if callable(item) and not isinstance(item, FakeResponse):
                    item = item(call)
                if isinstance(item, Exception):
                    raise item
                return item
        raise AssertionError(f"unexpected request {call.method} {url}")

    def get(self, url: str, headers=None, timeout=None, params=None):
        return self.request("GET", url, headers=headers, timeout=timeout, params=params)

    def calls_to(self, path_suffix: str) -> List[Call]:
        return [c for c in self.calls if c.path.endswith(path_suffix)]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clean_env(monkeypatch):
    # setenv then delenv so teardown also drops values written by load_dotenv
    for name in ("REALDEBRID", "CINESTREAM_PLAYER", "CINESTREAM_PROXY_PREFIX"):
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)
    return monkeypatch
