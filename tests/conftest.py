"""Pytest-wide fixtures and hooks for Hyperlink Horizon tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
import requests

from src import config


class FakeResponse:
    """Minimal stand-in for ``requests.Response`` as used by the prober."""

    def __init__(
        self,
        status_code: int | None = 200,
        headers: dict[str, str] | None = None,
        body: str | bytes = b"",
        url: str = "",
        encoding: str | None = "utf-8",
    ) -> None:
        self.status_code = status_code
        self.headers = headers or {}
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.url = url
        self.encoding = encoding
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


# FakeResponse, an exception instance, or a callable returning either.
Reply = Any


class FakeSession:
    """Scripted ``requests.Session`` replacement.

    ``routes`` maps ``(METHOD, url)`` (or just ``url``) to a list of replies
    consumed in order; the last reply repeats. A reply is a ``FakeResponse``,
    an exception instance to raise, or a callable returning either.
    """

    def __init__(self, routes: dict[Any, list[Reply]] | None = None) -> None:
        self.headers: dict[str, str] = {}
        self.routes: dict[Any, list[Reply]] = routes or {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def add(self, url: str, *replies: Reply, method: str | None = None) -> None:
        key = (method.upper(), url) if method else url
        self.routes[key] = list(replies)

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        replies = self.routes.get((method, url))
        if replies is None:
            replies = self.routes.get(url)
        if not replies:
            raise requests.exceptions.ConnectionError(f"no route for {method} {url}")

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply) and not isinstance(reply, (FakeResponse, BaseException)):
            reply = reply()
        if isinstance(reply, BaseException):
            raise reply
        if not reply.url:
            reply.url = url
        return reply

    def methods_for(self, url: str) -> list[str]:
        return [method for method, called_url, _ in self.calls if called_url == url]

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests off real Redis and out of production URL rules."""
    monkeypatch.setattr(config, "REDIS_URL", None)
    monkeypatch.setattr(config, "BLOCK_PRIVATE_URLS", False)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_response() -> type[FakeResponse]:
    return FakeResponse


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
