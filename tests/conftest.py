"""Shared fixtures: a scripted network and cache stores."""

from pathlib import Path

import pytest

from offlinegate.models import CachedResponse, InterceptedRequest
from offlinegate.network import NetworkError
from offlinegate.store import CacheStore, MemoryCacheStore, SqliteCacheStore

ORIGIN = "http://origin.test"


class FakeNetwork:
    """Scripted stand-in for the network fetcher.

    Known URLs answer with their scripted response, unknown URLs answer 404.
    When offline, or for URLs marked unreachable, every fetch raises NetworkError.
    """

    def __init__(self) -> None:
        self.routes: dict[str, CachedResponse] = {}
        self.unreachable: set[str] = set()
        self.offline = False
        self.calls: list[tuple[str, str, float | None]] = []

    def serve(
        self,
        url: str,
        body: bytes = b"",
        status: int = 200,
        reason: str = "OK",
        headers: tuple[tuple[str, str], ...] = (("Content-Type", "text/plain"),),
    ) -> CachedResponse:
        response = CachedResponse(url=url, status=status, reason=reason, headers=headers, body=body)
        self.routes[url] = response
        return response

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_to(self, url: str) -> int:
        return sum(1 for _, called_url, _ in self.calls if called_url == url)

    def __call__(self, request: InterceptedRequest, timeout: float | None = None) -> CachedResponse:
        self.calls.append((request.method, request.url, timeout))
        if self.offline or request.url in self.unreachable:
            raise NetworkError(f"{request.url}: connection refused")
        if request.url in self.routes:
            return self.routes[request.url]
        return CachedResponse(url=request.url, status=404, reason="Not Found", body=b"not found")


@pytest.fixture
def network() -> FakeNetwork:
    """Network with the default offline page and assets available."""
    net = FakeNetwork()
    net.serve(f"{ORIGIN}/offline-template", b"<html>offline</html>", headers=(("Content-Type", "text/html"),))
    net.serve(f"{ORIGIN}/css/app.css", b"body{}", headers=(("Content-Type", "text/css"),))
    net.serve(f"{ORIGIN}/js/app.js", b"console.log(1)", headers=(("Content-Type", "text/javascript"),))
    net.serve(f"{ORIGIN}/images/fruit.png", b"\x89PNG", headers=(("Content-Type", "image/png"),))
    return net


@pytest.fixture
def manifest() -> tuple[str, ...]:
    return (
        f"{ORIGIN}/offline-template",
        f"{ORIGIN}/css/app.css",
        f"{ORIGIN}/js/app.js",
        f"{ORIGIN}/images/fruit.png",
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> CacheStore:
    """Each store backend in turn."""
    if request.param == "memory":
        cache_store: CacheStore = MemoryCacheStore()
    else:
        cache_store = SqliteCacheStore(str(tmp_path / "cache.db"))
    yield cache_store
    cache_store.close()
