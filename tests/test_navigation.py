"""Tests for the navigation fallback resolver."""

import pytest
from conftest import ORIGIN, FakeNetwork

from offlinegate.cache_manager import CacheManager
from offlinegate.models import InterceptedRequest
from offlinegate.navigation import NavigationFallbackResolver, OfflinePageUnavailableError
from offlinegate.network import NetworkError
from offlinegate.store import CacheStore

OFFLINE_URL = f"{ORIGIN}/offline-template"


@pytest.fixture
def cache_manager(store: CacheStore, manifest: tuple[str, ...], network: FakeNetwork) -> CacheManager:
    manager = CacheManager(store, "offline-cache-v1", manifest, fetcher=network)
    manager.install()
    return manager


@pytest.fixture
def resolver(cache_manager: CacheManager, network: FakeNetwork) -> NavigationFallbackResolver:
    return NavigationFallbackResolver(cache_manager, OFFLINE_URL, fetcher=network)


def navigate(path: str) -> InterceptedRequest:
    return InterceptedRequest(url=f"{ORIGIN}{path}", mode="navigate")


class TestHandleNavigation:
    """Tests for NavigationFallbackResolver.handle_navigation."""

    def test_online_returns_live_response(self, resolver: NavigationFallbackResolver, network: FakeNetwork) -> None:
        """A reachable origin answers the navigation directly."""
        network.serve(f"{ORIGIN}/dashboard", b"<html>live</html>")

        response = resolver.handle_navigation(navigate("/dashboard"))

        assert response.body == b"<html>live</html>"
        assert not response.from_cache

    def test_network_first_even_when_cached(self, resolver: NavigationFallbackResolver, network: FakeNetwork) -> None:
        """Navigations never consult the cache before the network."""
        network.serve(OFFLINE_URL, b"<html>fresh offline page</html>")

        response = resolver.handle_navigation(navigate("/offline-template"))

        assert response.body == b"<html>fresh offline page</html>"
        assert network.calls_to(OFFLINE_URL) == 2  # install + navigation

    def test_offline_returns_cached_offline_page(
        self, resolver: NavigationFallbackResolver, network: FakeNetwork
    ) -> None:
        """With the network down, the cached offline page is returned exactly."""
        network.offline = True

        response = resolver.handle_navigation(navigate("/customers"))

        assert response.body == b"<html>offline</html>"
        assert response.status == 200
        assert response.header("Content-Type") == "text/html"
        assert response.from_cache

    @pytest.mark.parametrize("status", [404, 500, 502, 503])
    def test_http_error_is_not_replaced(
        self, resolver: NavigationFallbackResolver, network: FakeNetwork, status: int
    ) -> None:
        """An HTTP error status is a live answer and is returned unmodified."""
        network.serve(f"{ORIGIN}/broken", b"server says no", status=status, reason="Error")

        response = resolver.handle_navigation(navigate("/broken"))

        assert response.status == status
        assert response.body == b"server says no"
        assert not response.from_cache

    def test_missing_offline_page_propagates(self, store: CacheStore, network: FakeNetwork) -> None:
        """Without a cached offline page, the failure surfaces."""
        manager = CacheManager(store, "never-installed", (OFFLINE_URL,), fetcher=network)
        resolver = NavigationFallbackResolver(manager, OFFLINE_URL, fetcher=network)
        network.offline = True

        with pytest.raises(OfflinePageUnavailableError):
            resolver.handle_navigation(navigate("/orders"))

    def test_missing_offline_page_is_a_network_error(self) -> None:
        """Callers handling NetworkError also handle a missing offline page."""
        assert issubclass(OfflinePageUnavailableError, NetworkError)

    def test_uses_navigation_timeout(self, cache_manager: CacheManager, network: FakeNetwork) -> None:
        """The navigation deadline is passed to the fetcher."""
        resolver = NavigationFallbackResolver(cache_manager, OFFLINE_URL, fetcher=network, timeout=3.0)
        network.calls.clear()

        resolver.handle_navigation(navigate("/"))

        assert network.calls[0][2] == 3.0
