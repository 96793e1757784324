"""Tests for the gateway HTTP server."""

import json
import socket
import time
import urllib.error
import urllib.request

import pytest
from conftest import ORIGIN, FakeNetwork

from offlinegate.config import ConnectivityConfig, ProxyConfig
from offlinegate.connectivity import ConnectivityMonitor
from offlinegate.host import WorkerHost
from offlinegate.proxy import ProxyServer
from offlinegate.store import MemoryCacheStore
from offlinegate.worker import OfflineWorker

NAVIGATE_HEADERS = {"Sec-Fetch-Mode": "navigate", "Accept": "text/html", "X-Client-Id": "tab-1"}
ASSET_HEADERS = {"Sec-Fetch-Mode": "no-cors", "X-Client-Id": "tab-1"}


def get_free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@pytest.fixture
def host(network: FakeNetwork, manifest: tuple[str, ...]) -> WorkerHost:
    worker_host = WorkerHost(fetcher=network, max_workers=4)
    store = MemoryCacheStore()
    worker_host.register(OfflineWorker(store, "v1", manifest, f"{ORIGIN}/offline-template", fetcher=network))
    yield worker_host
    worker_host.close()


@pytest.fixture
def running_server(host: WorkerHost, network: FakeNetwork) -> ProxyServer:
    """Start a server and yield it, stopping after test."""
    connectivity = ConnectivityMonitor(ConnectivityConfig(), ORIGIN, fetcher=network)
    server = ProxyServer(ProxyConfig(port=get_free_port()), host, ORIGIN, connectivity=connectivity)
    server.start()
    # Give server time to start
    time.sleep(0.1)
    yield server
    server.stop()


def request(
    server: ProxyServer,
    path: str,
    headers: dict | None = None,
    method: str = "GET",
    data: bytes | None = None,
) -> tuple[int, dict, bytes]:
    """Make a request and return (status_code, headers, body)."""
    url = f"http://127.0.0.1:{server.config.port}{path}"
    req = urllib.request.Request(url, headers=headers or {}, method=method, data=data)
    try:
        with urllib.request.urlopen(req, timeout=5) as response:
            return response.status, dict(response.headers), response.read()
    except urllib.error.HTTPError as e:
        return e.code, dict(e.headers), e.read()


class TestProxyServer:
    """Tests for ProxyServer lifecycle."""

    def test_starts_and_stops(self, host: WorkerHost) -> None:
        """Server starts and stops without errors."""
        server = ProxyServer(ProxyConfig(port=get_free_port()), host, ORIGIN)

        server.start()
        assert server.is_running

        server.stop()
        assert not server.is_running

    def test_start_twice_is_safe(self, host: WorkerHost) -> None:
        """Calling start() twice doesn't cause errors."""
        server = ProxyServer(ProxyConfig(port=get_free_port()), host, ORIGIN)

        try:
            server.start()
            server.start()  # Should not raise
            assert server.is_running
        finally:
            server.stop()

    def test_stop_without_start_is_safe(self, host: WorkerHost) -> None:
        """Calling stop() without start() doesn't cause errors."""
        server = ProxyServer(ProxyConfig(port=get_free_port()), host, ORIGIN)

        server.stop()  # Should not raise


class TestGatewayRequests:
    """Integration tests for requests passing through the gateway."""

    def test_navigation_online(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """Live pages are relayed as-is."""
        network.serve(f"{ORIGIN}/dashboard", b"<html>dashboard</html>", headers=(("Content-Type", "text/html"),))

        status, headers, body = request(running_server, "/dashboard", NAVIGATE_HEADERS)

        assert status == 200
        assert body == b"<html>dashboard</html>"
        assert headers["Content-Type"] == "text/html"
        assert "X-From-Cache" not in headers

    def test_navigation_offline_serves_offline_page(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """With the origin down, navigations get the cached offline page."""
        network.offline = True

        status, headers, body = request(running_server, "/customers", NAVIGATE_HEADERS)

        assert status == 200
        assert body == b"<html>offline</html>"
        assert headers["X-From-Cache"] == "true"

    def test_navigation_http_error_relayed(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """Origin error pages are not replaced by the offline page."""
        network.serve(f"{ORIGIN}/broken", b"oops", status=500, reason="Internal Server Error")

        status, _, body = request(running_server, "/broken", NAVIGATE_HEADERS)

        assert status == 500
        assert body == b"oops"

    def test_cached_asset(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """Cached assets are served without touching the origin once the page is controlled."""
        request(running_server, "/", NAVIGATE_HEADERS)
        network.calls.clear()

        status, headers, body = request(running_server, "/css/app.css", ASSET_HEADERS)

        assert status == 200
        assert body == b"body{}"
        assert headers["X-From-Cache"] == "true"
        assert network.call_count == 0

    def test_uncontrolled_client_goes_to_origin(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """A client that never loaded a page is not served from the cache."""
        network.calls.clear()

        status, headers, _ = request(running_server, "/css/app.css", {"X-Client-Id": "tab-new"})

        assert status == 200
        assert "X-From-Cache" not in headers
        assert network.calls_to(f"{ORIGIN}/css/app.css") == 1

    def test_uncached_asset_offline_is_bad_gateway(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """Uncached assets fail when the origin is down."""
        network.offline = True

        status, _, body = request(running_server, "/js/other.js", ASSET_HEADERS)

        assert status == 502
        assert body.startswith(b"Bad Gateway")

    def test_query_string_forwarded(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        network.serve(f"{ORIGIN}/reports?start_date=2024-01-04", b"report")

        status, _, body = request(running_server, "/reports?start_date=2024-01-04", ASSET_HEADERS)

        assert status == 200
        assert body == b"report"

    def test_post_forwarded_with_body(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        network.serve(f"{ORIGIN}/orders", b"created", status=201, reason="Created")

        status, _, body = request(running_server, "/orders", ASSET_HEADERS, method="POST", data=b"qty=2")

        assert status == 201
        assert body == b"created"
        assert network.calls[-1][:2] == ("POST", f"{ORIGIN}/orders")

    def test_head_has_no_body(self, running_server: ProxyServer) -> None:
        status, headers, body = request(running_server, "/css/app.css", ASSET_HEADERS, method="HEAD")

        assert status == 200
        assert body == b""
        assert headers["Content-Length"] == "6"


class TestControlEndpoints:
    """Tests for /_gateway/ endpoints."""

    def test_health(self, running_server: ProxyServer) -> None:
        status, _, body = request(running_server, "/_gateway/health")
        data = json.loads(body)

        assert status == 200
        assert data["status"] == "ok"
        assert data["active_version"] == "v1"
        assert data["waiting_version"] is None
        assert data["online"] is None
        assert len(data["date"]) == 10

    def test_health_reports_connectivity(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        network.serve(f"{ORIGIN}/api/ping", b"")
        running_server.connectivity.check()

        _, _, body = request(running_server, "/_gateway/health")

        assert json.loads(body)["online"] is True

    def test_skip_waiting_without_waiting_worker(self, running_server: ProxyServer) -> None:
        status, _, body = request(running_server, "/_gateway/skip-waiting", method="POST", data=b"")

        assert status == 200
        assert json.loads(body) == {"activated": False, "active_version": "v1"}

    def test_unknown_control_path(self, running_server: ProxyServer, network: FakeNetwork) -> None:
        """Control paths are never forwarded to the origin."""
        network.calls.clear()

        status, _, body = request(running_server, "/_gateway/nope")

        assert status == 404
        assert json.loads(body) == {"error": "Not found"}
        assert network.call_count == 0
