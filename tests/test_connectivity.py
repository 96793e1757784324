"""Tests for the connectivity monitor."""

import time

from conftest import ORIGIN, FakeNetwork

from offlinegate.config import ConnectivityConfig
from offlinegate.connectivity import ConnectivityMonitor

PING_URL = f"{ORIGIN}/api/ping"


def make_monitor(network: FakeNetwork, **kwargs) -> tuple[ConnectivityMonitor, list[bool]]:
    changes: list[bool] = []
    monitor = ConnectivityMonitor(ConnectivityConfig(**kwargs), ORIGIN, fetcher=network, on_change=changes.append)
    return monitor, changes


class TestCheck:
    """Tests for ConnectivityMonitor.check."""

    def test_unknown_until_first_ping(self, network: FakeNetwork) -> None:
        monitor, _ = make_monitor(network)
        assert monitor.is_online is None

    def test_pings_with_head_and_timeout(self, network: FakeNetwork) -> None:
        network.serve(PING_URL)
        monitor, _ = make_monitor(network, timeout_seconds=5)

        assert monitor.check() is True

        assert network.calls == [("HEAD", PING_URL, 5)]
        assert monitor.is_online is True

    def test_network_failure_is_offline(self, network: FakeNetwork) -> None:
        network.offline = True
        monitor, _ = make_monitor(network)

        assert monitor.check() is False
        assert monitor.is_online is False

    def test_error_status_is_offline(self, network: FakeNetwork) -> None:
        """Only 2xx answers count as reachable."""
        network.serve(PING_URL, status=503, reason="Service Unavailable")
        monitor, _ = make_monitor(network)

        assert monitor.check() is False

    def test_ping_url_resolved_against_origin(self, network: FakeNetwork) -> None:
        monitor, _ = make_monitor(network, ping_url="/health")
        assert monitor.ping_url == f"{ORIGIN}/health"

    def test_ping_url_keeps_origin_base_path(self, network: FakeNetwork) -> None:
        monitor = ConnectivityMonitor(ConnectivityConfig(), f"{ORIGIN}/app", fetcher=network)
        assert monitor.ping_url == f"{ORIGIN}/app/api/ping"


class TestStateChanges:
    """Tests for online/offline transitions."""

    def test_callback_only_on_change(self, network: FakeNetwork) -> None:
        network.serve(PING_URL)
        monitor, changes = make_monitor(network)

        monitor.check()
        monitor.check()
        network.offline = True
        monitor.check()
        monitor.check()
        network.offline = False
        monitor.check()

        assert changes == [True, False, True]

    def test_callback_errors_are_swallowed(self, network: FakeNetwork) -> None:
        def broken(online: bool) -> None:
            raise RuntimeError("boom")

        network.serve(PING_URL)
        monitor = ConnectivityMonitor(ConnectivityConfig(), ORIGIN, fetcher=network, on_change=broken)

        assert monitor.check() is True
        assert monitor.is_online is True


class TestLifecycle:
    """Tests for start/stop of the ping thread."""

    def test_start_pings_immediately(self, network: FakeNetwork) -> None:
        network.serve(PING_URL)
        monitor, _ = make_monitor(network, interval_seconds=60)

        monitor.start()
        try:
            deadline = time.monotonic() + 2
            while monitor.is_online is None and time.monotonic() < deadline:
                time.sleep(0.01)
            assert monitor.is_online is True
        finally:
            monitor.stop()

        assert network.calls_to(PING_URL) == 1

    def test_disabled_does_not_start(self, network: FakeNetwork) -> None:
        monitor, _ = make_monitor(network, enabled=False)

        monitor.start()
        time.sleep(0.05)

        assert network.call_count == 0
        assert monitor.is_online is None

    def test_stop_without_start_is_safe(self, network: FakeNetwork) -> None:
        monitor, _ = make_monitor(network)
        monitor.stop()
