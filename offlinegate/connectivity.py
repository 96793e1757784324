"""Connectivity monitor for the origin app.

Pings a lightweight origin endpoint at a fixed interval and tracks whether
the origin is reachable. The state is informational: it is reported on the
health endpoint and in the logs, and never changes how requests are routed.
"""

import logging
import threading
from collections.abc import Callable

from .config import ConnectivityConfig
from .models import InterceptedRequest
from .network import Fetcher, NetworkError, fetch
from .worker import resolve_url

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Sends periodic HEAD pings to the origin and tracks online/offline state."""

    def __init__(
        self,
        config: ConnectivityConfig,
        origin_url: str,
        fetcher: Fetcher = fetch,
        on_change: Callable[[bool], None] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Connectivity configuration including ping URL and interval.
            origin_url: Base URL of the origin app.
            fetcher: Network fetch function.
            on_change: Optional callback invoked with the new state on each transition.
        """
        self.config = config
        self.ping_url = resolve_url(origin_url, config.ping_url)
        self._fetcher = fetcher
        self._on_change = on_change
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._is_online: bool | None = None

    @property
    def is_online(self) -> bool | None:
        """None until the first ping, then whether the last ping succeeded."""
        return self._is_online

    def start(self) -> None:
        """Start the ping thread."""
        if not self.config.enabled:
            logger.info("Connectivity monitor disabled")
            return

        if self._thread and self._thread.is_alive():
            logger.warning("Connectivity monitor already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity", daemon=True)
        self._thread.start()
        logger.info("Connectivity monitor started (interval: %ds, URL: %s)", self.config.interval_seconds, self.ping_url)

    def stop(self) -> None:
        """Stop the ping thread gracefully."""
        if not self._thread or not self._thread.is_alive():
            return

        logger.info("Stopping connectivity monitor...")
        self._stop_event.set()
        self._thread.join(timeout=5)

        if self._thread.is_alive():
            logger.warning("Connectivity thread did not stop gracefully")
        else:
            logger.info("Connectivity monitor stopped")

    def check(self) -> bool:
        """Send a single ping and update the state.

        The origin counts as reachable only when it answers with a 2xx status.
        """
        request = InterceptedRequest(
            url=self.ping_url,
            method="HEAD",
            headers=(("Cache-Control", "no-cache"),),
        )
        try:
            response = self._fetcher(request, self.config.timeout_seconds)
            online = response.ok
            if not online:
                logger.debug("Connectivity ping returned %d", response.status)
        except NetworkError as e:
            logger.debug("Connectivity ping failed: %s", e)
            online = False

        self._set_state(online)
        return online

    def _run(self) -> None:
        """Main ping loop - runs in background thread."""
        while not self._stop_event.is_set():
            self.check()
            self._stop_event.wait(self.config.interval_seconds)

    def _set_state(self, online: bool) -> None:
        previous = self._is_online
        self._is_online = online
        if previous == online:
            return

        if online:
            logger.info("Connection restored" if previous is False else "Origin reachable")
        else:
            logger.warning("Connection lost: %s unreachable", self.ping_url)

        if self._on_change is not None:
            try:
                self._on_change(online)
            except Exception as e:
                logger.error("Connectivity callback failed: %s", e)
