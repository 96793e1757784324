"""Worker host: lifecycle of worker generations and request dispatch."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from .cache_manager import InstallError
from .models import CachedResponse, InterceptedRequest, LifecycleEvent, WorkerState
from .network import Fetcher, fetch
from .worker import OfflineWorker

logger = logging.getLogger(__name__)

# Concurrent request handlers. Each intercepted request runs as its own task;
# handlers share nothing but the cache store.
DEFAULT_MAX_WORKERS = 8

INSTALL_COMPLETE = "install-complete"
INSTALL_FAILED = "install-failed"
ACTIVATE_COMPLETE = "activate-complete"
CLIENTS_CLAIMED = "clients-claimed"


class WorkerHost:
    """Runs worker generations the way a browser runs service workers.

    A registered worker is installed first. If installation fails, the
    previous generation keeps serving. Once installed, a worker with
    skip_waiting activates immediately; otherwise it waits until no client
    is controlled by the active generation. Activation cleans up stale cache
    versions and claims every known client, so the new generation handles
    their next request.

    Example:
        host = WorkerHost()
        host.register(OfflineWorker.from_config(config, store))
        future = host.dispatch(request)
        response = future.result()
        host.close()
    """

    def __init__(
        self,
        fetcher: Fetcher = fetch,
        max_workers: int = DEFAULT_MAX_WORKERS,
        on_event: Callable[[LifecycleEvent], None] | None = None,
    ) -> None:
        """Initialize the host.

        Args:
            fetcher: Network fetch function used for uncontrolled clients.
            max_workers: Number of concurrent request handler threads.
            on_event: Optional callback invoked for each lifecycle event.
        """
        self._fetcher = fetcher
        self._on_event = on_event
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fetch")
        self._active: OfflineWorker | None = None
        self._waiting: OfflineWorker | None = None
        self._clients: set[str] = set()
        self._controllers: dict[str, OfflineWorker] = {}

    @property
    def active(self) -> OfflineWorker | None:
        return self._active

    @property
    def waiting(self) -> OfflineWorker | None:
        return self._waiting

    @property
    def active_version(self) -> str | None:
        return self._active.version if self._active else None

    @property
    def waiting_version(self) -> str | None:
        return self._waiting.version if self._waiting else None

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def controller_of(self, client_id: str) -> OfflineWorker | None:
        """Return the worker controlling a client, or None if uncontrolled."""
        with self._lock:
            return self._controllers.get(client_id)

    def register(self, worker: OfflineWorker) -> None:
        """Install a new worker generation and activate it when allowed.

        Raises:
            InstallError: If installation fails. The active generation is untouched.
        """
        try:
            count = worker.install()
        except InstallError as e:
            logger.error("Install of %s failed: %s", worker.version, e)
            self._emit(INSTALL_FAILED, worker.version, error=str(e))
            raise

        self._emit(INSTALL_COMPLETE, worker.version, entries=count)

        with self._lock:
            if self._waiting is not None and self._waiting is not worker:
                self._waiting.state = WorkerState.REDUNDANT
            self._waiting = worker
            ready = worker.skip_waiting or self._old_generation_idle()

        if ready:
            self._activate_waiting()
        else:
            logger.info("Worker %s installed, waiting for clients of %s to close", worker.version, self.active_version)

    def skip_waiting(self) -> bool:
        """Activate the waiting worker now. Returns False if none is waiting."""
        return self._activate_waiting()

    def release_client(self, client_id: str) -> None:
        """Forget a client that has gone away.

        A waiting worker is activated once the old generation controls no clients.
        """
        with self._lock:
            self._clients.discard(client_id)
            self._controllers.pop(client_id, None)
            ready = self._waiting is not None and self._old_generation_idle()

        if ready:
            self._activate_waiting()

    def handle(self, request: InterceptedRequest) -> CachedResponse:
        """Handle one intercepted request on the calling thread.

        Raises:
            NetworkError: If no response can be produced.
        """
        worker = self._controller_for(request)
        if worker is None:
            # Not under any worker's control: straight to the network
            return self._fetcher(request, None)
        return worker.handle_fetch(request)

    def dispatch(self, request: InterceptedRequest) -> Future:
        """Handle an intercepted request as an independent task.

        Returns:
            Future resolving to exactly one response, or to the failure.
        """
        return self._executor.submit(self.handle, request)

    def close(self) -> None:
        """Stop accepting requests and wait for in-flight handlers."""
        self._executor.shutdown(wait=True)

    def _old_generation_idle(self) -> bool:
        """True when no client is controlled by the active generation. Caller holds the lock."""
        if self._active is None:
            return True
        return not any(worker is self._active for worker in self._controllers.values())

    def _controller_for(self, request: InterceptedRequest) -> OfflineWorker | None:
        with self._lock:
            client_id = request.client_id
            if client_id is None:
                return self._active

            self._clients.add(client_id)
            if request.is_navigation and self._active is not None:
                # A page load comes under the active generation's control
                self._controllers[client_id] = self._active
            return self._controllers.get(client_id)

    def _activate_waiting(self) -> bool:
        with self._lock:
            worker = self._waiting
            if worker is None:
                return False
            self._waiting = None
            previous = self._active
            # Hand over before cleanup: the old generation's cache is about to be deleted
            self._active = worker
            claimed = sorted(self._clients)
            for client_id in claimed:
                self._controllers[client_id] = worker
            if previous is not None and previous is not worker:
                previous.state = WorkerState.REDUNDANT

        deleted = worker.activate()

        logger.info("Worker %s activated (deleted %d old caches)", worker.version, len(deleted))
        self._emit(ACTIVATE_COMPLETE, worker.version, deleted=deleted)
        self._emit(CLIENTS_CLAIMED, worker.version, clients=claimed)
        return True

    def _emit(self, name: str, version: str, **detail: object) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(LifecycleEvent(name=name, version=version, detail=dict(detail)))
        except Exception as e:
            logger.error("Lifecycle callback failed: %s", e)
