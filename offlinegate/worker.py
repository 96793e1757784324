"""One worker generation: a cache version plus its request strategies."""

import logging
from urllib.parse import urlsplit

from .cache_manager import CacheManager
from .config import Config
from .models import MODE_NAVIGATE, CachedResponse, InterceptedRequest, RequestKind, WorkerState
from .navigation import NavigationFallbackResolver
from .network import Fetcher, fetch
from .store import CacheStore
from .version import resolve_cache_version

logger = logging.getLogger(__name__)


def resolve_url(origin_url: str, path: str) -> str:
    """Resolve a manifest path against the origin base URL.

    Paths are taken relative to the origin's base path, the same way the
    gateway maps incoming request paths. Absolute URLs are kept as they are.
    """
    if urlsplit(path).scheme:
        return path
    return origin_url.rstrip("/") + "/" + path.lstrip("/")


def detect_mode(method: str, headers: tuple[tuple[str, str], ...]) -> str:
    """Derive the request mode from incoming HTTP headers.

    Browsers send Sec-Fetch-Mode. Without it, a GET that accepts HTML is
    taken to be a page navigation.
    """
    lowered = {name.lower(): value for name, value in headers}
    mode = lowered.get("sec-fetch-mode")
    if mode:
        return mode.strip().lower()
    if method.upper() == "GET" and "text/html" in lowered.get("accept", ""):
        return MODE_NAVIGATE
    return "no-cors"


def classify(request: InterceptedRequest) -> RequestKind:
    """Classify an intercepted request as a navigation or an asset request."""
    return RequestKind.NAVIGATION if request.is_navigation else RequestKind.ASSET


class OfflineWorker:
    """A single worker generation.

    Bundles the cache manager and navigation resolver for one cache version
    and tracks where the generation is in its lifecycle.
    """

    def __init__(
        self,
        store: CacheStore,
        version: str,
        manifest: tuple[str, ...],
        offline_url: str,
        fetcher: Fetcher = fetch,
        timeout: float | None = None,
        navigation_timeout: float | None = None,
        skip_waiting: bool = True,
    ) -> None:
        self.version = version
        self.offline_url = offline_url
        self.skip_waiting = skip_waiting
        self.state = WorkerState.PARSED
        self.cache_manager = CacheManager(store, version, manifest, fetcher=fetcher, timeout=timeout)
        self.resolver = NavigationFallbackResolver(
            self.cache_manager,
            offline_url,
            fetcher=fetcher,
            timeout=navigation_timeout,
        )

    @classmethod
    def from_config(cls, config: Config, store: CacheStore, fetcher: Fetcher = fetch) -> "OfflineWorker":
        """Build the worker generation described by the configuration."""
        origin = config.origin.url
        return cls(
            store=store,
            version=resolve_cache_version(config.cache),
            manifest=tuple(resolve_url(origin, path) for path in config.cache.manifest),
            offline_url=resolve_url(origin, config.cache.offline_url),
            fetcher=fetcher,
            timeout=config.origin.timeout,
            navigation_timeout=config.origin.navigation_timeout,
            skip_waiting=config.cache.skip_waiting,
        )

    def __repr__(self) -> str:
        return f"<OfflineWorker {self.version} {self.state.value}>"

    @property
    def manifest(self) -> tuple[str, ...]:
        return self.cache_manager.manifest

    def install(self) -> int:
        """Populate this generation's cache version.

        Raises:
            InstallError: If any manifest asset cannot be fetched. The worker becomes redundant.
        """
        self.state = WorkerState.INSTALLING
        try:
            count = self.cache_manager.install()
        except Exception:
            self.state = WorkerState.REDUNDANT
            raise
        self.state = WorkerState.INSTALLED
        return count

    def activate(self) -> list[str]:
        """Delete stale cache versions and mark this generation active."""
        self.state = WorkerState.ACTIVATING
        deleted = self.cache_manager.activate()
        self.state = WorkerState.ACTIVATED
        return deleted

    def handle_fetch(self, request: InterceptedRequest) -> CachedResponse:
        """Produce the response for one intercepted request.

        Raises:
            NetworkError: If the request cannot be answered. The caller applies
                its default failed-request handling.
        """
        if classify(request) is RequestKind.NAVIGATION:
            return self.resolver.handle_navigation(request)
        return self.cache_manager.handle_generic_fetch(request)
