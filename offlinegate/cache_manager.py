"""Versioned cache lifecycle and the cache-first strategy for assets."""

import logging

from .models import CachedResponse, InterceptedRequest, cache_key
from .network import Fetcher, NetworkError, fetch
from .store import CacheStore

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when a cache version cannot be fully populated."""

    pass


class CacheManager:
    """Owns one named cache version and serves non-navigation requests from it.

    The generic strategy is cache-first with no write-back: a hit is returned
    even when the network is available and the asset is stale, and a network
    response for a miss is returned without being stored. The cache content
    changes only when a new version is installed.

    Example:
        manager = CacheManager(store, "offline-cache-v1", manifest)
        manager.install()
        manager.activate()
        response = manager.handle_generic_fetch(request)
    """

    def __init__(
        self,
        store: CacheStore,
        version: str,
        manifest: tuple[str, ...],
        fetcher: Fetcher = fetch,
        timeout: float | None = None,
    ) -> None:
        """Initialize the cache manager.

        Args:
            store: Shared cache store.
            version: Name of the cache version this manager owns.
            manifest: Absolute URLs that must be cached before the version is ready.
            fetcher: Network fetch function.
            timeout: Network deadline in seconds for install and cache misses.
        """
        self.store = store
        self.version = version
        self.manifest = manifest
        self._fetcher = fetcher
        self._timeout = timeout

    def install(self) -> int:
        """Fetch every manifest URL and store them all under this version.

        Nothing is written unless every fetch succeeds, so a failed install
        never leaves a partially populated version behind.

        Returns:
            Number of entries stored.

        Raises:
            InstallError: If any manifest URL cannot be fetched.
        """
        logger.info("Installing cache version %s (%d assets)", self.version, len(self.manifest))

        entries: list[tuple[str, CachedResponse]] = []
        for url in self.manifest:
            request = InterceptedRequest(url=url)
            try:
                response = self._fetcher(request, self._timeout)
            except NetworkError as e:
                raise InstallError(f"Failed to fetch {url}: {e}") from e
            if not response.ok:
                raise InstallError(f"Failed to fetch {url}: HTTP {response.status} {response.reason}".rstrip())
            entries.append((request.key, response.stored()))

        self.store.put_all(self.version, entries)
        logger.info("Cache version %s installed", self.version)
        return len(entries)

    def activate(self) -> list[str]:
        """Delete every cache version other than this one.

        Returns:
            Names of the deleted versions.
        """
        deleted: list[str] = []
        for name in self.store.version_names():
            if name != self.version:
                logger.info("Deleting old cache: %s", name)
                self.store.delete_version(name)
                deleted.append(name)
        return deleted

    def match(self, request: InterceptedRequest | str) -> CachedResponse | None:
        """Look a request or URL up in this cache version."""
        if isinstance(request, str):
            key = cache_key("GET", request)
        elif request.method.upper() != "GET":
            return None
        else:
            key = request.key
        return self.store.get(self.version, key)

    def handle_generic_fetch(self, request: InterceptedRequest) -> CachedResponse:
        """Serve a non-navigation request: cache first, then network.

        Raises:
            NetworkError: If the request misses the cache and the network fails.
        """
        cached = self.match(request)
        if cached is not None:
            logger.debug("Cache hit: %s", request.url)
            return cached

        logger.debug("Cache miss: %s", request.url)
        try:
            return self._fetcher(request, self._timeout)
        except NetworkError:
            logger.info("Fetch failed for non-navigation request: %s", request.url)
            raise
