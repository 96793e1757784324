"""Offline fallback for top-level page navigations."""

import logging

from .cache_manager import CacheManager
from .models import CachedResponse, InterceptedRequest
from .network import Fetcher, NetworkError, fetch

logger = logging.getLogger(__name__)


class OfflinePageUnavailableError(NetworkError):
    """Raised when a navigation fails offline and no offline page is cached."""

    pass


class NavigationFallbackResolver:
    """Network-first handling of navigations with a cached offline page fallback."""

    def __init__(
        self,
        cache_manager: CacheManager,
        offline_url: str,
        fetcher: Fetcher = fetch,
        timeout: float | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            cache_manager: Cache manager holding the offline page.
            offline_url: Absolute URL of the offline page.
            fetcher: Network fetch function.
            timeout: Navigation deadline in seconds, None to rely on socket errors only.
        """
        self.cache_manager = cache_manager
        self.offline_url = offline_url
        self._fetcher = fetcher
        self._timeout = timeout

    def handle_navigation(self, request: InterceptedRequest) -> CachedResponse:
        """Fetch a navigation from the network, falling back to the offline page.

        HTTP error statuses are live responses and are returned unchanged.

        Raises:
            OfflinePageUnavailableError: If the network fails and the offline page is not cached.
        """
        try:
            return self._fetcher(request, self._timeout)
        except NetworkError as e:
            logger.info("Navigation failed, returning offline page from cache: %s", request.url)
            offline_page = self.cache_manager.match(self.offline_url)
            if offline_page is None:
                logger.warning("Offline page %s missing from cache %s", self.offline_url, self.cache_manager.version)
                raise OfflinePageUnavailableError(f"{request.url}: {e}; offline page not cached") from e
            return offline_page
