"""Data models for intercepted requests and cached responses."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import urldefrag

# Request modes as reported by the Sec-Fetch-Mode header.
MODE_NAVIGATE = "navigate"
MODE_SAME_ORIGIN = "same-origin"
MODE_NO_CORS = "no-cors"
MODE_CORS = "cors"

REQUEST_MODES = (MODE_NAVIGATE, MODE_SAME_ORIGIN, MODE_NO_CORS, MODE_CORS)


class RequestKind(Enum):
    """Classification of an intercepted request at dispatch time."""

    NAVIGATION = "navigation"
    ASSET = "asset"


class WorkerState(Enum):
    """Lifecycle state of one worker generation."""

    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


def cache_key(method: str, url: str) -> str:
    """Build the cache key for a request.

    Fragments never reach the server, so they are not part of the key.
    The query string is.
    """
    return f"{method.upper()} {urldefrag(url).url}"


@dataclass(frozen=True)
class InterceptedRequest:
    """A single request passing through the gateway.

    Attributes:
        url: Absolute URL on the origin.
        method: HTTP method.
        headers: Request headers as (name, value) pairs.
        body: Request body, empty for bodiless methods.
        mode: Request mode (navigate, same-origin, no-cors, cors).
        client_id: Identifier of the browsing client that sent the request.
    """

    url: str
    method: str = "GET"
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    mode: str = MODE_NO_CORS
    client_id: str | None = None

    @property
    def key(self) -> str:
        return cache_key(self.method, self.url)

    @property
    def is_navigation(self) -> bool:
        return self.mode == MODE_NAVIGATE

    def header(self, name: str, default: str | None = None) -> str | None:
        """Return the first header with the given name (case-insensitive)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default


@dataclass(frozen=True)
class CachedResponse:
    """An HTTP response, either live from the origin or stored in a cache version.

    Attributes:
        url: URL the response was fetched from.
        status: HTTP status code.
        reason: HTTP reason phrase.
        headers: Response headers as (name, value) pairs.
        body: Response body.
        stored_at: When the response was written to the cache, None for live responses.
    """

    url: str
    status: int
    reason: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    stored_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def from_cache(self) -> bool:
        return self.stored_at is not None

    def header(self, name: str, default: str | None = None) -> str | None:
        """Return the first header with the given name (case-insensitive)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default

    def stored(self, stored_at: datetime | None = None) -> "CachedResponse":
        """Return a copy stamped with the time it entered the cache."""
        return replace(self, stored_at=stored_at or datetime.now(UTC))


@dataclass(frozen=True)
class LifecycleEvent:
    """Lifecycle signal emitted by the worker host.

    Attributes:
        name: Event name (install-complete, install-failed, activate-complete, clients-claimed).
        version: Cache version of the worker the event concerns.
        detail: Extra data, e.g. deleted versions or claimed clients.
        occurred_at: Event timestamp (UTC).
    """

    name: str
    version: str
    detail: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
