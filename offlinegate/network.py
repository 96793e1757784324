"""Network access to the origin app."""

import http.client
import logging
import urllib.error
import urllib.request
from collections.abc import Callable

from .models import CachedResponse, InterceptedRequest

logger = logging.getLogger(__name__)

USER_AGENT = "offlinegate/0.1"

# Connection-scoped headers that must not be forwarded between hops.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Request headers rebuilt by urllib for the outgoing request.
_REBUILT_REQUEST_HEADERS = frozenset({"host", "content-length"})


class NetworkError(Exception):
    """Raised when the network is unreachable for a request.

    An HTTP error status is not a network error: the origin answered.
    """

    pass


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Redirect handler that hands 3xx responses back instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


# Create opener with custom redirect handler
_opener = urllib.request.build_opener(_NoRedirectHandler())

Fetcher = Callable[[InterceptedRequest, float | None], CachedResponse]


def _outgoing_headers(request: InterceptedRequest) -> dict[str, str]:
    headers = {"User-Agent": USER_AGENT}
    for name, value in request.headers:
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in _REBUILT_REQUEST_HEADERS:
            continue
        headers[name] = value
    return headers


def _response_headers(message) -> tuple[tuple[str, str], ...]:
    if message is None:
        return ()
    return tuple((name, value) for name, value in message.items() if name.lower() not in HOP_BY_HOP_HEADERS)


def fetch(request: InterceptedRequest, timeout: float | None = None) -> CachedResponse:
    """Send a request to the network and return the response.

    Args:
        request: The intercepted request to forward.
        timeout: Deadline in seconds, or None to wait as long as the socket does.

    Returns:
        The response, whatever its status code.

    Raises:
        NetworkError: If no response could be obtained.
    """
    outgoing = urllib.request.Request(
        request.url,
        data=request.body or None,
        method=request.method,
        headers=_outgoing_headers(request),
    )

    try:
        with _opener.open(outgoing, timeout=timeout) as response:
            return CachedResponse(
                url=request.url,
                status=response.status,
                reason=getattr(response, "reason", "") or "",
                headers=_response_headers(response.headers),
                body=response.read(),
            )

    except urllib.error.HTTPError as e:
        # The origin answered with an error or redirect status
        try:
            body = e.read()
        except (OSError, http.client.HTTPException):
            body = b""
        finally:
            e.close()
        return CachedResponse(
            url=request.url,
            status=e.code,
            reason=str(e.reason or ""),
            headers=_response_headers(e.headers),
            body=body,
        )

    except urllib.error.URLError as e:
        reason = str(e.reason) if e.reason else "Connection failed"
        logger.debug("Network error for %s %s: %s", request.method, request.url, reason)
        raise NetworkError(f"{request.method} {request.url}: {reason}") from e

    except TimeoutError as e:
        logger.debug("Timed out after %ss: %s %s", timeout, request.method, request.url)
        raise NetworkError(f"{request.method} {request.url}: timed out") from e

    except (OSError, http.client.HTTPException) as e:
        logger.debug("Connection error for %s %s: %s", request.method, request.url, e)
        raise NetworkError(f"{request.method} {request.url}: {e}") from e
