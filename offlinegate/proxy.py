"""HTTP gateway server in front of the origin app."""

import json
import logging
import threading
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from .config import ProxyConfig
from .connectivity import ConnectivityMonitor
from .dates import DEFAULT_TIMEZONE, format_date_local
from .host import WorkerHost
from .models import CachedResponse, InterceptedRequest
from .network import HOP_BY_HOP_HEADERS, NetworkError
from .worker import detect_mode

logger = logging.getLogger(__name__)

# Reserved path prefix for gateway control endpoints; never forwarded.
CONTROL_PREFIX = "/_gateway/"

# Header a client may send to identify itself across connections.
CLIENT_ID_HEADER = "X-Client-Id"

# Response headers rebuilt by the handler.
_REBUILT_RESPONSE_HEADERS = frozenset({"content-length", "server", "date"})


class ProxyError(Exception):
    """Raised when the gateway server cannot be started."""
    pass


class GatewayHandler(BaseHTTPRequestHandler):
    """Request handler that passes every request through the worker host."""

    # Class-level references set by factory
    host: Optional[WorkerHost] = None
    origin_url: str = ""
    timezone: str = DEFAULT_TIMEZONE
    connectivity: Optional[ConnectivityMonitor] = None

    protocol_version = "HTTP/1.1"

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("Gateway %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def _send_unavailable(self, message: str) -> None:
        """Send the plain failure page used when a request cannot be answered."""
        body = f"Bad Gateway: {message}\n".encode("utf-8")
        self.send_response(502)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_upstream(self, response: CachedResponse) -> None:
        """Relay a live or cached response to the client."""
        self.send_response(response.status, response.reason or None)
        for name, value in response.headers:
            lowered = name.lower()
            if lowered in HOP_BY_HOP_HEADERS or lowered in _REBUILT_RESPONSE_HEADERS:
                continue
            self.send_header(name, value)
        if response.from_cache:
            self.send_header("X-From-Cache", "true")
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    def _read_body(self) -> bytes:
        length = self.headers.get("Content-Length")
        if not length:
            return b""
        return self.rfile.read(int(length))

    def _build_request(self) -> InterceptedRequest:
        """Turn the incoming HTTP request into a request against the origin."""
        headers = tuple(self.headers.items())
        parts = urlsplit(self.path)
        target = parts.path or "/"
        if parts.query:
            target = f"{target}?{parts.query}"
        return InterceptedRequest(
            url=self.origin_url.rstrip("/") + target,
            method=self.command,
            headers=headers,
            body=self._read_body(),
            mode=detect_mode(self.command, headers),
            client_id=self.headers.get(CLIENT_ID_HEADER) or self.client_address[0],
        )

    def _handle(self) -> None:
        try:
            if self.path.startswith(CONTROL_PREFIX):
                self._handle_control()
            else:
                self._handle_proxy()
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_proxy(self) -> None:
        if self.host is None:
            self._send_error_json(503, "Gateway not ready")
            return

        request = self._build_request()
        try:
            response = self.host.dispatch(request).result()
        except NetworkError as e:
            logger.warning("Unhandled failure for %s %s: %s", request.method, request.url, e)
            self._send_unavailable(str(e))
            return
        self._send_upstream(response)

    def _handle_control(self) -> None:
        path = urlsplit(self.path).path
        if path == CONTROL_PREFIX + "health" and self.command in ("GET", "HEAD"):
            self._handle_health()
        elif path == CONTROL_PREFIX + "skip-waiting" and self.command == "POST":
            self._handle_skip_waiting()
        else:
            self._send_error_json(404, "Not found")

    def _handle_health(self) -> None:
        """Handle GET /_gateway/health endpoint."""
        host = self.host
        self._send_json(
            200,
            {
                "status": "ok",
                "active_version": host.active_version if host else None,
                "waiting_version": host.waiting_version if host else None,
                "online": self.connectivity.is_online if self.connectivity else None,
                "clients": host.client_count if host else 0,
                "date": format_date_local(datetime.now(UTC), self.timezone),
            },
        )

    def _handle_skip_waiting(self) -> None:
        """Handle POST /_gateway/skip-waiting endpoint."""
        if self.host is None:
            self._send_error_json(503, "Gateway not ready")
            return
        activated = self.host.skip_waiting()
        self._send_json(200, {"activated": activated, "active_version": self.host.active_version})

    def do_GET(self) -> None:
        self._handle()

    def do_HEAD(self) -> None:
        self._handle()

    def do_POST(self) -> None:
        self._handle()

    def do_PUT(self) -> None:
        self._handle()

    def do_PATCH(self) -> None:
        self._handle()

    def do_DELETE(self) -> None:
        self._handle()


def _create_handler_class(
    host: WorkerHost,
    origin_url: str,
    timezone: str = DEFAULT_TIMEZONE,
    connectivity: Optional[ConnectivityMonitor] = None,
) -> type:
    """Create a handler class with the worker host and settings bound."""

    class BoundGatewayHandler(GatewayHandler):
        pass

    BoundGatewayHandler.host = host
    BoundGatewayHandler.origin_url = origin_url
    BoundGatewayHandler.timezone = timezone
    BoundGatewayHandler.connectivity = connectivity
    return BoundGatewayHandler


class ProxyServer:
    """Threaded HTTP gateway server."""

    def __init__(
        self,
        config: ProxyConfig,
        host: WorkerHost,
        origin_url: str,
        timezone: str = DEFAULT_TIMEZONE,
        connectivity: Optional[ConnectivityMonitor] = None,
    ) -> None:
        """Initialize the gateway server.

        Args:
            config: Proxy configuration.
            host: Worker host that answers intercepted requests.
            origin_url: Base URL of the origin app.
            timezone: Local timezone for dates on the health endpoint.
            connectivity: Optional connectivity monitor reported on the health endpoint.
        """
        self.config = config
        self.host = host
        self.origin_url = origin_url
        self.timezone = timezone
        self.connectivity = connectivity
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start the gateway server in a background thread.

        Raises:
            ProxyError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Gateway server is already running")
            return

        try:
            handler_class = _create_handler_class(self.host, self.origin_url, self.timezone, self.connectivity)
            self._server = ThreadingHTTPServer(("", self.config.port), handler_class)
            self._server.daemon_threads = True
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="gateway-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("Gateway server started on port %d, forwarding to %s", self.config.port, self.origin_url)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ProxyError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or offlinegate is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ProxyError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ProxyError(f"Failed to start gateway server on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the gateway server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping gateway server...")
        self._shutdown_event.set()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("Gateway server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
