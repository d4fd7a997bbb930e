"""Caching gateway: HTTP front end that routes every request through the worker."""

import json
import logging
import threading
import time
from collections import defaultdict, deque
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Deque, Dict, Optional

from .config import ServerConfig
from .models import Request, Response
from .network import NetworkError, filter_headers
from .security import validate_cache_name
from .worker import InstallError, OfflineWorker

logger = logging.getLogger(__name__)

# Control endpoints live under this prefix and are never forwarded upstream.
CONTROL_PREFIX = "/__sw/"

# Rate limiting for control endpoints.
RATE_LIMIT_MAX_REQUESTS = 60
RATE_LIMIT_WINDOW_SECONDS = 60

# Largest request body the gateway reads.
MAX_BODY_SIZE = 10 * 1024 * 1024

# Most of an oversized body the gateway reads before rejecting it.
MAX_DISCARD_SIZE = 64 * 1024


class RateLimiter:
    """Sliding window limit on control requests per client address."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def is_allowed(self, client_ip: str) -> bool:
        """Record a control request and report whether it is within the limit."""
        now = time.monotonic()

        with self._lock:
            hits = self._hits[client_ip]
            while hits and hits[0] <= now - self._window_seconds:
                hits.popleft()
            if len(hits) >= self._max_requests:
                return False
            hits.append(now)
            return True


class GatewayError(Exception):
    """Raised when the gateway cannot be started."""
    pass


class RequestBodyError(Exception):
    """Raised when a request body cannot be accepted."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


def _parse_request_mode(headers: Any) -> tuple[str, str]:
    """Read fetch metadata headers sent by browsers.

    Returns:
        Tuple of (mode, destination), empty strings when not provided.
    """
    mode = headers.get("Sec-Fetch-Mode", "") or ""
    destination = headers.get("Sec-Fetch-Dest", "") or ""
    return mode.lower(), destination.lower()


class GatewayHandler(BaseHTTPRequestHandler):
    """HTTP request handler that proxies through the offline worker."""

    # Class-level references set by factory
    worker: Optional[OfflineWorker] = None
    admin_token: Optional[str] = None  # Required for control endpoints when set
    rate_limiter: Optional[RateLimiter] = None

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
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"success": False, "error": message})

    def _send_response(self, response: Response) -> None:
        """Write a worker response back to the client."""
        self.send_response(response.status, response.status_text or None)
        for name, value in filter_headers(response.headers).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    def _read_body(self) -> bytes | None:
        """Read the full request body.

        Raises:
            RequestBodyError: If Content-Length is malformed or over MAX_BODY_SIZE.
        """
        raw_length = self.headers.get("Content-Length")
        if not raw_length:
            return None
        try:
            length = int(raw_length)
        except ValueError:
            raise RequestBodyError(400, "Invalid Content-Length header")
        if length < 0:
            raise RequestBodyError(400, "Invalid Content-Length header")
        if length > MAX_BODY_SIZE:
            # Read a bounded prefix so the client sees the error before the close
            self.rfile.read(min(length, MAX_DISCARD_SIZE))
            raise RequestBodyError(413, f"Request body exceeds {MAX_BODY_SIZE} bytes")
        if length == 0:
            return None
        return self.rfile.read(length)

    def do_GET(self) -> None:
        self._dispatch()

    def do_HEAD(self) -> None:
        self._dispatch()

    def do_POST(self) -> None:
        self._dispatch()

    def do_PUT(self) -> None:
        self._dispatch()

    def do_PATCH(self) -> None:
        self._dispatch()

    def do_DELETE(self) -> None:
        self._dispatch()

    def do_OPTIONS(self) -> None:
        self._dispatch()

    def _dispatch(self) -> None:
        try:
            if self.path.startswith(CONTROL_PREFIX):
                self._handle_control()
            else:
                self._handle_proxy()
        except RequestBodyError as e:
            logger.warning("Rejected body of %s %s: %s", self.command, self.path, e)
            self._send_error_json(e.status, str(e))
        except Exception as e:
            logger.exception("Error handling %s %s: %s", self.command, self.path, e)
            self._send_error_json(500, "Internal server error")

    # --- proxied requests -------------------------------------------------

    def _build_request(self) -> Request:
        mode, destination = _parse_request_mode(self.headers)
        return Request(
            url=self.worker.origin + self.path,
            method=self.command,
            headers=dict(self.headers.items()),
            destination=destination,
            mode=mode,
            body=self._read_body(),
        )

    def _handle_proxy(self) -> None:
        if self.worker is None:
            self._send_error_json(503, "Worker not available")
            return
        if not self.path.startswith("/") or self.path.startswith("//"):
            self._send_error_json(400, "Invalid request path")
            return

        request = self._build_request()
        try:
            response = self.worker.fetch(request)
        except NetworkError as e:
            logger.warning("Upstream unavailable for %s %s: %s", request.method, request.url, e)
            self._send_error_json(502, "Upstream unavailable")
            return

        self._send_response(response)

    # --- control endpoints ------------------------------------------------

    def _check_rate_limit(self) -> bool:
        """Check if the request should be rate limited.

        Returns:
            True if request is allowed, False if rate limited.
            Sends 429 response automatically if rate limited.
        """
        if self.rate_limiter is None:
            return True

        client_ip = self.client_address[0]
        if not self.rate_limiter.is_allowed(client_ip):
            logger.warning("Rate limit exceeded for %s", client_ip)
            self._send_error_json(429, "Rate limit exceeded. Try again later.")
            return False
        return True

    def _check_admin(self) -> bool:
        """Require 'Bearer <token>' when an admin token is configured.

        Returns:
            True if the request is authorized. Sends 401/403 otherwise.
        """
        if self.admin_token is None:
            return True

        auth_header = self.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            self._send_error_json(401, "Admin access required. Please provide valid authorization.")
            return False
        provided_token = auth_header[7:]  # Strip "Bearer "
        if provided_token != self.admin_token:
            logger.warning("Invalid admin token attempt from %s", self.address_string())
            self._send_error_json(403, "Invalid admin token.")
            return False
        return True

    def _read_json(self) -> Dict[str, Any] | None:
        """Read an optional JSON object body. Sends 400 and returns None if malformed."""
        body = self._read_body()
        if not body:
            return {}
        try:
            data = json.loads(body)
        except (UnicodeDecodeError, ValueError):
            self._send_error_json(400, "Request body must be JSON")
            return None
        if not isinstance(data, dict):
            self._send_error_json(400, "Request body must be a JSON object")
            return None
        return data

    def _handle_control(self) -> None:
        if self.worker is None:
            self._send_error_json(503, "Worker not available")
            return

        route = self.path[len(CONTROL_PREFIX):].split("?", 1)[0]

        if route == "health" and self.command in ("GET", "HEAD"):
            self._send_json(200, {"status": "ok", "version": self.worker.manager.version})
            return

        if not self._check_rate_limit() or not self._check_admin():
            return

        if route == "caches" and self.command == "GET":
            self._handle_list_caches()
        elif route.startswith("caches/") and self.command == "DELETE":
            self._handle_delete_cache(route[7:])
        elif route == "install" and self.command == "POST":
            self._handle_install()
        elif route == "activate" and self.command == "POST":
            self._handle_activate()
        elif route == "sync" and self.command == "POST":
            self._handle_sync()
        elif route == "push" and self.command == "POST":
            self._handle_push()
        elif route == "notificationclick" and self.command == "POST":
            self._handle_notification_click()
        else:
            self._send_error_json(404, "Not found")

    def _handle_list_caches(self) -> None:
        """Handle GET /__sw/caches - namespaces with entry counts."""
        manager = self.worker.manager
        sizes = manager.sizes()
        self._send_json(
            200,
            {
                "version": manager.version,
                "caches": [
                    {"name": name, "entries": count, "current": manager.is_current(name)}
                    for name, count in sizes.items()
                ],
                "pending_submissions": self.worker.pending_submissions(),
            },
        )

    def _handle_delete_cache(self, raw_name: str) -> None:
        """Handle DELETE /__sw/caches/<name>."""
        name = validate_cache_name(raw_name)
        if name is None:
            self._send_error_json(400, "Invalid cache name")
            return
        if not self.worker.manager.delete(name):
            self._send_error_json(404, f"Cache '{name}' not found")
            return
        logger.info("Deleted cache namespace %s on request", name)
        self._send_json(200, {"success": True, "deleted": name})

    def _handle_install(self) -> None:
        """Handle POST /__sw/install."""
        try:
            cached = self.worker.install()
        except InstallError as e:
            logger.error("Install failed: %s", e)
            self._send_error_json(502, str(e))
            return
        self._send_json(200, {"success": True, "cached": cached})

    def _handle_activate(self) -> None:
        """Handle POST /__sw/activate."""
        deleted = self.worker.activate()
        self._send_json(200, {"success": True, "deleted": deleted})

    def _handle_sync(self) -> None:
        """Handle POST /__sw/sync with optional {"tag": "..."} body."""
        data = self._read_json()
        if data is None:
            return
        tag = str(data.get("tag") or self.worker.sync_tag)
        delivered = self.worker.sync(tag)
        self._send_json(200, {"success": True, "tag": tag, "delivered": delivered})

    def _handle_push(self) -> None:
        """Handle POST /__sw/push; the raw body is the push payload."""
        notification = self.worker.push(self._read_body())
        self._send_json(200, {"success": True, "notification": notification.to_dict()})

    def _handle_notification_click(self) -> None:
        """Handle POST /__sw/notificationclick with {"action": "..."} body.

        The click applies to the most recently displayed notification.
        """
        data = self._read_json()
        if data is None:
            return
        displayed = self.worker.displayed_notifications()
        if not displayed:
            self._send_error_json(404, "No notification displayed")
            return
        action = data.get("action")
        opened = self.worker.notification_click(displayed[-1], str(action) if action else None)
        self._send_json(200, {"success": True, "opened": opened})


def _create_handler_class(
    worker: OfflineWorker,
    admin_token: Optional[str] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> type:
    """Create a handler class with the worker and config bound."""

    class BoundGatewayHandler(GatewayHandler):
        pass

    BoundGatewayHandler.worker = worker
    BoundGatewayHandler.admin_token = admin_token
    BoundGatewayHandler.rate_limiter = rate_limiter
    return BoundGatewayHandler


class GatewayServer:
    """Threaded HTTP server in front of the offline worker."""

    def __init__(self, config: ServerConfig, worker: OfflineWorker) -> None:
        """Initialize the gateway.

        Args:
            config: Server configuration.
            worker: Worker answering intercepted requests.
        """
        self.config = config
        self.worker = worker
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()
        self._rate_limiter = RateLimiter()

    def start(self) -> None:
        """Start the gateway in a background thread.

        Raises:
            GatewayError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Gateway is already running")
            return

        try:
            handler_class = _create_handler_class(
                self.worker,
                self.config.admin_token,
                self._rate_limiter,
            )
            self._server = ThreadingHTTPServer(("", self.config.port), handler_class)
            self._server.daemon_threads = True
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="gateway",
                daemon=True,
            )
            self._thread.start()

            logger.info("Gateway started on port %d", self.config.port)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise GatewayError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or offlinecache is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise GatewayError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise GatewayError(f"Failed to start gateway on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the gateway gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping gateway...")
        self._shutdown_event.set()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("Gateway stopped")

    @property
    def is_running(self) -> bool:
        """Check if the gateway is running."""
        return self._thread is not None and self._thread.is_alive()
