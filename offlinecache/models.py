"""Data models for intercepted requests, cached responses and notifications."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from urllib.parse import urldefrag, urlparse


def _get_header(headers: dict[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class StrategyClass(str, Enum):
    """Strategy class a request is routed to."""

    NAVIGATION = "navigation"
    API = "api"
    IMAGE = "image"
    STATIC = "static"


@dataclass(frozen=True)
class Request:
    """Descriptor of an intercepted outbound request.

    Attributes:
        url: Absolute request URL.
        method: HTTP method (upper case).
        headers: Request headers; lookups through header() are case-insensitive.
        destination: Declared destination ("image", "document", ...) or empty.
        mode: Request mode ("navigate", "cors", "no-cors", ...) or empty.
        body: Request body for methods that carry one, None otherwise.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    destination: str = ""
    mode: str = ""
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())

    def header(self, name: str) -> str | None:
        return _get_header(self.headers, name)

    @property
    def path(self) -> str:
        return urlparse(self.url).path or "/"

    @property
    def cache_key(self) -> str:
        """Request identity used to address cache entries.

        Fragments never reach the network, so they are not part of the key.
        """
        return urldefrag(self.url)[0]

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"

    @property
    def accepts_html(self) -> bool:
        accept = self.header("Accept")
        return accept is not None and "text/html" in accept


@dataclass(frozen=True)
class Response:
    """Immutable snapshot of an HTTP response.

    Attributes:
        status: HTTP status code.
        status_text: Reason phrase (e.g., "OK").
        headers: Response headers.
        body: Full response body.
        url: Final URL the response was served from.
    """

    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        """Whether the status is in the 2xx range."""
        return 200 <= self.status <= 299

    def header(self, name: str) -> str | None:
        return _get_header(self.headers, name)

    def clone(self) -> "Response":
        return replace(self, headers=dict(self.headers))


@dataclass(frozen=True)
class CachedEntry:
    """A response stored in a cache namespace."""

    namespace: str
    key: str
    response: Response
    stored_at: datetime


@dataclass(frozen=True)
class NotificationAction:
    """A button shown on a notification."""

    action: str
    title: str
    icon: str


@dataclass(frozen=True)
class Notification:
    """Descriptor of a displayed push notification."""

    title: str
    body: str
    icon: str
    badge: str
    vibrate: tuple[int, ...]
    actions: tuple[NotificationAction, ...]
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "vibrate": list(self.vibrate),
            "data": dict(self.data),
            "actions": [{"action": a.action, "title": a.title, "icon": a.icon} for a in self.actions],
        }


@dataclass(frozen=True)
class Submission:
    """A form submission queued while the network was unavailable.

    Attributes:
        id: Outbox row id.
        url: Absolute URL the submission was sent to.
        method: HTTP method of the original request.
        headers: Request headers of the original request.
        body: Request body, or None.
        queued_at: When the submission was queued.
        attempts: Number of failed replay attempts so far.
    """

    id: int
    url: str
    method: str
    headers: dict[str, str]
    body: bytes | None
    queued_at: datetime
    attempts: int = 0

    def to_request(self) -> Request:
        return Request(url=self.url, method=self.method, headers=dict(self.headers), body=self.body)
