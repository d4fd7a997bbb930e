"""Network boundary: performs real fetches against the origin."""

import logging
from collections.abc import Callable

import requests

from .models import Request, Response

logger = logging.getLogger(__name__)

# Headers that describe a single connection or the wire encoding; they are
# never forwarded and never stored in snapshots. requests already decodes
# Content-Encoding, so the stored body is the identity encoding.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
        "host",
    }
)

DEFAULT_TIMEOUT = 30

# A fetch function takes a request and returns a response, raising
# NetworkError when no response could be obtained.
FetchFunc = Callable[[Request], Response]


class NetworkError(Exception):
    """Raised when a request could not reach the network (offline, DNS, timeout)."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


def filter_headers(headers) -> dict[str, str]:
    """Drop hop-by-hop headers from a header mapping."""
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class Fetcher:
    """Fetches requests over HTTP using a shared requests session.

    HTTP error statuses are returned as ordinary responses; only transport
    failures raise NetworkError.
    """

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, request: Request) -> Response:
        """Send a request and snapshot the full response.

        Raises:
            NetworkError: If the request fails before a response arrives.
        """
        try:
            resp = self._session.request(
                request.method,
                request.url,
                headers=filter_headers(request.headers),
                data=request.body,
                timeout=self._timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.debug("Network failure for %s %s: %s", request.method, request.url, e)
            raise NetworkError(str(e), url=request.url) from e

        return Response(
            status=resp.status_code,
            status_text=resp.reason or "",
            headers=filter_headers(resp.headers),
            body=resp.content,
            url=resp.url,
        )

    __call__ = fetch

    def close(self) -> None:
        self._session.close()
