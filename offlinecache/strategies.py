"""Caching strategies executed for each strategy class.

Two algorithms cover the four classes:

- Network-first with fallback (navigation, api): the network is always tried
  first and its response returned; the cache is only read when the network
  fails.
- Cache-first with refill (image, static): a cached entry is returned without
  touching the network; on a miss the network response is returned and, when
  successful, stored.

The executor never fabricates a response. Every result is either a stored
entry or a live network response, and a network failure with nothing to fall
back on propagates as NetworkError.
"""

import logging
from urllib.parse import urljoin

from .manager import CacheNamespaceManager
from .models import Request, Response, StrategyClass
from .network import FetchFunc, NetworkError
from .storage import CACHEABLE_METHODS, StorageError

logger = logging.getLogger(__name__)


class StrategyExecutor:
    """Runs the caching algorithm for a classified request."""

    def __init__(
        self,
        manager: CacheNamespaceManager,
        fetch: FetchFunc,
        fallback_url: str = "/index.html",
    ) -> None:
        """Initialize the executor.

        Args:
            manager: Namespace manager holding the cache partitions.
            fetch: Network boundary used for live requests.
            fallback_url: Path of the cached home shell served to navigations
                while offline.
        """
        self._manager = manager
        self._fetch = fetch
        self._fallback_url = fallback_url

    def execute(self, strategy: StrategyClass, request: Request) -> Response:
        """Resolve a request with the algorithm of its strategy class.

        Raises:
            NetworkError: If the network fails and no cached entry applies.
        """
        if strategy is StrategyClass.NAVIGATION:
            return self.navigation(request)
        if strategy is StrategyClass.API:
            return self.api(request)
        if strategy is StrategyClass.IMAGE:
            return self.image(request)
        return self.static(request)

    def navigation(self, request: Request) -> Response:
        """Network-first; every network response is kept as offline shell."""
        try:
            response = self._fetch(request)
        except NetworkError:
            fallback = self._match_fallback(request)
            if fallback is not None:
                logger.info("Offline: serving cached shell for %s", request.url)
                return fallback
            raise

        self._store(self._manager.static_name, request, response)
        return response

    def api(self, request: Request) -> Response:
        """Network-first; only successful responses are stored."""
        try:
            response = self._fetch(request)
        except NetworkError:
            cached = self._match(request)
            if cached is not None:
                logger.info("Offline: serving cached API response for %s", request.url)
                return cached
            raise

        if response.ok:
            self._store(self._manager.api_name, request, response)
        return response

    def image(self, request: Request) -> Response:
        """Cache-first against the images namespace."""
        name = self._manager.images_name
        cached = self._get(name, request)
        if cached is not None:
            return cached

        response = self._fetch(request)
        if response.ok:
            self._store(name, request, response)
        return response

    def static(self, request: Request) -> Response:
        """Cache-first across all namespaces; refills the static namespace for GETs."""
        cached = self._match(request)
        if cached is not None:
            return cached

        response = self._fetch(request)
        if response.ok and request.method == "GET":
            self._store(self._manager.static_name, request, response)
        return response

    def _match_fallback(self, request: Request) -> Response | None:
        shell = Request(url=urljoin(request.url, self._fallback_url))
        cached = self._match(shell)
        if cached is not None:
            return cached
        return self._match(request)

    def _get(self, name: str, request: Request) -> Response | None:
        try:
            return self._manager.get(name, request)
        except StorageError as e:
            logger.warning("Cache read failed for %s in %s: %s", request.url, name, e)
            return None

    def _match(self, request: Request) -> Response | None:
        try:
            return self._manager.match(request)
        except StorageError as e:
            logger.warning("Cache match failed for %s: %s", request.url, e)
            return None

    def _store(self, name: str, request: Request, response: Response) -> None:
        """Best-effort write; the caller's response never depends on it."""
        if request.method not in CACHEABLE_METHODS:
            logger.debug("Not caching %s %s: method is not cacheable", request.method, request.url)
            return
        try:
            self._manager.put(name, request, response.clone())
        except StorageError as e:
            logger.warning("Cache write to %s failed for %s: %s", name, request.url, e)
