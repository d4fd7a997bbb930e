"""Cache namespace manager: versioned partitions and their lifecycle."""

import logging
import sqlite3

from . import storage
from .config import CacheConfig
from .models import Request, Response

logger = logging.getLogger(__name__)


class CacheNamespaceManager:
    """Owns the named cache partitions of one origin.

    All namespace names come from the CacheConfig passed in, so different
    managers (e.g. in tests) can work on distinct namespace sets.

    Example:
        manager = CacheNamespaceManager(config.cache, conn)
        manager.put(manager.static_name, request, response)
        manager.invalidate()
    """

    def __init__(self, config: CacheConfig, conn: sqlite3.Connection) -> None:
        self._config = config
        self._conn = conn

    @property
    def version(self) -> str:
        return self._config.version

    @property
    def cache_name(self) -> str:
        return self._config.cache_name

    @property
    def static_name(self) -> str:
        return self._config.static_name

    @property
    def images_name(self) -> str:
        return self._config.images_name

    @property
    def api_name(self) -> str:
        return self._config.api_name

    @property
    def current_names(self) -> frozenset[str]:
        return self._config.current_names

    def open(self, name: str) -> None:
        """Open a namespace by name, creating it if needed."""
        storage.open_namespace(self._conn, name)

    def get(self, name: str, request: Request) -> Response | None:
        """Look up a request in one namespace."""
        entry = storage.get_entry(self._conn, name, request)
        return entry.response if entry is not None else None

    def match(self, request: Request) -> Response | None:
        """Look up a request across every namespace, oldest first."""
        entry = storage.match_entry(self._conn, request)
        return entry.response if entry is not None else None

    def put(self, name: str, request: Request, response: Response) -> None:
        """Store a response, overwriting any previous entry for the request."""
        storage.put_entry(self._conn, name, request, response)

    def put_all(self, name: str, pairs: list[tuple[Request, Response]]) -> None:
        """Store several responses atomically."""
        storage.put_entries(self._conn, name, pairs)

    def names(self) -> list[str]:
        return storage.namespace_names(self._conn)

    def delete(self, name: str) -> bool:
        return storage.delete_namespace(self._conn, name)

    def sizes(self) -> dict[str, int]:
        return storage.count_entries(self._conn)

    def is_current(self, name: str) -> bool:
        """Whether a namespace survives invalidation.

        A name survives if it is one of the configured current names, or if it
        merely ends with the current version tag. The second rule also keeps
        namespaces of unrelated features that share the suffix.
        """
        return name in self.current_names or name.endswith(self.version)

    def invalidate(self) -> list[str]:
        """Delete every namespace that does not belong to the current version.

        Returns:
            Names of the deleted namespaces.
        """
        deleted = []
        for name in self.names():
            if self.is_current(name):
                continue
            if self.delete(name):
                logger.info("Deleted stale cache namespace: %s", name)
                deleted.append(name)
        return deleted
