"""Tests for the cache namespace manager."""

import sqlite3

from conftest import get
from offlinecache.config import CacheConfig
from offlinecache.manager import CacheNamespaceManager
from offlinecache.models import Response


def _populate(manager: CacheNamespaceManager, *names: str) -> None:
    for name in names:
        manager.put(name, get("/"), Response(status=200, body=name.encode()))


class TestNames:
    """Tests for version-qualified namespace names."""

    def test_default_names(self, manager: CacheNamespaceManager) -> None:
        assert manager.cache_name == "heaven-of-munroe-v3"
        assert manager.static_name == "static-v3"
        assert manager.images_name == "images-v3"
        assert manager.api_name == "api-v3"

    def test_names_follow_version(self, db_conn: sqlite3.Connection) -> None:
        manager = CacheNamespaceManager(CacheConfig(version="v4"), db_conn)
        assert manager.current_names == {"heaven-of-munroe-v4", "static-v4", "images-v4", "api-v4"}

    def test_injected_names(self, db_conn: sqlite3.Connection) -> None:
        config = CacheConfig(version="t1", static="test-static-{version}", api="test-api")
        manager = CacheNamespaceManager(config, db_conn)
        assert manager.static_name == "test-static-t1"
        assert manager.api_name == "test-api"


class TestEntries:
    """Tests for get/put/match through the manager."""

    def test_put_and_get(self, manager: CacheNamespaceManager) -> None:
        response = Response(status=200, body=b"shell")
        manager.put("static-v3", get("/"), response)
        assert manager.get("static-v3", get("/")) == response

    def test_get_miss(self, manager: CacheNamespaceManager) -> None:
        assert manager.get("static-v3", get("/")) is None

    def test_match_across_namespaces(self, manager: CacheNamespaceManager) -> None:
        manager.put("images-v3", get("/images/boat.jpg"), Response(status=200, body=b"jpg"))
        assert manager.match(get("/images/boat.jpg")).body == b"jpg"

    def test_open_creates_empty_namespace(self, manager: CacheNamespaceManager) -> None:
        manager.open("static-v3")
        assert manager.sizes() == {"static-v3": 0}


class TestInvalidate:
    """Tests for activation-time invalidation."""

    def test_deletes_previous_version(self, db_conn: sqlite3.Connection) -> None:
        old = CacheNamespaceManager(CacheConfig(version="v2"), db_conn)
        _populate(old, old.cache_name, old.static_name, old.images_name, old.api_name)

        new = CacheNamespaceManager(CacheConfig(version="v3"), db_conn)
        _populate(new, new.static_name, new.api_name)

        deleted = new.invalidate()

        assert sorted(deleted) == ["api-v2", "heaven-of-munroe-v2", "images-v2", "static-v2"]
        assert new.names() == ["static-v3", "api-v3"]

    def test_keeps_current_names(self, manager: CacheNamespaceManager) -> None:
        _populate(manager, *sorted(manager.current_names))
        assert manager.invalidate() == []
        assert set(manager.names()) == manager.current_names

    def test_keeps_hand_named_current_namespace(self, db_conn: sqlite3.Connection) -> None:
        """A configured current name survives even without the tag suffix."""
        manager = CacheNamespaceManager(CacheConfig(name="site-shell"), db_conn)
        _populate(manager, "site-shell", "static-v2")

        assert manager.invalidate() == ["static-v2"]
        assert manager.names() == ["site-shell"]

    def test_keeps_foreign_namespace_with_current_suffix(self, manager: CacheNamespaceManager) -> None:
        """Any name ending in the version tag survives, even if unrelated."""
        _populate(manager, "unrelated-feature-v3", "unrelated-feature-v2")

        deleted = manager.invalidate()

        assert deleted == ["unrelated-feature-v2"]
        assert manager.names() == ["unrelated-feature-v3"]

    def test_tag_suffix_is_literal(self, manager: CacheNamespaceManager) -> None:
        """Only a literal suffix match counts: 'v33' does not end with 'v3'."""
        _populate(manager, "static-v33", "static-xv3")

        assert manager.invalidate() == ["static-v33"]

    def test_no_namespaces(self, manager: CacheNamespaceManager) -> None:
        assert manager.invalidate() == []
