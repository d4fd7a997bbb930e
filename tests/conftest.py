"""Shared fixtures: an in-memory network and a fresh cache database."""

import sqlite3
from pathlib import Path

import pytest

from offlinecache.config import CacheConfig, Config, StorageConfig, UpstreamConfig
from offlinecache.manager import CacheNamespaceManager
from offlinecache.models import Request, Response
from offlinecache.network import NetworkError
from offlinecache.storage import init_db

ORIGIN = "https://heavenofmunroe.example"


class FakeNetwork:
    """Network double serving canned responses and counting calls."""

    def __init__(self) -> None:
        self.routes: dict[str, Response] = {}
        self.failing: set[str] = set()
        self.offline = False
        self.calls: list[Request] = []

    def add(self, path: str, status: int = 200, body: bytes = b"", headers: dict | None = None) -> Response:
        url = ORIGIN + path
        response = Response(
            status=status,
            status_text="OK" if status == 200 else "Error",
            headers=headers or {"Content-Type": "text/plain"},
            body=body,
            url=url,
        )
        self.routes[url] = response
        return response

    def fail(self, path: str) -> None:
        self.failing.add(ORIGIN + path)

    def __call__(self, request: Request) -> Response:
        self.calls.append(request)
        if self.offline or request.url in self.failing:
            raise NetworkError("Network is unreachable", url=request.url)
        if request.url not in self.routes:
            return Response(status=404, status_text="Not Found", url=request.url)
        return self.routes[request.url]

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def db_conn(tmp_path: Path) -> sqlite3.Connection:
    """Create a database connection with initialized tables."""
    conn = init_db(str(tmp_path / "cache.db"))
    yield conn
    conn.close()


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig()


@pytest.fixture
def config(tmp_path: Path, cache_config: CacheConfig) -> Config:
    return Config(
        upstream=UpstreamConfig(origin=ORIGIN),
        cache=cache_config,
        storage=StorageConfig(path=str(tmp_path / "cache.db")),
    )


@pytest.fixture
def manager(cache_config: CacheConfig, db_conn: sqlite3.Connection) -> CacheNamespaceManager:
    return CacheNamespaceManager(cache_config, db_conn)


def get(path: str, **kwargs) -> Request:
    """Build a GET request for a path on the test origin."""
    return Request(url=ORIGIN + path, **kwargs)
