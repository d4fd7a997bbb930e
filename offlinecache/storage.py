"""SQLite persistence for cache namespaces and the offline submission outbox."""

import json
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from .models import CachedEntry, Request, Response, Submission


class StorageError(Exception):
    """Raised when a storage operation fails."""

    pass


class CacheWriteError(StorageError):
    """Raised when a response cannot be written to a namespace."""

    pass


# Global lock for thread-safe database access.
# SQLite allows concurrent reads but only one writer at a time.
# This lock ensures safe access from the gateway's request threads.
_db_lock = threading.Lock()

# Only GET requests can be stored, matching the browser Cache API.
CACHEABLE_METHODS = ("GET",)


def init_db(db_path: str) -> sqlite3.Connection:
    """Initialize the database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StorageError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        # id preserves creation order, which cross-namespace matching follows
        conn.execute("""
            CREATE TABLE IF NOT EXISTS namespaces (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                namespace TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                url TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (namespace, cache_key)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_entries_cache_key
            ON entries(cache_key)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS outbox (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL,
                method TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB,
                queued_at TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StorageError(f"Failed to initialize database: {e}")
    except OSError as e:
        raise StorageError(f"Failed to create database directory: {e}")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _ensure_namespace(conn: sqlite3.Connection, name: str) -> None:
    """Create a namespace row if missing. Caller must hold the lock."""
    conn.execute(
        "INSERT OR IGNORE INTO namespaces (name, created_at) VALUES (?, ?)",
        (name, _now()),
    )


def _row_to_entry(row: sqlite3.Row) -> CachedEntry:
    return CachedEntry(
        namespace=row["namespace"],
        key=row["cache_key"],
        response=Response(
            status=row["status"],
            status_text=row["status_text"],
            headers=json.loads(row["headers"]),
            body=bytes(row["body"]),
            url=row["url"],
        ),
        stored_at=datetime.fromisoformat(row["stored_at"]),
    )


def open_namespace(conn: sqlite3.Connection, name: str) -> None:
    """Open a namespace, creating it if it does not exist yet.

    Raises:
        StorageError: If the namespace cannot be created.
    """
    try:
        with _db_lock:
            _ensure_namespace(conn, name)
            conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Failed to open namespace '{name}': {e}")


def has_namespace(conn: sqlite3.Connection, name: str) -> bool:
    """Check whether a namespace exists."""
    try:
        with _db_lock:
            row = conn.execute("SELECT 1 FROM namespaces WHERE name = ?", (name,)).fetchone()
        return row is not None
    except sqlite3.Error as e:
        raise StorageError(f"Failed to look up namespace '{name}': {e}")


def namespace_names(conn: sqlite3.Connection) -> list[str]:
    """Return every namespace name in creation order."""
    try:
        with _db_lock:
            rows = conn.execute("SELECT name FROM namespaces ORDER BY id").fetchall()
        return [row["name"] for row in rows]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to list namespaces: {e}")


def delete_namespace(conn: sqlite3.Connection, name: str) -> bool:
    """Delete a namespace and all of its entries.

    Returns:
        True if the namespace existed, False otherwise.
    """
    try:
        with _db_lock:
            conn.execute("DELETE FROM entries WHERE namespace = ?", (name,))
            cursor = conn.execute("DELETE FROM namespaces WHERE name = ?", (name,))
            conn.commit()
        return cursor.rowcount > 0
    except sqlite3.Error as e:
        raise StorageError(f"Failed to delete namespace '{name}': {e}")


def count_entries(conn: sqlite3.Connection) -> dict[str, int]:
    """Return the number of entries per namespace, including empty ones."""
    try:
        with _db_lock:
            rows = conn.execute("""
                SELECT n.name AS name, COUNT(e.cache_key) AS entries
                FROM namespaces n
                LEFT JOIN entries e ON e.namespace = n.name
                GROUP BY n.id, n.name
                ORDER BY n.id
            """).fetchall()
        return {row["name"]: row["entries"] for row in rows}
    except sqlite3.Error as e:
        raise StorageError(f"Failed to count entries: {e}")


def get_entry(conn: sqlite3.Connection, name: str, request: Request) -> CachedEntry | None:
    """Look up a request in a single namespace.

    Returns:
        The stored entry, or None on a miss (always None for non-GET requests).
    """
    if request.method not in CACHEABLE_METHODS:
        return None

    try:
        with _db_lock:
            row = conn.execute(
                "SELECT * FROM entries WHERE namespace = ? AND cache_key = ?",
                (name, request.cache_key),
            ).fetchone()
        return _row_to_entry(row) if row is not None else None
    except sqlite3.Error as e:
        raise StorageError(f"Failed to read from namespace '{name}': {e}")


def match_entry(conn: sqlite3.Connection, request: Request) -> CachedEntry | None:
    """Look up a request across all namespaces.

    Namespaces are searched in creation order; the first hit wins.
    """
    if request.method not in CACHEABLE_METHODS:
        return None

    try:
        with _db_lock:
            row = conn.execute(
                """
                SELECT e.* FROM entries e
                INNER JOIN namespaces n ON n.name = e.namespace
                WHERE e.cache_key = ?
                ORDER BY n.id
                LIMIT 1
                """,
                (request.cache_key,),
            ).fetchone()
        return _row_to_entry(row) if row is not None else None
    except sqlite3.Error as e:
        raise StorageError(f"Failed to match request: {e}")


def _check_cacheable(request: Request) -> None:
    if request.method not in CACHEABLE_METHODS:
        raise CacheWriteError(f"Request method '{request.method}' is unsupported for caching")


def _insert_entry(conn: sqlite3.Connection, name: str, request: Request, response: Response) -> None:
    """Overwrite the entry for the request key. Caller must hold the lock."""
    conn.execute(
        """
        INSERT OR REPLACE INTO entries
        (namespace, cache_key, status, status_text, headers, body, url, stored_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            name,
            request.cache_key,
            response.status,
            response.status_text,
            json.dumps(response.headers),
            response.body,
            response.url,
            _now(),
        ),
    )


def put_entry(conn: sqlite3.Connection, name: str, request: Request, response: Response) -> None:
    """Store a response in a namespace, replacing any previous entry for the key.

    The namespace is created on first write.

    Raises:
        CacheWriteError: If the request is not cacheable or the write fails.
    """
    _check_cacheable(request)

    try:
        with _db_lock:
            _ensure_namespace(conn, name)
            _insert_entry(conn, name, request, response)
            conn.commit()
    except sqlite3.Error as e:
        raise CacheWriteError(f"Failed to write to namespace '{name}': {e}")


def put_entries(
    conn: sqlite3.Connection,
    name: str,
    pairs: list[tuple[Request, Response]],
) -> None:
    """Store several responses in one transaction.

    Either every pair is stored or none is.

    Raises:
        CacheWriteError: If any request is not cacheable or the write fails.
    """
    for request, _ in pairs:
        _check_cacheable(request)

    with _db_lock:
        try:
            _ensure_namespace(conn, name)
            for request, response in pairs:
                _insert_entry(conn, name, request, response)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise CacheWriteError(f"Failed to write to namespace '{name}': {e}")


def enqueue_submission(conn: sqlite3.Connection, request: Request) -> int:
    """Queue a request for replay during background sync.

    Returns:
        The outbox id of the queued submission.
    """
    try:
        with _db_lock:
            cursor = conn.execute(
                "INSERT INTO outbox (url, method, headers, body, queued_at) VALUES (?, ?, ?, ?, ?)",
                (request.url, request.method, json.dumps(request.headers), request.body, _now()),
            )
            conn.commit()
        return cursor.lastrowid
    except sqlite3.Error as e:
        raise StorageError(f"Failed to queue submission: {e}")


def get_submissions(conn: sqlite3.Connection) -> list[Submission]:
    """Return queued submissions, oldest first."""
    try:
        with _db_lock:
            rows = conn.execute("SELECT * FROM outbox ORDER BY id").fetchall()
        return [
            Submission(
                id=row["id"],
                url=row["url"],
                method=row["method"],
                headers=json.loads(row["headers"]),
                body=bytes(row["body"]) if row["body"] is not None else None,
                queued_at=datetime.fromisoformat(row["queued_at"]),
                attempts=row["attempts"],
            )
            for row in rows
        ]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to read outbox: {e}")


def delete_submission(conn: sqlite3.Connection, submission_id: int) -> None:
    """Remove a submission from the outbox."""
    try:
        with _db_lock:
            conn.execute("DELETE FROM outbox WHERE id = ?", (submission_id,))
            conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Failed to delete submission {submission_id}: {e}")


def record_attempt(conn: sqlite3.Connection, submission_id: int) -> int:
    """Increment the failed-attempt counter of a submission.

    Returns:
        The updated attempt count.
    """
    try:
        with _db_lock:
            conn.execute("UPDATE outbox SET attempts = attempts + 1 WHERE id = ?", (submission_id,))
            row = conn.execute("SELECT attempts FROM outbox WHERE id = ?", (submission_id,)).fetchone()
            conn.commit()
        return row["attempts"] if row is not None else 0
    except sqlite3.Error as e:
        raise StorageError(f"Failed to update submission {submission_id}: {e}")
