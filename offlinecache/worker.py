"""Offline worker: one handler per lifecycle event.

Every handler runs to completion and returns its result, so the host decides
when the work is done by the time the call returns. The host can be the
gateway, the CLI or a test.

Example:
    worker = OfflineWorker.from_config(config, conn)
    worker.install()
    worker.activate()
    response = worker.fetch(Request(url="https://example.com/"))
"""

import logging
import sqlite3
from urllib.parse import urljoin

from . import storage
from .config import Config
from .manager import CacheNamespaceManager
from .models import Notification, Request, Response, StrategyClass
from .network import Fetcher, FetchFunc, NetworkError
from .notifications import EXPLORE_ACTION, Notifier, WindowClient, build_notification
from .router import RequestRouter
from .storage import StorageError
from .strategies import StrategyExecutor

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when the install manifest cannot be cached in full."""

    pass


class OfflineWorker:
    """Handles install, activate, fetch, sync, push and notificationclick events."""

    def __init__(
        self,
        config: Config,
        conn: sqlite3.Connection,
        fetch: FetchFunc,
        notifier: Notifier,
        windows: WindowClient,
    ) -> None:
        """Initialize the worker.

        Args:
            config: Application configuration.
            conn: Cache storage connection.
            fetch: Network boundary.
            notifier: Displays push notifications.
            windows: Opens browser windows for notification actions.
        """
        self._config = config
        self._conn = conn
        self._fetch = fetch
        self._notifier = notifier
        self._windows = windows
        self.manager = CacheNamespaceManager(config.cache, conn)
        self.router = RequestRouter(config.routing)
        self.executor = StrategyExecutor(self.manager, fetch, config.cache.fallback_url)

    @classmethod
    def from_config(cls, config: Config, conn: sqlite3.Connection) -> "OfflineWorker":
        """Build a worker wired to the real network, webhooks and browser."""
        return cls(
            config,
            conn,
            fetch=Fetcher(timeout=config.upstream.timeout),
            notifier=Notifier(config.notifications),
            windows=WindowClient(config.upstream.origin),
        )

    @property
    def origin(self) -> str:
        return self._config.upstream.origin

    @property
    def sync_tag(self) -> str:
        return self._config.sync.tag

    def displayed_notifications(self) -> list[Notification]:
        return self._notifier.shown

    def resolve(self, path: str) -> str:
        """Resolve a site path against the origin."""
        return urljoin(self.origin + "/", path)

    def install(self) -> list[str]:
        """Cache every URL of the install manifest into the static namespace.

        All URLs are fetched before anything is written; one failure leaves
        the namespace untouched.

        Returns:
            The cached URLs.

        Raises:
            InstallError: If any URL fails to fetch, returns a non-2xx status,
                or the entries cannot be committed.
        """
        name = self.manager.static_name
        logger.info("Installing version %s into %s", self.manager.version, name)

        pairs: list[tuple[Request, Response]] = []
        for path in self._config.cache.install_manifest:
            request = Request(url=self.resolve(path))
            try:
                response = self._fetch(request)
            except NetworkError as e:
                raise InstallError(f"Failed to fetch {request.url}: {e}")
            if not response.ok:
                raise InstallError(f"Failed to fetch {request.url}: HTTP {response.status}")
            pairs.append((request, response))

        try:
            self.manager.put_all(name, pairs)
        except StorageError as e:
            raise InstallError(f"Failed to store install manifest: {e}")

        urls = [request.url for request, _ in pairs]
        logger.info("Cached %d install manifest URLs", len(urls))
        return urls

    def activate(self) -> list[str]:
        """Delete namespaces left over from previous versions.

        Returns:
            Names of the deleted namespaces.
        """
        logger.info("Activating version %s", self.manager.version)
        return self.manager.invalidate()

    def classify(self, request: Request) -> StrategyClass:
        return self.router.classify(request)

    def fetch(self, request: Request) -> Response:
        """Answer an intercepted request from cache or network.

        Submissions to the sync paths that fail on the network are queued for
        background sync; the failure still propagates to the caller.

        Raises:
            NetworkError: If no response could be produced.
        """
        strategy = self.classify(request)
        logger.debug("%s %s -> %s", request.method, request.url, strategy.value)
        try:
            return self.executor.execute(strategy, request)
        except NetworkError:
            if self._is_deferrable(request):
                self._queue(request)
            raise

    def _is_deferrable(self, request: Request) -> bool:
        return request.method not in storage.CACHEABLE_METHODS and request.path in self._config.sync.paths

    def _queue(self, request: Request) -> None:
        try:
            submission_id = storage.enqueue_submission(self._conn, request)
            logger.info("Queued offline submission %d for %s", submission_id, request.url)
        except StorageError as e:
            logger.error("Failed to queue offline submission for %s: %s", request.url, e)

    def sync(self, tag: str) -> int:
        """Replay queued submissions when the tag is the background-sync tag.

        Errors are logged and never raised.

        Returns:
            Number of submissions delivered.
        """
        if tag != self._config.sync.tag:
            logger.debug("Ignoring sync event with tag '%s'", tag)
            return 0

        logger.info("Background sync triggered")
        try:
            return self._replay_submissions()
        except Exception as e:
            logger.error("Background sync failed: %s", e)
            return 0

    def _replay_submissions(self) -> int:
        delivered = 0
        max_attempts = self._config.sync.max_attempts

        for submission in storage.get_submissions(self._conn):
            try:
                response = self._fetch(submission.to_request())
            except NetworkError as e:
                attempts = storage.record_attempt(self._conn, submission.id)
                if attempts >= max_attempts:
                    storage.delete_submission(self._conn, submission.id)
                    logger.warning(
                        "Dropping submission %d to %s after %d attempts: %s",
                        submission.id,
                        submission.url,
                        attempts,
                        e,
                    )
                else:
                    logger.debug("Submission %d still offline (attempt %d): %s", submission.id, attempts, e)
                continue

            storage.delete_submission(self._conn, submission.id)
            delivered += 1
            if response.ok:
                logger.info("Delivered queued submission %d to %s", submission.id, submission.url)
            else:
                logger.warning(
                    "Queued submission %d to %s was rejected with HTTP %d",
                    submission.id,
                    submission.url,
                    response.status,
                )

        return delivered

    def pending_submissions(self) -> int:
        return len(storage.get_submissions(self._conn))

    def push(self, payload: bytes | str | None = None) -> Notification:
        """Display a notification for a push message."""
        notification = build_notification(payload, self._config.notifications)
        self._notifier.show(notification)
        return notification

    def notification_click(self, notification: Notification, action: str | None = None) -> bool:
        """Close the notification and open the site for the explore action.

        Returns:
            True if a window was opened.
        """
        self._notifier.close(notification)
        if action == EXPLORE_ACTION:
            self._windows.open_window("/")
            return True
        return False

    def close(self) -> None:
        """Release the network boundary's connections, if it holds any."""
        close = getattr(self._fetch, "close", None)
        if close is not None:
            close()
