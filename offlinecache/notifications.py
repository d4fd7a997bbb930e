"""Push notification building, delivery and window control."""

import logging
import threading
import time
import webbrowser
from collections import deque
from datetime import UTC, datetime
from urllib.parse import urljoin

import requests

from .config import NotificationConfig, WebhookConfig
from .models import Notification, NotificationAction
from .security import SSRFError, validate_url_for_ssrf

logger = logging.getLogger(__name__)

EXPLORE_ACTION = "explore"
CLOSE_ACTION = "close"

# Oldest displayed notifications are dropped beyond this count.
MAX_DISPLAYED_NOTIFICATIONS = 20


def _payload_text(payload: bytes | str | None) -> str | None:
    """Decode a push payload, returning None when it is absent or malformed."""
    if payload is None:
        return None
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Ignoring push payload that is not valid UTF-8")
            return None
    return payload or None


def build_notification(
    payload: bytes | str | None,
    config: NotificationConfig,
    now: datetime | None = None,
) -> Notification:
    """Build the notification shown for a push message.

    Args:
        payload: Optional text payload of the push message.
        config: Visual contract (title, icons, vibration pattern).
        now: Arrival time, defaults to the current time.

    Returns:
        Notification whose body is the payload text, or the default body when
        the payload is absent, empty or not decodable.
    """
    arrival = now or datetime.now(UTC)
    body = _payload_text(payload)

    return Notification(
        title=config.title,
        body=body if body is not None else config.default_body,
        icon=config.icon,
        badge=config.badge,
        vibrate=tuple(config.vibrate),
        actions=(
            NotificationAction(action=EXPLORE_ACTION, title="Explore", icon=config.icon),
            NotificationAction(action=CLOSE_ACTION, title="Close", icon=config.icon),
        ),
        data={
            "date_of_arrival": int(arrival.timestamp() * 1000),
            "primary_key": 1,
        },
    )


class Notifier:
    """Displays notifications by delivering them to configured webhooks."""

    def __init__(self, config: NotificationConfig, max_retries: int = 3, retry_delay: int = 2):
        """Initialize notifier with configuration.

        Args:
            config: Notification configuration with webhooks
            max_retries: Maximum number of retry attempts for failed webhooks
            retry_delay: Base delay in seconds between retries (increases exponentially)
        """
        self._config = config
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._lock = threading.Lock()
        self._shown: deque[Notification] = deque(maxlen=MAX_DISPLAYED_NOTIFICATIONS)

    @property
    def shown(self) -> list[Notification]:
        """Notifications currently displayed (shown and not yet closed)."""
        with self._lock:
            return list(self._shown)

    def show(self, notification: Notification) -> None:
        """Display a notification.

        Args:
            notification: The notification to display
        """
        logger.info("Notification: %s - %s", notification.title, notification.body)
        with self._lock:
            self._shown.append(notification)

        payload = {"event": "notification", "notification": notification.to_dict()}
        for webhook in self._config.webhooks:
            if not webhook.enabled:
                continue
            self._send_webhook(webhook, payload)

    def close(self, notification: Notification) -> None:
        """Dismiss a displayed notification."""
        with self._lock:
            if notification in self._shown:
                self._shown.remove(notification)
        logger.debug("Notification closed: %s", notification.title)

    def _send_webhook(self, webhook: WebhookConfig, payload: dict) -> bool:
        """Send a webhook (with retries).

        Args:
            webhook: The webhook configuration
            payload: JSON payload to post

        Returns:
            True if the webhook accepted the payload
        """
        # SSRF protection: validate webhook URL before sending
        try:
            validate_url_for_ssrf(webhook.url)
        except SSRFError as e:
            logger.error("Webhook URL validation failed for %s: %s", webhook.url, e)
            return False

        retry_count = 0
        while retry_count <= self._max_retries:
            try:
                response = requests.post(webhook.url, json=payload, timeout=10)
                response.raise_for_status()
                logger.info("Notification webhook sent successfully to %s", webhook.url)
                return True

            except requests.RequestException as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Notification webhook failed for %s (attempt %d/%d, retrying in %ds): %s",
                        webhook.url,
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        "Notification webhook failed for %s after %d attempts: %s",
                        webhook.url,
                        retry_count,
                        e,
                    )
        return False

    def test_webhooks(self) -> dict[str, bool]:
        """Test all configured webhooks by sending a test payload.

        Returns:
            Dictionary mapping webhook URLs to success status
        """
        results = {}
        test_payload = {
            "event": "test",
            "notification": build_notification(b"Test notification", self._config).to_dict(),
        }

        for webhook in self._config.webhooks:
            if not webhook.enabled:
                results[webhook.url] = False
                continue

            try:
                validate_url_for_ssrf(webhook.url)
            except SSRFError as e:
                logger.error("Webhook URL validation failed for %s: %s", webhook.url, e)
                results[webhook.url] = False
                continue

            try:
                response = requests.post(webhook.url, json=test_payload, timeout=10)
                response.raise_for_status()
                results[webhook.url] = True
                logger.info("Test webhook sent successfully to %s", webhook.url)
            except requests.RequestException as e:
                results[webhook.url] = False
                logger.error("Test webhook failed for %s: %s", webhook.url, e)

        return results


class WindowClient:
    """Opens or focuses browser windows on the site's origin."""

    def __init__(self, origin: str) -> None:
        self._origin = origin.rstrip("/") + "/"

    def open_window(self, path: str) -> bool:
        """Open a browser window at a path of the origin.

        Returns:
            True if a browser was launched.
        """
        url = urljoin(self._origin, path)
        logger.info("Opening window at %s", url)
        return webbrowser.open(url, new=2)
