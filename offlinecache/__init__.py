"""offlinecache - Offline cache controller for the Heaven of Munroe site."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load(args: argparse.Namespace):
    """Load configuration and open storage, exiting on failure.

    Returns:
        Tuple of (config, connection, worker).
    """
    from .config import ConfigError, load_config
    from .storage import StorageError, init_db
    from .worker import OfflineWorker

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        conn = init_db(config.storage.path)
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)

    return config, conn, OfflineWorker.from_config(config, conn)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - install, activate and serve the gateway."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("offlinecache %s starting...", __version__)

    from .gateway import GatewayError, GatewayServer
    from .storage import StorageError
    from .worker import InstallError

    # 1. Load configuration and storage
    config, conn, worker = _load(args)
    logger.info("Configuration loaded from %s", args.config)
    logger.info("Caching %s (version %s)", config.upstream.origin, config.cache.version)

    # 2. Install, then activate the new version
    try:
        worker.install()
        worker.activate()
    except InstallError as e:
        logger.error("Install failed: %s", e)
        logger.warning("Skipping activation; previous cache generation stays in place")
    except StorageError as e:
        logger.error("Cache storage failed: %s", e)
        print(f"Error: {e}")
        worker.close()
        conn.close()
        sys.exit(1)

    # 3. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 4. Start gateway
    gateway: Optional[GatewayServer] = None

    try:
        if config.server.enabled:
            try:
                gateway = GatewayServer(config.server, worker)
                gateway.start()
            except GatewayError as e:
                logger.error("Failed to start gateway: %s", e)
                sys.exit(1)
        else:
            logger.warning("Gateway disabled in configuration")

        logger.info("All components started, waiting for shutdown signal...")

        # 5. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        # 6. Cleanup
        logger.info("Shutting down components...")

        if gateway is not None:
            gateway.stop()

        worker.close()
        conn.close()
        logger.info("Storage connection closed")

        logger.info("Shutdown complete")


def _cmd_install(args: argparse.Namespace) -> None:
    """Execute the install command - cache the install manifest."""
    from .worker import InstallError

    _setup_logging(args.verbose)
    config, conn, worker = _load(args)

    try:
        cached = worker.install()
    except InstallError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        worker.close()
        conn.close()

    print(f"Cached {len(cached)} URLs into {config.cache.static_name}:")
    for url in cached:
        print(f"  {url}")


def _cmd_activate(args: argparse.Namespace) -> None:
    """Execute the activate command - delete stale cache namespaces."""
    from .storage import StorageError

    _setup_logging(args.verbose)
    config, conn, worker = _load(args)

    try:
        deleted = worker.activate()
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        worker.close()
        conn.close()

    if deleted:
        print(f"Deleted {len(deleted)} stale cache(s): {', '.join(deleted)}")
    else:
        print(f"No stale caches for version {config.cache.version}.")


def _cmd_caches(args: argparse.Namespace) -> None:
    """Execute the caches command - list namespaces and entry counts."""
    _setup_logging(args.verbose)
    config, conn, worker = _load(args)

    try:
        sizes = worker.manager.sizes()
        pending = worker.pending_submissions()
    finally:
        worker.close()
        conn.close()

    if not sizes:
        print("No caches.")
    for name, count in sizes.items():
        marker = "*" if worker.manager.is_current(name) else " "
        print(f"{marker} {name}: {count} entries")
    print(f"\nVersion: {config.cache.version}, pending submissions: {pending}")


def _cmd_push(args: argparse.Namespace) -> None:
    """Execute the push command - display a notification."""
    _setup_logging(args.verbose)
    _, conn, worker = _load(args)

    try:
        notification = worker.push(args.payload)
        if args.explore:
            worker.notification_click(notification, "explore")
    finally:
        worker.close()
        conn.close()

    print(f"{notification.title}: {notification.body}")


def _cmd_sync(args: argparse.Namespace) -> None:
    """Execute the sync command - replay queued offline submissions."""
    _setup_logging(args.verbose)
    _, conn, worker = _load(args)

    try:
        tag = args.tag or worker.sync_tag
        delivered = worker.sync(tag)
        remaining = worker.pending_submissions()
    finally:
        worker.close()
        conn.close()

    print(f"Delivered {delivered} submission(s), {remaining} still queued.")


def _cmd_test_notify(args: argparse.Namespace) -> None:
    """Execute the test-notify command - verify webhook configuration."""
    from .config import ConfigError, load_config
    from .notifications import Notifier

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not config.notifications.webhooks:
        print("Error: No webhooks configured in notifications section")
        sys.exit(1)

    notifier = Notifier(config.notifications)
    print(f"Testing {len(config.notifications.webhooks)} webhook(s)...\n")

    results = notifier.test_webhooks()

    success_count = sum(1 for success in results.values() if success)
    total_count = len(results)

    for url, success in results.items():
        status = "✓ SUCCESS" if success else "✗ FAILED"
        print(f"{status}: {url}")

    print(f"\nResult: {success_count}/{total_count} webhooks successful")

    if success_count < total_count:
        sys.exit(1)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main() -> None:
    """Main entry point for the offlinecache package."""
    parser = argparse.ArgumentParser(
        description="offlinecache - Offline cache controller for the Heaven of Munroe site"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"offlinecache {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run",
        help="Install, activate and start the caching gateway (default)",
    )
    _add_common_arguments(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    install_parser = subparsers.add_parser(
        "install",
        help="Cache the install manifest into the static namespace",
    )
    _add_common_arguments(install_parser)
    install_parser.set_defaults(func=_cmd_install)

    activate_parser = subparsers.add_parser(
        "activate",
        help="Delete cache namespaces from previous versions",
    )
    _add_common_arguments(activate_parser)
    activate_parser.set_defaults(func=_cmd_activate)

    caches_parser = subparsers.add_parser(
        "caches",
        help="List cache namespaces and their entry counts",
    )
    _add_common_arguments(caches_parser)
    caches_parser.set_defaults(func=_cmd_caches)

    push_parser = subparsers.add_parser(
        "push",
        help="Display a push notification",
    )
    _add_common_arguments(push_parser)
    push_parser.add_argument(
        "payload",
        nargs="?",
        help="Notification text (default message when omitted)",
    )
    push_parser.add_argument(
        "--explore",
        action="store_true",
        help="Simulate clicking the 'explore' action",
    )
    push_parser.set_defaults(func=_cmd_push)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Replay form submissions queued while offline",
    )
    _add_common_arguments(sync_parser)
    sync_parser.add_argument(
        "--tag",
        help="Sync tag (default: configured background sync tag)",
    )
    sync_parser.set_defaults(func=_cmd_sync)

    test_notify_parser = subparsers.add_parser(
        "test-notify",
        help="Test notification webhook configuration",
    )
    test_notify_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    test_notify_parser.set_defaults(func=_cmd_test_notify)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
