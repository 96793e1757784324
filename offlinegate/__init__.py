"""offlinegate - Offline-first caching gateway for web apps."""

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


def _load_config_or_exit(path: str):
    from .config import ConfigError, load_config

    try:
        return load_config(path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


def _open_store_or_exit(config):
    from .store import StoreError, open_store

    try:
        return open_store(config.store.backend, config.store.path)
    except StoreError as e:
        logger.error("Cache store error: %s", e)
        sys.exit(1)


def _log_event(event) -> None:
    logger.debug("Lifecycle event %s for %s: %s", event.name, event.version, event.detail)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the gateway."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("offlinegate %s starting...", __version__)

    # Import here to avoid circular imports and allow logging setup first
    from .alerter import Alerter
    from .cache_manager import InstallError
    from .connectivity import ConnectivityMonitor
    from .host import WorkerHost
    from .proxy import ProxyError, ProxyServer
    from .worker import OfflineWorker

    # 1. Load configuration
    config = _load_config_or_exit(args.config)
    logger.info("Configuration loaded from %s", args.config)

    # 2. Open cache store
    store = _open_store_or_exit(config)
    logger.info("Cache store ready (%s)", config.store.backend)

    # 3. Initialize alerter
    alerter = Alerter(config.alerts, config.origin.url)
    if config.alerts.webhooks:
        logger.info("Alerts configured with %d webhook(s)", len(config.alerts.webhooks))

    def on_event(event) -> None:
        _log_event(event)
        alerter.process_lifecycle_event(event)

    # 4. Install and activate the configured worker generation
    host = WorkerHost(max_workers=config.proxy.max_workers, on_event=on_event)
    worker = OfflineWorker.from_config(config, store)
    try:
        host.register(worker)
    except InstallError as e:
        # Keep serving: requests pass through uncached until a later install succeeds
        logger.warning("Offline cache unavailable: %s", e)

    # 5. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 6. Start components
    connectivity = ConnectivityMonitor(
        config.connectivity,
        config.origin.url,
        on_change=alerter.process_connectivity_change,
    )
    proxy = ProxyServer(
        config.proxy,
        host,
        config.origin.url,
        timezone=config.dates.timezone,
        connectivity=connectivity,
    )

    try:
        connectivity.start()

        try:
            proxy.start()
        except ProxyError as e:
            logger.error("Failed to start gateway server: %s", e)
            sys.exit(1)

        logger.info("All components started, waiting for shutdown signal...")

        # 7. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 8. Cleanup - stop all components
        logger.info("Shutting down components...")

        proxy.stop()
        connectivity.stop()
        host.close()

        store.close()
        logger.info("Cache store closed")

        logger.info("Shutdown complete")


def _cmd_install(args: argparse.Namespace) -> None:
    """Execute the install command - populate the cache without serving."""
    _setup_logging(args.verbose)

    from .cache_manager import InstallError
    from .worker import OfflineWorker

    config = _load_config_or_exit(args.config)
    store = _open_store_or_exit(config)

    worker = OfflineWorker.from_config(config, store)
    try:
        count = worker.install()
    except InstallError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()

    print(f"Installed {count} assets into cache version {worker.version}.")


def _cmd_purge(args: argparse.Namespace) -> None:
    """Execute the purge command - delete every cache version but the current one."""
    _setup_logging(args.verbose)

    from .worker import OfflineWorker

    config = _load_config_or_exit(args.config)
    store = _open_store_or_exit(config)

    try:
        deleted = OfflineWorker.from_config(config, store).cache_manager.activate()
    finally:
        store.close()

    if deleted:
        print(f"Deleted {len(deleted)} old cache version(s): {', '.join(deleted)}")
    else:
        print("No old cache versions to delete.")


def _cmd_versions(args: argparse.Namespace) -> None:
    """Execute the versions command - list stored cache versions."""
    from .dates import DateError, format_date_local, parse_date_local
    from .version import resolve_cache_version

    config = _load_config_or_exit(args.config)

    since = None
    if args.since:
        try:
            since = parse_date_local(args.since, config.dates.timezone)
        except DateError as e:
            print(f"Error: {e}")
            sys.exit(1)

    store = _open_store_or_exit(config)

    try:
        versions = store.list_versions()
    finally:
        store.close()

    current = resolve_cache_version(config.cache)
    if since is not None:
        versions = [info for info in versions if info.created_at >= since]

    if not versions:
        print(f"No cache versions created since {args.since}." if since else "No cache versions stored.")
        return

    for info in versions:
        marker = "*" if info.name == current else " "
        created = format_date_local(info.created_at, config.dates.timezone)
        print(f"{marker} {info.name}  {info.entries} entries  created {created}")


def _cmd_test_alert(args: argparse.Namespace) -> None:
    """Execute the test-alert command - verify webhook configuration."""
    from .alerter import Alerter

    config = _load_config_or_exit(args.config)

    if not config.alerts.webhooks:
        print("Error: No webhooks configured in alerts section")
        sys.exit(1)

    alerter = Alerter(config.alerts, config.origin.url)
    print(f"Testing {len(config.alerts.webhooks)} webhook(s)...\n")

    results = alerter.test_webhooks()

    success_count = sum(1 for success in results.values() if success)
    total_count = len(results)

    for url, success in results.items():
        status = "✓ SUCCESS" if success else "✗ FAILED"
        print(f"{status}: {url}")

    print(f"\nResult: {success_count}/{total_count} webhooks successful")

    if success_count < total_count:
        sys.exit(1)


def main() -> None:
    """Main entry point for the offlinegate package."""
    parser = argparse.ArgumentParser(
        description="offlinegate - Offline-first caching gateway for web apps"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"offlinegate {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub: argparse.ArgumentParser, verbose: bool = True) -> None:
        sub.add_argument(
            "-c", "--config",
            default="config.yaml",
            help="Path to configuration file (default: config.yaml)",
        )
        if verbose:
            sub.add_argument(
                "-v", "--verbose",
                action="store_true",
                help="Enable verbose (debug) logging",
            )

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Install the offline cache and start the gateway (default)",
    )
    add_common(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    # Install subcommand
    install_parser = subparsers.add_parser(
        "install",
        help="Populate the configured cache version without serving",
    )
    add_common(install_parser)
    install_parser.set_defaults(func=_cmd_install)

    # Purge subcommand
    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete every cache version except the configured one",
    )
    add_common(purge_parser)
    purge_parser.set_defaults(func=_cmd_purge)

    # Versions subcommand
    versions_parser = subparsers.add_parser(
        "versions",
        help="List stored cache versions",
    )
    add_common(versions_parser, verbose=False)
    versions_parser.add_argument(
        "--since",
        metavar="YYYY-MM-DD",
        help="Only list versions created on or after this local date",
    )
    versions_parser.set_defaults(func=_cmd_versions)

    # Test-alert subcommand
    test_alert_parser = subparsers.add_parser(
        "test-alert",
        help="Test webhook alert configuration",
    )
    add_common(test_alert_parser, verbose=False)
    test_alert_parser.set_defaults(func=_cmd_test_alert)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
