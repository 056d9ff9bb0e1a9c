"""CLI entry point for pocketsync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

from .auth import AuthService, AuthWatcher
from .client import PocketBaseClient
from .config import Config, load_config
from .errors import AuthError, ClientResponseError
from .realtime import MQTTChangeFeed
from .session import SessionContext
from .sync import (
    CollectionSynchronizer,
    RecordSynchronizer,
    RetryPolicy,
    SubscribePolicy,
    SyncState,
)

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def retry_policy(config: Config) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.sync.retry_max_attempts,
        backoff_seconds=config.sync.retry_backoff_seconds,
        max_backoff_seconds=config.sync.retry_max_backoff_seconds,
    )


def subscribe_policy(config: Config) -> SubscribePolicy:
    try:
        return SubscribePolicy(config.sync.subscribe_policy)
    except ValueError:
        logger.warning(
            f"Unknown subscribe policy {config.sync.subscribe_policy!r}, using non_empty"
        )
        return SubscribePolicy.NON_EMPTY


async def open_client(config: Config) -> PocketBaseClient:
    """Build a client, connect the change feed and sign in if configured."""
    feed = None
    if config.realtime.enabled:
        feed = MQTTChangeFeed(config.realtime)
        if not await feed.connect():
            print("Warning: realtime feed unavailable, live updates disabled", file=sys.stderr)

    client = PocketBaseClient(
        config.server.url,
        session=SessionContext(),
        feed=feed,
        page_size=config.server.page_size,
        timeout=config.server.timeout,
        auth_collection=config.auth.collection,
    )

    if config.auth.identity and config.auth.password:
        try:
            await AuthService(client).login(config.auth.identity, config.auth.password)
        except (AuthError, ClientResponseError):
            await close_client(client)
            raise

    return client


async def close_client(client: PocketBaseClient) -> None:
    if client.feed:
        await client.feed.disconnect()
    await client.close()


def _session_ended() -> None:
    print("Session ended: the signed-in account is no longer available", file=sys.stderr)


async def start_watcher(client: PocketBaseClient, config: Config) -> AuthWatcher | None:
    """Watch the signed-in account, if there is one."""
    if not client.session.is_valid:
        return None

    watcher = AuthWatcher(
        client,
        interval_seconds=config.auth.validation_interval_seconds,
        on_logout=_session_ended,
    )
    await watcher.start()
    return watcher


async def close_all(client: PocketBaseClient, watcher: AuthWatcher | None) -> None:
    if watcher:
        await watcher.stop()
    await close_client(client)


def print_state(state: SyncState) -> None:
    print(json.dumps(
        {
            "timestamp": datetime.now().isoformat(),
            "loading": state.loading,
            "error": str(state.error) if state.error else None,
            "data": state.data,
        },
        default=str,
    ))


async def _run_until_interrupted() -> None:
    """Block until the task is cancelled (Ctrl-C)."""
    await asyncio.Event().wait()


async def cmd_watch(args: argparse.Namespace) -> int:
    """Mirror a collection and print every state change."""
    config = load_config(args.config)

    try:
        client = await open_client(config)
    except (AuthError, ClientResponseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    sync = CollectionSynchronizer(
        client,
        args.collection,
        filter=args.filter,
        sort=args.sort,
        expand=args.expand,
        realtime=not args.no_realtime,
        subscribe_policy=subscribe_policy(config),
        retry=retry_policy(config),
    )
    sync.add_listener(print_state)
    watcher = await start_watcher(client, config)

    try:
        async with sync:
            await _run_until_interrupted()
    finally:
        await close_all(client, watcher)

    return 0


async def cmd_get(args: argparse.Namespace) -> int:
    """Mirror one record and print every state change."""
    config = load_config(args.config)

    try:
        client = await open_client(config)
    except (AuthError, ClientResponseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    sync = RecordSynchronizer(
        client,
        args.collection,
        args.record_id,
        expand=args.expand,
        realtime=not args.no_realtime,
        retry=retry_policy(config),
    )
    sync.add_listener(print_state)
    watcher = await start_watcher(client, config)

    try:
        async with sync:
            await _run_until_interrupted()
    finally:
        await close_all(client, watcher)

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Check connectivity status."""
    config = load_config(args.config)

    client = PocketBaseClient(config.server.url, timeout=config.server.timeout)
    try:
        server_ok = await client.health_check()
    finally:
        await client.close()

    feed = MQTTChangeFeed(config.realtime)
    broker_ok = await feed.check_connection() if config.realtime.enabled else False

    status_data: dict[str, Any] = {
        "timestamp": datetime.now().isoformat(),
        "server": {"url": config.server.url, "healthy": server_ok},
        "realtime": {
            "enabled": config.realtime.enabled,
            "broker": config.realtime.broker,
            "port": config.realtime.port,
            "topic_prefix": config.realtime.topic_prefix,
            "reachable": broker_ok,
        },
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("pocketsync Status Check")
        print("=======================")
        print(f"Server ({config.server.url}):")
        print(f"  Status: {'Healthy' if server_ok else 'Not reachable'}")
        print()
        print(f"Realtime ({config.realtime.broker}:{config.realtime.port}):")
        if not config.realtime.enabled:
            print("  Status: Disabled")
        elif broker_ok:
            print("  Status: Reachable")
            print(f"  Topic prefix: {config.realtime.topic_prefix}")
        else:
            print("  Status: Not reachable")
            print("  Make sure the MQTT broker is running")

    return 0 if server_ok else 1


async def cmd_dashboard(args: argparse.Namespace) -> int:
    """Start the web dashboard."""
    config = load_config(args.config)

    try:
        from .dashboard import create_app

        import uvicorn
    except ImportError as e:
        print(f"Dashboard dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install pocketsync[dashboard]", file=sys.stderr)
        return 1

    try:
        client = await open_client(config)
    except (AuthError, ClientResponseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    records = CollectionSynchronizer(
        client,
        config.dashboard.collection,
        filter=config.dashboard.filter,
        sort=config.dashboard.sort,
        expand=config.dashboard.expand,
        realtime=config.realtime.enabled,
        subscribe_policy=subscribe_policy(config),
        retry=retry_policy(config),
    )

    print("Starting pocketsync Dashboard")
    print(f"Collection: {config.dashboard.collection}")
    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port
    print(f"URL: http://{host}:{port}")

    app = create_app(config, records=records)
    watcher = await start_watcher(client, config)

    try:
        async with records:
            verbose = getattr(args, "verbose", False)
            config_uvicorn = uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level="info" if verbose else "warning",
            )
            server = uvicorn.Server(config_uvicorn)
            await server.serve()
    finally:
        await close_all(client, watcher)

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pocketsync",
        description="Realtime-synced client for a PocketBase-compatible backend",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Check connectivity status")
    status_parser.set_defaults(func=cmd_status)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Mirror a collection")
    watch_parser.add_argument("collection", help="Collection name")
    watch_parser.add_argument("--filter", default="", help="Filter expression")
    watch_parser.add_argument("--sort", default="-created", help="Sort expression")
    watch_parser.add_argument("--expand", default="", help="Relations to expand")
    watch_parser.add_argument(
        "--no-realtime", action="store_true", help="Fetch once, no live updates"
    )
    watch_parser.set_defaults(func=cmd_watch)

    # Get command
    get_parser = subparsers.add_parser("get", help="Mirror a single record")
    get_parser.add_argument("collection", help="Collection name")
    get_parser.add_argument("record_id", help="Record id")
    get_parser.add_argument("--expand", default="", help="Relations to expand")
    get_parser.add_argument(
        "--no-realtime", action="store_true", help="Fetch once, no live updates"
    )
    get_parser.set_defaults(func=cmd_get)

    # Dashboard command
    dashboard_parser = subparsers.add_parser("dashboard", help="Start the web dashboard")
    dashboard_parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: from config)",
    )
    dashboard_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: from config)",
    )
    dashboard_parser.set_defaults(func=cmd_dashboard)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
