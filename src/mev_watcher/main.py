"""Main entry point for the Solana MEV Watcher."""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path

from .alerting import DetectionLogger, setup_app_logging
from .api import BundleFeed, LogFeed, RpcClient, StreamSource
from .config import Config, load_config
from .detection import DetectionEngine
from .dex import resolve_program
from .errors import FetchError
from .models import FeedKind, RawTransactionEvent, Stats

logger = logging.getLogger(__name__)


def format_stats(stats: Stats) -> str:
    return (
        f"{stats.total_analyzed} analyzed, "
        f"{stats.sandwich_attacks} sandwiches, "
        f"{stats.arbitrage_ops} arbitrages, "
        f"{stats.bundles_seen} bundles"
    )


class MevWatcher:
    """Main application class that orchestrates all components."""

    def __init__(self, config: Config):
        self.config = config
        self._tasks: list[asyncio.Task] = []

        # Initialize components
        self.rpc = RpcClient(
            config.rpc.url,
            api_key=config.rpc.api_key,
            timeout=config.rpc.fetch_timeout,
        )
        self.engine = DetectionEngine.from_config(
            config.detection,
            fetcher=self.rpc.get_transaction,
            fetch_timeout=config.rpc.fetch_timeout,
        )
        self.sources = [self._build_source(name) for name in config.stream.feeds]

        self.detection_logger = DetectionLogger(
            log_file=config.logging.file,
            log_level=config.logging.level,
            max_file_size_mb=config.logging.max_file_size_mb,
            backup_count=config.logging.backup_count,
        )
        self.engine.dispatcher.on_detection(self.detection_logger.log_detection)

    @property
    def is_connected(self) -> bool:
        return any(source.is_connected for source in self.sources)

    def _build_source(self, feed_name: str) -> StreamSource:
        """Create a stream source for a configured feed and wire it to the engine."""
        kind = FeedKind(feed_name)
        stream_config = self.config.stream

        if kind is FeedKind.BUNDLES:
            feed = BundleFeed()
            url = stream_config.bundle_ws_url or stream_config.ws_url
        elif kind is FeedKind.LOGS:
            extra = self.config.detection.extra_programs
            feed = LogFeed([resolve_program(p, extra) for p in stream_config.programs])
            url = stream_config.ws_url
        else:
            raise ValueError(f"{feed_name!r} is not a streaming feed")

        source = StreamSource(
            feed,
            url,
            stream_config,
            on_connect=self._on_connect,
            on_disconnect=self._on_disconnect,
        )
        source.on_message(self.engine.process_event)
        source.on_bundle(self.engine.process_bundle)
        return source

    async def start(self):
        """Start every configured feed and the stats reporter."""
        logger.info("Starting Solana MEV Watcher...")
        logger.info(
            f"Feeds: {', '.join(self.config.stream.feeds)}; "
            f"history={self.config.detection.history_capacity}, "
            f"sandwich_window={self.config.detection.sandwich_window_ms}ms"
        )

        self._tasks = [asyncio.create_task(source.connect()) for source in self.sources]
        self._tasks.append(asyncio.create_task(self._stats_loop()))

        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def backfill(self, address: str, limit: int = 100):
        """Replay an address's recent transactions through the engine, oldest first."""
        logger.info(f"Backfilling up to {limit} transactions for {address}...")

        try:
            records = await self.rpc.get_signatures_for_address(address, limit=limit)
        except FetchError as e:
            logger.error(f"Could not list transactions: {e}")
            return

        for record in reversed(records):
            if record.get("err") is not None or not record.get("signature"):
                continue

            block_time = record.get("blockTime")
            timestamp = (
                datetime.fromtimestamp(block_time, tz=timezone.utc)
                if block_time
                else datetime.now(timezone.utc)
            )
            await self.engine.process_event(
                RawTransactionEvent(
                    signature=record["signature"],
                    slot=int(record.get("slot") or 0),
                    timestamp=timestamp,
                    feed=FeedKind.BACKFILL,
                    program=address,
                )
            )

        logger.info(f"Backfill complete: {format_stats(self.engine.get_stats())}")

    async def stop(self):
        """Stop the watcher gracefully."""
        logger.info("Stopping Solana MEV Watcher...")

        # Close the engine first so nothing lands while sockets shut down
        self.engine.close()
        for source in self.sources:
            await source.close()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.rpc.close()

        # Log final stats
        logger.info(f"Final stats: {format_stats(self.engine.get_stats())}")
        self.detection_logger.close()

    async def _stats_loop(self):
        interval = self.config.detection.stats_interval
        while True:
            await asyncio.sleep(interval)
            logger.info(f"Stats: {format_stats(self.engine.get_stats())}")

    async def _on_connect(self):
        logger.info("Listening for DEX transactions...")

    async def _on_disconnect(self):
        logger.warning("Disconnected from upstream stream")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Solana MEV Watcher - detect sandwich attacks and arbitrage on DEX activity"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--backfill",
        metavar="ADDRESS",
        help="Analyze recent transactions of an address instead of streaming",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Number of signatures to backfill (default: 100)",
    )
    return parser.parse_args(argv)


async def main_async(args):
    """Async main function."""
    # Load configuration
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    try:
        config = load_config(config_path)
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Invalid configuration in {config_path}: {e!r}")
        sys.exit(1)

    # Override log level if debug flag is set
    if args.debug:
        config.logging.level = "DEBUG"

    # Set up logging
    setup_app_logging(config.logging.level)

    try:
        watcher = MevWatcher(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if args.backfill:
        try:
            await watcher.backfill(args.backfill, limit=args.limit)
        finally:
            await watcher.stop()
        return

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    # Start watcher in background
    watcher_task = asyncio.create_task(watcher.start())

    # Wait for shutdown signal
    await shutdown_event.wait()

    # Stop watcher
    await watcher.stop()
    watcher_task.cancel()

    try:
        await watcher_task
    except asyncio.CancelledError:
        pass


def main():
    """Main entry point."""
    args = parse_args()

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
