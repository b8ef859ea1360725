"""Main entry point for OPC UA Poller."""

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Optional

from . import __version__
from .config import Config, load_config
from .connection import default_client_factory
from .exceptions import ConfigurationError, OpcUaPollerError
from .influxdb_client import InfluxClient
from .logging_setup import setup_logging
from .mqtt_client import MQTTClient
from .poller import OpcUaPoller
from .sink import RecordSink
from .stats import ReadCounters

logger = logging.getLogger(__name__)


class Application:
    """Main application class with graceful shutdown handling."""

    def __init__(self, config: Config, client_factory=default_client_factory):
        """Initialize the application.

        Args:
            config: Loaded configuration.
            client_factory: Builds the asyncua client (replaced in tests).
        """
        self.config = config
        self.mqtt: Optional[MQTTClient] = None
        self.influx: Optional[InfluxClient] = None
        self.counters = ReadCounters(config.opcua.endpoint)
        self.sink = RecordSink()
        # Resolves nodes; raises ConfigurationError before any connection
        self.poller = OpcUaPoller(
            config.opcua,
            sink=self.sink,
            counters=self.counters,
            client_factory=client_factory,
        )
        self._poll_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    async def start(self) -> None:
        """Start outputs, then the poll loop."""
        logger.info("=" * 60)
        logger.info(f"OPC UA Poller v{__version__}")
        logger.info("=" * 60)

        if self.config.mqtt.enabled:
            self.mqtt = MQTTClient(self.config.mqtt)
            await self.mqtt.start()
            self.sink.mqtt = self.mqtt

        if self.config.influxdb.enabled:
            self.influx = InfluxClient(self.config.influxdb)
            await self.influx.start()
            self.sink.influx = self.influx

        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Polling {len(self.poller.slots)} node(s) on {self.config.opcua.endpoint} "
            f"every {self.config.opcua.poll_interval}s"
        )

    async def _poll_loop(self) -> None:
        """Run poll cycles back to back at poll_interval."""
        interval = self.config.opcua.poll_interval

        while True:
            started = time.monotonic()
            try:
                metrics = await self.poller.poll()
                logger.debug(f"Poll cycle: {len(metrics)} metric(s)")
            except OpcUaPollerError as e:
                logger.error(f"Poll cycle failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in poll cycle: {e}", exc_info=True)

            await self._publish_stats()

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def _publish_stats(self) -> None:
        if not self.mqtt:
            return
        try:
            await self.mqtt.publish("stats", self.counters.get_stats())
        except Exception as e:
            logger.error(f"Error publishing stats: {e}")

    async def stop(self) -> None:
        """Stop the poll loop, close the session, then stop outputs."""
        logger.info("Shutting down OPC UA Poller...")

        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        await self.poller.close()

        if self.influx:
            await self.influx.stop()

        if self.mqtt:
            await self.mqtt.stop()

        stats = self.counters.get_stats()
        logger.info(
            f"Read stats: {stats['read_success']} successful, "
            f"{stats['read_error']} failed"
        )
        if self.mqtt:
            mqtt_stats = self.mqtt.get_stats()
            logger.info(
                f"MQTT stats: {mqtt_stats['messages_published']} published, "
                f"{mqtt_stats['messages_skipped']} skipped"
            )
        if self.influx:
            influx_stats = self.influx.get_stats()
            logger.info(
                f"InfluxDB stats: {influx_stats['writes_total']} writes, "
                f"{influx_stats['writes_failed']} failures"
            )

        logger.info("OPC UA Poller stopped")

    async def run(self) -> None:
        """Run the application until shutdown signal."""
        self._shutdown_event = asyncio.Event()

        await self.start()
        await self._shutdown_event.wait()
        await self.stop()

    def shutdown(self) -> None:
        """Signal the application to shutdown."""
        logger.info("Shutdown signal received")
        if self._shutdown_event:
            self._shutdown_event.set()


def setup_signal_handlers(app: Application, loop: asyncio.AbstractEventLoop) -> None:
    """Setup signal handlers for graceful shutdown."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="OPC UA Poller - Read OPC UA nodes and publish to MQTT/InfluxDB"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: config.yaml or OPCUA_POLLER_CONFIG env)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll once, print the metrics and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


async def run_once(config: Config) -> int:
    """Run a single poll cycle and print the metrics.

    Returns:
        Process exit code.
    """
    try:
        poller = OpcUaPoller(config.opcua)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        metrics = await poller.poll()
    except OpcUaPollerError as e:
        logger.error(f"Poll failed: {e}")
        return 1
    finally:
        await poller.close()

    for metric in metrics:
        print(f"{metric.name} {metric.tags['id']}")
        for key, value in metric.fields.items():
            print(f"    {key}: {value!r}")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)

    if args.once:
        sys.exit(asyncio.run(run_once(config)))

    try:
        app = Application(config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    if sys.platform != "win32":
        setup_signal_handlers(app, loop)

    try:
        loop.run_until_complete(app.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        loop.run_until_complete(app.stop())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
