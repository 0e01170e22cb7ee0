"""Main daemon entry point with systemd integration.

This module wires the i3 connection, trigger sources and the workspace
distributor together, and provides systemd integration (sd_notify, watchdog,
journald logging).
"""

import asyncio
import logging
import os
import signal
import sys
from functools import partial
from typing import Mapping, Optional

try:
    from systemd import journal, daemon as sd_daemon
    SYSTEMD_AVAILABLE = True
except ImportError:
    SYSTEMD_AVAILABLE = False

from i3ipc import Event, aio
from i3ipc.events import IpcBaseEvent

from . import __version__
from .connection import ResilientI3Connection
from .constants import REDISTRIBUTE_TICK, SYSLOG_IDENTIFIER
from .distributor import TriggerChannel, WorkspaceDistributor
from .errors import FatalDistributionError
from .models import DaemonConfig
from .queries import I3Queries

logger = logging.getLogger(__name__)


class SystemdNotifier:
    """sd_notify state reporting; every call is a no-op outside systemd."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        environ = os.environ if environ is None else environ
        self.watchdog_interval: Optional[float] = None

        watchdog_usec = environ.get("WATCHDOG_USEC")
        if SYSTEMD_AVAILABLE and watchdog_usec:
            # Three pings per systemd watchdog period
            self.watchdog_interval = int(watchdog_usec) / 3_000_000
            logger.info(f"Watchdog pings every {self.watchdog_interval:.1f}s")

    def notify(self, state: str) -> None:
        if SYSTEMD_AVAILABLE:
            sd_daemon.notify(state)
            logger.debug(f"sd_notify {state}")

    def ready(self) -> None:
        self.notify("READY=1")

    def stopping(self) -> None:
        self.notify("STOPPING=1")

    async def watchdog_loop(self) -> None:
        """Ping the systemd watchdog until cancelled. Returns at once if disabled."""
        if not self.watchdog_interval:
            return
        while True:
            await asyncio.sleep(self.watchdog_interval)
            self.notify("WATCHDOG=1")


async def on_output(
    conn: aio.Connection,
    event: IpcBaseEvent,
    triggers: TriggerChannel,
) -> None:
    """Output added, removed or changed: request a redistribution."""
    logger.info(f"Output event ({getattr(event, 'change', 'unspecified')}), requesting redistribution")
    triggers.pulse()


async def on_tick(
    conn: aio.Connection,
    event: IpcBaseEvent,
    triggers: TriggerChannel,
) -> None:
    """Tick with the redistribute payload: request a redistribution."""
    if getattr(event, "first", False):
        return
    if getattr(event, "payload", None) == REDISTRIBUTE_TICK:
        logger.info("Redistribution requested via tick")
        triggers.pulse()


class I3x3Daemon:
    """Main daemon class."""

    def __init__(self, config: Optional[DaemonConfig] = None) -> None:
        self.config = config or DaemonConfig()
        self.connection: Optional[ResilientI3Connection] = None
        self.queries: Optional[I3Queries] = None
        self.triggers: Optional[TriggerChannel] = None
        self.distributor: Optional[WorkspaceDistributor] = None
        self.notifier: Optional[SystemdNotifier] = None
        self.shutdown_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def initialize(self) -> None:
        """Connect to i3 and build the distributor."""
        logger.info(f"Initializing i3x3 daemon {__version__}...")
        self._loop = asyncio.get_running_loop()

        self.connection = ResilientI3Connection()
        try:
            await self.connection.connect_with_retry(max_attempts=10)
        except ConnectionError as e:
            logger.error(f"Failed to connect to i3: {e}")
            raise

        self.queries = I3Queries(
            self.connection.conn,
            timeout=self.config.command_timeout_seconds,
        )
        self.triggers = TriggerChannel(maxsize=self.config.trigger_queue_size)
        self.distributor = WorkspaceDistributor(
            self.queries,
            triggers=self.triggers,
            interval=self.config.interval_seconds,
            threshold=self.config.failure_threshold,
        )
        self.notifier = SystemdNotifier()

        logger.info("Daemon initialization complete")

    def register_event_handlers(self) -> None:
        """Register i3 event handlers that feed the trigger channel."""
        if not self.connection or not self.connection.conn:
            logger.error("Cannot register handlers: not connected")
            return

        if self.config.redistribute_on_output_events:
            self.connection.subscribe(Event.OUTPUT, partial(on_output, triggers=self.triggers))
        self.connection.subscribe(Event.TICK, partial(on_tick, triggers=self.triggers))
        self.connection.subscribe(Event.SHUTDOWN, self.connection.handle_shutdown_event)

        logger.info("Registered i3 event handlers")

    async def run(self) -> None:
        """Run until shutdown, i3 exit, or a fatal distribution failure.

        Raises:
            FatalDistributionError: If the distributor gave up
        """
        # Bring the layout in line right away instead of after the first tick.
        self.triggers.pulse()

        distributor_task = asyncio.create_task(self.distributor.start(), name="distributor")
        i3_task = asyncio.create_task(self.connection.main(), name="i3-events")
        shutdown_task = asyncio.create_task(self.shutdown_event.wait(), name="shutdown")
        watchdog_task = asyncio.create_task(self.notifier.watchdog_loop(), name="watchdog")

        self.notifier.ready()

        try:
            done, _ = await asyncio.wait(
                {distributor_task, i3_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if i3_task in done and i3_task.exception() is not None:
                logger.error(f"i3 event loop terminated: {i3_task.exception()}")
        finally:
            self.distributor.stop()
            for task in (i3_task, shutdown_task, watchdog_task):
                task.cancel()
            await asyncio.gather(i3_task, shutdown_task, watchdog_task, return_exceptions=True)

        await distributor_task

    async def shutdown(self) -> None:
        """Stop the distributor and close the i3 connection."""
        logger.info("Shutting down daemon...")
        if self.notifier:
            self.notifier.stopping()
        if self.distributor:
            self.distributor.stop()
        if self.connection:
            self.connection.close()
        logger.info("Daemon shutdown complete")

    def request_shutdown(self) -> None:
        """Thread-safe shutdown request (used by signal handlers)."""
        if self.distributor:
            self.distributor.stop()
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.shutdown_event.set)

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.request_shutdown()

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)


def setup_logging(log_level: str = "INFO") -> None:
    """Setup logging to systemd journal or stderr."""
    level = log_level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if SYSTEMD_AVAILABLE:
        handler = journal.JournalHandler(SYSLOG_IDENTIFIER=SYSLOG_IDENTIFIER)
    else:
        handler = logging.StreamHandler(sys.stderr)

    formatter = logging.Formatter("%(levelname)s [%(name)s] %(message)s")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logger.info(f"Logging configured: level={level}")


async def main_async(config: DaemonConfig) -> int:
    """Async main function.

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    daemon = I3x3Daemon(config)

    try:
        await daemon.initialize()
        daemon.setup_signal_handlers()
        daemon.register_event_handlers()
        await daemon.run()
        return 0

    except FatalDistributionError as e:
        logger.error(f"Fatal: {e}")
        return 1

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        await daemon.shutdown()


def run_daemon(config: DaemonConfig) -> int:
    """Configure logging and run the daemon to completion."""
    setup_logging(config.log_level)

    logger.info("i3x3 daemon starting...")
    logger.info(f"PID: {os.getpid()}")

    try:
        return asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
