"""i3 IPC connection manager with resilient reconnection."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from i3ipc import Event, aio
from i3ipc.events import IpcBaseEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[aio.Connection, IpcBaseEvent], Awaitable[None]]

MAX_RECONNECT_DELAY = 5.0


class ResilientI3Connection:
    """Manages the i3 IPC connection with retry on connect and auto-reconnect."""

    def __init__(self, socket_path: Optional[str] = None) -> None:
        """Initialize connection manager.

        Args:
            socket_path: Explicit i3 socket path (auto-detected from I3SOCK if None)
        """
        self.socket_path = socket_path
        self.conn: Optional[aio.Connection] = None
        self.is_shutting_down = False
        self.reconnect_delay = 0.1

    @property
    def is_connected(self) -> bool:
        return self.conn is not None and not self.is_shutting_down

    async def connect_with_retry(self, max_attempts: int = 10) -> aio.Connection:
        """Connect to i3, backing off exponentially between failed attempts.

        Raises:
            ConnectionError: If every attempt failed
        """
        delay = self.reconnect_delay
        for attempt in range(1, max_attempts + 1):
            try:
                conn = await aio.Connection(socket_path=self.socket_path, auto_reconnect=True).connect()
                version = await conn.get_version()
            except Exception as e:
                logger.warning(f"i3 connect {attempt}/{max_attempts} failed: {e}")
                if attempt < max_attempts:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, MAX_RECONNECT_DELAY)
                continue

            logger.info(f"Connected to i3 {version.human_readable}")
            self.conn = conn
            return conn

        raise ConnectionError(f"Failed to connect to i3 after {max_attempts} attempts")

    def subscribe(self, event_type: Union[Event, str], handler: EventHandler) -> None:
        """Register an async handler for an i3 event type.

        i3ipc.aio subscribes to the base event automatically on registration.
        """
        if not self.conn:
            logger.error("Cannot subscribe: not connected")
            return

        self.conn.on(event_type, handler)
        logger.debug(f"Registered handler for {event_type} events")

    async def handle_shutdown_event(self, conn: aio.Connection, event: IpcBaseEvent) -> None:
        """Handle i3 shutdown/restart events.

        On restart i3ipc reconnects by itself; on exit the daemon shuts down.
        """
        change = getattr(event, "change", None)

        if change == "restart":
            logger.info("i3 is restarting - will auto-reconnect")
        elif change == "exit":
            logger.info("i3 is exiting - shutting down daemon")
            self.is_shutting_down = True
            conn.main_quit()
        else:
            logger.warning(f"Unknown shutdown change: {change}")

    async def main(self) -> None:
        """Run the i3 event loop until the connection closes."""
        if not self.conn:
            logger.error("Cannot run main loop: not connected")
            return

        try:
            await self.conn.main()
        except Exception as e:
            if not self.is_shutting_down:
                logger.error(f"i3 event loop error: {e}")
                raise
            logger.info("i3 event loop stopped (shutdown)")

    def close(self) -> None:
        """Close the i3 connection."""
        if self.conn:
            self.conn.main_quit()
            self.conn = None
            logger.info("Closed i3 connection")
