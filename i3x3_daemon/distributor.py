"""Workspace distributor: the background redistribution loop.

The distributor wakes on a fixed timer, on trigger pulses, or on a stop
request. Every timer or trigger wake runs one redistribution pass, which
places each workspace on the output it is expected to be on and then puts
focus back where the user left it. Failed passes are retried on the next wake
until a threshold of consecutive failures is reached.
"""

import asyncio
import enum
import logging
import threading
from typing import Optional

from .constants import DISTRIBUTION_INTERVAL, FAILURE_THRESHOLD, TRIGGER_QUEUE_SIZE
from .errors import DistributionError, FatalDistributionError
from .models import PassResult
from .queries import (
    I3Queries,
    active_outputs,
    current_workspace_num,
    expected_assignments,
    focused_workspace,
    sort_primary_first,
)

logger = logging.getLogger(__name__)


class TriggerChannel:
    """Bounded queue of redistribution requests.

    Pulses carry no payload. When the queue is full a new pulse is coalesced
    into the pending ones, which already guarantee a later pass. pulse() must
    be called from the event loop thread.
    """

    def __init__(self, maxsize: int = TRIGGER_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.coalesced = 0

    def pulse(self) -> bool:
        """Request a redistribution pass.

        Returns:
            True if queued, False if coalesced into a pending pulse
        """
        try:
            self._queue.put_nowait(None)
            return True
        except asyncio.QueueFull:
            self.coalesced += 1
            logger.debug(f"Trigger queue full ({self._queue.maxsize}), pulse coalesced")
            return False

    async def get(self) -> None:
        await self._queue.get()

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class Wake(enum.Enum):
    TIMER = "timer"
    TRIGGER = "trigger"
    STOP = "stop"


class WorkspaceDistributor:
    """Long-running task keeping workspaces on their expected outputs."""

    def __init__(
        self,
        queries: I3Queries,
        triggers: Optional[TriggerChannel] = None,
        interval: float = DISTRIBUTION_INTERVAL,
        threshold: int = FAILURE_THRESHOLD,
    ) -> None:
        """Initialize distributor.

        Args:
            queries: Output query layer bound to an i3 connection
            triggers: Channel of trigger pulses (a private one is created if None)
            interval: Seconds between timer-driven passes
            threshold: Consecutive failed passes before giving up
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if threshold < 1:
            raise ValueError(f"threshold must be at least 1, got {threshold}")

        self.queries = queries
        self.triggers = triggers if triggers is not None else TriggerChannel()
        self.interval = interval
        self.threshold = threshold
        self.consecutive_failures = 0
        self.pass_count = 0

        # Written by start(), read by stop() from any thread.
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None

        self._pass_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._stop_event is not None

    async def start(self) -> None:
        """Run the distribution loop until stopped or fatally failing.

        Returns normally when stop() is called.

        Raises:
            FatalDistributionError: After `threshold` consecutive failed passes
            RuntimeError: If the distributor is already running
        """
        with self._lock:
            if self._stop_event is not None:
                raise RuntimeError("Distributor is already running")
            self._loop = asyncio.get_running_loop()
            self._stop_event = asyncio.Event()
            stop_event = self._stop_event

        logger.info(
            f"Distributor started (interval: {self.interval}s, threshold: {self.threshold})"
        )
        try:
            await self._run(stop_event)
        finally:
            with self._lock:
                self._loop = None
                self._stop_event = None
            logger.info("Distributor stopped")

    def stop(self) -> None:
        """Request the loop to exit at its next wake.

        Idempotent, and a no-op if the distributor is not running. Safe to call
        from other threads and from signal handlers.
        """
        with self._lock:
            loop, stop_event = self._loop, self._stop_event

        if loop is None or stop_event is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            stop_event.set()
        else:
            loop.call_soon_threadsafe(stop_event.set)

    async def _run(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        self.consecutive_failures = 0
        next_tick = loop.time() + self.interval

        while True:
            wake = await self._wait(stop_event, next_tick)
            if wake is Wake.STOP:
                return

            if wake is Wake.TIMER:
                # Ticks missed while a pass was running are dropped.
                now = loop.time()
                while next_tick <= now:
                    next_tick += self.interval

            logger.debug(f"Redistribution requested by {wake.value}")

            try:
                result = await self.redistribute()
            except DistributionError as e:
                self.consecutive_failures += 1
                if self.consecutive_failures >= self.threshold:
                    logger.error(
                        f"Redistribution failed (attempt {self.consecutive_failures}/{self.threshold}), giving up: {e}"
                    )
                    raise FatalDistributionError(self.consecutive_failures, self.threshold, e) from e

                logger.warning(
                    f"Redistribution failed (attempt {self.consecutive_failures}/{self.threshold}): {e}"
                )
                continue

            self.consecutive_failures = 0
            if result.move_count:
                logger.info(
                    f"Redistribution moved {result.move_count} workspace(s) "
                    f"across {len(result.active_outputs)} output(s)"
                )

    async def _wait(self, stop_event: asyncio.Event, next_tick: float) -> Wake:
        """Block until the timer fires, a pulse arrives, or stop is requested."""
        if stop_event.is_set():
            return Wake.STOP

        timeout = max(0.0, next_tick - asyncio.get_running_loop().time())
        stop_task = asyncio.ensure_future(stop_event.wait())
        trigger_task = asyncio.ensure_future(self.triggers.get())

        try:
            done, _ = await asyncio.wait(
                {stop_task, trigger_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            pending = [t for t in (stop_task, trigger_task) if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if stop_task in done:
            return Wake.STOP
        if trigger_task in done:
            return Wake.TRIGGER
        return Wake.TIMER

    async def redistribute(self) -> PassResult:
        """Run one redistribution pass.

        Passes never overlap: a call made while another pass is running waits
        for it to finish.

        Raises:
            QueryError: If outputs or workspaces could not be fetched
            NoActiveOutputsError: If i3 reports no active output
            CommandError: If a move or the final focus switch failed
        """
        async with self._pass_lock:
            result = await self._redistribute()
            self.pass_count += 1
            return result

    async def _redistribute(self) -> PassResult:
        outputs = await self.queries.list_outputs()
        workspaces = await self.queries.list_workspaces()

        assignments = expected_assignments(outputs, workspaces)
        ordered = sort_primary_first(active_outputs(outputs))
        focused = focused_workspace(workspaces)

        result = PassResult(
            active_outputs=[o.name for o in ordered],
            focused_workspace=current_workspace_num(workspaces),
            focused_name=focused.name if focused and not focused.is_numbered else None,
        )

        try:
            for assignment in assignments:
                if not assignment.needs_move:
                    continue
                logger.info(
                    f"Moving workspace {assignment.workspace_num}: "
                    f"{assignment.current_output} -> {assignment.expected_output}"
                )
                await self.queries.move_workspace_to_output(
                    assignment.workspace_num, assignment.expected_output
                )
                result.moves.append(assignment)
        except DistributionError:
            # Partial redistribution is left in place; the next pass finishes it.
            await self._restore_focus_after_abort(result)
            raise

        await self._restore_focus(result)
        return result

    async def _restore_focus(self, result: PassResult) -> None:
        # Named workspaces report num -1, which i3 cannot switch to by number.
        if result.focused_name is not None:
            await self.queries.switch_to_workspace_name(result.focused_name)
        else:
            await self.queries.switch_to_workspace(result.focused_workspace)

    async def _restore_focus_after_abort(self, result: PassResult) -> None:
        try:
            await self._restore_focus(result)
        except DistributionError as e:
            logger.warning(f"Failed to restore focus after aborted pass: {e}")
