"""Output query layer: i3 IPC queries, commands and assignment helpers.

The I3Queries methods perform exactly one fallible IPC round trip each (two for
move_workspace_to_output) and translate every failure into QueryError or
CommandError. The module-level helpers are pure.
"""

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from .constants import COMMAND_TIMEOUT
from .errors import CommandError, ErrorCode, NoActiveOutputsError, QueryError
from .models import Assignment, Output, Workspace

logger = logging.getLogger(__name__)


class I3Queries:
    """Queries and commands against an i3ipc.aio connection."""

    def __init__(self, conn: Any, timeout: float = COMMAND_TIMEOUT) -> None:
        """Initialize query layer.

        Args:
            conn: i3ipc.aio.Connection (or compatible) instance
            timeout: Seconds before an IPC call is treated as failed
        """
        self.conn = conn
        self.timeout = timeout

    async def list_outputs(self) -> List[Output]:
        """Fetch all outputs from i3, active and inactive.

        Raises:
            QueryError: If i3 is unreachable or the reply is malformed
        """
        replies = await self._query("get_outputs")
        try:
            return [Output.from_i3_output(o) for o in replies]
        except Exception as e:
            raise QueryError(f"Malformed output reply: {e}") from e

    async def list_workspaces(self) -> List[Workspace]:
        """Fetch all workspaces from i3, not just visible or focused ones.

        Raises:
            QueryError: If i3 is unreachable or the reply is malformed
        """
        replies = await self._query("get_workspaces")
        try:
            return [Workspace.from_i3_workspace(ws) for ws in replies]
        except Exception as e:
            raise QueryError(f"Malformed workspace reply: {e}") from e

    async def move_container_to_workspace(self, workspace_num: int) -> None:
        """Move the focused container to a workspace without following it.

        i3 silently ignores a workspace number it cannot resolve.
        """
        await self._command(f"move container to workspace number {workspace_num}")

    async def switch_to_workspace(self, workspace_num: int) -> None:
        """Switch focus to the given workspace."""
        await self._command(f"workspace number {workspace_num}")

    async def switch_to_workspace_name(self, name: str) -> None:
        """Switch focus to a workspace by its full name.

        Used for named workspaces, which have no number to switch by.
        """
        await self._command(f"workspace {quote_i3_string(name)}")

    async def move_workspace_to_output(self, workspace_num: int, output_name: str) -> None:
        """Move a workspace to another output.

        i3 can only move the focused workspace, so this switches to it first.
        Focus is left on the moved workspace; callers restore it. A failed
        preliminary switch is raised rather than followed by a move of
        whichever workspace happens to be focused.
        """
        await self.switch_to_workspace(workspace_num)
        await self._command(f"move workspace to output {quote_i3_string(output_name)}")

    async def _query(self, method: str) -> List[Any]:
        try:
            return await asyncio.wait_for(getattr(self.conn, method)(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise QueryError(
                f"i3 {method} timed out after {self.timeout:.1f}s",
                code=ErrorCode.IPC_TIMEOUT,
                context={"method": method},
            ) from e
        except Exception as e:
            raise QueryError(f"i3 {method} failed: {e}", context={"method": method}) from e

    async def _command(self, command: str) -> None:
        logger.debug(f"Executing i3 command: {command}")
        try:
            replies = await asyncio.wait_for(self.conn.command(command), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CommandError(
                f"i3 command '{command}' timed out after {self.timeout:.1f}s",
                code=ErrorCode.IPC_TIMEOUT,
                context={"command": command},
            ) from e
        except Exception as e:
            raise CommandError(f"i3 command '{command}' failed: {e}", context={"command": command}) from e

        if not replies:
            raise CommandError(f"i3 command '{command}' returned no reply", context={"command": command})

        for reply in replies:
            if not getattr(reply, "success", False):
                error = getattr(reply, "error", None) or "unknown error"
                raise CommandError(
                    f"i3 command '{command}' was rejected: {error}",
                    context={"command": command},
                )


def quote_i3_string(value: str) -> str:
    """Quote a value for use as an i3 command argument.

    Backslashes and double quotes are escaped, so output and workspace names
    containing them reach i3 intact.
    """
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def focused_workspace(workspaces: Sequence[Workspace]) -> Optional[Workspace]:
    """The focused workspace, or None if i3 reports none."""
    for workspace in workspaces:
        if workspace.focused:
            return workspace
    return None


def active_outputs(outputs: Sequence[Output]) -> List[Output]:
    """Return the active outputs, preserving input order."""
    return [o for o in outputs if o.active]


def active_outputs_count(outputs: Sequence[Output]) -> int:
    return len(active_outputs(outputs))


def sort_primary_first(outputs: Sequence[Output]) -> List[Output]:
    """Stable sort placing the primary output first.

    Non-primary outputs keep their relative query order.
    """
    return sorted(outputs, key=lambda o: not o.primary)


def current_workspace_num(workspaces: Sequence[Workspace]) -> int:
    """Number of the focused workspace, or 1 if none is focused."""
    workspace = focused_workspace(workspaces)
    return workspace.num if workspace else 1


def max_workspace_num(workspaces: Sequence[Workspace]) -> int:
    """Highest workspace number, or 0 for an empty sequence."""
    return max((ws.num for ws in workspaces), default=0)


def expected_output_index(workspace_num: int, active_output_count: int) -> int:
    """1-based index of the output a workspace belongs on.

    Workspaces are dealt round-robin across the active outputs: with two
    outputs, odd workspaces land on output 1 and even ones on output 2.
    active_output_count must be positive.

    Examples:
        >>> expected_output_index(1, 2)
        1
        >>> expected_output_index(4, 3)
        1
        >>> expected_output_index(6, 3)
        3
    """
    return ((workspace_num - 1) % active_output_count) + 1


def expected_assignments(
    outputs: Sequence[Output],
    workspaces: Sequence[Workspace],
) -> List[Assignment]:
    """Compute the expected output of every numbered workspace.

    Raises:
        NoActiveOutputsError: If no output is active
    """
    ordered = sort_primary_first(active_outputs(outputs))
    if not ordered:
        raise NoActiveOutputsError(
            "No active outputs found",
            context={"outputs": [o.name for o in outputs]},
        )

    assignments = []
    for workspace in workspaces:
        if not workspace.is_numbered:
            continue
        index = expected_output_index(workspace.num, len(ordered))
        assignments.append(Assignment(
            workspace_num=workspace.num,
            current_output=workspace.output,
            expected_output=ordered[index - 1].name,
            expected_index=index,
        ))
    return assignments
