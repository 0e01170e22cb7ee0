"""Centralized configuration paths and constants for the i3x3 daemon."""

from pathlib import Path
from typing import Final

# Seconds between automatic redistributions, independent of trigger pulses.
DISTRIBUTION_INTERVAL: Final[float] = 15.0

# Consecutive failed passes before the distributor gives up.
FAILURE_THRESHOLD: Final[int] = 5

# Upper bound for a single i3 IPC round trip.
COMMAND_TIMEOUT: Final[float] = 5.0

TRIGGER_QUEUE_SIZE: Final[int] = 16

# Payload of the tick event that requests a redistribution
# (i3-msg -t send_tick i3x3::redistribute).
REDISTRIBUTE_TICK: Final[str] = "i3x3::redistribute"

SYSLOG_IDENTIFIER: Final[str] = "i3x3-daemon"


class ConfigPaths:
    """Centralized configuration paths.

    All paths are computed once at import time based on user's home directory.
    """

    HOME: Final[Path] = Path.home()
    CONFIG_DIR: Final[Path] = HOME / ".config" / "i3x3"
    CONFIG_FILE: Final[Path] = CONFIG_DIR / "config.json"
