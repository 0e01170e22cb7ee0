"""i3x3 Workspace Distribution Daemon

Keeps i3 workspaces on predictable outputs.

This package provides a long-running daemon that:
- Maintains a persistent IPC connection to the i3 window manager
- Redistributes workspaces across active outputs on a timer
- Reacts to output changes and explicit tick requests
- Restores the user's focused workspace after every pass

License: MIT
Version: 1.0.0
"""

__version__ = "1.0.0"
