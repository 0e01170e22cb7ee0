"""Data models for the i3x3 daemon.

Output and Workspace are immutable snapshots taken from i3 IPC replies. They
are fetched fresh on every redistribution pass and never cached.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    COMMAND_TIMEOUT,
    DISTRIBUTION_INTERVAL,
    FAILURE_THRESHOLD,
    TRIGGER_QUEUE_SIZE,
)


class Output(BaseModel):
    """Output (display) information from i3 IPC GET_OUTPUTS."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Output identifier (eDP-1, HDMI-1, etc.)")
    active: bool = Field(False, description="Whether output is currently in use")
    primary: bool = Field(False, description="Whether output is marked as primary")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate output name is non-empty."""
        if not v or v.strip() == "":
            raise ValueError("Output name cannot be empty")
        return v

    @classmethod
    def from_i3_output(cls, output: Any) -> "Output":
        """Create from an i3ipc OutputReply object."""
        return cls(
            name=output.name,
            active=bool(getattr(output, "active", False)),
            primary=bool(getattr(output, "primary", False)),
        )


class Workspace(BaseModel):
    """Workspace information from i3 IPC GET_WORKSPACES.

    Named workspaces without a leading number report num == -1.
    """

    model_config = ConfigDict(frozen=True)

    num: int = Field(..., description="Workspace number used for assignment")
    name: str = Field("", description="Workspace name (e.g. '1', '1:web')")
    output: str = Field(..., description="Name of the output the workspace is on")
    focused: bool = Field(False, description="Whether workspace has focus")

    @property
    def is_numbered(self) -> bool:
        return self.num >= 1

    @classmethod
    def from_i3_workspace(cls, workspace: Any) -> "Workspace":
        """Create from an i3ipc WorkspaceReply object."""
        return cls(
            num=workspace.num,
            name=getattr(workspace, "name", "") or "",
            output=workspace.output,
            focused=bool(getattr(workspace, "focused", False)),
        )


class Assignment(BaseModel):
    """Expected placement of one workspace for the current active outputs."""

    model_config = ConfigDict(frozen=True)

    workspace_num: int = Field(..., ge=1)
    current_output: str
    expected_output: str
    expected_index: int = Field(..., ge=1, description="1-based index into the active output set")

    @property
    def needs_move(self) -> bool:
        return self.current_output != self.expected_output


class PassResult(BaseModel):
    """Outcome of one successful redistribution pass."""

    moves: List[Assignment] = Field(default_factory=list)
    active_outputs: List[str] = Field(default_factory=list)
    focused_workspace: int = 1
    focused_name: Optional[str] = Field(None, description="Set when focus was on a named workspace")

    @property
    def move_count(self) -> int:
        return len(self.moves)


class DaemonConfig(BaseModel):
    """Runtime configuration for the distributor and daemon."""

    interval_seconds: float = Field(DISTRIBUTION_INTERVAL, gt=0)
    failure_threshold: int = Field(FAILURE_THRESHOLD, ge=1)
    command_timeout_seconds: float = Field(COMMAND_TIMEOUT, gt=0)
    trigger_queue_size: int = Field(TRIGGER_QUEUE_SIZE, ge=1)
    redistribute_on_output_events: bool = True
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    def with_overrides(
        self,
        interval_seconds: Optional[float] = None,
        failure_threshold: Optional[int] = None,
        command_timeout_seconds: Optional[float] = None,
    ) -> "DaemonConfig":
        """Return a validated copy with any non-None values replaced."""
        data = self.model_dump()
        if interval_seconds is not None:
            data["interval_seconds"] = interval_seconds
        if failure_threshold is not None:
            data["failure_threshold"] = failure_threshold
        if command_timeout_seconds is not None:
            data["command_timeout_seconds"] = command_timeout_seconds
        return DaemonConfig(**data)
