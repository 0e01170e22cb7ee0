"""Configuration loader for the i3x3 daemon.

Settings come from ~/.config/i3x3/config.json, then I3X3_* environment
variables, then command-line flags (highest priority).
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import ValidationError

from .constants import ConfigPaths
from .errors import ConfigError, ErrorCode
from .models import DaemonConfig

logger = logging.getLogger(__name__)

# Environment variable -> DaemonConfig field
ENV_OVERRIDES: Dict[str, str] = {
    "I3X3_INTERVAL": "interval_seconds",
    "I3X3_THRESHOLD": "failure_threshold",
    "I3X3_TIMEOUT": "command_timeout_seconds",
    "LOG_LEVEL": "log_level",
}


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DaemonConfig:
    """Load daemon configuration.

    Args:
        config_file: Path to config JSON (defaults to ~/.config/i3x3/config.json)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated DaemonConfig

    Raises:
        ConfigError: If the file is unreadable, not valid JSON, or fails validation
    """
    path = config_file or ConfigPaths.CONFIG_FILE
    env = os.environ if environ is None else environ

    data: Dict[str, object] = {}
    if path.exists():
        try:
            with open(path) as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Invalid JSON in config file {path}: {e}",
                code=ErrorCode.CONFIG_LOAD_FAILED,
                context={"path": str(path)},
            ) from e
        except OSError as e:
            raise ConfigError(
                f"Failed to read config file {path}: {e}",
                code=ErrorCode.CONFIG_LOAD_FAILED,
                context={"path": str(path)},
            ) from e

        if not isinstance(loaded, dict):
            raise ConfigError(
                f"Config file {path} must contain a JSON object",
                context={"path": str(path)},
            )
        data.update(loaded)
        logger.debug(f"Loaded config from {path}")
    else:
        logger.debug(f"Config file does not exist: {path}, using defaults")

    for var, field in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data[field] = value
            logger.debug(f"Config override from ${var}: {field}={value}")

    try:
        return DaemonConfig(**data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid configuration: {e}",
            context={"path": str(path)},
        ) from e
