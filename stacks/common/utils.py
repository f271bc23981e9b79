"""Module for common utility functions used across the services stacks.

This module provides helpers for reading files the topology embeds at
synthesis time, such as the fleet bootstrap payload.
"""

import json
import logging
from pathlib import Path
from typing import Any

from stacks.topology.errors import TopologyConfigurationError

logger = logging.getLogger(__name__)


def load_bootstrap_payload(path: Path) -> str:
    """Read the shell payload executed once on every new fleet member.

    Args:
        path: Location of the script.

    Returns:
        The script text, passed through unchanged.

    Raises:
        TopologyConfigurationError: If the file is missing or empty.
    """
    try:
        payload = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        msg = f"Bootstrap payload {path} does not exist"
        raise TopologyConfigurationError(msg) from e

    if not payload.strip():
        msg = f"Bootstrap payload {path} is empty"
        raise TopologyConfigurationError(msg)

    logger.info("Loaded bootstrap payload %s (%d bytes)", path, len(payload))
    return payload


def load_json_config(file_path: str, base_path: Path) -> dict[str, Any]:
    """Load JSON configuration from file relative to the base path.

    Args:
        file_path: Path to the JSON configuration file.
        base_path: Base directory to resolve the file path against.

    Returns:
        Dictionary containing the loaded JSON configuration.

    Raises:
        TopologyConfigurationError: If the file is missing or not valid JSON.
    """
    config_path = base_path / file_path
    try:
        with open(config_path) as f:
            return json.load(f)
    except FileNotFoundError as e:
        msg = f"Configuration file {config_path} does not exist"
        raise TopologyConfigurationError(msg) from e
    except json.JSONDecodeError as e:
        msg = f"Configuration file {config_path} is not valid JSON: {e}"
        raise TopologyConfigurationError(msg) from e
