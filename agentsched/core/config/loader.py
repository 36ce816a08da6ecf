"""Scheduler settings: optional YAML file layered over AGENTSCHED_* env vars."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from agentsched.core.config.schema import Config

CONFIG_ENV = "AGENTSCHED_CONFIG"
DEFAULT_CONFIG = Path("config.yaml")


def load_config(config_path: str | Path | None = None) -> Config:
    """Build the scheduler ``Config``.

    The file is taken from ``config_path``, else ``$AGENTSCHED_CONFIG``,
    else ``./config.yaml`` when present. Keys found in the file are passed
    to ``Config`` as init values, so they win over ``AGENTSCHED_*``
    variables and ``.env``; anything the file leaves out falls back to
    those and then to the schema defaults.
    """
    path = _config_file(config_path)
    overrides = _read_sections(path) if path else {}
    if overrides:
        logger.debug(f"Config sections from {path}: {', '.join(sorted(overrides))}")
    return Config(**overrides)


def setup_logging(config: Config) -> None:
    """Replace the default loguru sink with one at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level.upper())


def _config_file(config_path: str | Path | None) -> Path | None:
    if config_path:
        return Path(config_path)
    if os.environ.get(CONFIG_ENV):
        return Path(os.environ[CONFIG_ENV])
    return DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None


def _read_sections(path: Path) -> dict[str, Any]:
    """Top-level mapping of the YAML file; a missing file contributes nothing."""
    if not path.exists():
        logger.warning(f"Config file {path} not found, using env and defaults")
        return {}
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {path} must hold a mapping of sections, got {type(data).__name__}"
        )
    return data
