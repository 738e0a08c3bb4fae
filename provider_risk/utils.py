"""Shared helpers: configuration and logging."""

import copy
import logging
import sys
from pathlib import Path
from typing import Optional, Union

import yaml

LOGGER_NAME = "provider_risk"

# Built-in defaults; a config.yaml at the project root overrides them per key
DEFAULT_CONFIG = {
    "graph": {"day_window": 30, "n_jobs": 1},
    "aggregation": {
        "missing_amounts": "exclude",
        "chronic_conditions": "per_beneficiary",
        "io_ratio": "dynamic",
        "io_ratio_constant": 1.0,
    },
    "data": {"chunksize": 500000},
    "logging": {"level": "INFO"},
}


def get_project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> dict:
    """Load YAML configuration merged over ``DEFAULT_CONFIG``.

    Args:
        config_path: Path to config file. If None, uses ``config.yaml`` at the
            project root when it exists, else the built-in defaults.

    Returns:
        Dictionary of configuration values.

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
    """
    if config_path is None:
        config_path = get_project_root() / "config.yaml"
        if not config_path.is_file():
            return copy.deepcopy(DEFAULT_CONFIG)
    with open(config_path, "r") as f:
        return _merge(DEFAULT_CONFIG, yaml.safe_load(f) or {})


def setup_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Configure and return the project logger.

    Args:
        level: Logging level. If None, uses ``logging.level`` from config.

    Returns:
        Configured logger instance.
    """
    if level is None:
        level = load_config()["logging"].get("level", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
