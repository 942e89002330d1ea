"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .config_models import SystemConfig
from .interfaces import SequencerError


class ConfigurationError(SequencerError):
    """Raised when configuration loading or validation fails."""


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """
    Load and validate system configuration.

    Args:
        config_path: Path to the configuration file. Defaults to config/config.yml

    Returns:
        Validated SystemConfig instance

    Raises:
        ConfigurationError: If configuration loading or validation fails
    """
    if config_path is None:
        config_path = Path("config/config.yml")

    config_data: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML config: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    # Environment variables override the file, per nested key
    for path, value in _load_env_overrides().items():
        current = config_data
        for key in path[:-1]:
            current = current.setdefault(key, {})
        current[path[-1]] = value

    try:
        return SystemConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _load_env_overrides() -> dict:
    """Load configuration overrides from environment variables."""
    overrides: dict = {}

    env_mappings = {
        "SEQUENCER_LOG_LEVEL": ("logging", "level"),
        "SEQUENCER_LOG_DIR": ("paths", "log_dir"),
        "SEQUENCER_DATA_DIR": ("paths", "data_dir"),
        "SEQUENCER_HELPER_PATH": ("helper", "path"),
        "SEQUENCER_REQUEST_TIMEOUT_MS": ("helper", "request_timeout_ms"),
        "SEQUENCER_PIXEL_WAIT_TIMEOUT_MS": ("playback", "pixel_wait_timeout_ms"),
    }

    for env_var, config_path in env_mappings.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[config_path] = value

    return overrides


def create_example_config(output_path: Path = Path("config/config.yml.example")) -> None:
    """Create an example configuration file."""
    example_config = {
        "helper": {
            "path": "swift-helper/.build/release/SequencerHelper",
            "request_timeout_ms": 10000
        },
        "playback": {
            "pixel_wait_timeout_ms": 60000,
            "default_threshold": 15
        },
        "paths": {
            "data_dir": "~/.config/smart-sequencer",
            "log_dir": "logs"
        },
        "logging": {
            "level": "INFO"
        }
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
