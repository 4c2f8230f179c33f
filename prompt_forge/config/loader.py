"""
Configuration loader for Prompt Forge.

This module loads YAML configuration files and validates them with Pydantic
models to create a ForgeConfig.

Functions:
    load_config: Main entrypoint to load and validate prompt_forge.config.yaml
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from prompt_forge.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import ForgeConfig


def load_config(config_path: str | Path | None = None) -> ForgeConfig:
    """
    Load prompt_forge.config.yaml into a validated ForgeConfig.

    This function:
    1. Returns defaults when no path is given
    2. Loads YAML from the specified path
    3. Validates structure using the ForgeConfig Pydantic model

    Args:
        config_path: Path to the YAML file, or None for built-in defaults

    Returns:
        ForgeConfig with every section populated

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails

    Example:
        >>> config = load_config("prompt_forge.config.yaml")
        >>> config.migrations.on_failure
        'continue'

    Security:
        Uses yaml.safe_load() to prevent code injection
    """
    if config_path is None:
        return ForgeConfig()

    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    # Empty file means "all defaults"
    if raw_config is None:
        return ForgeConfig()

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    try:
        return ForgeConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e
