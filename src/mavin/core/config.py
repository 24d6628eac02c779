"""Configuration loading: YAML file + .env environment + pydantic validation."""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from mavin.core.exceptions import ConfigurationError
from mavin.core.models.settings import AppConfig

ConfigValue = dict[str, Any] | list[Any] | str | int | float | bool | None

logger = logging.getLogger("config")
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

MAX_CONFIG_SIZE = 1024 * 1024  # 1MB


def resolve_env_vars(config: ConfigValue) -> ConfigValue:
    """Recursively resolve environment variables in config values.

    A value that is exactly ``${VAR}`` becomes the variable's value (empty
    string when unset). Other strings get ``$VAR``/``${VAR}`` and ``~`` expansion.

    Args:
        config: Configuration value (dict, list, or primitive).

    Returns:
        ConfigValue: Config with environment variables resolved.

    """
    if isinstance(config, dict):
        return {str(k): resolve_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [resolve_env_vars(item) for item in config]
    if isinstance(config, str):
        if config.startswith("${") and config.endswith("}"):
            return os.getenv(config[2:-1], "")
        if "~" in config or "$" in config:
            result = os.path.expandvars(config) if "$" in config else config
            if result.startswith("~"):
                result = str(pathlib.Path(result).expanduser())
            return result
    return config


def _validate_config_path(path: str) -> pathlib.Path:
    """Resolve and validate the configuration file path.

    Raises:
        FileNotFoundError: If the path does not exist or is not a file.
        ValueError: If the path is outside allowed directories or has a wrong extension.
        PermissionError: If the file is not readable.

    """
    try:
        resolved_path = pathlib.Path(path).expanduser().resolve(strict=True)
    except FileNotFoundError as e:
        msg = f"Config file not found at the specified path: {path}"
        raise FileNotFoundError(msg) from e

    if not resolved_path.is_file():
        msg = f"Config path does not point to a file: {resolved_path}"
        raise FileNotFoundError(msg)

    allowed_dirs = [
        pathlib.Path.cwd().resolve(),
        (pathlib.Path.home() / ".config").resolve(),
    ]
    if not any(resolved_path.is_relative_to(allowed_dir) for allowed_dir in allowed_dirs):
        allowed_paths_str = ", ".join(f'"{d}"' for d in allowed_dirs)
        msg = f"Access to {resolved_path} is not allowed. Config must be in one of: {allowed_paths_str}"
        raise ValueError(msg)

    if not os.access(resolved_path, os.R_OK):
        msg = f"No read permission for config file: {resolved_path}"
        raise PermissionError(msg)

    if resolved_path.suffix.lower() not in (".yaml", ".yml"):
        msg = "Configuration file must have a .yaml or .yml extension"
        raise ValueError(msg)

    return resolved_path


def _read_and_parse_config(path: pathlib.Path) -> ConfigValue:
    """Read and parse the YAML config file, enforcing a maximum size."""
    if path.stat().st_size > MAX_CONFIG_SIZE:
        msg = f"Config file {path} is too large (max {MAX_CONFIG_SIZE} bytes)"
        raise ValueError(msg)

    logger.info("Loading config from: %s", path)
    parsed_yaml: ConfigValue = yaml.safe_load(path.read_text(encoding="utf-8"))
    return parsed_yaml


def format_pydantic_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into a readable string."""
    error_messages: list[str] = []

    for err in error.errors():
        loc_path = ".".join(str(loc) for loc in err["loc"])
        if err["type"] == "missing":
            error_messages.append(f"{loc_path}: Missing required field")
        elif err["type"] in ("value_error", "assertion_error"):
            error_messages.append(f"{loc_path}: {err['msg']}")
        else:
            error_messages.append(f"{loc_path}: {err['msg']} (type: {err['type']})")

    return "\n".join(error_messages)


def build_config(data: dict[str, Any] | None = None) -> AppConfig:
    """Validate an already-parsed mapping into ``AppConfig``.

    Raises:
        ConfigurationError: If validation fails.

    """
    try:
        return AppConfig.model_validate(data or {})
    except ValidationError as e:
        msg = f"Configuration validation failed:\n{format_pydantic_errors(e)}"
        raise ConfigurationError(msg) from e


def load_config(config_path: str) -> AppConfig:
    """Load the configuration from a YAML file, resolve environment variables, and validate it.

    Args:
        config_path: Path to the configuration YAML file.

    Returns:
        Validated AppConfig model with resolved env vars.

    Raises:
        ConfigurationError: If the file is missing, unreadable, malformed or invalid.

    """
    env_loaded = load_dotenv()
    logger.info(".env file %s", "found and loaded" if env_loaded else "not found, using system environment variables")

    try:
        validated_path = _validate_config_path(config_path)
        config_data = resolve_env_vars(_read_and_parse_config(validated_path))
    except (FileNotFoundError, PermissionError, ValueError, yaml.YAMLError) as e:
        logger.critical("Configuration loading failed: %s", e)
        raise ConfigurationError(str(e), config_path) from e

    if config_data is None:
        config_data = {}
    if not isinstance(config_data, dict):
        msg = "Configuration data is not a dictionary after parsing."
        raise ConfigurationError(msg, config_path)

    try:
        config_model = build_config(config_data)
    except ConfigurationError as e:
        e.config_path = config_path
        logger.critical("%s", e)
        raise

    logger.info("Configuration successfully loaded and validated.")
    return config_model
