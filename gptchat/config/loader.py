"""
Configuration loader for gpt-chat.

This module loads and merges configuration from the user-wide configuration
file and a project-specific one.
"""

import logging
import sys
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from gptchat.config.schema import Configuration
from gptchat.constants import APP_NAME, CONFIG_DIR_NAME, CONFIG_FILE_NAME
from gptchat.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """
    Get the user-wide configuration directory.

    Returns
    -------
    Path
        Path to the configuration directory.
    """
    return Path(user_config_dir(APP_NAME))


def get_system_config_path() -> Path:
    """
    Get the path to the user-wide configuration file.

    Returns
    -------
    Path
        Path to the configuration file (which may not exist).
    """
    return get_config_dir() / CONFIG_FILE_NAME


def _parse_toml(path: Path) -> dict[str, Any]:
    """
    Parse a TOML configuration file.

    Parameters
    ----------
    path : Path
        Path to the TOML file to parse.

    Returns
    -------
    dict[str, Any]
        Parsed configuration as a dictionary.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or contains invalid TOML.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            f"Invalid TOML in {path}: {e}",
            config_file=str(path),
            cause=e,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file {path}: {e}",
            config_file=str(path),
            cause=e,
        ) from e


def _get_project_config(cwd: Path) -> Path | None:
    """Find ``.gpt-chat/config.toml`` in the working directory."""
    config_file: Path = cwd.resolve() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    if config_file.is_file():
        return config_file
    return None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge two dictionaries.

    Values from `override` take precedence over `base`. Nested dictionaries
    are merged recursively.

    Examples
    --------
    >>> _merge_dicts({"a": 1, "b": {"c": 2}}, {"b": {"d": 3}, "e": 4})
    {'a': 1, 'b': {'c': 2, 'd': 3}, 'e': 4}
    """
    result: dict[str, Any] = base.copy()
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


def load_configuration(
    cwd: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Configuration:
    """
    Load configuration from the user-wide and project sources.

    Sources are applied in this order, later ones taking precedence:

    1. User-wide configuration file (if it exists)
    2. Project configuration in ``<cwd>/.gpt-chat/config.toml`` (if it exists)
    3. Explicit ``overrides`` (command-line options)

    Parameters
    ----------
    cwd : Path | None, optional
        Current working directory. If None, uses the current directory.
    overrides : dict[str, Any] | None, optional
        Values merged over everything loaded from files.

    Returns
    -------
    Configuration
        Loaded and validated configuration object.

    Raises
    ------
    ConfigurationError
        If the merged configuration is invalid.

    Examples
    --------
    >>> config = load_configuration()
    >>> config = load_configuration(Path("/path/to/project"), {"model": {"name": "gpt-4o"}})
    """
    cwd = cwd or Path.cwd()
    system_path: Path = get_system_config_path()

    config_dict: dict[str, Any] = {}

    if system_path.is_file():
        try:
            config_dict = _parse_toml(system_path)
            logger.debug(f"Loaded system config from {system_path}")
        except ConfigurationError as e:
            logger.warning(
                f"Skipping invalid system config {system_path}: {e}",
            )

    project_path: Path | None = _get_project_config(cwd)
    if project_path:
        try:
            project_config_dict: dict[str, Any] = _parse_toml(project_path)
            config_dict = _merge_dicts(config_dict, project_config_dict)
            logger.debug(f"Loaded project config from {project_path}")
        except ConfigurationError as e:
            logger.warning(
                f"Skipping invalid project config {project_path}: {e}",
            )

    if overrides:
        config_dict = _merge_dicts(config_dict, overrides)

    if "cwd" not in config_dict:
        config_dict["cwd"] = str(cwd)

    try:
        config: Configuration = Configuration(**config_dict)
    except Exception as e:
        raise ConfigurationError(
            f"Invalid configuration: {e}",
            cause=e,
        ) from e

    validation_errors: list[str] = config.validate()
    if validation_errors:
        error_msg: str = "Configuration validation failed:\n" + "\n".join(
            f"  - {err}" for err in validation_errors
        )
        raise ConfigurationError(error_msg)

    logger.debug(f"Configuration loaded from {cwd}")
    return config
