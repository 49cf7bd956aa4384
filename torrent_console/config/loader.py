"""Configuration loading and parsing."""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

DEFAULT_CONFIG_NAME = "torrent_console.yaml"

DEFAULTS: Dict[str, Any] = {
    'client': {
        'save_path': '.',
        'monitor_dir': None,
        'poll_interval': 5,
        'refresh_delay_ms': 500,
        'max_connections_per_job': 50,
        'upload_limit_kb': 0,
        'download_limit_kb': 0,
        'allocation_mode': 'sparse',
        'seed_mode': False,
        'share_mode': False,
        'connect_peer': None,
        'ip_filter': None,
        'disable_disk_io': False,
        'rate_limit_local_peers': False,
        'high_performance': False,
        'shutdown_timeout': 120,
        'session_state_file': '.ses_state',
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
    'engine': {},
}


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and parse configuration file.

    The file is optional: without an explicit path, ``torrent_console.yaml``
    in the current directory is used if present, otherwise the built-in
    defaults alone.

    Args:
        config_path: Path to a YAML config file

    Returns:
        Configuration dictionary with every section present

    Raises:
        ConfigError: If an explicit file is missing or the file cannot be parsed
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME
        if not config_path.exists():
            return copy.deepcopy(DEFAULTS)
    else:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}")

    # An empty file is just the defaults
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    for section in ('client', 'logging', 'engine'):
        if config.get(section) is None:
            config[section] = {}
        elif not isinstance(config[section], dict):
            raise ConfigError(f"Configuration section '{section}' must be a mapping")

    return _merge(DEFAULTS, config)


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., 'client.save_path')
        default: Default value if path not found

    Returns:
        Configuration value or default

    Example:
        >>> get_config_value(config, 'client.max_connections_per_job')
        50
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def set_config_value(config: Dict[str, Any], path: str, value: Any) -> None:
    """Set a nested configuration value using dot notation, creating sections."""
    keys = path.split('.')
    section = config
    for key in keys[:-1]:
        section = section.setdefault(key, {})
    section[keys[-1]] = value
