"""Configuration loading and validation."""

from .loader import load_config, ConfigError, get_config_value, set_config_value
from .validator import validate_config, ValidationError

__all__ = [
    "load_config",
    "ConfigError",
    "get_config_value",
    "set_config_value",
    "validate_config",
    "ValidationError",
]
