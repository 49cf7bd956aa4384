"""Configuration validation."""

import logging
from pathlib import Path
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

VALID_ALLOCATION_MODES = ['sparse', 'allocate']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


class ValidationError(Exception):
    """Configuration validation errors."""
    pass


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary from loader (after CLI overrides)

    Raises:
        ValidationError: If configuration is invalid
    """
    errors = []

    # Validate client section
    errors.extend(_validate_client(config.get('client', {})))

    # Validate logging section
    errors.extend(_validate_logging(config.get('logging', {})))

    # Validate engine passthrough section
    errors.extend(_validate_engine(config.get('engine', {})))

    if errors:
        raise ValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_client(section: Dict[str, Any]) -> List[str]:
    """Validate client options section."""
    errors = []

    save_path = section.get('save_path', '.')
    if not isinstance(save_path, str) or not save_path:
        errors.append("client.save_path must be a non-empty string")

    monitor_dir = section.get('monitor_dir')
    if monitor_dir is not None:
        if not isinstance(monitor_dir, str):
            errors.append("client.monitor_dir must be a string path or null")
        elif not Path(monitor_dir).expanduser().is_dir():
            # Not fatal: the directory may be mounted later
            logger.warning(f"client.monitor_dir does not exist yet: {monitor_dir}")

    poll_interval = section.get('poll_interval', 5)
    if not _is_number(poll_interval) or poll_interval <= 0:
        errors.append("client.poll_interval must be a positive number")

    refresh = section.get('refresh_delay_ms', 500)
    if not _is_int(refresh) or refresh < 0:
        errors.append("client.refresh_delay_ms must be a non-negative integer")

    connections = section.get('max_connections_per_job', 50)
    if not _is_int(connections) or connections < 2:
        errors.append("client.max_connections_per_job must be an integer of at least 2")

    for key in ('upload_limit_kb', 'download_limit_kb'):
        limit = section.get(key, 0)
        if not _is_int(limit) or limit < 0:
            errors.append(f"client.{key} must be a non-negative integer")

    mode = section.get('allocation_mode', 'sparse')
    if mode not in VALID_ALLOCATION_MODES:
        errors.append(
            f"client.allocation_mode must be one of: {', '.join(VALID_ALLOCATION_MODES)}"
        )

    for key in ('seed_mode', 'share_mode', 'disable_disk_io',
                'rate_limit_local_peers', 'high_performance'):
        if key in section and not isinstance(section[key], bool):
            errors.append(f"client.{key} must be a boolean")

    connect_peer = section.get('connect_peer')
    if connect_peer is not None:
        if not isinstance(connect_peer, str) or ':' not in connect_peer:
            errors.append("client.connect_peer must be an 'ip:port' string or null")

    ip_filter = section.get('ip_filter')
    if ip_filter is not None:
        if not isinstance(ip_filter, str):
            errors.append("client.ip_filter must be a string path or null")
        elif not Path(ip_filter).expanduser().is_file():
            errors.append(f"client.ip_filter file not found: {ip_filter}")

    timeout = section.get('shutdown_timeout', 120)
    if not _is_number(timeout) or timeout < 0:
        errors.append("client.shutdown_timeout must be a non-negative number (0 = no limit)")

    state_file = section.get('session_state_file', '.ses_state')
    if not isinstance(state_file, str) or not state_file:
        errors.append("client.session_state_file must be a non-empty string")

    return errors


def _validate_logging(section: Dict[str, Any]) -> List[str]:
    """Validate logging options section."""
    errors = []

    # Validate level
    level = section.get('level', 'INFO')
    if level not in VALID_LOG_LEVELS:
        errors.append(f"logging.level must be one of: {', '.join(VALID_LOG_LEVELS)}")

    # Validate optional log file
    if 'file' in section and section['file'] is not None:
        if not isinstance(section['file'], str):
            errors.append("logging.file must be a string path or null")

    return errors


def _validate_engine(section: Dict[str, Any]) -> List[str]:
    """Validate engine settings passthrough section."""
    errors = []

    if not isinstance(section, dict):
        return ["engine must be a mapping of setting names to values"]

    for name, value in section.items():
        if not isinstance(name, str):
            errors.append(f"engine setting names must be strings: {name!r}")
        elif not isinstance(value, (str, int, bool)):
            errors.append(f"engine.{name} must be a string, integer or boolean")

    return errors
