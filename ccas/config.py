"""
Configuration management for the Construction Cost Allocation System.

This module provides functions for loading and managing configuration settings,
including environment-specific configurations and logging set-up.
"""

import os
import copy
import json
import logging
import logging.handlers
from typing import Dict, Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

# Default configuration
_DEFAULT_CONFIG = {
    "database": {
        "db_type": "sqlite",
        "db_path": str(Path.home() / ".ccas" / "ccas.db"),
        "echo": False
    },
    "allocation": {
        "epsilon": 0.005,
        "internal_categories": ["labor_internal", "management"]
    },
    "matching": {
        "weights": {
            "exact_amount": 40,
            "near_amount": 25,
            "same_day": 30,
            "within_3_days": 20,
            "within_7_days": 10,
            "same_payee": 20,
            "same_project": 10
        },
        "amount_tolerance_percent": 0.05,
        "amount_tolerance_floor": 5.0,
        "suggestion_threshold": 40
    },
    "reporting": {
        "default_limit": 100,
        "max_limit": 10000,
        "templates_dir": None
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "file": None,
        "max_size": 10485760,  # 10 MB
        "backup_count": 5
    }
}

# Global configuration dictionary
_CONFIG = None


def _load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Configuration dictionary
    """
    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        return {}


def get_config() -> Dict[str, Any]:
    """Get the current configuration.

    Returns:
        Configuration dictionary
    """
    global _CONFIG

    if _CONFIG is None:
        _CONFIG = copy.deepcopy(_DEFAULT_CONFIG)

        # Look for configuration files in standard locations
        config_paths = [
            os.path.join(os.getcwd(), "ccas.json"),
            os.path.join(str(Path.home()), ".ccas", "config.json"),
            os.environ.get("CCAS_CONFIG", "")
        ]

        for path in config_paths:
            if path and os.path.exists(path):
                file_config = _load_config_file(path)
                _merge_configs(_CONFIG, file_config)

        _apply_env_overrides(_CONFIG)

    return _CONFIG


def get_section(name: str) -> Dict[str, Any]:
    """Get one section of the current configuration.

    Args:
        name: Section name (database, allocation, matching, reporting, logging)

    Returns:
        Section dictionary (empty if the section does not exist)
    """
    return get_config().get(name, {})


def _merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> None:
    """Merge override configuration into base configuration.

    Args:
        base_config: Base configuration dictionary
        override_config: Override configuration dictionary
    """
    for key, value in override_config.items():
        if key in base_config and isinstance(base_config[key], dict) and isinstance(value, dict):
            _merge_configs(base_config[key], value)
        else:
            base_config[key] = value


def _parse_env_value(env_value: str) -> Any:
    if env_value.isdigit():
        return int(env_value)
    if env_value.replace(".", "", 1).isdigit() and env_value.count(".") == 1:
        return float(env_value)
    if env_value.lower() == "true":
        return True
    if env_value.lower() == "false":
        return False
    return env_value


def _apply_env_overrides(config: Dict[str, Any], prefix: str = "CCAS_") -> None:
    """Apply environment variable overrides to configuration.

    CCAS_REPORTING__MAX_LIMIT=500 sets config["reporting"]["max_limit"].
    CCAS_CONFIG names a file and is not treated as an override.

    Args:
        config: Configuration dictionary
        prefix: Environment variable prefix
    """
    for env_var, env_value in os.environ.items():
        if not env_var.startswith(prefix) or env_var == "CCAS_CONFIG":
            continue

        keys = env_var[len(prefix):].lower().split("__")

        # Navigate to the correct nested dictionary
        current = config
        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = _parse_env_value(env_value)


def set_config(new_config: Dict[str, Any]) -> None:
    """Set a new configuration.

    Args:
        new_config: New configuration dictionary, merged over the defaults
    """
    global _CONFIG
    _CONFIG = copy.deepcopy(_DEFAULT_CONFIG)
    _merge_configs(_CONFIG, new_config)


def reset_config() -> None:
    """Reset configuration to default."""
    global _CONFIG
    _CONFIG = None


def configure_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """Configure the root logger from the logging section.

    Installs a console handler and, when ``file`` is set, a rotating file
    handler limited to ``max_size`` bytes with ``backup_count`` backups.

    Args:
        config: Logging configuration (defaults to the global logging section)
    """
    if config is None:
        config = get_section('logging')

    level = getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
    formatter = logging.Formatter(config.get('format') or _DEFAULT_CONFIG['logging']['format'])

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = config.get('file')
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.get('max_size', 10485760),
            backupCount=config.get('backup_count', 5)
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
