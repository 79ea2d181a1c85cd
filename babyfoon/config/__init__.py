"""Simple YAML configuration loader for babyfoon."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
import logging

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "token": {
        "app_id": "",
        "app_certificate": "",
        "ttl_seconds": 3600,
        "endpoint": "",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
    },
    "directory": {
        "endpoint": "",
        "presence_check_seconds": 5.0,
    },
    "audio": {
        "sample_rate": 16000,
        "channels": 1,
        "frames_per_buffer": 1600,
        "loud_threshold": 0.7,
        "alert_debounce_seconds": 10.0,
    },
    "transport": {
        "mode": "auto",
    },
    "chunked": {
        "interval_seconds": 3.0,
        "extension": "wav",
        "content_type": "audio/wav",
        "poll_interval_seconds": 3.0,
        "max_missed_polls": 3,
    },
    "storage": {
        "backend": "local",
        "data_directory": "data",
        "bucket": "audio-streams",
        "supabase_url": "",
        "supabase_key": "",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/babyfoon.log",
        "console_output": True,
    },
}

ENV_OVERRIDES = {
    "BABYFOON_APP_ID": "token.app_id",
    "BABYFOON_APP_CERTIFICATE": "token.app_certificate",
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class BabyfoonConfig:
    """babyfoon configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults are
                        used and relative paths resolve against the working directory.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is not None and not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        if self.config_file is not None:
            logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()
        self._apply_environment()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file on top of the defaults."""
        if self.config_file is None:
            return copy.deepcopy(DEFAULT_CONFIG)

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not loaded:
            raise ValueError("Configuration file is empty")
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULT_CONFIG, loaded)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        data_dir = config['storage'].get('data_directory')
        if data_dir and not os.path.isabs(data_dir):
            config['storage']['data_directory'] = str(config_dir / data_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def _apply_environment(self) -> None:
        for env_name, key_path in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key_path, value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'chunked.interval_seconds').

        Args:
            key_path: Dot-separated key path (e.g., 'token.ttl_seconds')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'transport.mode')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        if 'certificate' in key_path or 'key' in keys[-1]:
            logger.debug(f"Configuration key '{key_path}' set")
        else:
            logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_token_credentials(self) -> Tuple[str, str]:
        """Get the application id and server secret - raises if either is missing."""
        app_id = str(self.get('token.app_id') or '').strip()
        app_certificate = str(self.get('token.app_certificate') or '').strip()
        if not app_id or not app_certificate:
            raise ConfigurationError(
                "Token credentials not configured: set token.app_id and token.app_certificate "
                "or BABYFOON_APP_ID / BABYFOON_APP_CERTIFICATE"
            )
        return app_id, app_certificate

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())
