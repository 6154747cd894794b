"""
Configuration management for dsjob connection and engine settings.
"""

import copy
import json
import logging
import os
from typing import Any

import appdirs

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages user configuration and settings."""

    DEFAULT_CONFIG = {
        "server": {
            "domain": None,
            "host": None,
            "user": None,
            "password": None,
        },
        "engine": {
            "backend": "vendor",  # "vendor" or "local"
            "library_path": None,
            "local_db_path": None,
            "poll_interval": 1.0,
            "wait_timeout": None,
        },
        "logging": {
            "level": "WARNING",
            "file": None,
        },
    }

    # Environment variable -> config path
    ENV_MAPPINGS = {
        # Server connection
        "DSJOB_DOMAIN": "server.domain",
        "DSJOB_SERVER": "server.host",
        "DSJOB_USER": "server.user",
        "DSJOB_PASSWORD": "server.password",

        # Engine
        "DSJOB_BACKEND": "engine.backend",
        "DSJOB_LIBRARY": "engine.library_path",
        "DSJOB_LOCAL_DB": "engine.local_db_path",
        "DSJOB_POLL_INTERVAL": "engine.poll_interval",
        "DSJOB_WAIT_TIMEOUT": "engine.wait_timeout",

        # Logging
        "DSJOB_LOG_LEVEL": "logging.level",
        "DSJOB_LOG_FILE": "logging.file",
    }

    def __init__(self, config_path: str | None = None):
        if config_path is None:
            app_dir = appdirs.user_config_dir("dsjob", "dsjob")
            config_path = os.path.join(app_dir, "config.json")

        self.config_path = config_path
        self.config = self._load_config()

        # Load .env overrides
        self._load_env_overrides()

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file or fall back to defaults."""
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path) as f:
                    config = json.load(f)
                # Merge with defaults to ensure all keys exist
                return self._merge_config(self.DEFAULT_CONFIG, config)
            else:
                return copy.deepcopy(self.DEFAULT_CONFIG)
        except (OSError, ValueError) as e:
            logger.warning(f"Error loading config {self.config_path}: {e}")
            return copy.deepcopy(self.DEFAULT_CONFIG)

    def _merge_config(self, default: dict, user: dict) -> dict:
        """Recursively merge user config with defaults."""
        result = copy.deepcopy(default)
        for key, value in user.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _load_env_overrides(self) -> None:
        """Load configuration overrides from .env file and environment variables."""
        env_file_path = os.path.join(os.getcwd(), ".env")
        env_vars = {}

        if os.path.exists(env_file_path):
            try:
                with open(env_file_path, 'r') as f:
                    for line in f:
                        line = line.strip()
                        if line and not line.startswith('#') and '=' in line:
                            key, value = line.split('=', 1)
                            env_vars[key.strip()] = value.strip().strip('"\'')
            except OSError as e:
                logger.warning(f"Error reading .env file: {e}")

        # Real environment variables take precedence over .env
        env_vars.update(os.environ)

        for env_key, config_path in self.ENV_MAPPINGS.items():
            if env_key not in env_vars:
                continue
            value = env_vars[env_key]

            if config_path.endswith(('.poll_interval', '.wait_timeout')):
                try:
                    value = float(value)
                except ValueError:
                    logger.warning(f"Invalid float value for {env_key}: {value}")
                    continue

            self.set(config_path, value)
            if config_path.endswith('.password'):
                logger.debug(f"Config override from environment: {config_path} = ****")
            else:
                logger.debug(f"Config override from environment: {config_path} = {value}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'engine.backend')."""
        keys = key_path.split(".")
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split(".")
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def _section(self, name: str) -> dict[str, Any]:
        section = self.get(name, {})
        if not isinstance(section, dict):
            raise ValueError(f"'{name}' must be an object, not {json.dumps(section)}")
        return section

    def get_server_config(self) -> dict[str, Any]:
        """Get server connection configuration."""
        return self._section("server")

    def get_engine_config(self) -> dict[str, Any]:
        """Get engine-specific configuration."""
        return self._section("engine")
