"""
Configuration loader for the store sync engine.
Uses YAML format, with store credentials overridable from the environment.
"""

import yaml
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variables that take precedence over config.yaml
ENV_CONFIG_PATH = "STORESYNC_CONFIG"
ENV_PLATFORM_URL = "PLATFORM_URL"
ENV_CONSUMER_KEY = "CONSUMER_KEY"
ENV_CONSUMER_SECRET = "CONSUMER_SECRET"


@dataclass
class PlatformSettings:
    """Connection settings for the store REST API."""
    url: str
    consumer_key: str
    consumer_secret: str
    api_path: str = "/wp-json/wc/v3"
    timeout: float = 30.0
    page_size: int = 100
    max_pages: int = 50


class Config:
    """Singleton configuration manager."""

    _instance: Optional['Config'] = None
    _data: dict = {}
    _project_root: Path = None

    def __new__(cls, config_path: Optional[str] = None) -> 'Config':
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._project_root = Path(__file__).resolve().parent.parent.parent
            instance._load(config_path)
            cls._instance = instance
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the loaded instance so the next call re-reads the file."""
        cls._instance = None

    def _load(self, config_path: Optional[str] = None) -> None:
        """Load configuration from YAML file."""
        config_path = config_path or os.environ.get(ENV_CONFIG_PATH)
        if config_path:
            path = Path(config_path)
        else:
            path = self._project_root / "config.yaml"

        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            self._data = yaml.safe_load(f) or {}

        # Validate required sections
        required = ['general', 'platform', 'sync']
        missing = [s for s in required if s not in self._data]
        if missing:
            raise ConfigurationError(f"Missing required config sections: {missing}")

        logger.info(f"Configuration loaded from {path}")

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a nested config value using dot notation.
        Example: config.get('platform', 'timeout') -> config['platform']['timeout']
        """
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_int(self, *keys: str, default: int = 0) -> int:
        """Get integer value."""
        value = self.get(*keys, default=default)
        return int(value) if value is not None else default

    def get_float(self, *keys: str, default: float = 0.0) -> float:
        """Get float value."""
        value = self.get(*keys, default=default)
        return float(value) if value is not None else default

    def get_bool(self, *keys: str, default: bool = False) -> bool:
        """Get boolean value."""
        value = self.get(*keys, default=default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', 'yes', '1', 'on')
        return bool(value)

    def get_list(self, *keys: str, default: list = None) -> list:
        """Get list value."""
        value = self.get(*keys, default=default or [])
        return value if isinstance(value, list) else [value]

    def platform_settings(self) -> PlatformSettings:
        """
        Resolve store credentials. Environment variables win over the file.

        Raises:
            ConfigurationError: URL, key or secret missing, or URL not http(s)
        """
        url = os.environ.get(ENV_PLATFORM_URL) or self.get('platform', 'url', default='')
        key = os.environ.get(ENV_CONSUMER_KEY) or self.get('platform', 'consumer_key', default='')
        secret = os.environ.get(ENV_CONSUMER_SECRET) or self.get('platform', 'consumer_secret', default='')

        missing = [
            name for name, value in (
                (ENV_PLATFORM_URL, url),
                (ENV_CONSUMER_KEY, key),
                (ENV_CONSUMER_SECRET, secret),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing store credentials: {', '.join(missing)}")

        if not url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"{ENV_PLATFORM_URL} must be an http(s) URL, got {url!r}")

        return PlatformSettings(
            url=url.rstrip('/'),
            consumer_key=key,
            consumer_secret=secret,
            api_path=self.get('platform', 'api_path', default='/wp-json/wc/v3'),
            timeout=self.get_float('platform', 'timeout', default=30.0),
            page_size=self.get_int('platform', 'page_size', default=100),
            max_pages=self.get_int('platform', 'max_pages', default=50),
        )

    @property
    def project_root(self) -> Path:
        """Get project root directory."""
        return self._project_root

    @property
    def data_dir(self) -> Path:
        """Get data directory path, creating if needed."""
        dir_name = self.get('general', 'data_dir', default='data')
        path = self._project_root / dir_name
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        db_name = self.get('general', 'database', default='storesync.db')
        return self.data_dir / db_name

    @property
    def log_path(self) -> Path:
        """Get log file path."""
        log_name = self.get('general', 'log_file', default='storesync.log')
        return self._project_root / log_name


# Global config instance (initialized on first use)
def get_config() -> Config:
    """Get the global config instance."""
    return Config()
