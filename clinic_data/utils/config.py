"""
Configuration management for the clinic data layer.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv


@dataclass
class ApiConfig:
    """Configuration for the Archimed API client."""
    base_url: str = "https://newapi.archimed-soft.ru/api/v5"
    token: str = ""
    public_doctors_url: str = "https://aldan.yurta.site/api/archimed/doctors"
    request_timeout: float = 20.0
    page_limit: int = 200
    max_pages: int = 50
    categories_enabled: bool = False
    mock_appointment_delay: float = 1.0


@dataclass
class CacheConfig:
    """Configuration for the persistent cache."""
    type: str = "file"
    doctors_key: str = "archimed_doctors_v1"
    services_key: str = "archimed_services_v1"
    doctors_ttl: int = 24 * 60 * 60
    services_ttl: int = 24 * 60 * 60
    file: Dict[str, Any] = field(default_factory=lambda: {'directory': '.cache'})
    redis: Dict[str, Any] = field(default_factory=lambda: {
        'host': 'localhost', 'port': 6379, 'db': 0, 'password': None, 'key_prefix': 'clinic:'
    })


@dataclass
class SnapshotConfig:
    """Configuration for bundled fallback snapshots."""
    primary: Optional[str] = None
    secondary: Optional[str] = None
    mock_doctors: Optional[str] = None
    mock_services: Optional[str] = None
    mock_branches: Optional[str] = None
    min_doctors: int = 10
    default_branch: str = "Клиника Алдан"
    default_address: str = "г. Кызыл, ул. Ленина, 60"
    default_building: str = "Поликлиника №1"


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/clinic_data.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    api: ApiConfig = field(default_factory=ApiConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file, then apply environment overrides."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}

        self._config = Config(
            api=ApiConfig(**config_data.get('api', {})),
            cache=CacheConfig(**config_data.get('cache', {})),
            snapshots=SnapshotConfig(**config_data.get('snapshots', {})),
            logging=LoggingConfig(**config_data.get('logging', {})),
            monitoring=MonitoringConfig(**config_data.get('monitoring', {}))
        )

        apply_env_overrides(self._config)
        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        validate_config(self._config)

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def apply_env_overrides(config: Config):
    """Take the API URL and token from the environment (or .env) when set."""
    load_dotenv()

    base_url = os.getenv('ARCHIMED_API_URL')
    if base_url:
        config.api.base_url = base_url

    token = os.getenv('ARCHIMED_API_TOKEN')
    if token:
        config.api.token = token


def validate_config(config: Config):
    """Raise ValueError on configuration values the data layer cannot run with."""
    if config.api.request_timeout <= 0:
        raise ValueError("request_timeout must be positive")

    if config.api.page_limit < 1:
        raise ValueError("page_limit must be at least 1")

    if config.api.max_pages < 1:
        raise ValueError("max_pages must be at least 1")

    if config.snapshots.min_doctors < 0:
        raise ValueError("min_doctors must be non-negative")

    if config.cache.type not in ['file', 'redis']:
        raise ValueError("Cache type must be 'file' or 'redis'")

    logging.getLogger(__name__).debug("Configuration validation passed")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
