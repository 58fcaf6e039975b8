"""Configuration models and loading."""

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

CONFIG_DIR = Path.home() / ".config" / "service-gateway"
CONFIG_FILE = CONFIG_DIR / "config.json"

REGISTRY_URL_ENV = "PROMETHEUS_URL"


class GatewaySettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    keep_alive_timeout: int = 5


class RegistrySettings(BaseModel):
    url: str = "http://localhost:9090"
    timeout: float = 5.0
    job_label: str = "job"
    metrics_path: str = "/metrics"


class UpstreamSettings(BaseModel):
    timeout: float = 60.0
    connect_timeout: float = 5.0
    max_connections: int = 100
    max_keepalive_connections: int = 20


class Config(BaseModel):
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)


def load_config(config_file: Path = CONFIG_FILE) -> Config:
    """Load configuration from the JSON file (if any) and apply environment overrides."""
    config = _read_config_file(config_file)

    registry_url = os.environ.get(REGISTRY_URL_ENV)
    if registry_url:
        config.registry.url = registry_url

    return config


def _read_config_file(config_file: Path) -> Config:
    if not config_file.exists():
        return Config()

    try:
        data = json.loads(config_file.read_text())
        return Config.model_validate(data)
    except (json.JSONDecodeError, ValidationError):
        # Backup corrupted config and fall back to defaults
        backup = config_file.with_suffix(".json.bak")
        config_file.rename(backup)
        return Config()
