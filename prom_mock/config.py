"""Configuration models using Pydantic for validation."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import os

from prom_mock.timeutil import parse_rfc3339


class ServerConfig(BaseModel):
    """HTTP listener configuration."""
    listen_host: str = "127.0.0.1"
    listen_port: int = Field(default=19090, ge=1, le=65535)


class MockConfig(BaseModel):
    """Mock behaviour: fixtures, clock and failure simulation."""
    fixtures: Optional[str] = None  # Path to YAML fixture book
    fixed_now: Optional[datetime] = None
    latency_ms: int = Field(default=0, ge=0)
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    seed: int = 42

    @field_validator('fixed_now', mode='before')
    @classmethod
    def validate_fixed_now(cls, v):
        """Accept RFC3339 text for the fixed clock."""
        if isinstance(v, str):
            parsed = parse_rfc3339(v.strip())
            if parsed is None:
                raise ValueError(f"fixed_now must be an RFC3339 timestamp, got '{v}'")
            return parsed
        return v


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)
    mock: MockConfig = Field(default_factory=MockConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate configuration from a YAML file and the environment."""
    import yaml

    raw_config = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_fixtures := os.getenv('PROM_MOCK_FIXTURES'):
        raw_config.setdefault('mock', {})['fixtures'] = env_fixtures

    if env_fixed_now := os.getenv('PROM_MOCK_FIXED_NOW'):
        raw_config.setdefault('mock', {})['fixed_now'] = env_fixed_now

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
