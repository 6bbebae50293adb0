"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .discovery.protocol import (
    BROADCAST_ADDRESS,
    DEFAULT_BROADCAST_INTERVAL,
    DEFAULT_PORT,
    validate_interval,
    validate_jitter,
    validate_port,
)
from .discovery.session import DEFAULT_STOP_TIMEOUT


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    """
    Discovery configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (DISCOVERY_*), including a .env file
    2. Config file (JSON)
    3. Default values
    """
    # Network
    port: int = DEFAULT_PORT
    bind_host: str = ''
    broadcast_address: str = BROADCAST_ADDRESS
    reuse_address: bool = False

    # Timing (seconds)
    broadcast_interval: float = DEFAULT_BROADCAST_INTERVAL
    jitter: float = 0.0
    stop_timeout: float = DEFAULT_STOP_TIMEOUT

    # Logging
    log_level: str = 'INFO'

    def validate(self) -> 'Config':
        """
        Check value ranges.

        Raises:
            ValueError: On the first invalid setting
        """
        validate_port(self.port)
        validate_interval(self.broadcast_interval)
        validate_jitter(self.jitter)
        if self.stop_timeout <= 0:
            raise ValueError(f"Stop timeout must be positive: {self.stop_timeout}")
        return self

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.port = int(os.getenv('DISCOVERY_PORT', config.port))
        config.bind_host = os.getenv('DISCOVERY_BIND_HOST', config.bind_host)
        config.broadcast_address = os.getenv('DISCOVERY_BROADCAST_ADDRESS', config.broadcast_address)
        reuse = os.getenv('DISCOVERY_REUSE_ADDRESS')
        if reuse is not None:
            config.reuse_address = _env_bool(reuse)

        # Timing
        config.broadcast_interval = float(
            os.getenv('DISCOVERY_BROADCAST_INTERVAL', config.broadcast_interval)
        )
        config.jitter = float(os.getenv('DISCOVERY_JITTER', config.jitter))
        config.stop_timeout = float(os.getenv('DISCOVERY_STOP_TIMEOUT', config.stop_timeout))

        # Logging
        config.log_level = os.getenv('DISCOVERY_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.port = data.get('port', config.port)
        config.bind_host = data.get('bind_host', config.bind_host)
        config.broadcast_address = data.get('broadcast_address', config.broadcast_address)
        config.reuse_address = data.get('reuse_address', config.reuse_address)

        # Timing
        config.broadcast_interval = data.get('broadcast_interval', config.broadcast_interval)
        config.jitter = data.get('jitter', config.jitter)
        config.stop_timeout = data.get('stop_timeout', config.stop_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in config.to_dict():
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config.validate()


# Example config file template
EXAMPLE_CONFIG = """
{
  "port": 38800,
  "bind_host": "",
  "broadcast_address": "255.255.255.255",
  "reuse_address": false,
  "broadcast_interval": 3.0,
  "jitter": 0.0,
  "stop_timeout": 5.0,
  "log_level": "INFO"
}
"""
