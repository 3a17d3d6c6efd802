"""Configuration loading for zonn_bridge."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ENV_PREFIX = "ZONN_BRIDGE_"


@dataclass
class Config:
    """zonn_bridge configuration settings."""
    bundle_id: str
    target_name: str
    poll_interval: float
    script_timeout: float
    prompt_timeout: float
    launch_settle: float
    track_settle: float
    log_dir: str
    log_level: str
    use_fake: bool
    # Gateway settings
    gateway_enabled: bool
    gateway_host: str
    gateway_port: int

    @classmethod
    def load(cls, config_file: Optional[str] = None) -> "Config":
        """
        Load configuration from environment variables and optional config file.

        Environment variables take precedence over config file.

        Args:
            config_file: Optional path to config file

        Returns:
            Config instance with loaded values
        """
        defaults = {
            "bundle_id": "com.spotify.client",
            "target_name": "Spotify",
            "poll_interval": 1.0,
            "script_timeout": 10.0,
            "prompt_timeout": 120.0,
            "launch_settle": 2.0,
            "track_settle": 0.2,
            "log_dir": "./logs",
            "log_level": "INFO",
            "use_fake": False,
            "gateway_enabled": False,
            "gateway_host": "127.0.0.1",
            "gateway_port": 6061,
        }

        file_config = {}
        if config_file and Path(config_file).exists():
            file_config = cls._parse_config_file(config_file)

        def value(key: str):
            return os.environ.get(
                ENV_PREFIX + key.upper(),
                file_config.get(key, defaults[key])
            )

        return cls(
            bundle_id=value("bundle_id"),
            target_name=value("target_name"),
            poll_interval=float(value("poll_interval")),
            script_timeout=float(value("script_timeout")),
            prompt_timeout=float(value("prompt_timeout")),
            launch_settle=float(value("launch_settle")),
            track_settle=float(value("track_settle")),
            log_dir=value("log_dir"),
            log_level=value("log_level"),
            use_fake=cls._parse_bool(value("use_fake")),
            gateway_enabled=cls._parse_bool(value("gateway_enabled")),
            gateway_host=value("gateway_host"),
            gateway_port=int(value("gateway_port")),
        )

    @staticmethod
    def _parse_bool(value) -> bool:
        # Handle string "true"/"false" from env vars and files
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    @staticmethod
    def _parse_config_file(path: str) -> dict:
        """
        Parse a simple key=value config file.

        Args:
            path: Path to config file

        Returns:
            Dictionary of config values
        """
        config = {}
        with open(path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" in line:
                    key, value = line.split("=", 1)
                    config[key.strip().lower()] = value.strip()
        return config

    def get_log_dir(self) -> Path:
        """Get absolute path to log directory."""
        path = Path(self.log_dir).resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path
