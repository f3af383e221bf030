"""
Configuration management for stagehand.

Loads and validates $STAGEHAND_HOME/config.yaml (default ~/.config/stagehand).
An optional env_file is loaded into the process environment with python-dotenv
so cloud credentials (GOOGLE_APPLICATION_CREDENTIALS, KUBECONFIG) can live
next to the config.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from stagehand.errors import ConfigError

DEFAULT_HOME = "~/.config/stagehand"
REQUIRED_KEYS = ("staging_location",)


def get_stagehand_home() -> Path:
    """Return the config home, honouring STAGEHAND_HOME."""
    env_home = os.environ.get("STAGEHAND_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path(DEFAULT_HOME).expanduser()


@dataclass
class StagehandConfig:
    """Complete stagehand configuration."""

    staging_location: str
    image: Optional[str] = None
    secret_name: Optional[str] = None
    secret_mount_path: Optional[str] = None
    namespace: str = "default"
    kube_context: Optional[str] = None
    poll_interval_seconds: float = 60.0
    max_workers: int = 1
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.staging_location:
            raise ConfigError("staging_location is required")
        if self.poll_interval_seconds <= 0:
            raise ConfigError(
                f"poll_interval_seconds must be positive, got {self.poll_interval_seconds}"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.log_format not in ("pretty", "structured"):
            raise ConfigError(
                f"log_format must be 'pretty' or 'structured', got {self.log_format!r}"
            )
        if bool(self.secret_name) != bool(self.secret_mount_path):
            raise ConfigError("secret_name and secret_mount_path must be set together")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagehandConfig":
        """Build a config from parsed YAML, rejecting unknown keys."""
        missing = [k for k in REQUIRED_KEYS if not data.get(k)]
        if missing:
            raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        try:
            config = cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __repr__(self) -> str:
        return (
            f"StagehandConfig(staging_location={self.staging_location}, "
            f"namespace={self.namespace}, image={self.image})"
        )


def load_config(config_path: Optional[Path] = None) -> StagehandConfig:
    """
    Load stagehand configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $STAGEHAND_HOME/config.yaml

    Returns:
        StagehandConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_stagehand_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"stagehand config.yaml not found at {config_path}. Run 'stagehand init'."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = StagehandConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
