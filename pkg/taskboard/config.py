# Task board: configuration
# Override via board.yaml, TASKBOARD_* environment variables, or CLI args.

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "board.yaml"

# Environment variable → Config field
ENV_OVERRIDES = {
    "TASKBOARD_DB": "db_path",
    "TASKBOARD_API_SECRET": "api_secret",
    "TASKBOARD_RELAY_URL": "relay_url",
}


@dataclass
class Config:
    """Runtime configuration for the board server and client session."""

    # Storage
    db_path: str = "~/.local/share/taskboard/board.db"

    # Auth: shared secret for X-API-Key (empty = writes disabled)
    api_secret: str = ""

    # Broadcast relay (None = in-process buffer only)
    relay_url: Optional[str] = None
    relay_secret: str = ""
    event_buffer_size: int = 1000

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    # Client session
    pending_ttl_secs: float = 30.0

    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in filesystem paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def validate(self):
        if self.event_buffer_size < 1:
            raise ConfigError("event_buffer_size must be at least 1")
        if self.pending_ttl_secs <= 0:
            raise ConfigError("pending_ttl_secs must be positive")
        if not 0 < int(self.port) < 65536:
            raise ConfigError(f"Invalid port: {self.port}")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML, then apply environment overrides."""
        path = path or os.environ.get("TASKBOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        known = {f.name for f in fields(cls)}

        data = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config file {cfg_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config file {cfg_path} must contain a mapping")
            ignored = sorted(set(data) - known)
            if ignored:
                logger.warning(f"Ignoring unknown config keys: {', '.join(ignored)}")
        elif path:
            raise ConfigError(f"Config file not found: {cfg_path}")

        cfg = cls(**{k: v for k, v in data.items() if k in known})
        for env, attr in ENV_OVERRIDES.items():
            value = os.environ.get(env)
            if value:
                setattr(cfg, attr, value)

        cfg.resolve_paths()
        cfg.validate()
        return cfg
