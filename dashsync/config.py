# dashsync: configuration
# Override via a YAML file (--config) or DASHSYNC_* environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

from .errors import ConfigError

CONFIG_PATH = Path("~/.config/dashsync/config.yaml")

BACKENDS = ("memory", "sqlite", "firestore")

ENV_OVERRIDES = {
    "DASHSYNC_BACKEND": "backend",
    "DASHSYNC_USER": "user_id",
    "DASHSYNC_DB": "sqlite_path",
}

NUMERIC_FIELDS = {
    "firestore_poll_interval": float,
    "http_timeout": float,
    "failure_history": int,
}


@dataclass
class DashConfig:
    """Runtime configuration for a dashboard session."""

    # Store backend: memory | sqlite | firestore
    backend: str = "memory"

    # SQLite backend
    sqlite_path: str = "~/.local/share/dashsync/dashsync.db"

    # Firestore REST backend
    firestore_project: str = ""
    firestore_database: str = "(default)"
    firestore_token_env: str = "DASHSYNC_FIRESTORE_TOKEN"
    firestore_poll_interval: float = 2.0
    http_timeout: float = 10.0

    # Diagnostics
    failure_history: int = 100  # failed writes kept in memory
    log_level: str = "INFO"

    # Identity (normally supplied by the auth gate)
    user_id: Optional[str] = None

    def resolve_paths(self):
        """Expand ~ in file paths."""
        self.sqlite_path = str(Path(self.sqlite_path).expanduser())

    def apply_env(self, environ=None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if env.get(var):
                setattr(self, attr, env[var])

    @property
    def firestore_token(self) -> Optional[str]:
        """Bearer token read from the configured environment variable."""
        return os.environ.get(self.firestore_token_env) or None

    def _coerce_numbers(self):
        """YAML values arrive untyped; numeric fields must parse."""
        for name, kind in NUMERIC_FIELDS.items():
            value = getattr(self, name)
            if isinstance(value, bool):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            try:
                setattr(self, name, kind(value))
            except (TypeError, ValueError):
                raise ConfigError(f"{name} must be a number, got {value!r}") from None

    def validate(self) -> None:
        self._coerce_numbers()
        if self.failure_history < 1:
            raise ConfigError("failure_history must be at least 1")
        if self.http_timeout <= 0:
            raise ConfigError("http_timeout must be positive")
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unknown backend '{self.backend}'. Available: {list(BACKENDS)}"
            )
        if self.backend == "firestore" and not self.firestore_project:
            raise ConfigError("firestore backend requires firestore_project")
        if self.firestore_poll_interval <= 0:
            raise ConfigError("firestore_poll_interval must be positive")

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "DashConfig":
        """Load config from YAML file, falling back to defaults when it is missing."""
        cfg_path = Path(path).expanduser() if path else CONFIG_PATH.expanduser()
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Cannot read config {cfg_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {cfg_path} must be a mapping")
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        elif path:
            raise ConfigError(f"Config file not found: {cfg_path}")
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        cfg.validate()
        return cfg
