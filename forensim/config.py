"""Centralized configuration for Forensim.

All settings are loaded from environment variables with sensible defaults.
Use a .env file or export variables before running.

Example:
    export FORENSIM_SSH_PORT=2222
    export FORENSIM_DB_PATH=/var/lib/forensim/forensim.db
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_env(key: str, default: str) -> str:
    """Get environment variable with fallback."""
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer with fallback."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float with fallback."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean with fallback."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


# Base paths
PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = DATA_DIR / "logs"
BUNDLED_SCENARIOS = PACKAGE_DIR / "data" / "scenarios.json"


@dataclass
class StorageConfig:
    """Persistence and scenario content locations."""

    db_path: Path = field(
        default_factory=lambda: Path(
            _get_env("FORENSIM_DB_PATH", str(DATA_DIR / "forensim.db"))
        )
    )
    scenarios_path: Path = field(
        default_factory=lambda: Path(
            _get_env("FORENSIM_SCENARIOS_PATH", str(BUNDLED_SCENARIOS))
        )
    )
    events_path: Optional[Path] = field(
        default_factory=lambda: (
            Path(_get_env("FORENSIM_EVENTS_FILE", ""))
            if _get_env("FORENSIM_EVENTS_FILE", "")
            else None
        )
    )


@dataclass
class ConsoleConfig:
    """Simulated shell environment presented to learners."""

    home: str = field(default_factory=lambda: _get_env("FORENSIM_HOME", "/home/user"))
    user: str = field(default_factory=lambda: _get_env("FORENSIM_SHELL_USER", "forensic"))
    path: str = field(
        default_factory=lambda: _get_env("FORENSIM_SHELL_PATH", "/bin:/usr/bin")
    )
    hostname: str = field(
        default_factory=lambda: _get_env("FORENSIM_HOSTNAME", "forensics-lab")
    )
    default_scenario: str = field(
        default_factory=lambda: _get_env("FORENSIM_DEFAULT_SCENARIO", "")
    )


@dataclass
class ScoringConfig:
    """Badge rules and leaderboard caching."""

    speed_runner_ms: int = field(
        default_factory=lambda: _get_env_int("FORENSIM_SPEED_RUNNER_MS", 5 * 60 * 1000)
    )
    scenario_badge_points: int = field(
        default_factory=lambda: _get_env_int("FORENSIM_SCENARIO_BADGE_POINTS", 20)
    )
    skill_badge_points: int = field(
        default_factory=lambda: _get_env_int("FORENSIM_SKILL_BADGE_POINTS", 30)
    )
    leaderboard_ttl: float = field(
        default_factory=lambda: _get_env_float("FORENSIM_LEADERBOARD_TTL", 10.0)
    )
    leaderboard_size: int = field(
        default_factory=lambda: _get_env_int("FORENSIM_LEADERBOARD_SIZE", 100)
    )


@dataclass
class SSHConfig:
    """SSH learner console configuration."""

    host: str = field(default_factory=lambda: _get_env("FORENSIM_SSH_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _get_env_int("FORENSIM_SSH_PORT", 2222))
    host_key_path: Path = field(
        default_factory=lambda: Path(
            _get_env("FORENSIM_HOST_KEY", str(DATA_DIR / "host.key"))
        )
    )
    banner: str = field(
        default_factory=lambda: _get_env(
            "FORENSIM_SSH_BANNER", "SSH-2.0-OpenSSH_8.9p1 Ubuntu-3ubuntu0.4"
        )
    )
    max_sessions: int = field(
        default_factory=lambda: _get_env_int("FORENSIM_MAX_SESSIONS", 50)
    )


@dataclass
class MetricsConfig:
    """Prometheus exporter configuration."""

    enabled: bool = field(
        default_factory=lambda: _get_env_bool("FORENSIM_METRICS_ENABLED", False)
    )
    host: str = field(
        default_factory=lambda: _get_env("FORENSIM_METRICS_HOST", "0.0.0.0")
    )
    port: int = field(default_factory=lambda: _get_env_int("FORENSIM_METRICS_PORT", 9090))


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: _get_env("FORENSIM_LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: _get_env(
            "FORENSIM_LOG_FORMAT",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    )
    file: Optional[Path] = field(
        default_factory=lambda: (
            Path(_get_env("FORENSIM_LOG_FILE", ""))
            if _get_env("FORENSIM_LOG_FILE", "")
            else None
        )
    )


@dataclass
class Config:
    """Main configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    console: ConsoleConfig = field(default_factory=ConsoleConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Paths
    project_root: Path = PROJECT_ROOT
    data_dir: Path = DATA_DIR
    logs_dir: Path = LOGS_DIR


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Creates a new instance if one doesn't exist.
    Configuration is loaded from environment variables.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Force reload of configuration from environment.

    Useful for testing or dynamic reconfiguration.
    """
    global _config
    _config = Config()
    return _config
