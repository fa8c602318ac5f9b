"""
Runtime configuration from environment variables (optionally from a .env file).
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Repo root: from src/santa/config.py go up to repo root
_REPO_ROOT = Path(__file__).resolve().parent.parent.parent

STORAGE_MEMORY = "memory"
STORAGE_NEO4J = "neo4j"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def load_env_file() -> None:
    """Load .env from repo root or current dir (first found wins; real env vars take precedence)."""
    for path in (_REPO_ROOT / ".env", Path.cwd() / ".env"):
        if path.exists():
            load_dotenv(path)
            break


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    storage_backend: str = STORAGE_MEMORY
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "password"
    slack_bot_token: str = ""
    slack_signing_secret: str = ""
    admin_slack_id: str = ""
    default_timezone: str = "Europe/Riga"
    reminder_hour: int = 10
    first_reminder_days: int = 7
    reminder_interval_seconds: float = 900.0
    scheduled_check_interval_seconds: float = 60.0
    send_delay_seconds: float = 0.5
    slack_timeout_seconds: float = 10.0
    enable_schedulers: bool = True

    def __post_init__(self):
        if self.storage_backend not in (STORAGE_MEMORY, STORAGE_NEO4J):
            raise ValueError(f"STORAGE_BACKEND must be memory or neo4j, got {self.storage_backend!r}")
        if not 0 <= self.reminder_hour <= 23:
            raise ValueError("REMINDER_HOUR must be between 0 and 23")
        if self.first_reminder_days < 0:
            raise ValueError("FIRST_REMINDER_DAYS must not be negative")
        if self.reminder_interval_seconds <= 0 or self.scheduled_check_interval_seconds <= 0:
            raise ValueError("Scheduler intervals must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            storage_backend=_env("STORAGE_BACKEND", STORAGE_MEMORY).lower(),
            neo4j_uri=_env("NEO4J_URI", "bolt://localhost:7687"),
            neo4j_user=_env("NEO4J_USER", "neo4j"),
            neo4j_password=_env("NEO4J_PASSWORD", "password"),
            slack_bot_token=_env("SLACK_BOT_TOKEN"),
            slack_signing_secret=_env("SLACK_SIGNING_SECRET"),
            admin_slack_id=_env("ADMIN_SLACK_ID"),
            default_timezone=_env("DEFAULT_TIMEZONE", "Europe/Riga"),
            reminder_hour=_env_int("REMINDER_HOUR", 10),
            first_reminder_days=_env_int("FIRST_REMINDER_DAYS", 7),
            reminder_interval_seconds=_env_float("REMINDER_INTERVAL_SECONDS", 900.0),
            scheduled_check_interval_seconds=_env_float("SCHEDULED_CHECK_INTERVAL_SECONDS", 60.0),
            send_delay_seconds=_env_float("SEND_DELAY_SECONDS", 0.5),
            slack_timeout_seconds=_env_float("SLACK_TIMEOUT_SECONDS", 10.0),
            enable_schedulers=_env("ENABLE_SCHEDULERS", "true").lower() in _TRUE_VALUES,
        )


_settings: Settings | None = None


def get_settings(cache: bool = True) -> Settings:
    """Settings from the environment (cached by default). Pass cache=False to re-read."""
    global _settings
    if cache and _settings is not None:
        return _settings
    load_env_file()
    _settings = Settings.from_env()
    return _settings
