import os
from dataclasses import dataclass

import dotenv

from errors import ConfigurationError

# --- Defaults ---
POLL_INTERVAL_SECONDS = 15
AUDIT_LOG_LIMIT = 10
CACHE_SIZE = 512
HTTP_TIMEOUT_SECONDS = 10
LOG_FORMAT = "%(asctime)s:%(levelname)s:%(name)s: %(message)s"

VALID_STATUSES = ("online", "idle", "dnd", "invisible")


@dataclass(frozen=True)
class Settings:
    discord_token: str | None
    roblox_cookie: str | None
    database_path: str = "rank_logger.db"
    poll_interval: float = POLL_INTERVAL_SECONDS
    audit_log_limit: int = AUDIT_LOG_LIMIT
    role_cache_size: int = CACHE_SIZE
    user_cache_size: int = CACHE_SIZE
    advance_on_failed_delivery: bool = True
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    dashboard_host: str = "0.0.0.0"
    dashboard_port: int = 5000
    error_log_channel: int | None = None
    welcome_channel_id: int | None = None
    server_name: str = "the server"
    log_level: str = "INFO"


def _get_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _get_float(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _get_bool(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def load_settings(dotenv_path=None):
    """Read settings from the environment, after loading an optional .env file."""
    dotenv.load_dotenv(dotenv_path)

    poll_interval = _get_float("POLL_INTERVAL_SECONDS", POLL_INTERVAL_SECONDS)
    if poll_interval <= 0:
        raise ConfigurationError("POLL_INTERVAL_SECONDS must be positive")

    role_cache_size = _get_int("ROLE_CACHE_SIZE", CACHE_SIZE)
    user_cache_size = _get_int("USER_CACHE_SIZE", CACHE_SIZE)
    if role_cache_size < 1 or user_cache_size < 1:
        raise ConfigurationError("Cache sizes must be at least 1")

    return Settings(
        discord_token=os.getenv("DISCORD_BOT_TOKEN"),
        roblox_cookie=os.getenv("ROBLOX_COOKIE") or None,
        database_path=os.getenv("DATABASE_PATH", "rank_logger.db"),
        poll_interval=poll_interval,
        audit_log_limit=_get_int("AUDIT_LOG_LIMIT", AUDIT_LOG_LIMIT),
        role_cache_size=role_cache_size,
        user_cache_size=user_cache_size,
        advance_on_failed_delivery=_get_bool("ADVANCE_ON_FAILED_DELIVERY", True),
        http_timeout=_get_float("HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS),
        dashboard_host=os.getenv("DASHBOARD_HOST", "0.0.0.0"),
        dashboard_port=_get_int("DASHBOARD_PORT", 5000),
        error_log_channel=_get_int("ERROR_LOG_CHANNEL", None),
        welcome_channel_id=_get_int("WELCOME_CHANNEL_ID", None),
        server_name=os.getenv("SERVER_NAME", "the server"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
