"""Runtime settings read from environment variables."""

import os
from typing import Optional

from src.utils.errors import ConfigurationError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

REQUIRED_ENV_VARS = (
    "SLACK_BOT_TOKEN",
    "SLACK_SIGNING_SECRET",
    "SLACK_BOT_OPENAI_API_KEY",
    "SLACK_BOT_OPENAI_ASSISTANT_ID",
    "SLACK_BOT_APP_ID",
)


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _optional_int(name: str, default: Optional[int]) -> Optional[int]:
    # "none" disables the bound
    if os.environ.get(name, "").strip().lower() == "none":
        return None
    return _int(name, default)


def _optional_float(name: str, default: Optional[float]) -> Optional[float]:
    if os.environ.get(name, "").strip().lower() == "none":
        return None
    return _float(name, default)


class Settings:
    """Relay configuration snapshot."""

    def __init__(
        self,
        slack_bot_token: str = "",
        slack_signing_secret: str = "",
        slack_bot_app_id: str = "",
        openai_api_key: str = "",
        openai_assistant_id: str = "",
        environment: str = "development",
        port: int = 3000,
        thread_store_backend: str = "file",
        thread_store_path: str = "user-threads.json",
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        poll_interval_seconds: float = 1.0,
        poll_max_attempts: Optional[int] = 300,
        poll_timeout_seconds: Optional[float] = 300.0,
        event_dedup_ttl_seconds: int = 600,
    ):
        self.slack_bot_token = slack_bot_token
        self.slack_signing_secret = slack_signing_secret
        self.slack_bot_app_id = slack_bot_app_id
        self.openai_api_key = openai_api_key
        self.openai_assistant_id = openai_assistant_id
        self.environment = environment
        self.port = port
        self.thread_store_backend = thread_store_backend
        self.thread_store_path = thread_store_path
        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_max_attempts = poll_max_attempts
        self.poll_timeout_seconds = poll_timeout_seconds
        self.event_dedup_ttl_seconds = event_dedup_ttl_seconds

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        # Strip to remove trailing newlines pasted into secret managers
        return cls(
            slack_bot_token=os.environ.get("SLACK_BOT_TOKEN", "").strip(),
            slack_signing_secret=os.environ.get("SLACK_SIGNING_SECRET", "").strip(),
            slack_bot_app_id=os.environ.get("SLACK_BOT_APP_ID", "").strip(),
            openai_api_key=os.environ.get("SLACK_BOT_OPENAI_API_KEY", "").strip(),
            openai_assistant_id=os.environ.get("SLACK_BOT_OPENAI_ASSISTANT_ID", "").strip(),
            environment=os.environ.get("ENVIRONMENT", "development").strip(),
            port=_int("PORT", 3000),
            thread_store_backend=os.environ.get("THREAD_STORE_BACKEND", "file").strip().lower(),
            thread_store_path=os.environ.get("THREAD_STORE_PATH", "user-threads.json"),
            supabase_url=os.environ.get("SUPABASE_URL"),
            supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY"),
            poll_interval_seconds=_float("ASSISTANT_POLL_INTERVAL_SECONDS", 1.0),
            poll_max_attempts=_optional_int("ASSISTANT_POLL_MAX_ATTEMPTS", 300),
            poll_timeout_seconds=_optional_float("ASSISTANT_POLL_TIMEOUT_SECONDS", 300.0),
            event_dedup_ttl_seconds=_int("SLACK_EVENT_DEDUP_TTL_SECONDS", 600),
        )


def missing_env_vars() -> list[str]:
    """Return the required environment variables that are unset or blank."""
    return [name for name in REQUIRED_ENV_VARS if not os.environ.get(name, "").strip()]


def validate_env_vars() -> None:
    """Fail startup when required environment variables are missing."""
    missing = missing_env_vars()
    if missing:
        logger.error("Missing required environment variables", missing=missing)
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    backend = os.environ.get("THREAD_STORE_BACKEND", "file").strip().lower()
    if backend not in ("file", "supabase"):
        raise ConfigurationError(f"Unknown THREAD_STORE_BACKEND: {backend}")
    if backend == "supabase" and not (
        os.environ.get("SUPABASE_URL") and os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    ):
        raise ConfigurationError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set for the supabase thread store"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
