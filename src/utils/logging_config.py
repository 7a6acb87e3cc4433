"""Process-wide logging setup driven by LOG_* environment variables."""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest")


def _flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


class LoggingConfig:
    """Logging knobs, read once at import time."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_MESSAGE_CONTENT = _flag("LOG_MESSAGE_CONTENT")
    LOG_MASK_SENSITIVE = _flag("LOG_MASK_SENSITIVE")
    # Assistant runs routinely take several seconds
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "10000"))

    @classmethod
    def build_formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(
                "%(timestamp)s %(levelname)s %(name)s %(message)s",
                timestamp=True
            )
        return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    @classmethod
    def setup_logging(cls, level: Optional[str] = None) -> None:
        """Replace root handlers with a single stdout handler."""
        log_level = getattr(logging, (level or cls.LOG_LEVEL).upper(), logging.INFO)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(cls.build_formatter())

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(log_level)
        root_logger.addHandler(handler)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
