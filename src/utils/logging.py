"""Structured logging for the relay: correlation IDs, timing, and redaction of Slack/OpenAI secrets."""

import hashlib
import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from src.utils.logging_config import LoggingConfig, get_logger

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# (pattern, replacement, flags) applied in order
_REDACTIONS = (
    (r"xox[abprs]-[A-Za-z0-9-]+", "[REDACTED_SLACK_TOKEN]", re.IGNORECASE),
    (r"sk-[A-Za-z0-9_-]{20,}", "[REDACTED_API_KEY]", 0),
    (r"(?i)(signing[_-]?secret|api[_-]?key|token|secret|password)[\s:=]+([A-Za-z0-9_-]{20,})", r"\1=[REDACTED]", 0),
    (r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", "[REDACTED_EMAIL]", re.IGNORECASE),
)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """
    Bind a correlation ID for the duration of a request.

    Background jobs copy the submitting context, so work detached from a
    request keeps the request's correlation ID in its log lines.
    """
    if correlation_id is None:
        correlation_id = f"req_{uuid.uuid4().hex[:12]}"

    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


def mask_sensitive_data(text: str) -> str:
    """Redact bot tokens, API keys and email addresses from free text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text

    for pattern, replacement, flags in _REDACTIONS:
        text = re.sub(pattern, replacement, text, flags=flags)
    return text


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    # Workspace-scoped Slack IDs are short and left readable; longer IDs are hashed
    if not user_id or not LoggingConfig.LOG_MASK_SENSITIVE or len(user_id) <= 12:
        return user_id
    digest = hashlib.sha256(user_id.encode()).hexdigest()[:8]
    return f"{user_id[:4]}...{digest}"


def sanitize_message_text(text: Optional[str], max_length: int = 500) -> Optional[str]:
    """Return DM text fit for a log line, or None when content logging is off."""
    if not text or not LoggingConfig.LOG_MESSAGE_CONTENT:
        return None

    if len(text) > max_length:
        text = f"{text[:max_length]}..."
    return mask_sensitive_data(text)


class StructuredLogger:
    """Wraps a stdlib logger; keyword arguments become ``extra`` fields."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        extra: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        correlation_id = _correlation_id.get()
        if correlation_id:
            extra["correlation_id"] = correlation_id
        extra.update(fields)
        return extra

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=self._fields(fields))

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=self._fields(fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=self._fields(fields))

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=self._fields(fields))

    def exception(self, message: str, **fields: Any) -> None:
        self.logger.exception(message, extra=self._fields(fields))


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Log how long the wrapped block took, with a warning past the slow threshold."""
    logger = logger or get_structured_logger(__name__)
    threshold_ms = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS

    started = time.monotonic()
    logger.debug(f"Starting {operation_name}", operation=operation_name, **context)
    try:
        yield
    finally:
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)
        logger.info(
            f"Completed {operation_name}",
            operation=operation_name,
            processing_time_ms=elapsed_ms,
            **context
        )
        if elapsed_ms > threshold_ms:
            logger.warning(
                f"Slow operation detected: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=threshold_ms,
                **context
            )
