"""Slack request signature verification."""

import hmac
import hashlib
import time
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Slack rejects requests older than five minutes; so do we
MAX_REQUEST_AGE_SECONDS = 60 * 5
SIGNATURE_VERSION = "v0"


def _parse_timestamp(timestamp: str) -> Optional[int]:
    try:
        return int(timestamp)
    except (TypeError, ValueError):
        return None


def is_fresh(timestamp: str, now: Optional[float] = None) -> bool:
    """
    Check that a request timestamp lies within five minutes of now.

    The window is symmetric and inclusive, so clock skew in either direction
    up to the limit is accepted. Unparseable timestamps are never fresh.
    """
    request_time = _parse_timestamp(timestamp)
    if request_time is None:
        return False

    current_time = int(now if now is not None else time.time())
    return abs(current_time - request_time) <= MAX_REQUEST_AGE_SECONDS


def compute_slack_signature(signing_secret: str, timestamp: str, raw_body: bytes) -> str:
    """Compute the ``v0=<hex>`` signature Slack sends for a request body."""
    base_string = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + raw_body
    digest = hmac.new(
        signing_secret.encode("utf-8"),
        base_string,
        hashlib.sha256
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    raw_body: bytes,
    signature: str,
    timestamp: str,
    signing_secret: str,
    now: Optional[float] = None,
) -> bool:
    """
    Verify a Slack request signature using HMAC-SHA256.

    Requests whose timestamp is more than five minutes in the past are
    rejected as replays. The signature is computed over the exact raw bytes
    Slack sent and compared in constant time. Never raises.
    """
    try:
        request_time = _parse_timestamp(timestamp)
        if request_time is None:
            logger.warning("Slack request timestamp is not an integer")
            return False

        current_time = int(now if now is not None else time.time())
        if request_time < current_time - MAX_REQUEST_AGE_SECONDS:
            logger.warning("Slack request timestamp too old")
            return False

        expected_signature = compute_slack_signature(signing_secret, timestamp, raw_body)
        return hmac.compare_digest(expected_signature, signature)
    except Exception as e:
        logger.error(f"Error verifying Slack signature: {e}")
        return False
