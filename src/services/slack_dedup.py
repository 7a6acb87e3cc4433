"""Slack event deduplication for retried deliveries."""

import hashlib
import json
import threading
import time
from typing import Optional

from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

DEFAULT_TTL_SECONDS = 600


def generate_event_id(body: dict) -> str:
    """
    Generate deterministic event ID for deduplication.

    Uses event_id from body if available, otherwise derives one from the
    event timestamp or, failing that, from the body content.
    """
    event_id = body.get("event_id")
    if event_id:
        return str(event_id)

    event = body.get("event")
    if body.get("type") == "event_callback" and isinstance(event, dict):
        event_ts = event.get("event_ts") or event.get("ts")
        if event_ts:
            return f"slack_event_{event.get('channel', '')}_{event_ts}"

    body_str = json.dumps(body, sort_keys=True, default=str)
    return hashlib.sha1(body_str.encode()).hexdigest()


class EventDeduplicator:
    """
    Remembers accepted event IDs for a while.

    Slack redelivers an event when the first delivery is not acknowledged
    fast enough; a redelivery must not start a second assistant turn.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        expired = [event_id for event_id, seen_at in self._seen.items() if now - seen_at > self.ttl_seconds]
        for event_id in expired:
            del self._seen[event_id]

    def check_and_mark(self, event_id: str, now: Optional[float] = None) -> bool:
        """Return True if the event was already seen; otherwise remember it."""
        now = time.monotonic() if now is None else now
        with self._lock:
            self._evict(now)
            if event_id in self._seen:
                logger.info("Duplicate event detected", slack_event_id=event_id)
                return True
            self._seen[event_id] = now
            return False

    def forget(self, event_id: str) -> None:
        with self._lock:
            self._seen.pop(event_id, None)
