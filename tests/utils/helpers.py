"""Test helper functions."""

import json
import hmac
import hashlib
import time
from typing import Dict, Any, Optional, Union

TEST_SIGNING_SECRET = "test_secret"
TEST_APP_ID = "A_SELF_APP"
TYPING_TS = "1700000000.000100"


def generate_slack_signature(secret: str, timestamp: str, body: Union[str, bytes]) -> str:
    """Generate a valid Slack signature for testing."""
    if isinstance(body, str):
        body = body.encode('utf-8')
    sig_basestring = f"v0:{timestamp}:".encode('utf-8') + body
    signature = hmac.new(
        secret.encode('utf-8'),
        sig_basestring,
        hashlib.sha256
    ).hexdigest()
    return f"v0={signature}"


def signed_headers(
    body: bytes,
    secret: str = "test_secret",
    timestamp: Optional[str] = None
) -> Dict[str, str]:
    """Headers Slack would send for this body."""
    if timestamp is None:
        timestamp = str(int(time.time()))
    return {
        "content-type": "application/json",
        "x-slack-request-timestamp": timestamp,
        "x-slack-signature": generate_slack_signature(secret, timestamp, body),
    }


def create_slack_event(
    event_type: str = "message",
    text: str = "Test message",
    channel: str = "D123456",
    user: str = "U123456",
    event_id: str = None,
    app_id: str = None
) -> Dict[str, Any]:
    """Create a Slack event payload for testing (a DM by default)."""
    if event_id is None:
        event_id = f"Ev{int(time.time() * 1000)}"

    event = {
        "type": event_type,
        "channel": channel,
        "user": user,
        "text": text,
        "ts": f"{int(time.time())}.123456"
    }
    if app_id is not None:
        event["app_id"] = app_id

    return {
        "type": "event_callback",
        "event_id": event_id,
        "event": event,
        "team_id": "T123456"
    }


def encode_body(body: Union[Dict[str, Any], str, bytes]) -> bytes:
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode('utf-8')
    return json.dumps(body).encode('utf-8')


def create_http_request(
    method: str = "POST",
    path: str = "/slack/events",
    body: Union[Dict[str, Any], str, bytes] = None,
    headers: Dict[str, str] = None,
    query: Dict[str, str] = None
) -> Dict[str, Any]:
    """Create a request dict as built by the HTTP server."""
    if body is None:
        body = {"type": "event_callback"}

    if headers is None:
        headers = {
            "content-type": "application/json"
        }

    return {
        "method": method,
        "path": path,
        "headers": headers,
        "body": encode_body(body),
        "query": query or {}
    }


def create_signed_request(body: Dict[str, Any], timestamp: Optional[str] = None) -> Dict[str, Any]:
    """Create a Slack events request with a valid signature."""
    raw = encode_body(body)
    return create_http_request(body=raw, headers=signed_headers(raw, timestamp=timestamp))
