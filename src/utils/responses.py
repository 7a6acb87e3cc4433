"""Helpers for the ``{statusCode, headers, body}`` response shape used by the api handlers."""

import json
from typing import Any, Mapping, Optional


def json_response(status_code: int, body: Any, headers: Optional[dict[str, str]] = None) -> dict:
    response_headers = {"Content-Type": "application/json"}
    if headers:
        response_headers.update(headers)
    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(body),
    }


def get_header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup returning "" when absent."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value or ""
    return ""
