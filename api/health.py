"""Health check endpoint."""

from src.utils.responses import json_response

SERVICE_NAME = "slack-assistant-relay"


def handler(request):
    """Liveness probe; answers GET and POST alike."""
    return json_response(200, {"status": "ok", "service": SERVICE_NAME})
