"""Slack Events API webhook endpoint."""

from src.services.event_dispatcher import get_event_dispatcher
from src.utils.logging import correlation_context, get_structured_logger

logger = get_structured_logger(__name__)


def handler(request):
    """
    Verify and dispatch one Slack event delivery.

    The response is written as soon as the event is classified; assistant
    turns continue on the background job loop.
    """
    raw_body = request.get("body") or b""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    with correlation_context():
        response = get_event_dispatcher().handle(raw_body, request.get("headers") or {})
        logger.info("Slack event request handled", status_code=response["statusCode"])
        return response
