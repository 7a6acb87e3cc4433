"""Manual message endpoint: push an operator message into a user's DM."""

import json

from src.models.send_message import SendMessageResponse
from src.services.background_jobs import get_background_jobs
from src.services.manual_injection import (
    get_manual_injection_handler,
    validate_send_message_request,
)
from src.utils.logging import correlation_context, get_structured_logger
from src.utils.responses import get_header, json_response

logger = get_structured_logger(__name__)


class RequestBodyError(ValueError):
    """Request body could not be decoded."""


def parse_send_message_request(request: dict) -> tuple:
    """
    Extract ``(username, message)`` from a request.

    ``username`` comes from the query string or, for JSON bodies, the
    ``username`` field. A JSON body carries the text in ``message``; any
    other body is the message text itself.
    """
    query = request.get("query") or {}
    raw_body = request.get("body") or b""
    try:
        text = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
    except UnicodeDecodeError:
        raise RequestBodyError("Request body must be UTF-8")

    content_type = get_header(request.get("headers") or {}, "content-type").lower()
    if "application/json" in content_type:
        try:
            data = json.loads(text) if text else {}
        except ValueError:
            raise RequestBodyError("Invalid JSON body")
        if not isinstance(data, dict):
            raise RequestBodyError("JSON body must be an object")
        return query.get("username") or data.get("username"), data.get("message")

    return query.get("username"), text


def handler(request):
    with correlation_context():
        try:
            username, message = parse_send_message_request(request)
        except RequestBodyError as e:
            return json_response(400, SendMessageResponse(success=False, error=str(e)).to_body())

        error = validate_send_message_request(username, message)
        if error:
            logger.warning("Invalid send-message request", error=error)
            return json_response(400, SendMessageResponse(success=False, error=error).to_body())

        try:
            status_code, result = get_background_jobs().run(
                get_manual_injection_handler().handle(username, message)
            )
        except Exception as e:
            logger.error("Error in send-message handler", error=str(e), exc_info=True)
            status_code, result = 500, SendMessageResponse(success=False, error="Internal server error")

        return json_response(status_code, result.to_body())
