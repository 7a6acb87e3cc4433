"""Reload the Slack user directory cache used for username lookups."""

from src.services.background_jobs import get_background_jobs
from src.services.slack_client import get_slack_client
from src.utils.logging import get_structured_logger
from src.utils.responses import json_response

logger = get_structured_logger(__name__)


def handler(request):
    try:
        users = get_background_jobs().run(get_slack_client().refresh_user_cache())
        return json_response(200, {"ok": True, "userCount": len(users), "users": users})
    except Exception as e:
        logger.error("Error refreshing user cache", error=str(e), exc_info=True)
        return json_response(500, {"ok": False, "error": "Internal server error"})
