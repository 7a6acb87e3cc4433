"""Operator-initiated messages: deliver to a user's DM and record them in the assistant thread."""

from typing import Any, Optional

from src.models.send_message import SendMessageResponse
from src.services.assistant_client import AssistantClient, build_assistant_client
from src.services.slack_client import SlackClient, get_slack_client
from src.services.thread_store import ThreadStore, get_thread_store
from src.services.user_locks import UserTurnLocks, get_user_turn_locks
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_message_text

logger = get_structured_logger(__name__)

SYSTEM_CONTEXT_TEMPLATE = """
There's a new message coming from the System to the user.
The user is aware of the message and its content.
You don't need to respond to the message, you just need to save it on the context.
The message is:
{message}
"""


def build_system_context_prompt(message: str) -> str:
    return SYSTEM_CONTEXT_TEMPLATE.format(message=message)


def normalize_username(username: str) -> str:
    username = username.strip()
    return username[1:] if username.startswith("@") else username


def validate_send_message_request(username: Any, message: Any) -> Optional[str]:
    """Return a validation error message, or None when the request is usable."""
    if not username or not isinstance(username, str):
        return "Username is required and must be a string"
    if not message or not isinstance(message, str):
        return "Message is required and must be a string"
    if not username.strip():
        return "Username cannot be empty"
    if not message.strip():
        return "Message cannot be empty"
    return None


class ManualInjectionHandler:
    """
    Sends an operator message to a Slack user and appends it to their
    assistant thread as system context. No run is started, so the assistant
    sees the message on the user's next turn without replying to it now.

    The append waits on the same per-user lock as DM turns: a thread with an
    active run rejects new messages.
    """

    def __init__(
        self,
        thread_store: ThreadStore,
        assistant: AssistantClient,
        slack: SlackClient,
        turn_locks: Optional[UserTurnLocks] = None,
    ):
        self.thread_store = thread_store
        self.assistant = assistant
        self.slack = slack
        self.turn_locks = turn_locks or UserTurnLocks()

    async def _create_thread(self) -> str:
        thread = await self.assistant.create_thread()
        return thread.id

    async def handle(self, username: str, message: str) -> tuple[int, SendMessageResponse]:
        try:
            return await self._handle(username, message)
        except Exception as e:
            logger.error("Error sending manual message", error=str(e), exc_info=True)
            return 500, SendMessageResponse(success=False, error="Internal server error")

    async def _handle(self, username: str, message: str) -> tuple[int, SendMessageResponse]:
        clean_username = normalize_username(username)

        user_id = await self.slack.lookup_user_by_username(clean_username)
        if not user_id:
            return 404, SendMessageResponse(
                success=False,
                error=f"User with username '{username}' not found",
            )

        channel_id = await self.slack.open_direct_message(user_id)
        if not channel_id:
            return 500, SendMessageResponse(
                success=False,
                error="Failed to open direct message channel with user",
                user_id=user_id,
            )

        if not await self.slack.send_markdown(channel_id, message):
            return 500, SendMessageResponse(
                success=False,
                error="Failed to send message to user",
                user_id=user_id,
                channel_id=channel_id,
            )

        async with self.turn_locks.hold(user_id):
            thread_id = await self.thread_store.get_or_create(user_id, self._create_thread)
            await self.assistant.append_message(thread_id, build_system_context_prompt(message))

        logger.info(
            "Manual message sent and recorded",
            slack_user_id=mask_user_id(user_id),
            channel_id=channel_id,
            thread_id=thread_id,
            message_preview=sanitize_message_text(message, max_length=100)
        )
        return 200, SendMessageResponse(
            success=True,
            message=f"Message sent successfully to {username}",
            user_id=user_id,
            channel_id=channel_id,
        )


_handler: Optional[ManualInjectionHandler] = None


def get_manual_injection_handler() -> ManualInjectionHandler:
    global _handler
    if _handler is None:
        _handler = ManualInjectionHandler(
            thread_store=get_thread_store(),
            assistant=build_assistant_client(),
            slack=get_slack_client(),
            turn_locks=get_user_turn_locks(),
        )
    return _handler
