"""Slack Events API dispatcher: verify, classify, acknowledge, then run the assistant turn."""

import json
from typing import Mapping, Optional

from src.models.slack_event import (
    EventCallbackEnvelope,
    SlackEvent,
    UrlVerificationEnvelope,
    parse_envelope,
)
from src.services.assistant_client import AssistantClient, build_assistant_client
from src.services.background_jobs import BackgroundJobRunner, get_background_jobs
from src.services.slack_client import SlackClient, get_slack_client
from src.services.slack_dedup import EventDeduplicator, generate_event_id
from src.services.slack_verifier import is_fresh, verify_slack_signature
from src.services.thread_store import ThreadStore, get_thread_store
from src.services.user_locks import UserTurnLocks, get_user_turn_locks
from src.utils.errors import SlackVerificationError
from src.utils.logging import (
    get_structured_logger,
    log_timing,
    mask_user_id,
    sanitize_message_text,
)
from src.utils.responses import get_header, json_response
from src.utils.settings import get_settings

logger = get_structured_logger(__name__)

SIGNATURE_HEADER = "x-slack-signature"
TIMESTAMP_HEADER = "x-slack-request-timestamp"
APOLOGY_MESSAGE = "Sorry, I encountered an error processing your message. Please try again."


def _ack(headers: Optional[dict[str, str]] = None) -> dict:
    return json_response(200, {"ok": True}, headers)


class SlackEventDispatcher:
    """
    Handles one Events API request from raw bytes to HTTP response.

    Verification and classification happen inline. For a direct message the
    typing indicator is posted before acknowledging, and the assistant turn
    is submitted as a background job whose outcome the webhook caller never
    sees: failures there become an apology message to the user.
    """

    def __init__(
        self,
        signing_secret: str,
        bot_app_id: str,
        thread_store: ThreadStore,
        assistant: AssistantClient,
        slack: SlackClient,
        jobs: BackgroundJobRunner,
        deduplicator: Optional[EventDeduplicator] = None,
        turn_locks: Optional[UserTurnLocks] = None,
    ):
        self.signing_secret = signing_secret
        self.bot_app_id = bot_app_id
        self.thread_store = thread_store
        self.assistant = assistant
        self.slack = slack
        self.jobs = jobs
        self.deduplicator = deduplicator
        self.turn_locks = turn_locks or UserTurnLocks()

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> dict:
        try:
            try:
                self._verify(raw_body, headers)
            except SlackVerificationError as e:
                return json_response(e.status_code, {"error": str(e)})

            try:
                body = json.loads(raw_body.decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                logger.warning("Invalid JSON body", body_length=len(raw_body))
                return json_response(400, {"error": "Invalid JSON body"})
            if not isinstance(body, dict):
                logger.warning("JSON body is not an object")
                return json_response(400, {"error": "Invalid JSON body"})

            envelope = parse_envelope(body)
            if isinstance(envelope, UrlVerificationEnvelope):
                return self._handle_url_verification(envelope)
            if isinstance(envelope, EventCallbackEnvelope):
                return self._handle_event_callback(envelope, body)

            logger.info("Unknown event type, just acknowledging", envelope_type=envelope.type)
            return _ack()
        except Exception as e:
            logger.error("Error handling Slack event", error=str(e), exc_info=True)
            return json_response(500, {"error": "Internal server error"})

    def _verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        signature = get_header(headers, SIGNATURE_HEADER)
        timestamp = get_header(headers, TIMESTAMP_HEADER)

        if not signature or not timestamp or not self.signing_secret:
            logger.error(
                "Missing required headers or signing secret",
                has_signature=bool(signature),
                has_timestamp=bool(timestamp),
                has_secret=bool(self.signing_secret)
            )
            raise SlackVerificationError("Missing required headers")

        if not is_fresh(timestamp):
            logger.error("Request timestamp is too old", request_timestamp=timestamp)
            raise SlackVerificationError("Request timestamp is too old")

        if not verify_slack_signature(raw_body, signature, timestamp, self.signing_secret):
            logger.error("Invalid Slack signature", body_length=len(raw_body))
            raise SlackVerificationError("Invalid signature", status_code=401)

    def _handle_url_verification(self, envelope: UrlVerificationEnvelope) -> dict:
        if not envelope.challenge:
            logger.warning("URL verification without challenge")
            return json_response(400, {"error": "Invalid challenge"})

        logger.info("Slack URL verification challenge received")
        return json_response(200, {"challenge": envelope.challenge})

    def should_process(self, event: SlackEvent) -> bool:
        """True for visible, user-authored messages in a DM channel."""
        return (
            event.type == "message"
            and bool(event.user)
            and not event.hidden
            and event.is_direct_message
        )

    def is_self_authored(self, event: SlackEvent) -> bool:
        # Events without an app_id are processed
        return bool(event.app_id) and bool(self.bot_app_id) and event.app_id == self.bot_app_id

    def _handle_event_callback(self, envelope: EventCallbackEnvelope, body: dict) -> dict:
        event = envelope.event
        if event is None:
            logger.info("Event callback without a usable event, acknowledging")
            return _ack()

        if not self.should_process(event):
            logger.info(
                "Not a direct message, just acknowledging",
                event_type=event.type,
                channel_id=event.channel,
                hidden=event.hidden
            )
            return _ack()

        if self.is_self_authored(event):
            logger.info("Acknowledged message from itself", app_id=event.app_id)
            return _ack()

        event_id = envelope.event_id or generate_event_id(body)
        if self.deduplicator is not None and self.deduplicator.check_and_mark(event_id):
            return _ack({"X-Slack-Ignored-Retry": "true"})

        logger.info(
            "Direct message received",
            slack_event_id=event_id,
            slack_user_id=mask_user_id(event.user),
            channel_id=event.channel,
            message_preview=sanitize_message_text(event.text, max_length=100)
        )

        try:
            typing_ts = self.jobs.run(self.slack.send_typing_indicator(event.channel))
            self.jobs.submit(
                self.process_direct_message(event, typing_ts),
                name=f"direct_message:{event_id}",
            )
        except Exception:
            # Not accepted, so Slack's retry of this event must be processed
            if self.deduplicator is not None:
                self.deduplicator.forget(event_id)
            raise
        return _ack()

    async def process_direct_message(self, event: SlackEvent, typing_ts: Optional[str] = None) -> None:
        """Run one assistant turn for a DM and deliver the reply."""
        user_id = event.user
        channel = event.channel

        async with self.turn_locks.hold(user_id):
            try:
                with log_timing("assistant_turn", logger=logger, slack_user_id=mask_user_id(user_id)):
                    reply = await self._run_turn(user_id, event.text or "")
            except Exception as e:
                logger.error(
                    "Error processing message for user",
                    slack_user_id=mask_user_id(user_id),
                    error=str(e),
                    exc_info=True
                )
                await self._send_apology(channel, typing_ts)
                return

            await self._deliver(user_id, channel, typing_ts, reply)

    async def _create_thread(self) -> str:
        thread = await self.assistant.create_thread()
        return thread.id

    async def _run_turn(self, user_id: str, text: str) -> str:
        thread_id = await self.thread_store.get_or_create(user_id, self._create_thread)

        await self.assistant.append_message(thread_id, text)
        run = await self.assistant.start_run(thread_id)
        logger.info("Started run", run_id=run.id, thread_id=thread_id, slack_user_id=mask_user_id(user_id))

        await self.assistant.await_completion(thread_id, run.id)
        logger.info("Run completed", run_id=run.id, thread_id=thread_id)

        return await self.assistant.fetch_latest_reply(thread_id)

    async def _deliver(self, user_id: str, channel: str, typing_ts: Optional[str], reply: str) -> None:
        if typing_ts:
            await self.slack.delete_message(channel, typing_ts)

        if await self.slack.send_markdown(channel, reply):
            logger.info("Successfully sent response to user", slack_user_id=mask_user_id(user_id))
        else:
            logger.error("Failed to send response to user", slack_user_id=mask_user_id(user_id))

    async def _send_apology(self, channel: str, typing_ts: Optional[str]) -> None:
        if typing_ts:
            await self.slack.delete_message(channel, typing_ts)
        if not await self.slack.send_text(channel, APOLOGY_MESSAGE):
            logger.error("Failed to send apology message", channel_id=channel)


_dispatcher: Optional[SlackEventDispatcher] = None


def get_event_dispatcher() -> SlackEventDispatcher:
    """Get or create the process-wide dispatcher wired to the shared services."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = SlackEventDispatcher(
            signing_secret=settings.slack_signing_secret,
            bot_app_id=settings.slack_bot_app_id,
            thread_store=get_thread_store(),
            assistant=build_assistant_client(),
            slack=get_slack_client(),
            jobs=get_background_jobs(),
            deduplicator=EventDeduplicator(ttl_seconds=settings.event_dedup_ttl_seconds),
            turn_locks=get_user_turn_locks(),
        )
    return _dispatcher
