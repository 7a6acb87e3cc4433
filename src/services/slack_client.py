"""Slack Web API client for outbound delivery and user lookup."""

import asyncio
from typing import Any, Optional

import httpx

from src.services.block_builder import BlockBuilder
from src.utils.errors import SlackApiError
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_message_text
from src.utils.settings import get_settings

logger = get_structured_logger(__name__)

SLACK_API_BASE = "https://slack.com/api"
TYPING_INDICATOR_TEXT = "..."
DEFAULT_REQUEST_TIMEOUT = 30.0


class SlackClient:
    """
    Thin async client over the Slack Web API.

    Public methods never raise: failures are logged and reported as False
    or None, matching how the relay treats delivery as best effort.
    """

    def __init__(
        self,
        bot_token: str,
        base_url: str = SLACK_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.bot_token = bot_token
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._user_cache: dict[str, str] = {}

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.bot_token}"}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _call(
        self,
        method: str,
        json_data: Optional[dict[str, Any]] = None,
        form_data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        http_method: str = "POST",
    ) -> dict[str, Any]:
        """Call a Web API method and return its payload, raising on ``ok: false``."""
        url = f"{self.base_url}/{method}"
        try:
            async with self._http() as client:
                response = await client.request(
                    http_method,
                    url,
                    headers=self._headers(),
                    json=json_data,
                    data=form_data,
                    params=params,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SlackApiError(f"{method} request failed: {e}") from e

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error", "unknown_error") if isinstance(data, dict) else "invalid_response"
            raise SlackApiError(f"{method} returned error: {error}")

        return data

    async def send_text(self, channel: str, text: str) -> bool:
        try:
            await self._call("chat.postMessage", json_data={"channel": channel, "text": text})
        except SlackApiError as e:
            logger.error("Error sending Slack message", channel_id=channel, error=str(e))
            return False

        logger.info(
            "Message sent",
            channel_id=channel,
            message_preview=sanitize_message_text(text, max_length=100)
        )
        return True

    async def send_blocks(self, channel: str, blocks: list[dict[str, Any]], text: str = "") -> bool:
        """Send Block Kit blocks; ``text`` is the notification fallback."""
        try:
            await self._call(
                "chat.postMessage",
                json_data={"channel": channel, "blocks": blocks, "text": text},
            )
        except SlackApiError as e:
            logger.error("Error sending Slack blocks", channel_id=channel, block_count=len(blocks), error=str(e))
            return False

        logger.info("Blocks sent", channel_id=channel, block_count=len(blocks))
        return True

    async def send_markdown(self, channel: str, markdown: str) -> bool:
        blocks = BlockBuilder().markdown(markdown).build()
        return await self.send_blocks(channel, blocks, text=markdown)

    async def send_typing_indicator(self, channel: str) -> Optional[str]:
        """Post a placeholder message and return its ``ts`` for later deletion."""
        try:
            data = await self._call(
                "chat.postMessage",
                json_data={
                    "channel": channel,
                    "text": TYPING_INDICATOR_TEXT,
                    "unfurl_links": False,
                    "unfurl_media": False,
                },
            )
        except SlackApiError as e:
            logger.error("Error sending typing indicator", channel_id=channel, error=str(e))
            return None

        return data.get("ts")

    async def delete_message(self, channel: str, ts: str) -> bool:
        try:
            await self._call("chat.delete", json_data={"channel": channel, "ts": ts})
        except SlackApiError as e:
            logger.error("Error deleting Slack message", channel_id=channel, message_ts=ts, error=str(e))
            return False
        return True

    async def open_direct_message(self, user_id: str) -> Optional[str]:
        """Open (or reuse) the DM channel with a user and return its ID."""
        try:
            data = await self._call("conversations.open", json_data={"users": user_id})
        except SlackApiError as e:
            logger.error("Error opening direct message", slack_user_id=mask_user_id(user_id), error=str(e))
            return None

        channel = data.get("channel") or {}
        return channel.get("id")

    async def refresh_user_cache(self) -> dict[str, str]:
        """Reload the username -> user ID cache from ``users.list``."""
        users: dict[str, str] = {}
        cursor: Optional[str] = None

        while True:
            params: dict[str, Any] = {"limit": 200}
            if cursor:
                params["cursor"] = cursor

            try:
                data = await self._call("users.list", params=params, http_method="GET")
            except SlackApiError as e:
                logger.error("Error refreshing Slack user cache", error=str(e))
                return self.get_user_cache()

            for member in data.get("members", []):
                if member.get("deleted") or not member.get("id"):
                    continue
                names = {member.get("name"), (member.get("profile") or {}).get("display_name")}
                for name in names:
                    if name:
                        users[name.lower()] = member["id"]

            cursor = (data.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break

        self._user_cache = users
        logger.info("Slack user cache refreshed", user_count=len(users))
        return self.get_user_cache()

    def get_user_cache(self) -> dict[str, str]:
        return dict(self._user_cache)

    async def lookup_user_by_username(self, username: str) -> Optional[str]:
        """Resolve a username or display name to a user ID, refreshing the cache on a miss."""
        key = username.lower()
        user_id = self._user_cache.get(key)
        if user_id:
            return user_id

        await self.refresh_user_cache()
        user_id = self._user_cache.get(key)
        if not user_id:
            logger.warning("Slack user not found", username=username)
        return user_id

    async def upload_image(
        self,
        image: bytes,
        file_name: str,
        title: Optional[str] = None,
    ) -> Optional[tuple[str, str]]:
        """Upload image bytes and return ``(url_private, file_id)``."""
        try:
            ticket = await self._call(
                "files.getUploadURLExternal",
                form_data={"filename": file_name, "length": len(image)},
            )
            upload_url = ticket["upload_url"]
            file_id = ticket["file_id"]

            async with self._http() as client:
                response = await client.post(upload_url, content=image)
                response.raise_for_status()

            completed = await self._call(
                "files.completeUploadExternal",
                json_data={"files": [{"id": file_id, "title": title or file_name}]},
            )
        except (SlackApiError, httpx.HTTPError, KeyError) as e:
            logger.error("Error uploading image to Slack", file_name=file_name, error=str(e))
            return None

        files = completed.get("files") or [{}]
        url = files[0].get("url_private") or files[0].get("permalink")
        if not url:
            logger.error("Slack upload returned no file URL", file_id=file_id)
            return None

        logger.info("Image uploaded", file_id=file_id, size_bytes=len(image))
        return url, file_id

    async def verify_upload(self, file_id: str, attempts: int = 5, delay_seconds: float = 1.0) -> bool:
        """Wait until Slack reports the uploaded file as available."""
        for attempt in range(1, attempts + 1):
            try:
                data = await self._call("files.info", params={"file": file_id}, http_method="GET")
                file_info = data.get("file") or {}
                if file_info.get("url_private"):
                    return True
            except SlackApiError as e:
                logger.debug("File not ready yet", file_id=file_id, attempt=attempt, error=str(e))

            if attempt < attempts:
                await asyncio.sleep(delay_seconds)

        logger.warning("Uploaded file never became available", file_id=file_id, attempts=attempts)
        return False

    async def validate_token(self) -> bool:
        try:
            data = await self._call("auth.test", json_data={})
        except SlackApiError as e:
            logger.error("Slack token validation failed", error=str(e))
            return False

        logger.info("Slack token validated", team_id=data.get("team_id"), bot_user_id=data.get("user_id"))
        return True


_slack_client: Optional[SlackClient] = None


def get_slack_client() -> SlackClient:
    """Get or create the process-wide Slack client (it owns the user cache)."""
    global _slack_client
    if _slack_client is None:
        _slack_client = SlackClient(get_settings().slack_bot_token)
    return _slack_client
