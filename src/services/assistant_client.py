"""Client for the OpenAI Assistants API (threads, messages, runs)."""

import asyncio
import time
from typing import Any, Optional, Type

import httpx
from pydantic import BaseModel, Field, ValidationError

from src.models.assistant import AssistantThread, Run, RunStatus, ThreadMessage
from src.utils.errors import (
    AssistantError,
    MessageAppendError,
    NoReplyError,
    ReplyFetchError,
    RunCancelError,
    RunCreationError,
    RunFailedError,
    RunStatusError,
    RunTimeoutError,
    ThreadCreationError,
)
from src.utils.logging import get_structured_logger, sanitize_message_text
from src.utils.settings import get_settings

logger = get_structured_logger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"
ASSISTANTS_API_VERSION = "assistants=v2"
DEFAULT_REQUEST_TIMEOUT = 30.0


class PollPolicy(BaseModel):
    """How long and how often to poll a run before giving up."""
    interval_seconds: float = Field(1.0, ge=0, description="Delay before the first status check")
    backoff_factor: float = Field(1.0, ge=1.0, description="Multiplier applied to the delay after each check")
    max_interval_seconds: float = Field(5.0, ge=0, description="Upper bound for a single delay")
    max_attempts: Optional[int] = Field(300, ge=1, description="Status checks before timing out, None for unbounded")
    timeout_seconds: Optional[float] = Field(300.0, gt=0, description="Wall-clock budget, None for unbounded")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait before status check number ``attempt`` (1-based)."""
        cap = max(self.max_interval_seconds, self.interval_seconds)
        delay = self.interval_seconds
        for _ in range(max(attempt - 1, 0)):
            if delay >= cap or delay == 0:
                break
            delay *= self.backoff_factor
        return min(delay, cap)


def _response_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return sanitize_message_text(response.text, max_length=300)


class AssistantClient:
    """
    Async wrapper over the thread-based Assistants API.

    Every failure is logged with its cause and re-raised as the error type
    of the operation that failed, so callers never see transport errors.
    """

    def __init__(
        self,
        api_key: str,
        assistant_id: str,
        poll_policy: Optional[PollPolicy] = None,
        base_url: str = OPENAI_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.assistant_id = assistant_id
        self.poll_policy = poll_policy or PollPolicy()
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": ASSISTANTS_API_VERSION,
        }

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[AssistantError],
        action: str,
        json_data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
                timeout=self.timeout,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    headers=self._headers(),
                    json=json_data,
                    params=params,
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(
                f"OpenAI API error: failed to {action}",
                status_code=status_code,
                response_body=_response_detail(e.response)
            )
            raise error_cls(f"Failed to {action}", status_code=status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"OpenAI request error: failed to {action}", error=str(e))
            raise error_cls(f"Failed to {action}") from e

    @staticmethod
    def _parse(model: Type[BaseModel], data: Any, error_cls: Type[AssistantError], action: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected OpenAI response: failed to {action}", error=str(e))
            raise error_cls(f"Failed to {action}") from e

    async def create_thread(self) -> AssistantThread:
        action = "create OpenAI thread"
        data = await self._request("POST", "/threads", ThreadCreationError, action, json_data={})
        return self._parse(AssistantThread, data, ThreadCreationError, action)

    async def append_message(self, thread_id: str, text: str) -> ThreadMessage:
        """Add a user-role message to a thread."""
        action = "add message to thread"
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            MessageAppendError,
            action,
            json_data={"role": "user", "content": text},
        )
        return self._parse(ThreadMessage, data, MessageAppendError, action)

    async def start_run(self, thread_id: str) -> Run:
        action = "create OpenAI run"
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            RunCreationError,
            action,
            json_data={"assistant_id": self.assistant_id},
        )
        return self._parse(Run, data, RunCreationError, action)

    async def get_run_status(self, thread_id: str, run_id: str) -> Run:
        action = "get run status"
        data = await self._request(
            "GET", f"/threads/{thread_id}/runs/{run_id}", RunStatusError, action
        )
        return self._parse(Run, data, RunStatusError, action)

    async def cancel_run(self, thread_id: str, run_id: str) -> Run:
        action = "cancel run"
        data = await self._request(
            "POST", f"/threads/{thread_id}/runs/{run_id}/cancel", RunCancelError, action
        )
        return self._parse(Run, data, RunCancelError, action)

    async def await_completion(self, thread_id: str, run_id: str) -> Run:
        """
        Poll a run until it completes.

        Waits before every status check. ``completed`` returns the run; a
        terminal failure raises RunFailedError. When the poll policy runs out
        of attempts or time the run is cancelled (best effort) and
        RunTimeoutError is raised, so a stuck run cannot keep the thread busy.
        """
        policy = self.poll_policy
        started = time.monotonic()
        attempts = 0
        last_status: Optional[RunStatus] = None

        while True:
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                break
            if policy.timeout_seconds is not None and time.monotonic() - started >= policy.timeout_seconds:
                break

            await asyncio.sleep(policy.delay_for(attempts + 1))
            run = await self.get_run_status(thread_id, run_id)
            attempts += 1

            if run.status != last_status:
                logger.debug("Run status changed", run_id=run_id, status=run.status.value, attempts=attempts)
            last_status = run.status

            if run.status.is_success:
                return run
            if run.status.is_failure:
                logger.error(
                    "Run ended unsuccessfully",
                    run_id=run_id,
                    thread_id=thread_id,
                    status=run.status.value,
                    last_error=run.last_error
                )
                raise RunFailedError(run_id, run.status.value)

        last_status_value = last_status.value if last_status else None
        logger.warning(
            "Run did not finish within poll policy",
            run_id=run_id,
            thread_id=thread_id,
            attempts=attempts,
            last_status=last_status_value,
            elapsed_seconds=round(time.monotonic() - started, 2)
        )
        try:
            await self.cancel_run(thread_id, run_id)
        except RunCancelError:
            logger.warning("Could not cancel timed out run", run_id=run_id, thread_id=thread_id)
        raise RunTimeoutError(run_id, attempts, last_status_value)

    async def list_messages(self, thread_id: str, limit: int = 20) -> list[ThreadMessage]:
        """List thread messages, newest first."""
        action = "get thread messages"
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            ReplyFetchError,
            action,
            params={"order": "desc", "limit": limit},
        )
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.error("Unexpected OpenAI response: message list missing", thread_id=thread_id)
            raise ReplyFetchError(f"Failed to {action}")
        return [self._parse(ThreadMessage, item, ReplyFetchError, action) for item in items]

    async def fetch_latest_reply(self, thread_id: str) -> str:
        """Return the text of the most recent assistant message in a thread."""
        messages = await self.list_messages(thread_id)

        assistant_messages = [message for message in messages if message.role == "assistant"]
        if not assistant_messages:
            logger.error("No assistant message found in thread", thread_id=thread_id)
            raise NoReplyError("No assistant message found in thread")

        # Listed newest first; max() keeps the first of equal timestamps
        latest = max(assistant_messages, key=lambda message: message.created_at or 0)
        text = latest.first_text()
        if text is None:
            logger.error("No text content found in assistant message", thread_id=thread_id, message_id=latest.id)
            raise NoReplyError("No text content found in assistant message")

        return text


def build_assistant_client() -> AssistantClient:
    """Create an assistant client from the process settings."""
    settings = get_settings()
    policy = PollPolicy(
        interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        timeout_seconds=settings.poll_timeout_seconds,
    )
    return AssistantClient(
        api_key=settings.openai_api_key,
        assistant_id=settings.openai_assistant_id,
        poll_policy=policy,
    )
