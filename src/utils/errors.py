"""Error handling utilities."""

from typing import Optional


class RelayError(Exception):
    """Base exception for the Slack assistant relay."""
    pass


class ConfigurationError(RelayError):
    """Required configuration is missing or invalid."""
    pass


class SlackVerificationError(RelayError):
    """Inbound request failed Slack header, freshness or signature checks."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class SlackApiError(RelayError):
    """Slack Web API call failed."""
    pass


class ThreadStoreError(RelayError):
    """Thread mapping could not be loaded or persisted."""
    pass


class ThreadStoreCorruptError(ThreadStoreError):
    """Persisted thread mapping could not be parsed."""
    pass


class AssistantError(RelayError):
    """Assistant API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ThreadCreationError(AssistantError):
    """Failed to create an assistant thread."""
    pass


class MessageAppendError(AssistantError):
    """Failed to add a message to a thread."""
    pass


class RunCreationError(AssistantError):
    """Failed to start a run."""
    pass


class RunStatusError(AssistantError):
    """Failed to fetch the status of a run."""
    pass


class RunCancelError(AssistantError):
    """Failed to cancel a run."""
    pass


class ReplyFetchError(AssistantError):
    """Failed to list the messages of a thread."""
    pass


class NoReplyError(AssistantError):
    """Thread holds no assistant message with text content."""
    pass


class RunFailedError(AssistantError):
    """Run reached a terminal failure status."""

    def __init__(self, run_id: str, status: str):
        super().__init__(f"Run {run_id} failed with status: {status}")
        self.run_id = run_id
        self.status = status


class RunTimeoutError(AssistantError):
    """Run did not reach a terminal status within the poll policy."""

    def __init__(self, run_id: str, attempts: int, last_status: Optional[str]):
        super().__init__(
            f"Run {run_id} still {last_status} after {attempts} status checks"
        )
        self.run_id = run_id
        self.attempts = attempts
        self.last_status = last_status
