"""Assistant API (threads, messages, runs) response models."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    """Run lifecycle states reported by the Assistants API."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    EXPIRED = "expired"

    @property
    def is_success(self) -> bool:
        return self is RunStatus.COMPLETED

    @property
    def is_failure(self) -> bool:
        return self in TERMINAL_FAILURE_STATUSES


TERMINAL_FAILURE_STATUSES = frozenset({
    RunStatus.FAILED,
    RunStatus.CANCELLED,
    RunStatus.EXPIRED,
    RunStatus.INCOMPLETE,
})


class AssistantThread(BaseModel):
    """Conversation thread."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Thread ID")
    created_at: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None


class TextValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: str
    annotations: list[Any] = Field(default_factory=list)


class MessageContent(BaseModel):
    """One content block of a thread message."""
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="Content type: text, image_file, image_url, ...")
    text: Optional[TextValue] = None


class ThreadMessage(BaseModel):
    """Message stored in a thread."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Message ID")
    role: str = Field(..., description="user or assistant")
    content: list[MessageContent] = Field(default_factory=list)
    thread_id: Optional[str] = None
    created_at: Optional[int] = None

    def first_text(self) -> Optional[str]:
        """Return the value of the first text content block, if any."""
        for block in self.content:
            if block.type == "text" and block.text is not None:
                return block.text.value
        return None


class Run(BaseModel):
    """One assistant processing pass over a thread."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Run ID")
    status: RunStatus = Field(..., description="Current run status")
    thread_id: Optional[str] = None
    assistant_id: Optional[str] = None
    created_at: Optional[int] = None
    last_error: Optional[dict[str, Any]] = None
