"""Manual message endpoint request/response models."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class SendMessageResponse(BaseModel):
    """Result returned by the manual message endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(..., description="Whether the message was delivered and recorded")
    message: Optional[str] = Field(None, description="Human-readable success message")
    user_id: Optional[str] = Field(None, alias="userId", description="Resolved Slack user ID")
    channel_id: Optional[str] = Field(None, alias="channelId", description="DM channel ID")
    error: Optional[str] = Field(None, description="Failure reason")

    def to_body(self) -> dict:
        """Serialize with camelCase keys, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)
