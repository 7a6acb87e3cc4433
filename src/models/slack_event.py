"""Slack Events API envelope models."""

from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

URL_VERIFICATION = "url_verification"
EVENT_CALLBACK = "event_callback"

# Direct message channel IDs start with "D"
DM_CHANNEL_PREFIX = "D"


class SlackEvent(BaseModel):
    """Inner event of an ``event_callback`` envelope."""
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="Event type, e.g. message")
    user: Optional[str] = Field(None, description="Author Slack user ID")
    text: Optional[str] = Field(None, description="Message text")
    channel: Optional[str] = Field(None, description="Channel ID")
    ts: Optional[str] = Field(None, description="Message timestamp")
    event_ts: Optional[str] = Field(None, description="Event emission timestamp")
    app_id: Optional[str] = Field(None, description="Originating Slack app ID")
    channel_type: Optional[str] = None
    subtype: Optional[str] = None
    hidden: bool = Field(False, description="Set on edits/deletes Slack hides from the channel")

    @property
    def is_direct_message(self) -> bool:
        return bool(self.channel) and self.channel.startswith(DM_CHANNEL_PREFIX)


class UrlVerificationEnvelope(BaseModel):
    """One-time endpoint ownership handshake."""
    model_config = ConfigDict(extra="ignore")

    type: Literal["url_verification"] = URL_VERIFICATION
    challenge: Optional[str] = None
    token: Optional[str] = None


class EventCallbackEnvelope(BaseModel):
    """Wrapper Slack sends around every subscribed event."""
    model_config = ConfigDict(extra="ignore")

    type: Literal["event_callback"] = EVENT_CALLBACK
    event: Optional[SlackEvent] = None
    event_id: Optional[str] = None
    event_time: Optional[int] = None
    api_app_id: Optional[str] = None
    team_id: Optional[str] = None


class UnknownEnvelope(BaseModel):
    """Any envelope type the relay does not handle."""
    type: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


SlackEnvelope = Union[UrlVerificationEnvelope, EventCallbackEnvelope, UnknownEnvelope]


def parse_envelope(body: dict[str, Any]) -> SlackEnvelope:
    """
    Classify a webhook body by its ``type`` discriminator.

    The handshake is checked first. An ``event_callback`` whose inner event
    fails validation is kept as a callback without an event, which the
    dispatcher acknowledges without processing.
    """
    envelope_type = body.get("type")

    if envelope_type == URL_VERIFICATION:
        challenge = body.get("challenge")
        return UrlVerificationEnvelope(
            challenge=challenge if isinstance(challenge, str) else None,
            token=body.get("token") if isinstance(body.get("token"), str) else None,
        )

    if envelope_type == EVENT_CALLBACK:
        event = None
        raw_event = body.get("event")
        if isinstance(raw_event, dict):
            try:
                event = SlackEvent.model_validate(raw_event)
            except ValueError:
                event = None
        event_time = body.get("event_time")
        return EventCallbackEnvelope(
            event=event,
            event_id=body.get("event_id") if isinstance(body.get("event_id"), str) else None,
            event_time=event_time if isinstance(event_time, int) else None,
            api_app_id=body.get("api_app_id") if isinstance(body.get("api_app_id"), str) else None,
            team_id=body.get("team_id") if isinstance(body.get("team_id"), str) else None,
        )

    return UnknownEnvelope(
        type=envelope_type if isinstance(envelope_type, str) else None,
        raw=body,
    )
