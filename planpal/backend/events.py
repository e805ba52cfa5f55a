"""Pydantic schemas for realtime frames sent by clients."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_TEXT_LENGTH = 4000


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Frame(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None


class AttachmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(min_length=1)
    filename: str | None = None
    type: str | None = None
    size: int | None = None


class AuthUserPayload(_Payload):
    user_id: str = Field(alias="userId", min_length=1)


class JoinEventPayload(_Payload):
    event_id: str = Field(alias="eventId", min_length=1)


class MessageCreatePayload(_Payload):
    event_id: str = Field(alias="eventId", min_length=1)
    sender_id: str = Field(alias="senderId", min_length=1)
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class ReactionPayload(_Payload):
    message_id: str = Field(alias="messageId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    emoji: str = Field(min_length=1, max_length=32)


class TypingPayload(_Payload):
    event_id: str = Field(alias="eventId", min_length=1)
    user_name: str | None = Field(default=None, alias="userName")


class PollUpdatePayload(_Payload):
    event_id: str = Field(alias="eventId", min_length=1)
    poll_id: str = Field(alias="pollId", min_length=1)
    option_id: str | None = Field(default=None, alias="optionId")
    poll: dict[str, Any] | None = None


class DmJoinPayload(_Payload):
    chat_id: str = Field(alias="chatId", min_length=1)


class DmMessagePayload(_Payload):
    chat_id: str = Field(alias="chatId", min_length=1)
    sender_id: str = Field(alias="senderId", min_length=1)
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class DmSeenPayload(_Payload):
    chat_id: str = Field(alias="chatId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    message_ids: list[str] | None = Field(default=None, alias="messageIds")


class DmTypingPayload(_Payload):
    chat_id: str = Field(alias="chatId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    user_name: str | None = Field(default=None, alias="userName")


def attachments_as_dicts(attachments: list[AttachmentPayload]) -> list[dict[str, Any]]:
    return [attachment.model_dump(exclude_none=True) for attachment in attachments]
