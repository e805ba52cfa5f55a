"""Domain models shared by the store, the fan-out engine and the realtime hub."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


STATUS_SENT = "sent"
# Defined for clients but never produced by any server path.
STATUS_DELIVERED = "delivered"
STATUS_SEEN = "seen"
DELIVERY_STATUSES = (STATUS_SENT, STATUS_DELIVERED, STATUS_SEEN)


@dataclass
class RealtimeSession:
    """One live websocket connection.

    ``verified_user_id`` comes from the connection token; ``user_id`` is set
    only after the client announces itself with ``auth:user``.
    """

    session_id: str
    verified_user_id: str
    user_id: str | None = None

    @property
    def announced(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class SeenReceipt:
    chat_id: str
    user_id: str
    message_ids: list[str]

    def as_payload(self) -> dict[str, Any]:
        return {"chatId": self.chat_id, "userId": self.user_id, "messageIds": list(self.message_ids)}


def is_group_member(group: dict[str, Any], user_id: str) -> bool:
    if group.get("owner") == user_id:
        return True
    return any(member.get("user") == user_id for member in group.get("members", []))


def is_chat_participant(chat: dict[str, Any], user_id: str) -> bool:
    return user_id in chat.get("users", [])


def build_frame(event: str, payload: Any) -> dict[str, Any]:
    return {"event": event, "data": payload}
