"""Message fan-out: validate, persist, re-read and broadcast chat activity."""

from __future__ import annotations

import logging
from typing import Any

from planpal.backend.documents import normalize_attachments
from planpal.backend.errors import ForbiddenError, InvalidPayloadError, NotFoundError
from planpal.backend.models import SeenReceipt, is_chat_participant, is_group_member
from planpal.backend.presence import PresenceRegistry
from planpal.backend.rooms import RoomRouter
from planpal.backend.store import PlannerStore

logger = logging.getLogger(__name__)


class FanoutEngine:
    """Turns one client action into persisted state plus room broadcasts.

    Every operation takes the acting user explicitly so the websocket hub and
    the REST routes share the same path. Failures surface as ``PlannerError``
    subclasses; store errors propagate unchanged.
    """

    def __init__(self, store: PlannerStore, presence: PresenceRegistry, rooms: RoomRouter) -> None:
        self.store = store
        self.presence = presence
        self.rooms = rooms

    async def authorize_event_room(self, user_id: str, event_id: str) -> dict[str, Any]:
        event, _ = await self._event_with_group(user_id, event_id)
        return event

    async def _event_with_group(self, user_id: str, event_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        event = await self.store.get_event(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        group = await self.store.get_group(event["group"])
        if group is None or not is_group_member(group, user_id):
            raise ForbiddenError("Not a member of this event's group")
        return event, group

    async def authorize_chat_room(self, user_id: str, chat_id: str) -> dict[str, Any]:
        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not is_chat_participant(chat, user_id):
            raise ForbiddenError("Not a participant of this chat")
        return chat

    async def create_event_message(
        self,
        user_id: str,
        event_id: str,
        text: str | None,
        attachments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        await self.authorize_event_room(user_id, event_id)
        body, files = _message_content(text, attachments)

        created = await self.store.create_message(event_id=event_id, sender_id=user_id, text=body, attachments=files)
        stored = await self.store.get_message(created["id"])
        if stored is None:
            raise NotFoundError("Message vanished after create")
        populated = await self.store.resolve_message(stored)

        delivered = await self.rooms.broadcast(event_id, "message:create", populated)
        logger.debug("message:create %s delivered to %d sessions", populated["id"], delivered)
        return populated

    async def set_reaction(self, user_id: str, message_id: str, emoji: str) -> dict[str, Any]:
        if not emoji:
            raise InvalidPayloadError("emoji is required")
        message = await self.store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        await self.authorize_event_room(user_id, message["event"])

        # No version check: a concurrent writer between read and save wins.
        reactions = [reaction for reaction in message.get("reactions", []) if reaction["user"] != user_id]
        reactions.append({"user": user_id, "emoji": emoji})
        saved = await self.store.save_reactions(message_id, reactions)
        if saved is None:
            raise NotFoundError("Message not found")
        populated = await self.store.resolve_message(saved)

        await self.rooms.broadcast(saved["event"], "message:reaction", populated)
        return populated

    async def typing(self, session_id: str, event_id: str, payload: dict[str, Any]) -> int:
        return await self.rooms.broadcast(event_id, "typing", payload, exclude=session_id)

    async def update_poll(
        self,
        user_id: str,
        event_id: str,
        poll_id: str,
        option_id: str | None = None,
    ) -> dict[str, Any]:
        poll = await self.store.get_poll(poll_id)
        if poll is None or poll["event"] != event_id:
            raise NotFoundError("Poll not found")
        await self.authorize_event_room(user_id, event_id)

        if option_id is not None:
            if option_id not in {option["id"] for option in poll.get("options", [])}:
                raise InvalidPayloadError("Unknown poll option")
            poll = await self._record_vote(poll, user_id, option_id)

        payload = {"eventId": event_id, "pollId": poll_id, "poll": await self.store.resolve_poll(poll)}
        await self.rooms.broadcast(event_id, "poll:update", payload)
        return payload

    async def send_direct_message(
        self,
        user_id: str,
        chat_id: str,
        text: str | None,
        attachments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        chat = await self.authorize_chat_room(user_id, chat_id)
        body, files = _message_content(text, attachments)

        message = await self.store.create_direct_message(
            chat_id=chat_id, sender_id=user_id, text=body, attachments=files
        )
        await self.store.touch_chat(chat_id, message["id"])
        populated = await self.store.resolve_direct_message(message)

        await self.rooms.broadcast(chat_id, "dm:message", populated)
        await self.notify_participants(chat, populated)
        return populated

    async def notify_participants(self, chat: dict[str, Any], message: dict[str, Any]) -> int:
        """Reach every online device of every participant, joined to the room or not."""
        session_ids: set[str] = set()
        for participant in chat.get("users", []):
            session_ids.update(self.presence.sessions_of(participant))
        if not session_ids:
            return 0
        return await self.rooms.emit_to_sessions(
            sorted(session_ids), "dm:notify", {"chatId": chat["id"], "message": message}
        )

    async def mark_seen(self, user_id: str, chat_id: str, message_ids: list[str] | None = None) -> SeenReceipt:
        await self.authorize_chat_room(user_id, chat_id)
        changed = await self.store.mark_seen(chat_id, message_ids)
        # An empty list tells clients "all messages", not "none".
        receipt = SeenReceipt(chat_id=chat_id, user_id=user_id, message_ids=changed if message_ids is not None else [])
        if message_ids is not None and not changed:
            return receipt
        await self.rooms.broadcast(chat_id, "dm:seen", receipt.as_payload())
        return receipt

    async def dm_typing(self, session_id: str, chat_id: str, payload: dict[str, Any]) -> int:
        return await self.rooms.broadcast(chat_id, "dm:typing", payload, exclude=session_id)

    async def event_members(self, user_id: str, event_id: str) -> dict[str, Any]:
        _, group = await self._event_with_group(user_id, event_id)
        owner = await self._member_entry(group["owner"], role="owner")
        members = [await self._member_entry(member["user"], role=member.get("role", "member")) for member in group["members"]]
        return {"owner": owner, "members": members}

    async def _member_entry(self, user_id: str, role: str) -> dict[str, Any]:
        user = await self.store.get_user(user_id)
        summary = {"id": user_id, "name": None, "email": None}
        if user is not None:
            summary = {"id": user["id"], "name": user["name"], "email": user["email"]}
        return {"user": summary, "role": role, "online": self.presence.is_online(user_id)}

    async def _record_vote(self, poll: dict[str, Any], user_id: str, option_id: str) -> dict[str, Any]:
        votes = poll.get("votes", [])
        if poll.get("multiple"):
            votes = [vote for vote in votes if not (vote["user"] == user_id and vote["optionId"] == option_id)]
        else:
            votes = [vote for vote in votes if vote["user"] != user_id]
        votes.append({"user": user_id, "optionId": option_id})
        saved = await self.store.save_votes(poll["id"], votes)
        if saved is None:
            raise NotFoundError("Poll not found")
        return saved


def _message_content(
    text: str | None, attachments: list[dict[str, Any]] | None
) -> tuple[str, list[dict[str, Any]]]:
    body = (text or "").strip()
    files = normalize_attachments(attachments)
    if not body and not files:
        raise InvalidPayloadError("text or attachments required")
    return body, files
