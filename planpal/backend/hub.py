"""Realtime hub: session lifecycle and dispatch of client events."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable
import uuid

from fastapi import WebSocket
from pydantic import ValidationError

from planpal.backend.engine import FanoutEngine
from planpal.backend.errors import ForbiddenError, PlannerError
from planpal.backend.events import (
    AuthUserPayload,
    DmJoinPayload,
    DmMessagePayload,
    DmSeenPayload,
    DmTypingPayload,
    Frame,
    JoinEventPayload,
    MessageCreatePayload,
    PollUpdatePayload,
    ReactionPayload,
    TypingPayload,
    attachments_as_dicts,
)
from planpal.backend.models import RealtimeSession
from planpal.backend.presence import PresenceRegistry
from planpal.backend.rooms import RoomRouter
from planpal.backend.store import PlannerStore

logger = logging.getLogger(__name__)

Handler = Callable[[RealtimeSession, Any], Awaitable[None]]


class RealtimeHub:
    """Owns presence, rooms and the fan-out engine for one process.

    Built once per application and closed on shutdown. Client errors are
    dropped silently unless ``realtime_errors`` is set, in which case the
    originating session gets an ``error`` frame.
    """

    def __init__(self, store: PlannerStore, realtime_errors: bool = False) -> None:
        self.store = store
        self.realtime_errors = realtime_errors
        self.presence = PresenceRegistry()
        self.rooms = RoomRouter(on_evict=self._evict)
        self.engine = FanoutEngine(store=store, presence=self.presence, rooms=self.rooms)
        self._sessions: dict[str, RealtimeSession] = {}
        self._handlers: dict[str, Handler] = {
            "auth:user": self._on_auth_user,
            "join:event": self._on_join_event,
            "leave:event": self._on_leave_event,
            "message:create": self._on_message_create,
            "message:reaction": self._on_message_reaction,
            "typing": self._on_typing,
            "poll:update": self._on_poll_update,
            "dm:join": self._on_dm_join,
            "dm:leave": self._on_dm_leave,
            "dm:message": self._on_dm_message,
            "dm:seen": self._on_dm_seen,
            "dm:typing": self._on_dm_typing,
        }

    def session(self, session_id: str) -> RealtimeSession | None:
        return self._sessions.get(session_id)

    async def connect(self, websocket: WebSocket, user_id: str) -> RealtimeSession:
        await websocket.accept()
        session = RealtimeSession(session_id=uuid.uuid4().hex, verified_user_id=user_id)
        self._sessions[session.session_id] = session
        self.rooms.attach(session.session_id, websocket)
        logger.info("Session %s connected for user %s", session.session_id, user_id)
        return session

    def disconnect(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        left_rooms = self.rooms.detach(session_id)
        went_offline = self.presence.disconnect(session_id)
        logger.info(
            "Session %s disconnected (user=%s, rooms=%d, offline=%s)",
            session_id,
            session.user_id if session else None,
            len(left_rooms),
            went_offline is not None,
        )

    def _evict(self, session_id: str) -> None:
        # The receive loop still owns the session; only presence is dropped here.
        if self.presence.disconnect(session_id) is not None:
            logger.info("Session %s evicted; user is now offline", session_id)

    async def shutdown(self) -> None:
        for session_id, socket in self.rooms.sockets().items():
            try:
                await socket.close(code=1001)  # type: ignore[attr-defined]
            except (RuntimeError, AttributeError):
                logger.debug("Session %s already closed", session_id)
        self._sessions.clear()
        self.rooms.clear()
        self.presence.clear()
        logger.info("Realtime hub shut down")

    async def dispatch(self, session: RealtimeSession, raw: Any) -> None:
        try:
            frame = Frame.model_validate(raw)
        except ValidationError:
            logger.debug("Dropping malformed frame from %s", session.session_id)
            await self._report(session, None, "invalid_frame", "Frames need an event name")
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            logger.debug("Dropping unknown event %s from %s", frame.event, session.session_id)
            await self._report(session, frame.event, "unknown_event", f"Unknown event {frame.event}")
            return

        try:
            await handler(session, frame.data)
        except ValidationError as exc:
            logger.debug("Dropping %s from %s: %d invalid fields", frame.event, session.session_id, exc.error_count())
            await self._report(session, frame.event, "invalid_payload", "Missing or invalid fields")
        except PlannerError as exc:
            logger.debug("Dropping %s from %s: %s", frame.event, session.session_id, exc.detail)
            await self._report(session, frame.event, exc.reason, exc.detail)
        except Exception:
            logger.exception("Handler for %s failed (session %s)", frame.event, session.session_id)
            await self._report(session, frame.event, "internal_error", "Could not process event")

    async def _report(self, session: RealtimeSession, event: str | None, reason: str, detail: str) -> None:
        if not self.realtime_errors:
            return
        await self.rooms.emit_to_sessions(
            [session.session_id], "error", {"event": event, "reason": reason, "detail": detail}
        )

    async def _ack(self, session: RealtimeSession, event: str, payload: dict[str, Any]) -> None:
        await self.rooms.emit_to_sessions([session.session_id], event, payload)

    def _acting_user(self, session: RealtimeSession, claimed_user_id: str) -> str:
        if claimed_user_id != session.verified_user_id:
            raise ForbiddenError("User id does not match the connection token")
        return claimed_user_id

    def _require_room(self, session: RealtimeSession, room_id: str) -> None:
        if room_id not in self.rooms.rooms_of(session.session_id):
            raise ForbiddenError(f"Session has not joined room {room_id}")

    async def _on_auth_user(self, session: RealtimeSession, data: Any) -> None:
        payload = AuthUserPayload.model_validate(_wrap(data, "userId"))
        user_id = self._acting_user(session, payload.user_id)
        session.user_id = user_id
        self.presence.announce(session.session_id, user_id)
        await self._ack(session, "auth:ok", {"userId": user_id})

    async def _on_join_event(self, session: RealtimeSession, data: Any) -> None:
        payload = JoinEventPayload.model_validate(_wrap(data, "eventId"))
        await self.engine.authorize_event_room(session.verified_user_id, payload.event_id)
        self.rooms.join(session.session_id, payload.event_id)
        logger.info("Session %s joined event room %s", session.session_id, payload.event_id)
        await self._ack(session, "room:joined", {"roomId": payload.event_id})

    async def _on_leave_event(self, session: RealtimeSession, data: Any) -> None:
        payload = JoinEventPayload.model_validate(_wrap(data, "eventId"))
        self.rooms.leave(session.session_id, payload.event_id)
        await self._ack(session, "room:left", {"roomId": payload.event_id})

    async def _on_message_create(self, session: RealtimeSession, data: Any) -> None:
        payload = MessageCreatePayload.model_validate(data)
        user_id = self._acting_user(session, payload.sender_id)
        await self.engine.create_event_message(
            user_id=user_id,
            event_id=payload.event_id,
            text=payload.text,
            attachments=attachments_as_dicts(payload.attachments),
        )

    async def _on_message_reaction(self, session: RealtimeSession, data: Any) -> None:
        payload = ReactionPayload.model_validate(data)
        user_id = self._acting_user(session, payload.user_id)
        await self.engine.set_reaction(user_id=user_id, message_id=payload.message_id, emoji=payload.emoji)

    async def _on_typing(self, session: RealtimeSession, data: Any) -> None:
        payload = TypingPayload.model_validate(data)
        self._require_room(session, payload.event_id)
        await self.engine.typing(session.session_id, payload.event_id, payload.model_dump(by_alias=True))

    async def _on_poll_update(self, session: RealtimeSession, data: Any) -> None:
        payload = PollUpdatePayload.model_validate(data)
        self._require_room(session, payload.event_id)
        await self.engine.update_poll(
            user_id=session.verified_user_id,
            event_id=payload.event_id,
            poll_id=payload.poll_id,
            option_id=payload.option_id,
        )

    async def _on_dm_join(self, session: RealtimeSession, data: Any) -> None:
        payload = DmJoinPayload.model_validate(_wrap(data, "chatId"))
        await self.engine.authorize_chat_room(session.verified_user_id, payload.chat_id)
        self.rooms.join(session.session_id, payload.chat_id)
        logger.info("Session %s joined chat room %s", session.session_id, payload.chat_id)
        await self._ack(session, "room:joined", {"roomId": payload.chat_id})

    async def _on_dm_leave(self, session: RealtimeSession, data: Any) -> None:
        payload = DmJoinPayload.model_validate(_wrap(data, "chatId"))
        self.rooms.leave(session.session_id, payload.chat_id)
        await self._ack(session, "room:left", {"roomId": payload.chat_id})

    async def _on_dm_message(self, session: RealtimeSession, data: Any) -> None:
        payload = DmMessagePayload.model_validate(data)
        user_id = self._acting_user(session, payload.sender_id)
        self._require_room(session, payload.chat_id)
        await self.engine.send_direct_message(
            user_id=user_id,
            chat_id=payload.chat_id,
            text=payload.text,
            attachments=attachments_as_dicts(payload.attachments),
        )

    async def _on_dm_seen(self, session: RealtimeSession, data: Any) -> None:
        payload = DmSeenPayload.model_validate(data)
        user_id = self._acting_user(session, payload.user_id)
        await self.engine.mark_seen(user_id=user_id, chat_id=payload.chat_id, message_ids=payload.message_ids)

    async def _on_dm_typing(self, session: RealtimeSession, data: Any) -> None:
        payload = DmTypingPayload.model_validate(data)
        self._acting_user(session, payload.user_id)
        self._require_room(session, payload.chat_id)
        await self.engine.dm_typing(session.session_id, payload.chat_id, payload.model_dump(by_alias=True))


def _wrap(data: Any, key: str) -> Any:
    """Accept the bare-id form clients use for joins, e.g. ``"evt-1"``."""
    if isinstance(data, str):
        return {key: data}
    return data
