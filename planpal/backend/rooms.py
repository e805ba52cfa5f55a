"""Room membership and frame delivery for realtime sessions."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Protocol

from fastapi import WebSocketDisconnect

from planpal.backend.models import build_frame

logger = logging.getLogger(__name__)


class FrameSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RoomRouter:
    """Session-scoped broadcast rooms.

    Rooms are plain labels (an event id or a chat id). Membership is per
    session, so a user with two connections must join from both. ``join``
    performs no authorization; callers check membership first.
    ``on_evict`` is called with each session dropped after a failed send.
    """

    def __init__(self, on_evict: Callable[[str], None] | None = None) -> None:
        self._on_evict = on_evict
        self._sockets: dict[str, FrameSocket] = {}
        self._rooms: dict[str, set[str]] = {}
        self._rooms_by_session: dict[str, set[str]] = {}

    def attach(self, session_id: str, socket: FrameSocket) -> None:
        self._sockets[session_id] = socket
        self._rooms_by_session.setdefault(session_id, set())

    def detach(self, session_id: str) -> set[str]:
        """Drop the session and leave every room it joined; return those rooms."""
        self._sockets.pop(session_id, None)
        rooms = self._rooms_by_session.pop(session_id, set())
        for room_id in rooms:
            self._discard_member(room_id, session_id)
        return rooms

    def is_attached(self, session_id: str) -> bool:
        return session_id in self._sockets

    def join(self, session_id: str, room_id: str) -> bool:
        if session_id not in self._sockets:
            return False
        joined = self._rooms_by_session[session_id]
        if room_id in joined:
            return False
        joined.add(room_id)
        self._rooms.setdefault(room_id, set()).add(session_id)
        return True

    def leave(self, session_id: str, room_id: str) -> bool:
        joined = self._rooms_by_session.get(session_id)
        if joined is None or room_id not in joined:
            return False
        joined.discard(room_id)
        self._discard_member(room_id, session_id)
        return True

    def rooms_of(self, session_id: str) -> set[str]:
        return set(self._rooms_by_session.get(session_id, ()))

    def members(self, room_id: str) -> set[str]:
        return set(self._rooms.get(room_id, ()))

    def sockets(self) -> dict[str, FrameSocket]:
        return dict(self._sockets)

    def clear(self) -> None:
        self._sockets.clear()
        self._rooms.clear()
        self._rooms_by_session.clear()

    async def broadcast(
        self,
        room_id: str,
        event: str,
        payload: Any,
        exclude: str | None = None,
    ) -> int:
        """Send one frame to every session in the room; return the delivery count."""
        targets = [session_id for session_id in sorted(self._rooms.get(room_id, ())) if session_id != exclude]
        return await self._deliver(targets, event, payload)

    async def emit_to_sessions(self, session_ids: Iterable[str], event: str, payload: Any) -> int:
        """Send one frame to each given session regardless of room membership."""
        return await self._deliver(list(session_ids), event, payload)

    async def _deliver(self, session_ids: list[str], event: str, payload: Any) -> int:
        frame = build_frame(event, payload)
        delivered = 0
        stale_sessions: list[str] = []
        for session_id in session_ids:
            socket = self._sockets.get(session_id)
            if socket is None:
                continue
            try:
                await socket.send_json(frame)
            except (RuntimeError, WebSocketDisconnect):
                stale_sessions.append(session_id)
                continue
            delivered += 1
        for session_id in stale_sessions:
            logger.info("Dropping stale session %s", session_id)
            self.detach(session_id)
            if self._on_evict is not None:
                self._on_evict(session_id)
        return delivered

    def _discard_member(self, room_id: str, session_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            self._rooms.pop(room_id, None)
