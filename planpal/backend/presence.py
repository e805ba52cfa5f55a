"""In-process presence registry: which users have at least one live session."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Maps user ids to the set of announced session ids.

    A user is present exactly while its session set is non-empty. State lives
    for the lifetime of the process; a multi-process deployment needs a shared
    implementation of the same methods.
    """

    def __init__(self) -> None:
        self._sessions_by_user: dict[str, set[str]] = {}
        self._user_by_session: dict[str, str] = {}

    def announce(self, session_id: str, user_id: str) -> bool:
        """Register ``session_id`` under ``user_id``; return True when the user came online."""
        previous = self._user_by_session.get(session_id)
        if previous == user_id:
            return False
        if previous is not None:
            self._remove(session_id, previous)

        came_online = user_id not in self._sessions_by_user
        self._sessions_by_user.setdefault(user_id, set()).add(session_id)
        self._user_by_session[session_id] = user_id
        if came_online:
            logger.info("User %s is online", user_id)
        return came_online

    def disconnect(self, session_id: str) -> str | None:
        """Forget ``session_id``; return the user id if that user went offline."""
        user_id = self._user_by_session.get(session_id)
        if user_id is None:
            return None
        return user_id if self._remove(session_id, user_id) else None

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sessions_by_user

    def sessions_of(self, user_id: str) -> set[str]:
        return set(self._sessions_by_user.get(user_id, ()))

    def user_of(self, session_id: str) -> str | None:
        return self._user_by_session.get(session_id)

    def online_users(self) -> set[str]:
        return set(self._sessions_by_user)

    def clear(self) -> None:
        self._sessions_by_user.clear()
        self._user_by_session.clear()

    def _remove(self, session_id: str, user_id: str) -> bool:
        self._user_by_session.pop(session_id, None)
        sessions = self._sessions_by_user.get(user_id)
        if sessions is None:
            return False
        sessions.discard(session_id)
        if sessions:
            return False
        del self._sessions_by_user[user_id]
        logger.info("User %s is offline", user_id)
        return True
