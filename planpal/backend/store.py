"""Persistence interfaces and implementations for planner documents."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Any, Protocol

from planpal.backend.documents import (
    build_chat,
    build_direct_message,
    build_event,
    build_group,
    build_message,
    build_poll,
    build_user,
    utc_now_iso,
)
from planpal.backend.models import STATUS_SEEN
from planpal.backend.security import generate_token, hash_token, token_lookup_id, verify_token

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
EVENTS = "events"
POLLS = "polls"
MESSAGES = "messages"
CHATS = "chats"
DIRECT_MESSAGES = "direct_messages"
TOKENS = "tokens"


class PlannerStore(Protocol):
    async def create_user(self, name: str, email: str) -> dict[str, Any]:
        """Persist a user document (identity provider seeding)."""

    async def create_group(self, name: str, owner_id: str, member_ids: list[str] | None = None) -> dict[str, Any]:
        """Persist a group with its owner and members."""

    async def create_event(self, group_id: str, creator_id: str, title: str) -> dict[str, Any]:
        """Persist an event that belongs to a group."""

    async def create_poll(
        self, event_id: str, question: str, options: list[str], multiple: bool = False
    ) -> dict[str, Any]:
        """Persist a poll attached to an event."""

    async def issue_token(self, user_id: str) -> str:
        """Store a token hash for the user and return the raw token once."""

    async def resolve_token(self, raw_token: str) -> str | None:
        """Return the user id a raw token was issued for."""

    async def get_user(self, user_id: str) -> dict[str, Any] | None: ...

    async def list_users(self, exclude: str | None = None) -> list[dict[str, Any]]:
        """Return id/name/email summaries of every user except ``exclude``."""

    async def get_group(self, group_id: str) -> dict[str, Any] | None: ...

    async def get_event(self, event_id: str) -> dict[str, Any] | None: ...

    async def get_poll(self, poll_id: str) -> dict[str, Any] | None: ...

    async def get_message(self, message_id: str) -> dict[str, Any] | None: ...

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None: ...

    async def create_message(
        self, event_id: str, sender_id: str, text: str, attachments: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        """Persist an event chat message."""

    async def save_reactions(self, message_id: str, reactions: list[dict[str, Any]]) -> dict[str, Any] | None:
        """Overwrite the reaction list of a message (last write wins)."""

    async def list_messages(self, event_id: str) -> list[dict[str, Any]]:
        """Return sender-resolved event messages, oldest first."""

    async def start_chat(self, user_id: str, other_user_id: str) -> dict[str, Any]:
        """Return the two-party chat between both users, creating it if absent."""

    async def list_chats(self, user_id: str) -> list[dict[str, Any]]:
        """Return the user's chats, most recently updated first."""

    async def create_direct_message(
        self, chat_id: str, sender_id: str, text: str, attachments: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        """Persist a direct message with status ``sent``."""

    async def touch_chat(self, chat_id: str, last_message_id: str) -> dict[str, Any] | None:
        """Point the chat at its latest message and bump ``updatedAt``."""

    async def list_direct_messages(self, chat_id: str) -> list[dict[str, Any]]:
        """Return sender-resolved direct messages, oldest first."""

    async def mark_seen(self, chat_id: str, message_ids: list[str] | None = None) -> list[str]:
        """Mark messages as seen and return the ids that changed."""

    async def save_votes(self, poll_id: str, votes: list[dict[str, Any]]) -> dict[str, Any] | None:
        """Overwrite the vote list of a poll."""

    async def resolve_message(self, message: dict[str, Any]) -> dict[str, Any]: ...

    async def resolve_direct_message(self, message: dict[str, Any]) -> dict[str, Any]: ...

    async def resolve_poll(self, poll: dict[str, Any]) -> dict[str, Any]: ...


class _DocumentOperations:
    """Planner operations written against four document primitives.

    Subclasses provide ``_insert``, ``_fetch``, ``_find`` and ``_replace``.
    """

    server_salt: str

    async def _insert(self, collection: str, document: dict[str, Any]) -> None:
        raise NotImplementedError

    async def _fetch(self, collection: str, document_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def _find(self, collection: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def _replace(self, collection: str, document: dict[str, Any]) -> None:
        raise NotImplementedError

    async def create_user(self, name: str, email: str) -> dict[str, Any]:
        user = build_user(name=name, email=email)
        await self._insert(USERS, user)
        return user

    async def create_group(self, name: str, owner_id: str, member_ids: list[str] | None = None) -> dict[str, Any]:
        group = build_group(name=name, owner_id=owner_id, member_ids=member_ids)
        await self._insert(GROUPS, group)
        return group

    async def create_event(self, group_id: str, creator_id: str, title: str) -> dict[str, Any]:
        event = build_event(group_id=group_id, creator_id=creator_id, title=title)
        await self._insert(EVENTS, event)
        return event

    async def create_poll(
        self, event_id: str, question: str, options: list[str], multiple: bool = False
    ) -> dict[str, Any]:
        poll = build_poll(event_id=event_id, question=question, options=options, multiple=multiple)
        await self._insert(POLLS, poll)
        return poll

    async def issue_token(self, user_id: str) -> str:
        raw_token = generate_token()
        await self._insert(
            TOKENS,
            {
                "id": token_lookup_id(raw_token),
                "user": user_id,
                "tokenHash": hash_token(raw_token, self.server_salt),
                "createdAt": utc_now_iso(),
            },
        )
        return raw_token

    async def resolve_token(self, raw_token: str) -> str | None:
        lookup_id = token_lookup_id(raw_token)
        if lookup_id is None:
            return None
        record = await self._fetch(TOKENS, lookup_id)
        if record is None or not verify_token(raw_token, record["tokenHash"], self.server_salt):
            return None
        return record["user"]

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        return await self._fetch(USERS, user_id)

    async def list_users(self, exclude: str | None = None) -> list[dict[str, Any]]:
        return [
            {"id": user["id"], "name": user["name"], "email": user["email"]}
            for user in await self._find(USERS, {})
            if user["id"] != exclude
        ]

    async def get_group(self, group_id: str) -> dict[str, Any] | None:
        return await self._fetch(GROUPS, group_id)

    async def get_event(self, event_id: str) -> dict[str, Any] | None:
        return await self._fetch(EVENTS, event_id)

    async def get_poll(self, poll_id: str) -> dict[str, Any] | None:
        return await self._fetch(POLLS, poll_id)

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        return await self._fetch(MESSAGES, message_id)

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None:
        return await self._fetch(CHATS, chat_id)

    async def create_message(
        self, event_id: str, sender_id: str, text: str, attachments: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        message = build_message(event_id=event_id, sender_id=sender_id, text=text, attachments=attachments)
        await self._insert(MESSAGES, message)
        return message

    async def save_reactions(self, message_id: str, reactions: list[dict[str, Any]]) -> dict[str, Any] | None:
        message = await self._fetch(MESSAGES, message_id)
        if message is None:
            return None
        message["reactions"] = [dict(reaction) for reaction in reactions]
        message["updatedAt"] = utc_now_iso()
        await self._replace(MESSAGES, message)
        return message

    async def list_messages(self, event_id: str) -> list[dict[str, Any]]:
        messages = await self._find(MESSAGES, {"event": event_id})
        return [await self.resolve_message(message) for message in messages]

    async def start_chat(self, user_id: str, other_user_id: str) -> dict[str, Any]:
        for chat in await self._find(CHATS, {"users": [user_id, other_user_id]}):
            if len(chat["users"]) == 2:
                return chat
        chat = build_chat([user_id, other_user_id])
        await self._insert(CHATS, chat)
        return chat

    async def list_chats(self, user_id: str) -> list[dict[str, Any]]:
        chats = await self._find(CHATS, {"users": [user_id]})
        chats.sort(key=lambda chat: chat["updatedAt"], reverse=True)
        resolved: list[dict[str, Any]] = []
        for chat in chats:
            entry = dict(chat)
            entry["users"] = [await self._user_summary(participant) for participant in chat["users"]]
            if chat.get("lastMessage"):
                entry["lastMessage"] = await self._fetch(DIRECT_MESSAGES, chat["lastMessage"])
            resolved.append(entry)
        return resolved

    async def create_direct_message(
        self, chat_id: str, sender_id: str, text: str, attachments: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        message = build_direct_message(chat_id=chat_id, sender_id=sender_id, text=text, attachments=attachments)
        await self._insert(DIRECT_MESSAGES, message)
        return message

    async def touch_chat(self, chat_id: str, last_message_id: str) -> dict[str, Any] | None:
        chat = await self._fetch(CHATS, chat_id)
        if chat is None:
            return None
        chat["lastMessage"] = last_message_id
        chat["updatedAt"] = utc_now_iso()
        await self._replace(CHATS, chat)
        return chat

    async def list_direct_messages(self, chat_id: str) -> list[dict[str, Any]]:
        messages = await self._find(DIRECT_MESSAGES, {"chatId": chat_id})
        return [await self.resolve_direct_message(message) for message in messages]

    async def mark_seen(self, chat_id: str, message_ids: list[str] | None = None) -> list[str]:
        wanted = set(message_ids) if message_ids is not None else None
        changed: list[str] = []
        for message in await self._find(DIRECT_MESSAGES, {"chatId": chat_id}):
            if message["status"] == STATUS_SEEN:
                continue
            if wanted is not None and message["id"] not in wanted:
                continue
            message["status"] = STATUS_SEEN
            message["updatedAt"] = utc_now_iso()
            await self._replace(DIRECT_MESSAGES, message)
            changed.append(message["id"])
        return changed

    async def save_votes(self, poll_id: str, votes: list[dict[str, Any]]) -> dict[str, Any] | None:
        poll = await self._fetch(POLLS, poll_id)
        if poll is None:
            return None
        poll["votes"] = [dict(vote) for vote in votes]
        poll["updatedAt"] = utc_now_iso()
        await self._replace(POLLS, poll)
        return poll

    async def resolve_message(self, message: dict[str, Any]) -> dict[str, Any]:
        resolved = dict(message)
        resolved["sender"] = await self._user_summary(message["sender"])
        resolved["reactions"] = [
            {"user": await self._user_summary(reaction["user"]), "emoji": reaction["emoji"]}
            for reaction in message.get("reactions", [])
        ]
        return resolved

    async def resolve_direct_message(self, message: dict[str, Any]) -> dict[str, Any]:
        resolved = dict(message)
        resolved["sender"] = await self._user_summary(message["sender"])
        return resolved

    async def resolve_poll(self, poll: dict[str, Any]) -> dict[str, Any]:
        resolved = dict(poll)
        resolved["votes"] = [
            {**vote, "user": await self._user_summary(vote["user"])} for vote in poll.get("votes", [])
        ]
        return resolved

    async def _user_summary(self, user_id: str) -> dict[str, Any]:
        user = await self._fetch(USERS, user_id)
        if user is None:
            return {"id": user_id, "name": None, "email": None}
        return {"id": user["id"], "name": user["name"], "email": user["email"]}


def _matches(document: dict[str, Any], match: dict[str, Any]) -> bool:
    """Mirror JSONB ``@>`` containment for top-level keys."""
    for key, expected in match.items():
        actual = document.get(key)
        if isinstance(expected, list):
            if not isinstance(actual, list) or not all(item in actual for item in expected):
                return False
        elif actual != expected:
            return False
    return True


@dataclass
class InMemoryPlannerStore(_DocumentOperations):
    server_salt: str

    def __post_init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def _insert(self, collection: str, document: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[document["id"]] = copy.deepcopy(document)

    async def _fetch(self, collection: str, document_id: str) -> dict[str, Any] | None:
        document = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def _find(self, collection: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(document)
            for document in self._collections.get(collection, {}).values()
            if _matches(document, match)
        ]

    async def _replace(self, collection: str, document: dict[str, Any]) -> None:
        documents = self._collections.setdefault(collection, {})
        if document["id"] in documents:
            documents[document["id"]] = copy.deepcopy(document)


@dataclass
class PostgresPlannerStore(_DocumentOperations):
    database_url: str
    server_salt: str

    async def _connect(self) -> Any:
        import psycopg

        return await psycopg.AsyncConnection.connect(self.database_url)

    async def _insert(self, collection: str, document: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO documents (collection, id, body, created_at, updated_at)
                    VALUES (%s, %s, %s::jsonb, %s, %s)
                    """,
                    (collection, document["id"], json.dumps(document), now, now),
                )
            await conn.commit()

    async def _fetch(self, collection: str, document_id: str) -> dict[str, Any] | None:
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT body FROM documents
                    WHERE collection = %s AND id = %s
                    """,
                    (collection, document_id),
                )
                row = await cur.fetchone()

        if row is None:
            return None
        return _load_body(row[0])

    async def _find(self, collection: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT body FROM documents
                    WHERE collection = %s AND body @> %s::jsonb
                    ORDER BY seq
                    """,
                    (collection, json.dumps(match)),
                )
                rows = await cur.fetchall()
        return [_load_body(row[0]) for row in rows]

    async def _replace(self, collection: str, document: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE documents
                    SET body = %s::jsonb, updated_at = %s
                    WHERE collection = %s AND id = %s
                    """,
                    (json.dumps(document), now, collection, document["id"]),
                )
            await conn.commit()


def _load_body(body: Any) -> dict[str, Any]:
    return body if isinstance(body, dict) else json.loads(body)


def create_store(database_url: str | None, server_salt: str) -> PlannerStore:
    if database_url:
        logger.info("Using PostgreSQL document store")
        return PostgresPlannerStore(database_url=database_url, server_salt=server_salt)
    logger.info("Using in-memory document store")
    return InMemoryPlannerStore(server_salt=server_salt)
