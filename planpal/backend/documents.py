"""Document builders for the planner collections."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
import uuid

from planpal.backend.models import STATUS_SENT


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _stamped(document: dict[str, Any]) -> dict[str, Any]:
    now = utc_now_iso()
    document["createdAt"] = now
    document["updatedAt"] = now
    return document


def normalize_attachments(attachments: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Keep only the attachment fields clients may set; drop entries without a url."""
    normalized: list[dict[str, Any]] = []
    for attachment in attachments or []:
        url = attachment.get("url")
        if not url:
            continue
        entry: dict[str, Any] = {
            "url": str(url),
            "filename": attachment.get("filename"),
            "type": attachment.get("type"),
        }
        if attachment.get("size") is not None:
            entry["size"] = int(attachment["size"])
        normalized.append(entry)
    return normalized


def build_user(name: str, email: str) -> dict[str, Any]:
    return _stamped({"id": new_id(), "name": name, "email": email})


def build_group(name: str, owner_id: str, member_ids: list[str] | None = None) -> dict[str, Any]:
    members = [{"user": member_id, "role": "member"} for member_id in member_ids or [] if member_id != owner_id]
    return _stamped({"id": new_id(), "name": name, "owner": owner_id, "members": members})


def build_event(group_id: str, creator_id: str, title: str, description: str = "") -> dict[str, Any]:
    return _stamped(
        {
            "id": new_id(),
            "group": group_id,
            "creator": creator_id,
            "title": title,
            "description": description,
            "startTime": None,
            "endTime": None,
            "status": "active",
        }
    )


def build_poll(event_id: str, question: str, options: list[str], multiple: bool = False) -> dict[str, Any]:
    return _stamped(
        {
            "id": new_id(),
            "event": event_id,
            "question": question,
            "options": [{"id": f"opt-{index}", "text": text} for index, text in enumerate(options, start=1)],
            "votes": [],
            "multiple": multiple,
        }
    )


def build_message(
    event_id: str,
    sender_id: str,
    text: str,
    attachments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return _stamped(
        {
            "id": new_id(),
            "event": event_id,
            "sender": sender_id,
            "text": text,
            "attachments": normalize_attachments(attachments),
            "reactions": [],
            "mentions": [],
        }
    )


def build_chat(user_ids: list[str]) -> dict[str, Any]:
    return _stamped({"id": new_id(), "users": list(user_ids), "lastMessage": None})


def build_direct_message(
    chat_id: str,
    sender_id: str,
    text: str,
    attachments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return _stamped(
        {
            "id": new_id(),
            "chatId": chat_id,
            "sender": sender_id,
            "text": text,
            "attachments": normalize_attachments(attachments),
            "status": STATUS_SENT,
        }
    )
