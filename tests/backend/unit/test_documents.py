from planpal.backend.documents import (
    build_direct_message,
    build_group,
    build_message,
    build_poll,
    normalize_attachments,
)
from planpal.backend.models import DELIVERY_STATUSES


def test_build_message_sets_defaults() -> None:
    message = build_message(event_id="evt-1", sender_id="alice", text="hello")

    assert message["id"]
    assert message["event"] == "evt-1"
    assert message["sender"] == "alice"
    assert message["reactions"] == []
    assert message["attachments"] == []
    assert message["mentions"] == []
    assert message["createdAt"] == message["updatedAt"]
    assert message["createdAt"].endswith("+00:00")


def test_build_direct_message_starts_as_sent() -> None:
    message = build_direct_message(chat_id="chat-1", sender_id="alice", text="hi")

    assert message["status"] == "sent"
    assert message["chatId"] == "chat-1"
    assert DELIVERY_STATUSES == ("sent", "delivered", "seen")


def test_build_group_does_not_list_owner_as_member() -> None:
    group = build_group(name="Friends", owner_id="alice", member_ids=["alice", "bob"])

    assert group["owner"] == "alice"
    assert group["members"] == [{"user": "bob", "role": "member"}]


def test_build_poll_assigns_option_ids() -> None:
    poll = build_poll(event_id="evt-1", question="Which movie?", options=["Dune", "Heat"])

    assert [option["id"] for option in poll["options"]] == ["opt-1", "opt-2"]
    assert poll["votes"] == []
    assert poll["multiple"] is False


def test_normalize_attachments_drops_entries_without_url() -> None:
    attachments = normalize_attachments(
        [
            {"url": "https://cdn.example/a.png", "filename": "a.png", "type": "image", "size": "42", "extra": 1},
            {"filename": "missing.txt"},
        ]
    )

    assert attachments == [{"url": "https://cdn.example/a.png", "filename": "a.png", "type": "image", "size": 42}]
