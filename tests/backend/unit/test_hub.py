import asyncio
import logging
from typing import Any

from planpal.backend.hub import RealtimeHub
from planpal.backend.store import InMemoryPlannerStore


class _FakeWebSocket:
    def __init__(self) -> None:
        self.accepted = False
        self.closed_with: int | None = None
        self.frames: list[dict[str, Any]] = []
        self.broken = False

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    async def send_json(self, data: Any) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self, name: str) -> list[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == name]


class _BrokenStore(InMemoryPlannerStore):
    async def create_message(self, event_id, sender_id, text, attachments=None):
        raise RuntimeError("database unavailable")


async def _seed(store: InMemoryPlannerStore) -> dict[str, str]:
    alice = await store.create_user("Alice", "alice@example.com")
    bob = await store.create_user("Bob", "bob@example.com")
    carol = await store.create_user("Carol", "carol@example.com")
    group = await store.create_group("Friends", owner_id=alice["id"], member_ids=[bob["id"]])
    event = await store.create_event(group["id"], alice["id"], "Movie night")
    chat = await store.start_chat(alice["id"], bob["id"])
    return {"alice": alice["id"], "bob": bob["id"], "carol": carol["id"], "event": event["id"], "chat": chat["id"]}


def _hub(realtime_errors: bool = False, store: InMemoryPlannerStore | None = None) -> tuple[RealtimeHub, dict[str, str]]:
    planner_store = store if store is not None else InMemoryPlannerStore(server_salt="salt")
    hub = RealtimeHub(store=planner_store, realtime_errors=realtime_errors)
    ids = asyncio.run(_seed(planner_store))
    return hub, ids


def test_connect_accepts_and_attaches_session() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    session = asyncio.run(hub.connect(socket, ids["alice"]))

    assert socket.accepted is True
    assert hub.rooms.is_attached(session.session_id) is True
    assert session.announced is False
    assert hub.presence.is_online(ids["alice"]) is False


def test_auth_user_announces_presence_and_acks() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> str:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "auth:user", "data": {"userId": ids["alice"]}})
        return session.session_id

    session_id = asyncio.run(scenario())

    assert hub.presence.sessions_of(ids["alice"]) == {session_id}
    assert socket.events("auth:ok") == [{"userId": ids["alice"]}]


def test_auth_user_for_someone_else_is_dropped_silently() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> None:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "auth:user", "data": {"userId": ids["bob"]}})

    asyncio.run(scenario())

    assert hub.presence.is_online(ids["bob"]) is False
    assert socket.frames == []


def test_join_event_checks_group_membership() -> None:
    hub, ids = _hub()
    member_socket, outsider_socket = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> tuple[str, str]:
        member = await hub.connect(member_socket, ids["bob"])
        outsider = await hub.connect(outsider_socket, ids["carol"])
        await hub.dispatch(member, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(outsider, {"event": "join:event", "data": {"eventId": ids["event"]}})
        return member.session_id, outsider.session_id

    member_id, outsider_id = asyncio.run(scenario())

    assert hub.rooms.members(ids["event"]) == {member_id}
    assert member_socket.events("room:joined") == [{"roomId": ids["event"]}]
    assert outsider_socket.frames == []
    assert hub.rooms.rooms_of(outsider_id) == set()


def test_error_channel_reports_rejections_to_sender_only() -> None:
    hub, ids = _hub(realtime_errors=True)
    outsider_socket, member_socket = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> None:
        member = await hub.connect(member_socket, ids["alice"])
        await hub.dispatch(member, {"event": "join:event", "data": ids["event"]})
        outsider = await hub.connect(outsider_socket, ids["carol"])
        await hub.dispatch(outsider, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(outsider, {"event": "message:create", "data": {"eventId": ids["event"]}})
        await hub.dispatch(outsider, {"event": "bogus", "data": {}})
        await hub.dispatch(outsider, ["not", "a", "frame"])

    asyncio.run(scenario())

    reasons = [error["reason"] for error in outsider_socket.events("error")]
    assert reasons == ["forbidden", "invalid_payload", "unknown_event", "invalid_frame"]
    assert member_socket.events("error") == []


def test_malformed_and_unknown_events_are_silent_by_default() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> None:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "message:create", "data": {"text": "no event id"}})
        await hub.dispatch(session, {"event": "nope"})
        await hub.dispatch(session, {"data": {}})

    asyncio.run(scenario())

    assert socket.frames == []


def test_sender_id_must_match_connection_user() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> list[dict[str, Any]]:
        session = await hub.connect(socket, ids["bob"])
        await hub.dispatch(session, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(
            session,
            {"event": "message:create", "data": {"eventId": ids["event"], "senderId": ids["alice"], "text": "spoof"}},
        )
        return await hub.store.list_messages(ids["event"])

    messages = asyncio.run(scenario())

    assert messages == []
    assert socket.events("message:create") == []


def test_persistence_failure_is_logged_and_nothing_is_broadcast(caplog) -> None:
    hub, ids = _hub(store=_BrokenStore(server_salt="salt"))
    sender, listener = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> None:
        listening = await hub.connect(listener, ids["alice"])
        await hub.dispatch(listening, {"event": "join:event", "data": ids["event"]})
        sending = await hub.connect(sender, ids["bob"])
        await hub.dispatch(sending, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(
            sending,
            {"event": "message:create", "data": {"eventId": ids["event"], "senderId": ids["bob"], "text": "hi"}},
        )

    with caplog.at_level(logging.ERROR, logger="planpal.backend.hub"):
        asyncio.run(scenario())

    assert "Handler for message:create failed" in caplog.text
    assert listener.events("message:create") == []
    assert sender.events("message:create") == []


def test_typing_requires_joined_room_and_skips_sender() -> None:
    hub, ids = _hub()
    alice_socket, bob_socket = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> None:
        alice = await hub.connect(alice_socket, ids["alice"])
        bob = await hub.connect(bob_socket, ids["bob"])
        await hub.dispatch(alice, {"event": "typing", "data": {"eventId": ids["event"], "userName": "Alice"}})
        await hub.dispatch(alice, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(bob, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(alice, {"event": "typing", "data": {"eventId": ids["event"], "userName": "Alice"}})

    asyncio.run(scenario())

    assert bob_socket.events("typing") == [{"eventId": ids["event"], "userName": "Alice"}]
    assert alice_socket.events("typing") == []


def test_dm_message_requires_dm_join() -> None:
    hub, ids = _hub()
    alice_socket, bob_socket = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> None:
        alice = await hub.connect(alice_socket, ids["alice"])
        bob = await hub.connect(bob_socket, ids["bob"])
        await hub.dispatch(bob, {"event": "dm:join", "data": ids["chat"]})
        frame = {"event": "dm:message", "data": {"chatId": ids["chat"], "senderId": ids["alice"], "text": "hi"}}
        await hub.dispatch(alice, frame)
        await hub.dispatch(alice, {"event": "dm:join", "data": {"chatId": ids["chat"]}})
        await hub.dispatch(alice, frame)

    asyncio.run(scenario())

    assert [message["text"] for message in bob_socket.events("dm:message")] == ["hi"]
    assert [message["text"] for message in alice_socket.events("dm:message")] == ["hi"]


def test_dm_join_rejects_non_participant() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> str:
        session = await hub.connect(socket, ids["carol"])
        await hub.dispatch(session, {"event": "dm:join", "data": ids["chat"]})
        return session.session_id

    session_id = asyncio.run(scenario())

    assert hub.rooms.rooms_of(session_id) == set()
    assert socket.frames == []


def test_leave_event_stops_room_delivery() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> str:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "join:event", "data": ids["event"]})
        await hub.dispatch(session, {"event": "leave:event", "data": ids["event"]})
        await hub.engine.create_event_message(ids["bob"], ids["event"], "anyone?")
        return session.session_id

    session_id = asyncio.run(scenario())

    assert socket.events("room:left") == [{"roomId": ids["event"]}]
    assert socket.events("message:create") == []
    assert hub.rooms.rooms_of(session_id) == set()


def test_disconnect_clears_presence_and_rooms() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> str:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "auth:user", "data": {"userId": ids["alice"]}})
        await hub.dispatch(session, {"event": "join:event", "data": ids["event"]})
        return session.session_id

    session_id = asyncio.run(scenario())
    hub.disconnect(session_id)

    assert hub.presence.is_online(ids["alice"]) is False
    assert hub.rooms.members(ids["event"]) == set()
    assert hub.session(session_id) is None


def test_shutdown_closes_sockets_and_resets_state() -> None:
    hub, ids = _hub()
    socket = _FakeWebSocket()

    async def scenario() -> None:
        session = await hub.connect(socket, ids["alice"])
        await hub.dispatch(session, {"event": "auth:user", "data": {"userId": ids["alice"]}})
        await hub.shutdown()

    asyncio.run(scenario())

    assert socket.closed_with == 1001
    assert hub.presence.online_users() == set()
    assert hub.rooms.sockets() == {}


def test_failed_send_takes_user_offline_before_receive_loop_ends() -> None:
    hub, ids = _hub()
    alice_socket, bob_socket = _FakeWebSocket(), _FakeWebSocket()

    async def scenario() -> None:
        alice = await hub.connect(alice_socket, ids["alice"])
        bob = await hub.connect(bob_socket, ids["bob"])
        for session, user_id in ((alice, ids["alice"]), (bob, ids["bob"])):
            await hub.dispatch(session, {"event": "auth:user", "data": {"userId": user_id}})
            await hub.dispatch(session, {"event": "join:event", "data": ids["event"]})
        bob_socket.broken = True
        await hub.engine.create_event_message(ids["alice"], ids["event"], "still there?")

    asyncio.run(scenario())

    assert hub.presence.is_online(ids["bob"]) is False
    assert hub.presence.is_online(ids["alice"]) is True
    assert [message["text"] for message in alice_socket.events("message:create")] == ["still there?"]
