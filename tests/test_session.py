"""End-to-end tests for ChatSession over the in-memory transport."""

from collections.abc import AsyncIterator

import anyio
import httpx
import pytest
from factories import (
    ALICE,
    BOB,
    CAROL,
    FakeService,
    alice_member,
    make_message,
    make_room,
    message_payload,
    room_payload,
)

from chatsync import (
    ChatApi,
    ChatSession,
    ClientConfig,
    HydrationError,
    InMemoryTransport,
    Scheduler,
    SessionState,
)
from chatsync.events import (
    PRESENCE_TOPIC,
    ROOM_CREATED_TOPIC,
    SEND_MESSAGE_DESTINATION,
    room_topic,
    status_topic,
    typing_topic,
)
from chatsync.models import RoomKind, User

pytestmark = pytest.mark.anyio

ROOM_A = 7
ROOM_B = 3
SETTLE = 0.15
BOB_TYPING = {"userId": BOB.id, "username": "bob", "typing": True, "chatRoomId": ROOM_A}


@pytest.fixture
def session(
    api: ChatApi,
    transport: InMemoryTransport,
    scheduler: Scheduler,
    config: ClientConfig,
    service: FakeService,
) -> ChatSession:
    service.rooms = [make_room(ROOM_A), make_room(ROOM_B)]
    return ChatSession(ALICE, api, transport, scheduler, config)


@pytest.fixture
async def started(session: ChatSession) -> AsyncIterator[ChatSession]:
    await session.start()
    yield session


def _room_created(room_id: int, creator: User, members: list[str]) -> dict:
    room = make_room(room_id, name=f"New {room_id}", created_by=creator)
    return {"room": room_payload(room), "memberUsernames": members}


class TestStart:
    async def test_loads_rooms_and_subscribes(
        self,
        session: ChatSession,
        transport: InMemoryTransport,
        service: FakeService,
    ) -> None:
        service.messages[ROOM_B] = [make_message(50, ROOM_B, content="latest")]

        await session.start()

        assert session.state is SessionState.READY
        assert session.registry.room_ids == [ROOM_A, ROOM_B]
        room_b = session.registry.get(ROOM_B)
        assert room_b is not None
        assert room_b.last_message is not None
        assert room_b.last_message.content == "latest"
        assert transport.topics == {
            ROOM_CREATED_TOPIC,
            PRESENCE_TOPIC,
            room_topic(ROOM_A),
            room_topic(ROOM_B),
        }
        presence = service.calls("POST", "/api/users/status")
        assert presence[0].url.params["isOnline"] == "true"

    async def test_room_list_failure_raises_hydration_error(
        self, session: ChatSession, service: FakeService
    ) -> None:
        service.fail["GET /api/chatrooms"] = 503

        with pytest.raises(HydrationError):
            await session.start()

        assert session.state is SessionState.LOAD_FAILED
        assert len(session.registry) == 0

    async def test_non_json_room_list_raises_hydration_error(
        self, session: ChatSession, service: FakeService
    ) -> None:
        service.bodies["GET /api/chatrooms"] = "<html>gateway</html>"

        with pytest.raises(HydrationError):
            await session.start()

        assert session.state is SessionState.LOAD_FAILED
        assert len(session.registry) == 0

    async def test_invalid_room_payload_raises_hydration_error(
        self, session: ChatSession, service: FakeService
    ) -> None:
        service.bodies["GET /api/chatrooms"] = '[{"name": "no id"}]'

        with pytest.raises(HydrationError):
            await session.start()

        assert session.state is SessionState.LOAD_FAILED

    async def test_missing_preview_keeps_room(
        self, session: ChatSession, service: FakeService
    ) -> None:
        service.fail[f"GET /api/chatrooms/{ROOM_A}/last-message"] = 500

        await session.start()

        assert ROOM_A in session.registry

    async def test_malformed_preview_keeps_room_list(
        self, session: ChatSession, service: FakeService
    ) -> None:
        service.bodies[f"GET /api/chatrooms/{ROOM_B}/last-message"] = '{"id": 5}'

        await session.start()

        assert session.state is SessionState.READY
        assert session.registry.room_ids == [ROOM_A, ROOM_B]
        room_b = session.registry.get(ROOM_B)
        assert room_b is not None
        assert room_b.last_message is None

    async def test_failed_refresh_keeps_previous_list(
        self, started: ChatSession, service: FakeService
    ) -> None:
        service.bodies["GET /api/chatrooms"] = "<html>gateway</html>"

        assert not await started.refresh_rooms()

        assert started.registry.room_ids == [ROOM_A, ROOM_B]


class TestRoomSwitching:
    async def test_message_routing_between_open_and_background_room(
        self,
        started: ChatSession,
        transport: InMemoryTransport,
        service: FakeService,
    ) -> None:
        service.messages[ROOM_A] = [make_message(1, ROOM_A)]
        await started.select_room(ROOM_A)

        await transport.deliver(
            room_topic(ROOM_B), message_payload(make_message(2, ROOM_B))
        )

        assert started.registry.unread_count(ROOM_B) == 1
        assert started.registry.room_ids[0] == ROOM_B
        assert [m.id for m in started.log] == [1]
        assert [e.room_id for e in started.notifications.entries] == [ROOM_B]

        await transport.deliver(
            room_topic(ROOM_A), message_payload(make_message(3, ROOM_A))
        )

        assert [m.id for m in started.log] == [1, 3]
        assert started.registry.unread_count(ROOM_A) == 0
        assert len(started.notifications.entries) == 1

        await anyio.sleep(SETTLE)

        assert started.log.unread_from_others(ALICE.id) == []
        assert sorted(service.read_calls()) == [
            f"/api/chatrooms/{ROOM_A}/messages/1/read",
            f"/api/chatrooms/{ROOM_A}/messages/3/read",
        ]
        assert started.registry.unread_count(ROOM_B) == 1

    async def test_switching_resets_unread_and_typing(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        await started.select_room(ROOM_A)
        await transport.deliver(
            room_topic(ROOM_B), message_payload(make_message(2, ROOM_B))
        )
        await transport.deliver(typing_topic(ROOM_A), BOB_TYPING)
        assert started.typing.typing_users == ["bob"]

        await started.select_room(ROOM_B)

        assert started.registry.unread_count(ROOM_B) == 0
        assert started.typing.typing_users == []
        assert started.log.room_id == ROOM_B

        # Late ping from the previous room after the switch.
        await transport.deliver(typing_topic(ROOM_A), BOB_TYPING)
        assert started.typing.typing_users == []

    async def test_subscriptions_are_never_duplicated(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        for room_id in (ROOM_A, ROOM_B, ROOM_A):
            await started.select_room(room_id)
        await started.refresh_rooms()

        assert transport.subscriber_count(room_topic(ROOM_A)) == 1
        assert transport.subscriber_count(room_topic(ROOM_B)) == 1
        assert transport.subscriber_count(typing_topic(ROOM_A)) == 1
        assert transport.subscriber_count(status_topic(ROOM_A)) == 1
        assert transport.subscriber_count(typing_topic(ROOM_B)) == 0

    async def test_duplicate_delivery_counts_once(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        payload = message_payload(make_message(2, ROOM_B))
        await transport.deliver(room_topic(ROOM_B), payload)
        await transport.deliver(room_topic(ROOM_B), payload)

        assert started.registry.unread_count(ROOM_B) == 1
        assert len(started.notifications.entries) == 1

    async def test_close_room(self, started: ChatSession) -> None:
        await started.select_room(ROOM_A)
        await started.close_room()

        assert started.active_room.get() is None
        assert len(started.log) == 0

    async def test_unknown_room_cannot_be_opened(self, started: ChatSession) -> None:
        assert not await started.select_room(404)


class TestPushEvents:
    async def test_room_created_once(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        payload = _room_created(20, BOB, ["alice", "bob"])

        await transport.deliver(ROOM_CREATED_TOPIC, payload)
        await transport.deliver(ROOM_CREATED_TOPIC, payload)

        assert started.registry.room_ids[0] == 20
        assert transport.subscriber_count(room_topic(20)) == 1
        texts = [e.text for e in started.notifications.entries]
        assert texts == ['bob added you to "New 20"']

    async def test_room_created_by_self_is_silent(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        payload = _room_created(21, alice_member(), ["alice", "carol"])
        await transport.deliver(ROOM_CREATED_TOPIC, payload)

        assert 21 in started.registry
        assert started.notifications.entries == []

    async def test_room_created_for_others_is_ignored(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        payload = _room_created(22, BOB, ["bob", "carol"])
        await transport.deliver(ROOM_CREATED_TOPIC, payload)

        assert 22 not in started.registry

    async def test_read_status_patches_open_log(
        self,
        started: ChatSession,
        transport: InMemoryTransport,
        service: FakeService,
    ) -> None:
        service.messages[ROOM_A] = [make_message(1, ROOM_A, sender=alice_member())]
        await started.select_room(ROOM_A)

        await transport.deliver(
            status_topic(ROOM_A),
            {
                "messageId": 1,
                "statusType": "READ",
                "chatRoomId": ROOM_A,
                "readAt": "2024-05-01T12:05:00Z",
            },
        )

        message = started.log.get(1)
        assert message is not None
        assert message.is_read

    async def test_presence_updates_members(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        await transport.deliver(
            PRESENCE_TOPIC, {"userId": CAROL.id, "isOnline": True}
        )

        for room in started.registry:
            member = room.member(CAROL.id)
            assert member is not None
            assert member.is_online

    async def test_malformed_frame_is_dropped(
        self,
        started: ChatSession,
        transport: InMemoryTransport,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await transport.deliver(room_topic(ROOM_B), {"nonsense": True})

        assert started.registry.unread_count(ROOM_B) == 0
        assert "Dropping frame" in caplog.text


class TestUserActions:
    async def test_send_message_publishes_and_stops_typing(
        self,
        started: ChatSession,
        transport: InMemoryTransport,
        service: FakeService,
    ) -> None:
        await started.select_room(ROOM_A)
        await started.input_changed("hello")

        assert await started.send_message("  hello  ")

        assert transport.published == [
            (
                SEND_MESSAGE_DESTINATION,
                {"content": "hello", "chatRoomId": ROOM_A, "type": "CHAT"},
            )
        ]
        assert service.typing_flags(ROOM_A) == ["true", "false"]

    async def test_blank_message_is_not_sent(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        await started.select_room(ROOM_A)
        assert not await started.send_message("   ")
        assert transport.published == []

    async def test_delete_room(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        await started.select_room(ROOM_A)

        assert await started.delete_room(ROOM_A)

        assert ROOM_A not in started.registry
        assert started.active_room.get() is None
        assert transport.subscriber_count(room_topic(ROOM_A)) == 0
        texts = [e.text for e in started.notifications.entries]
        assert texts == [f'Chat "Room {ROOM_A}" deleted']

    async def test_delete_room_failure_keeps_room(
        self, started: ChatSession, service: FakeService
    ) -> None:
        service.fail[f"DELETE /api/chatrooms/{ROOM_B}"] = 500

        assert not await started.delete_room(ROOM_B)

        assert ROOM_B in started.registry
        texts = [e.text for e in started.notifications.entries]
        assert texts == ["Failed to delete chat. Please try again."]

    async def test_create_room_opens_it(
        self, started: ChatSession, service: FakeService
    ) -> None:
        room = await started.create_room("Team", RoomKind.GROUP, [BOB.id, CAROL.id])

        assert room.id in started.registry
        assert started.active_room.room_id == room.id
        assert started.notifications.entries == []

    async def test_create_room_failure_propagates(
        self, started: ChatSession, service: FakeService
    ) -> None:
        service.fail["POST /api/chatrooms"] = 400
        with pytest.raises(httpx.HTTPStatusError):
            await started.create_room("Team", RoomKind.GROUP, [BOB.id])

    async def test_direct_chat_is_reused(
        self, started: ChatSession, service: FakeService
    ) -> None:
        first = await started.start_direct_chat(BOB)
        second = await started.start_direct_chat(BOB)

        assert first.id == second.id
        assert len(service.created) == 1
        assert first.kind is RoomKind.DIRECT

    async def test_close_goes_offline_and_disconnects(
        self,
        started: ChatSession,
        transport: InMemoryTransport,
        service: FakeService,
    ) -> None:
        await started.close()

        assert started.state is SessionState.CLOSED
        assert not transport.connected
        flags = [
            r.url.params["isOnline"]
            for r in service.calls("POST", "/api/users/status")
        ]
        assert flags == ["true", "false"]

    async def test_announce_join(
        self, started: ChatSession, transport: InMemoryTransport
    ) -> None:
        await started.announce_join(ROOM_B)

        assert transport.published == [
            (
                "/app/chat.addUser",
                {"content": "alice", "chatRoomId": ROOM_B, "type": "JOIN"},
            )
        ]

    async def test_returning_to_foreground_marks_open_room_read(
        self, started: ChatSession, service: FakeService
    ) -> None:
        service.messages[ROOM_A] = [make_message(1, ROOM_A)]
        await started.select_room(ROOM_A)
        started.read_receipts.cancel()

        await started.set_visible(True)

        assert service.read_calls() == [f"/api/chatrooms/{ROOM_A}/messages/1/read"]

    async def test_read_receipt_survives_malformed_preview_on_refresh(
        self, started: ChatSession, service: FakeService
    ) -> None:
        service.messages[ROOM_A] = [make_message(1, ROOM_A)]
        await started.select_room(ROOM_A)
        started.read_receipts.cancel()
        service.bodies[f"GET /api/chatrooms/{ROOM_B}/last-message"] = '{"id": 5}'

        assert await started.message_visible(1)

        message = started.log.get(1)
        assert message is not None
        assert message.is_read
        assert ROOM_B in started.registry
