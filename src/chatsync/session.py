"""ChatSession: wires transport, data service and the state components."""

import logging
from enum import StrEnum
from typing import assert_never

import anyio
import httpx

from chatsync.active_room import ActiveRoom
from chatsync.api import ChatApi
from chatsync.besteffort import best_effort
from chatsync.config import ClientConfig
from chatsync.errors import HydrationError, InvalidEventError
from chatsync.events import (
    ADD_USER_DESTINATION,
    PRESENCE_TOPIC,
    ROOM_CREATED_TOPIC,
    SEND_MESSAGE_DESTINATION,
    MessageEvent,
    PresenceEvent,
    PushEvent,
    RoomCreatedEvent,
    StatusEvent,
    StatusType,
    TypingEvent,
    parse_event,
    room_topic,
    status_topic,
    typing_topic,
)
from chatsync.message_log import MessageLog
from chatsync.models import (
    ChatRoomSummary,
    Message,
    MessageKind,
    RoomKind,
    User,
    UserProfile,
)
from chatsync.notifications import NotificationDispatcher
from chatsync.read_receipts import ReadReceiptCoordinator
from chatsync.registry import RoomRegistry
from chatsync.scheduler import Scheduler
from chatsync.transport import Frame, Subscription, Transport
from chatsync.typing_indicator import TypingCoordinator

logger = logging.getLogger(__name__)

# Transport failures, plus bodies that are not JSON or fail validation
# (json.JSONDecodeError and pydantic.ValidationError are both ValueErrors).
SERVICE_ERRORS = (httpx.HTTPError, ValueError)


class SessionState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOAD_FAILED = "load_failed"
    CLOSED = "closed"


class ChatSession:
    """The signed-in user's live view of their rooms.

    Push frames, timer callbacks and user actions all run on one event loop.
    Each handler reads the open room from `active_room` when it runs, never
    from a value captured when the handler was registered.

    Example:
        async with Scheduler() as scheduler, ChatApi(config, store.get_token) as api:
            session = ChatSession(user, api, transport, scheduler, config)
            await session.start()
            await session.select_room(7)
    """

    def __init__(
        self,
        user: UserProfile,
        api: ChatApi,
        transport: Transport,
        scheduler: Scheduler,
        config: ClientConfig | None = None,
    ) -> None:
        self.user = user
        self.config = config or ClientConfig()
        self._api = api
        self._transport = transport
        self._scheduler = scheduler

        self.active_room = ActiveRoom()
        self.registry = RoomRegistry(user.id, self.active_room)
        self.log = MessageLog()
        self.read_receipts = ReadReceiptCoordinator(
            api,
            self.log,
            self.active_room,
            user.id,
            scheduler,
            on_marked=self._on_messages_marked,
            fallback_delay=self.config.read_fallback_s,
            visibility_threshold=self.config.read_visibility_threshold,
        )
        self.typing = TypingCoordinator(
            api,
            self.active_room,
            user.id,
            scheduler,
            idle_timeout=self.config.typing_idle_s,
        )
        self.notifications = NotificationDispatcher(
            user.id,
            self.active_room,
            scheduler,
            ttl=self.config.notification_ttl_s,
            preview_length=self.config.notification_preview_length,
        )

        self.state = SessionState.IDLE
        self._global_subscriptions: list[Subscription] = []
        self._room_subscriptions: list[Subscription] = []
        self._subscription_lock = anyio.Lock()

    # Lifecycle

    async def start(self) -> None:
        """Connect, subscribe and load the room list.

        Raises:
            HydrationError: If the room list cannot be loaded. The registry is
                left empty and the state is LOAD_FAILED.
        """
        self.state = SessionState.LOADING
        await self._transport.connect(self.user.username)
        self._global_subscriptions = [
            await self._transport.subscribe(ROOM_CREATED_TOPIC, self._on_frame),
            await self._transport.subscribe(PRESENCE_TOPIC, self._on_frame),
        ]
        await self._set_presence(True)

        try:
            rooms = await self._load_rooms()
        except SERVICE_ERRORS as e:
            self.state = SessionState.LOAD_FAILED
            logger.error("Failed to load chat rooms: %s", e)
            raise HydrationError(e) from e

        self.registry.upsert_from_snapshot(rooms)
        await self._resubscribe()
        self.state = SessionState.READY
        logger.info("Session ready with %d rooms", len(self.registry))

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.read_receipts.cancel()
        await self.typing.reset()
        self.notifications.clear()
        await self._set_presence(False)
        async with self._subscription_lock:
            for sub in self._room_subscriptions + self._global_subscriptions:
                await self._transport.unsubscribe(sub)
            self._room_subscriptions = []
            self._global_subscriptions = []
        await self._transport.disconnect()
        self.state = SessionState.CLOSED

    async def set_visible(self, visible: bool) -> None:
        """The app went to the background or came back to the foreground."""
        await self._set_presence(visible)
        if visible and self.active_room.get() is not None:
            await self.read_receipts.mark_all_read()

    async def _set_presence(self, online: bool) -> None:
        await best_effort(
            f"Setting presence to {'online' if online else 'offline'}",
            self._api.set_presence(online),
            logger,
        )

    # Room list

    async def _load_rooms(self) -> list[ChatRoomSummary]:
        rooms = await self._api.list_rooms()
        async with anyio.create_task_group() as tg:
            for room in rooms:
                tg.start_soon(self._attach_last_message, room)
        return rooms

    async def _attach_last_message(self, room: ChatRoomSummary) -> None:
        try:
            last = await self._api.get_last_message(room.id)
        except SERVICE_ERRORS as e:
            logger.warning("No preview for room %s: %s", room.id, e)
            return
        room.last_message = last
        room.last_message_time = last.created_at if last is not None else None

    async def refresh_rooms(self) -> bool:
        """Reload the room list, keeping local unread counters.

        Returns:
            False if the refresh failed; the previous list stays in place.
        """
        try:
            rooms = await self._load_rooms()
        except SERVICE_ERRORS as e:
            logger.error("Failed to refresh chat rooms: %s", e)
            return False

        self.registry.upsert_from_snapshot(rooms)
        active_id = self.active_room.room_id
        if active_id is not None:
            fresh = self.registry.get(active_id)
            if fresh is not None:
                self.active_room.set(fresh)
        await self._resubscribe()
        return True

    async def _on_messages_marked(self, room_id: int) -> None:
        await self.refresh_rooms()

    async def _resubscribe(self) -> None:
        """Replace all room subscriptions for the current room list.

        Old subscriptions are fully torn down first; two live handlers on one
        topic would apply every event twice.
        """
        async with self._subscription_lock:
            old, self._room_subscriptions = self._room_subscriptions, []
            for sub in old:
                await self._transport.unsubscribe(sub)

            subs: list[Subscription] = []
            for room_id in self.registry.room_ids:
                subs.append(
                    await self._transport.subscribe(room_topic(room_id), self._on_frame)
                )
            active_id = self.active_room.room_id
            if active_id is not None and active_id in self.registry:
                for topic in (typing_topic(active_id), status_topic(active_id)):
                    subs.append(await self._transport.subscribe(topic, self._on_frame))
            self._room_subscriptions = subs

    async def create_room(
        self,
        name: str,
        kind: RoomKind,
        member_ids: list[int],
    ) -> ChatRoomSummary:
        """Create a room and open it.

        Raises:
            httpx.HTTPError: If the data service rejects the room.
        """
        created = await self._api.create_room(name, kind, member_ids)
        await self.refresh_rooms()
        if self.registry.add_room(created):
            await self._resubscribe()
        await self.select_room(created.id)
        return self.registry.get(created.id) or created

    async def start_direct_chat(self, peer: User) -> ChatRoomSummary:
        """Open the existing direct chat with peer, or create one."""
        existing = self.registry.find_direct_room(peer.id)
        if existing is not None:
            await self.select_room(existing.id)
            return existing
        return await self.create_room(peer.username, RoomKind.DIRECT, [peer.id])

    async def delete_room(self, room_id: int) -> bool:
        """Remove a room from this user's list only."""
        room = self.registry.get(room_id)
        if room is None:
            return False
        try:
            await self._api.delete_room_for_self(room_id)
        except SERVICE_ERRORS as e:
            logger.error("Failed to delete room %s: %s", room_id, e)
            self.notifications.system(
                "Failed to delete chat. Please try again.", room_id
            )
            return False

        self.registry.remove_room(room_id)
        if self.active_room.is_active(room_id):
            await self.close_room()
        else:
            await self._resubscribe()
        self.notifications.system(f'Chat "{room.name}" deleted', room_id)
        return True

    # Open room

    async def select_room(self, room_id: int) -> bool:
        """Open room_id, replacing whatever room was open.

        Returns:
            False if the room is not in the registry.
        """
        room = self.registry.get(room_id)
        if room is None:
            logger.warning("Cannot open unknown room %s", room_id)
            return False

        self.read_receipts.cancel()
        self.active_room.set(room)
        self.registry.mark_opened(room_id)
        self.typing.clear()
        self.log.hydrate(room_id, [])

        await self.typing.stop()
        await self._resubscribe()
        await self._hydrate_messages(room_id)
        return True

    async def close_room(self) -> None:
        self.read_receipts.cancel()
        self.active_room.set(None)
        self.typing.clear()
        self.log.clear()
        await self.typing.stop()
        await self._resubscribe()

    async def _hydrate_messages(self, room_id: int) -> None:
        try:
            history = await self._api.list_messages(room_id)
        except SERVICE_ERRORS as e:
            logger.error("Failed to load messages for room %s: %s", room_id, e)
            return
        if not self.active_room.is_active(room_id):
            logger.debug("Room %s closed before its history arrived", room_id)
            return
        # Messages pushed while the history was loading go after it.
        self.log.hydrate(room_id, [*history, *self.log.messages])
        self.read_receipts.schedule_fallback()

    async def send_message(self, content: str) -> bool:
        room_id = self.active_room.room_id
        text = content.strip()
        if room_id is None or not text:
            return False
        await self._transport.publish(
            SEND_MESSAGE_DESTINATION,
            {"content": text, "chatRoomId": room_id, "type": MessageKind.CHAT.value},
        )
        await self.typing.message_sent()
        return True

    async def announce_join(self, room_id: int) -> None:
        await self._transport.publish(
            ADD_USER_DESTINATION,
            {
                "content": self.user.username,
                "chatRoomId": room_id,
                "type": MessageKind.JOIN.value,
            },
        )

    async def input_changed(self, text: str) -> None:
        await self.typing.input_changed(text)

    async def message_visible(self, message_id: int, ratio: float = 1.0) -> bool:
        return await self.read_receipts.message_visible(message_id, ratio)

    # Push events

    async def _on_frame(self, frame: Frame) -> None:
        try:
            event = parse_event(frame.topic, frame.body)
        except InvalidEventError as e:
            logger.warning("Dropping frame %s: %s", frame.uuid, e)
            return
        await self.handle_event(event)

    async def handle_event(self, event: PushEvent) -> None:
        if isinstance(event, MessageEvent):
            self._on_message(event.message)
        elif isinstance(event, TypingEvent):
            self.typing.apply_remote(event)
        elif isinstance(event, StatusEvent):
            self._on_status(event)
        elif isinstance(event, RoomCreatedEvent):
            await self._on_room_created(event)
        elif isinstance(event, PresenceEvent):
            self.registry.apply_presence(event)
        else:
            assert_never(event)

    def _on_message(self, message: Message) -> None:
        if self.active_room.is_active(message.room_id) and self.log.append(message):
            self.read_receipts.schedule_fallback()
        if self.registry.apply_incoming_message(message):
            self.notifications.on_message(message)

    def _on_status(self, event: StatusEvent) -> None:
        if event.status_type is StatusType.READ:
            self.log.patch_read_status(event.message_id, event.read_at)
        else:
            self.log.patch_delivery_status(event.message_id, event.delivered_at)

    async def _on_room_created(self, event: RoomCreatedEvent) -> None:
        if not event.concerns(self.user.username):
            logger.debug("Room %s does not include us, ignoring", event.room.id)
            return
        room = event.room
        if room.id in self.registry:
            logger.debug("Room %s already registered, skipping", room.id)
            return

        await self._attach_last_message(room)
        if not self.registry.add_room(room):
            return
        await self._resubscribe()
        self.notifications.on_room_created(room)
