"""Transient alerts for activity outside the open room."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from chatsync.active_room import ActiveRoom
from chatsync.formatting import truncate
from chatsync.models import ChatRoomSummary, Message, RoomKind
from chatsync.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)

DEFAULT_TTL = 4.0
DEFAULT_PREVIEW_LENGTH = 50
SYSTEM_SENDER = "System"
UNKNOWN_CREATOR = "Someone"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class NotificationEntry:
    """A notification waiting to be shown or dismissed."""

    id: int
    text: str
    sender: str
    room_id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)


class _IdSource:
    """Creation-time based ids that never repeat, even within a millisecond."""

    def __init__(self) -> None:
        self._last = 0

    def __call__(self) -> int:
        self._last = max(time.time_ns() // 1_000_000, self._last + 1)
        return self._last


class NotificationDispatcher:
    """Decides which push events surface as notifications and expires them.

    Messages written by the local user and messages for the open room are
    never surfaced: the user already sees them. Rooms the local user created
    are not announced back to them.
    """

    def __init__(
        self,
        local_user_id: int,
        active_room: ActiveRoom,
        scheduler: Scheduler | None = None,
        *,
        ttl: float = DEFAULT_TTL,
        preview_length: int = DEFAULT_PREVIEW_LENGTH,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._local_user_id = local_user_id
        self._active_room = active_room
        self._scheduler = scheduler
        self._ttl = ttl
        self._preview_length = preview_length
        self._clock = clock
        self._next_id = _IdSource()
        self._entries: list[NotificationEntry] = []
        self._expiry: dict[int, Timer] = {}

    @property
    def entries(self) -> list[NotificationEntry]:
        return list(self._entries)

    def on_message(self, message: Message) -> NotificationEntry | None:
        if message.sender.id == self._local_user_id:
            return None
        if self._active_room.is_active(message.room_id):
            return None
        text = truncate(message.content, self._preview_length)
        return self._enqueue(text, message.sender.username, message.room_id)

    def on_room_created(self, room: ChatRoomSummary) -> NotificationEntry | None:
        creator = room.created_by
        if creator is not None and creator.id == self._local_user_id:
            return None
        name = creator.username if creator is not None else UNKNOWN_CREATOR
        if room.kind is RoomKind.DIRECT:
            text = f"{name} started a conversation with you"
        else:
            text = f'{name} added you to "{room.name}"'
        return self._enqueue(text, SYSTEM_SENDER, room.id)

    def system(self, text: str, room_id: int | None = None) -> NotificationEntry:
        """Surface a locally generated notice, e.g. the outcome of a delete."""
        return self._enqueue(text, SYSTEM_SENDER, room_id)

    def _enqueue(
        self,
        text: str,
        sender: str,
        room_id: int | None,
    ) -> NotificationEntry:
        entry = NotificationEntry(
            id=self._next_id(),
            text=text,
            sender=sender,
            room_id=room_id,
            created_at=self._clock(),
        )
        self._entries.append(entry)
        if self._scheduler is not None:

            async def expire() -> None:
                self._expiry.pop(entry.id, None)
                self.dismiss(entry.id)

            self._expiry[entry.id] = self._scheduler.call_later(
                self._ttl, expire, name=f"notification-{entry.id}"
            )
        logger.debug("Notification %s from %s queued", entry.id, sender)
        return entry

    def dismiss(self, entry_id: int) -> bool:
        timer = self._expiry.pop(entry_id, None)
        if timer is not None:
            timer.cancel()
        for entry in self._entries:
            if entry.id == entry_id:
                self._entries.remove(entry)
                return True
        return False

    def clear(self) -> None:
        for timer in self._expiry.values():
            timer.cancel()
        self._expiry.clear()
        self._entries.clear()
