"""Messages of the currently open room."""

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime

from chatsync.models import Message

logger = logging.getLogger(__name__)


class MessageLog:
    """Ordered, duplicate-free message sequence for one room.

    Display order is arrival order, not timestamp order. Read and delivered
    flags only ever move forward.
    """

    def __init__(self) -> None:
        self._room_id: int | None = None
        self._messages: list[Message] = []
        self._by_id: dict[int, Message] = {}

    @property
    def room_id(self) -> int | None:
        return self._room_id

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def get(self, message_id: int) -> Message | None:
        return self._by_id.get(message_id)

    def hydrate(self, room_id: int, messages: Iterable[Message]) -> None:
        """Replace the log with a freshly fetched history of room_id."""
        self._room_id = room_id
        self._messages = []
        self._by_id = {}
        for message in messages:
            if message.id in self._by_id:
                continue
            self._messages.append(message)
            self._by_id[message.id] = message
        logger.debug("Hydrated room %s with %d messages", room_id, len(self._messages))

    def clear(self) -> None:
        self._room_id = None
        self._messages = []
        self._by_id = {}

    def append(self, message: Message) -> bool:
        """Append a pushed message unless it is already present.

        Returns:
            True if the message was appended.
        """
        if self._room_id is None or message.room_id != self._room_id:
            return False
        if message.id in self._by_id:
            return False
        self._messages.append(message)
        self._by_id[message.id] = message
        return True

    def patch_read_status(self, message_id: int, read_at: datetime | None) -> bool:
        """Mark a message read, keeping the first read time it was given."""
        message = self._by_id.get(message_id)
        if message is None or message.is_read:
            return False
        message.is_read = True
        message.read_at = read_at
        return True

    def patch_delivery_status(
        self,
        message_id: int,
        delivered_at: datetime | None,
    ) -> bool:
        message = self._by_id.get(message_id)
        if message is None or message.is_delivered:
            return False
        message.is_delivered = True
        message.delivered_at = delivered_at
        return True

    def unread_from_others(self, local_user_id: int) -> list[Message]:
        """Unread messages the local user still has to acknowledge."""
        return [
            m
            for m in self._messages
            if not m.is_read and m.sender.id != local_user_id
        ]
