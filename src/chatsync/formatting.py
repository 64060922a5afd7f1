"""Human-readable rendering of timestamps, presence and previews."""

from datetime import datetime

from chatsync.models import ChatRoomSummary, MessageKind, RoomKind, User

ELLIPSIS = "..."
ROOM_PREVIEW_LENGTH = 30
MAX_BADGE_COUNT = 99
MINUTES_PER_HOUR = 60
HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7


def _aware(value: datetime) -> datetime:
    # Naive timestamps from the service are in local time.
    return value if value.tzinfo is not None else value.astimezone()


def _now(now: datetime | None) -> datetime:
    return _aware(now) if now is not None else datetime.now().astimezone()


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_last_seen(
    last_seen: datetime | None,
    is_online: bool,
    now: datetime | None = None,
) -> str:
    """Describe when a user was last online, e.g. "Last seen 5 minutes ago"."""
    if is_online:
        return "Online"
    if last_seen is None:
        return "Last seen recently"

    seen = _aware(last_seen)
    minutes = int((_now(now) - seen).total_seconds() // 60)
    hours = minutes // MINUTES_PER_HOUR
    days = hours // HOURS_PER_DAY

    if minutes < 1:
        return "Last seen just now"
    if minutes < MINUTES_PER_HOUR:
        return f"Last seen {_plural(minutes, 'minute')} ago"
    if hours < HOURS_PER_DAY:
        return f"Last seen {_plural(hours, 'hour')} ago"
    if days < DAYS_PER_WEEK:
        return f"Last seen {_plural(days, 'day')} ago"
    return f"Last seen {seen:%Y-%m-%d}"


def format_message_time(timestamp: datetime, now: datetime | None = None) -> str:
    """Short label for a message time in the room list.

    Today shows the clock time, yesterday shows "Yesterday", the last week
    shows the weekday and anything older shows month and day.
    """
    sent = _aware(timestamp).astimezone()
    days = (_now(now) - sent).days
    if days <= 0:
        return f"{sent:%H:%M}"
    if days == 1:
        return "Yesterday"
    if days < DAYS_PER_WEEK:
        return f"{sent:%a}"
    return f"{sent:%b} {sent.day}"


def format_presence(user: User, now: datetime | None = None) -> str:
    return format_last_seen(user.last_seen, user.is_online, now)


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def unread_badge(count: int) -> str:
    if count <= 0:
        return ""
    return f"{MAX_BADGE_COUNT}+" if count > MAX_BADGE_COUNT else str(count)


def room_title(room: ChatRoomSummary, local_user_id: int) -> str:
    """Direct chats are titled after the peer, groups after their name."""
    if room.kind is RoomKind.DIRECT:
        peer = room.other_member(local_user_id)
        if peer is not None:
            return peer.username
    return room.name


def room_preview(room: ChatRoomSummary) -> str:
    last = room.last_message
    if last is None:
        if room.kind is RoomKind.DIRECT:
            return "Start a conversation"
        return f"Group • {_plural(len(room.members), 'member')}"
    if last.kind is MessageKind.CHAT:
        return f"{last.sender.username}: {truncate(last.content, ROOM_PREVIEW_LENGTH)}"
    return last.content


def room_subtitle(
    room: ChatRoomSummary,
    local_user_id: int,
    now: datetime | None = None,
) -> str:
    """Header line under the room title: peer presence or member count."""
    if room.kind is RoomKind.DIRECT:
        peer = room.other_member(local_user_id)
        if peer is not None:
            return format_presence(peer, now)
    return _plural(len(room.members), "member")
