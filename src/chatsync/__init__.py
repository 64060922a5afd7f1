"""chatsync: real-time chat client state reconciliation.

Re-exports the session and the components it is built from.
"""

from chatsync.active_room import ActiveRoom
from chatsync.api import ChatApi
from chatsync.config import ClientConfig
from chatsync.errors import (
    ChatSyncError,
    HydrationError,
    InvalidEventError,
    TransportError,
)
from chatsync.events import PushEvent, parse_event
from chatsync.message_log import MessageLog
from chatsync.models import ChatRoomSummary, Message, RoomKind, User, UserProfile
from chatsync.notifications import NotificationDispatcher, NotificationEntry
from chatsync.read_receipts import ReadReceiptCoordinator
from chatsync.registry import RoomRegistry
from chatsync.scheduler import Scheduler, Timer
from chatsync.session import ChatSession, SessionState
from chatsync.storage import SessionStore
from chatsync.transport import Frame, InMemoryTransport, Transport
from chatsync.typing_indicator import TypingCoordinator

__all__ = [
    # session
    "ChatSession",
    "SessionState",
    "ClientConfig",
    "SessionStore",
    # state
    "ActiveRoom",
    "RoomRegistry",
    "MessageLog",
    "ReadReceiptCoordinator",
    "TypingCoordinator",
    "NotificationDispatcher",
    "NotificationEntry",
    # models
    "ChatRoomSummary",
    "Message",
    "RoomKind",
    "User",
    "UserProfile",
    # wire
    "ChatApi",
    "Frame",
    "InMemoryTransport",
    "Transport",
    "PushEvent",
    "parse_event",
    # scheduling
    "Scheduler",
    "Timer",
    # errors
    "ChatSyncError",
    "HydrationError",
    "InvalidEventError",
    "TransportError",
]
