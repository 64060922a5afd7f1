"""Push transport protocol and an in-memory implementation.

The reconciliation core only consumes the transport through the Transport
protocol. Reconnects and heartbeats are the concrete transport's concern.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Protocol
from uuid import UUID, uuid4

from chatsync.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class Frame:
    """A single push delivery: destination topic plus raw body."""

    topic: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    uuid: UUID = field(default_factory=uuid4)

    @classmethod
    def from_json(cls, topic: str, payload: Any) -> "Frame":
        return cls(topic=topic, body=json.dumps(payload, default=str).encode())


FrameHandler = Callable[[Frame], Awaitable[None]]


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe; pass it to unsubscribe."""

    topic: str
    handler: FrameHandler
    active: bool = True


class Transport(Protocol):
    """Push channel consumed by the chat session."""

    async def connect(self, identity: str) -> None:
        """Connect and wait for the handshake acknowledgement.

        Raises:
            TransportError: If the handshake is rejected.
        """
        ...

    async def subscribe(self, topic: str, handler: FrameHandler) -> Subscription: ...

    async def unsubscribe(self, subscription: Subscription) -> None: ...

    async def publish(self, destination: str, payload: Any) -> None: ...

    async def disconnect(self) -> None: ...


class InMemoryTransport:
    """Transport that delivers frames to local subscribers.

    Frames for a topic reach live subscribers in subscription order, one
    handler at a time, which preserves per-topic arrival order. A failing
    handler is logged and does not stop delivery to the others.

    Published payloads are recorded in `published` so tests can inspect what
    the client sent.

    Example:
        async with InMemoryTransport() as transport:
            await transport.connect("alice")
            sub = await transport.subscribe("/topic/chatroom/1", handler)
            await transport.deliver("/topic/chatroom/1", {"id": 1, ...})
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._connected = False
        self._identity: str | None = None
        self.published: list[tuple[str, Any]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def identity(self) -> str | None:
        return self._identity

    def _require_connected(self) -> None:
        if not self._connected:
            msg = "Transport is not connected"
            raise TransportError(msg)

    async def connect(self, identity: str) -> None:
        self._identity = identity
        self._connected = True
        logger.info("Connected to push transport as %s", identity)

    async def subscribe(self, topic: str, handler: FrameHandler) -> Subscription:
        self._require_connected()
        subscription = Subscription(topic=topic, handler=handler)
        self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.topic, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))

    @property
    def topics(self) -> set[str]:
        return set(self._subscriptions)

    async def publish(self, destination: str, payload: Any) -> None:
        """Send a client frame to the server side (recorded, not delivered)."""
        self._require_connected()
        self.published.append((destination, payload))

    async def deliver(self, topic: str, payload: Any) -> None:
        """Push a server frame to every live subscriber of topic."""
        if isinstance(payload, Frame):
            frame = payload
        else:
            frame = Frame.from_json(topic, payload)
        for subscription in list(self._subscriptions.get(topic, [])):
            # Unsubscribed while an earlier handler ran.
            if not subscription.active:
                continue
            try:
                await subscription.handler(frame)
            except Exception:
                logger.exception(
                    "Subscriber failed for frame %s on %s", frame.uuid, topic
                )

    async def disconnect(self) -> None:
        for subs in self._subscriptions.values():
            for subscription in subs:
                subscription.active = False
        self._subscriptions.clear()
        self._connected = False

    async def __aenter__(self) -> "InMemoryTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()
