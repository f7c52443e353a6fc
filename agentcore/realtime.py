"""
Realtime gateway: authenticated sessions, rooms and per-user replay buffers.

The gateway is transport-agnostic. A transport only needs ``send(event, data)``
and ``close(code, reason)``; the WebSocket adapter lives in api/realtime.py.

Rooms
  user:<uid>        auto-joined on connect
  agent:<type>      agent-scoped events
  agents            every agent-scoped event
  ai                ai:* events that are not user-targeted
  system            system:* events

Each session owns an outbound queue drained by one pump task, so delivery to a
session is in emission order. A failing session is dropped without touching
the others.
"""
import asyncio
import itertools
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from agentcore.agents.base import AgentType
from agentcore.auth import JwtAuthenticator
from agentcore.config import REALTIME_BUFFER_SIZE, REALTIME_BUFFER_WINDOW_SECONDS
from agentcore.db.models import BufferedMessage, EventEnvelope
from agentcore.events import EventBus, EventKind

logger = logging.getLogger(__name__)

PUBLIC_CHANNELS = ("agents", "system", "ai")
# Transient events that are not worth replaying.
UNBUFFERED_KINDS = {EventKind.TASK_PROGRESS.value, EventKind.AI_THINKING.value}

SESSION_QUEUE_SIZE = 1000
MAX_BUFFERED_USERS = 1000


class Transport(Protocol):
    async def send(self, event: str, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def agent_room(agent_type: str) -> str:
    return f"agent:{agent_type}"


def routes_for(envelope: EventEnvelope) -> set[str]:
    """Rooms an envelope is delivered to."""
    rooms: set[str] = set()
    family = envelope.kind.split(":", 1)[0]
    if envelope.agent_type:
        rooms.add(agent_room(envelope.agent_type))
        rooms.add("agents")
    if envelope.user_id:
        rooms.add(user_room(envelope.user_id))
    if family == "ai" and not envelope.user_id:
        rooms.add("ai")
    if family == "system":
        rooms.add("system")
    return rooms


@dataclass
class Session:
    session_id: str
    user_id: str
    transport: Transport
    rooms: set[str] = field(default_factory=set)
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=SESSION_QUEUE_SIZE))
    pump: Optional[asyncio.Task] = field(default=None, repr=False)
    connected_at: float = 0.0
    closed: bool = False


@dataclass
class _Detached:
    rooms: frozenset
    expires_at: float


class RealtimeGateway:
    def __init__(
        self,
        bus: EventBus,
        authenticator: JwtAuthenticator,
        buffer_size: int = REALTIME_BUFFER_SIZE,
        buffer_window: float = REALTIME_BUFFER_WINDOW_SECONDS,
        max_buffered_users: int = MAX_BUFFERED_USERS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus
        self.authenticator = authenticator
        self.buffer_size = buffer_size
        self.buffer_window = buffer_window
        self.max_buffered_users = max_buffered_users
        self._clock = clock
        self._ids = itertools.count(1)
        self._sessions: dict[str, Session] = {}
        self._rooms: dict[str, set[str]] = {}
        self._user_sessions: dict[str, set[str]] = {}
        self._detached: dict[str, _Detached] = {}
        self._buffers: "OrderedDict[str, deque[BufferedMessage]]" = OrderedDict()
        self._dropped: dict[str, int] = {}
        self._unsubscribe = bus.subscribe(self._on_event)

    # ─────────────────────────────────────────────
    # Session lifecycle
    # ─────────────────────────────────────────────

    async def connect(self, token: Optional[str], transport: Transport) -> Session:
        """Authenticate, join the user room, restore detached rooms and queue replay."""
        principal = self.authenticator.verify(token)
        session = Session(
            session_id=f"s{next(self._ids)}",
            user_id=principal.id,
            transport=transport,
            connected_at=self._clock(),
        )
        self._sessions[session.session_id] = session
        self._user_sessions.setdefault(session.user_id, set()).add(session.session_id)
        self._join(session, user_room(session.user_id))

        detached = self._detached.pop(session.user_id, None)
        if detached is not None and detached.expires_at > self._clock():
            for room in detached.rooms:
                self._join(session, room)

        dropped = self._dropped.pop(session.user_id, 0)
        buffered = self._buffers.pop(session.user_id, None) or ()
        if dropped:
            self._reply(session, EventKind.SYSTEM_NOTIFICATION.value, {
                "message": f"{dropped} buffered messages were dropped while you were offline",
                "level": "warning",
                "dropped": dropped,
            })
        for msg in buffered:
            self._enqueue(session, msg.event, msg.payload)

        session.pump = asyncio.create_task(self._pump(session))
        logger.info(
            f"Realtime session {session.session_id} connected (user={session.user_id}, "
            f"replayed={len(buffered)}, rooms={sorted(session.rooms)})"
        )
        return session

    async def disconnect(self, session: Session) -> None:
        """Idempotent. Remembers the session's rooms for replay if it was the user's last."""
        if not self._release(session):
            return
        pump = session.pump
        if pump is not None and pump is not asyncio.current_task() and not pump.done():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception(f"Realtime pump for {session.session_id} failed")

    def _release(self, session: Session) -> bool:
        if session.closed:
            return False
        session.closed = True
        self._sessions.pop(session.session_id, None)
        for room in list(session.rooms):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(session.session_id)
                if not members:
                    del self._rooms[room]
        siblings = self._user_sessions.get(session.user_id, set())
        siblings.discard(session.session_id)
        if not siblings:
            self._user_sessions.pop(session.user_id, None)
            remembered = frozenset(r for r in session.rooms if r != user_room(session.user_id))
            self._detached[session.user_id] = _Detached(remembered, self._clock() + self.buffer_window)
        logger.info(f"Realtime session {session.session_id} disconnected (user={session.user_id})")
        return True

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            try:
                await session.transport.close(1001, "server shutdown")
            except Exception as e:
                logger.warning(f"Closing session {session.session_id} failed: {e}")
            await self.disconnect(session)
        self._unsubscribe()

    # ─────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────

    @staticmethod
    def valid_channel(channel: Any) -> bool:
        if not isinstance(channel, str):
            return False
        if channel in PUBLIC_CHANNELS:
            return True
        if channel.startswith("agent:"):
            return channel.split(":", 1)[1] in {t.value for t in AgentType}
        return False

    def _join(self, session: Session, room: str) -> None:
        session.rooms.add(room)
        self._rooms.setdefault(room, set()).add(session.session_id)

    def subscribe(self, session: Session, channel: Any) -> bool:
        if not self.valid_channel(channel):
            self._reply(session, "error", {"message": f"Invalid channel: {channel}", "channel": channel})
            return False
        self._join(session, channel)
        self._reply(session, "subscribed", {"channel": channel})
        return True

    def unsubscribe(self, session: Session, channel: Any) -> bool:
        if not self.valid_channel(channel):
            self._reply(session, "error", {"message": f"Invalid channel: {channel}", "channel": channel})
            return False
        session.rooms.discard(channel)
        members = self._rooms.get(channel)
        if members is not None:
            members.discard(session.session_id)
            if not members:
                del self._rooms[channel]
        self._reply(session, "unsubscribed", {"channel": channel})
        return True

    def subscribe_agent(self, session: Session, agent_type: Any) -> bool:
        return self.subscribe(session, agent_room(str(agent_type)))

    def unsubscribe_agent(self, session: Session, agent_type: Any) -> bool:
        return self.unsubscribe(session, agent_room(str(agent_type)))

    def handle_message(self, session: Session, event: Any, data: Any) -> None:
        """Dispatch one client frame ``{event, data}``."""
        if isinstance(data, dict):
            data = data.get("channel") or data.get("agentType") or data.get("type")
        if event == "subscribe":
            self.subscribe(session, data)
        elif event == "unsubscribe":
            self.unsubscribe(session, data)
        elif event == "subscribe-agent":
            self.subscribe_agent(session, data)
        elif event == "unsubscribe-agent":
            self.unsubscribe_agent(session, data)
        else:
            self._reply(session, "error", {"message": f"Unknown event: {event}"})

    # ─────────────────────────────────────────────
    # Fan-out
    # ─────────────────────────────────────────────

    def _reply(self, session: Session, event: str, data: dict) -> None:
        """Gateway-originated frame, stamped like a bus envelope."""
        self._enqueue(session, event, {**data, "timestamp": self.bus.timestamp()})

    def _enqueue(self, session: Session, event: str, data: Any) -> None:
        if session.closed:
            return
        try:
            session.queue.put_nowait((event, data))
        except asyncio.QueueFull:
            logger.warning(f"Realtime session {session.session_id} is not draining; dropping it")
            self._release(session)
            if session.pump is not None and not session.pump.done():
                session.pump.cancel()

    async def _pump(self, session: Session) -> None:
        while True:
            event, data = await session.queue.get()
            try:
                await session.transport.send(event, data)
            except Exception as e:
                logger.warning(f"Realtime send to {session.session_id} failed: {type(e).__name__}: {e}")
                self._release(session)
                return

    def _on_event(self, envelope: EventEnvelope) -> None:
        rooms = routes_for(envelope)
        message = envelope.to_message()

        if envelope.broadcast and envelope.kind.startswith("system:"):
            targets = set(self._sessions)
        else:
            targets = set()
            for room in rooms:
                targets |= self._rooms.get(room, set())
        for sid in targets:
            session = self._sessions.get(sid)
            if session is not None:
                self._enqueue(session, envelope.kind, message)

        if envelope.kind not in UNBUFFERED_KINDS:
            for uid in self._offline_recipients(envelope, rooms):
                self._buffer(uid, envelope.kind, message)

    def _offline_recipients(self, envelope: EventEnvelope, rooms: set[str]) -> set[str]:
        recipients: set[str] = set()
        if envelope.user_id and envelope.user_id not in self._user_sessions:
            recipients.add(envelope.user_id)
        now = self._clock()
        for uid, detached in list(self._detached.items()):
            if detached.expires_at <= now:
                del self._detached[uid]
                continue
            if uid not in self._user_sessions and (detached.rooms & rooms or envelope.broadcast):
                recipients.add(uid)
        return recipients

    def _buffer(self, user_id: str, event: str, payload: dict) -> None:
        queue = self._buffers.get(user_id)
        if queue is None:
            while len(self._buffers) >= self.max_buffered_users:
                evicted, _ = self._buffers.popitem(last=False)
                self._dropped.pop(evicted, None)
                logger.warning(f"Realtime buffer user limit reached, discarded buffer of {evicted}")
            queue = self._buffers[user_id] = deque()
        if len(queue) >= self.buffer_size:
            queue.popleft()
            self._dropped[user_id] = self._dropped.get(user_id, 0) + 1
        queue.append(BufferedMessage(user_id=user_id, event=event, payload=payload))

    # ─────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────

    @property
    def active_connections(self) -> int:
        return len(self._sessions)

    def buffered_count(self, user_id: str) -> int:
        return len(self._buffers.get(user_id, ()))

    def stats(self) -> dict:
        return {
            "activeConnections": len(self._sessions),
            "connectedUsers": len(self._user_sessions),
            "rooms": {room: len(members) for room, members in sorted(self._rooms.items())},
            "bufferedUsers": len(self._buffers),
            "bufferedMessages": sum(len(q) for q in self._buffers.values()),
            "detachedUsers": len(self._detached),
        }
