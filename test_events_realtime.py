"""
Event bus and realtime gateway: routing, channel validation, per-user
buffering and replay on reconnect.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agentcore.auth import JwtAuthenticator
from agentcore.errors import Unauthenticated
from agentcore.events import EventBus, EventKind
from agentcore.realtime import RealtimeGateway, routes_for
from conftest import JWT_TEST_SECRET


class FakeTransport:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.closed = None
        self.fail = fail

    async def send(self, event, data):
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append((event, data))

    async def close(self, code=1000, reason=""):
        self.closed = (code, reason)

    def events(self):
        return [event for event, _ in self.sent]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def drain():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def auth():
    return JwtAuthenticator(JWT_TEST_SECRET)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(bus, auth, clock):
    return RealtimeGateway(bus, auth, buffer_size=3, buffer_window=60, clock=clock)


# ─────────────────────────────────────────────
# EventBus
# ─────────────────────────────────────────────

def test_bus_timestamps_never_go_backwards():
    times = iter([
        datetime(2024, 1, 1, 12, 0, 1, tzinfo=timezone.utc),
        datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    ])
    bus = EventBus(clock=lambda: next(times))
    first = bus.emit(EventKind.SYSTEM_HEALTH, {})
    second = bus.emit(EventKind.SYSTEM_HEALTH, {})
    assert second.timestamp >= first.timestamp


def test_bus_isolates_failing_handlers():
    bus = EventBus()
    seen = []

    def broken(envelope):
        raise RuntimeError("handler bug")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.emit(EventKind.AGENT_STARTED, {"x": 1}, agent_type="productRecommendation")
    assert len(seen) == 1


def test_bus_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    bus.emit(EventKind.SYSTEM_HEALTH, {})
    assert seen == []


def test_routes_for_each_family(bus):
    agent = bus.emit(EventKind.TASK_COMPLETED, {}, agent_type="customerSupport", user_id="u1")
    assert routes_for(agent) == {"agent:customerSupport", "agents", "user:u1"}
    ai_user = bus.emit(EventKind.AI_RESPONSE, {}, user_id="u1")
    assert routes_for(ai_user) == {"user:u1"}
    ai_public = bus.emit(EventKind.AI_RESPONSE, {})
    assert routes_for(ai_public) == {"ai"}
    system = bus.emit(EventKind.SYSTEM_ERROR, {})
    assert routes_for(system) == {"system"}


# ─────────────────────────────────────────────
# Sessions and channels
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_connect_requires_valid_token(gateway):
    with pytest.raises(Unauthenticated):
        await gateway.connect(None, FakeTransport())
    with pytest.raises(Unauthenticated):
        await gateway.connect("garbage", FakeTransport())
    assert gateway.active_connections == 0


@pytest.mark.asyncio
async def test_expired_token_is_rejected(gateway):
    expired = JwtAuthenticator(JWT_TEST_SECRET).issue(
        "u1", exp=datetime.now(timezone.utc) - timedelta(minutes=1)
    )
    with pytest.raises(Unauthenticated):
        await gateway.connect(expired, FakeTransport())


@pytest.mark.asyncio
async def test_user_room_is_auto_joined_and_receives_targeted_events(gateway, bus, auth):
    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)
    assert session.rooms == {"user:u1"}

    bus.emit(EventKind.AI_THINKING, {"requestId": "r1"}, user_id="u1")
    bus.emit(EventKind.AI_THINKING, {"requestId": "r2"}, user_id="u2")
    await drain()

    assert transport.events() == ["ai:thinking"]
    assert transport.sent[0][1]["requestId"] == "r1"
    assert "timestamp" in transport.sent[0][1]
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_subscribe_validates_channels(gateway, bus, auth):
    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)

    gateway.handle_message(session, "subscribe", "agents")
    gateway.handle_message(session, "subscribe", "secret-room")
    gateway.handle_message(session, "subscribe-agent", "productRecommendation")
    gateway.handle_message(session, "subscribe-agent", "notAnAgent")
    gateway.handle_message(session, "teleport", "agents")
    await drain()

    assert transport.events() == ["subscribed", "error", "subscribed", "error", "error"]
    assert transport.sent[2][1]["channel"] == "agent:productRecommendation"
    assert all("timestamp" in data for _, data in transport.sent)
    assert session.rooms == {"user:u1", "agents", "agent:productRecommendation"}
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(gateway, bus, auth):
    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)
    gateway.subscribe(session, "agents")
    gateway.unsubscribe(session, "agents")
    bus.emit(EventKind.AGENT_STARTED, {}, agent_type="productRecommendation")
    await drain()
    assert transport.events() == ["subscribed", "unsubscribed"]
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_agent_event_reaches_agent_and_agents_rooms_once(gateway, bus, auth):
    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)
    gateway.subscribe(session, "agents")
    gateway.subscribe_agent(session, "productRecommendation")
    transport.sent.clear()
    await drain()
    transport.sent.clear()

    bus.emit(EventKind.AGENT_CACHE_CLEARED, {"entriesRemoved": 1}, agent_type="productRecommendation")
    await drain()

    assert transport.events() == ["agent:cache-cleared"]
    assert transport.sent[0][1]["agentType"] == "productRecommendation"
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_broadcast_notification_reaches_everyone(gateway, bus, auth):
    a, b = FakeTransport(), FakeTransport()
    sa = await gateway.connect(auth.issue("u1"), a)
    sb = await gateway.connect(auth.issue("u2"), b)
    bus.emit(EventKind.SYSTEM_NOTIFICATION, {"message": "hi"}, broadcast=True)
    await drain()
    assert a.events() == ["system:notification"]
    assert b.events() == ["system:notification"]
    await gateway.disconnect(sa)
    await gateway.disconnect(sb)


@pytest.mark.asyncio
async def test_per_room_delivery_preserves_emission_order(gateway, bus, auth):
    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)
    gateway.subscribe(session, "agents")
    await drain()
    transport.sent.clear()

    for i in range(10):
        bus.emit(EventKind.TASK_PROGRESS, {"progress": i}, agent_type="productRecommendation")
    await drain()

    progress = [data["progress"] for _, data in transport.sent]
    stamps = [data["timestamp"] for _, data in transport.sent]
    assert progress == list(range(10))
    assert stamps == sorted(stamps)
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_failing_session_does_not_affect_others(gateway, bus, auth):
    bad, good = FakeTransport(fail=True), FakeTransport()
    await gateway.connect(auth.issue("u1"), bad)
    sg = await gateway.connect(auth.issue("u2"), good)
    bus.emit(EventKind.SYSTEM_NOTIFICATION, {"message": "hi"}, broadcast=True)
    await drain()
    assert good.events() == ["system:notification"]
    assert gateway.active_connections == 1
    await gateway.disconnect(sg)


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(gateway, auth):
    session = await gateway.connect(auth.issue("u1"), FakeTransport())
    await gateway.disconnect(session)
    await gateway.disconnect(session)
    assert gateway.active_connections == 0


# ─────────────────────────────────────────────
# Buffering and replay
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missed_agent_event_is_replayed_once_on_reconnect(gateway, bus, auth):
    first = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), first)
    gateway.subscribe_agent(session, "productRecommendation")
    await drain()
    await gateway.disconnect(session)

    bus.emit(EventKind.TASK_COMPLETED, {"requestId": "r1", "result": "R1"}, agent_type="productRecommendation")
    assert gateway.buffered_count("u1") == 1

    second = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), second)
    bus.emit(EventKind.TASK_COMPLETED, {"requestId": "r2", "result": "R2"}, agent_type="productRecommendation")
    await drain()

    assert [d["requestId"] for e, d in second.sent if e == "task:completed"] == ["r1", "r2"]
    assert session.rooms == {"user:u1", "agent:productRecommendation"}
    assert gateway.buffered_count("u1") == 0
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_user_targeted_events_buffer_for_offline_users(gateway, bus, auth):
    bus.emit(EventKind.AI_RESPONSE, {"n": 1}, user_id="u9")
    bus.emit(EventKind.AI_THINKING, {"n": 2}, user_id="u9")
    bus.emit(EventKind.AI_ERROR, {"n": 3}, user_id="u9")
    assert gateway.buffered_count("u9") == 2

    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u9"), transport)
    await drain()
    assert transport.events() == ["ai:response", "ai:error"]
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_buffer_overflow_drops_oldest_and_notifies(gateway, bus, auth):
    for n in range(5):
        bus.emit(EventKind.AI_RESPONSE, {"n": n}, user_id="u1")
    assert gateway.buffered_count("u1") == 3

    transport = FakeTransport()
    session = await gateway.connect(auth.issue("u1"), transport)
    await drain()

    assert transport.sent[0][0] == "system:notification"
    assert transport.sent[0][1]["dropped"] == 2
    assert transport.sent[0][1]["timestamp"] >= transport.sent[1][1]["timestamp"]
    assert [d["n"] for _, d in transport.sent[1:]] == [2, 3, 4]
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_detached_rooms_expire_after_window(gateway, bus, auth, clock):
    session = await gateway.connect(auth.issue("u1"), FakeTransport())
    gateway.subscribe(session, "agents")
    await gateway.disconnect(session)

    clock.now += 61
    bus.emit(EventKind.AGENT_STARTED, {}, agent_type="productRecommendation")
    assert gateway.buffered_count("u1") == 0

    session = await gateway.connect(auth.issue("u1"), FakeTransport())
    assert session.rooms == {"user:u1"}
    await gateway.disconnect(session)


@pytest.mark.asyncio
async def test_close_all_closes_transports(gateway, auth):
    transport = FakeTransport()
    await gateway.connect(auth.issue("u1"), transport)
    await gateway.close_all()
    assert transport.closed == (1001, "server shutdown")
    assert gateway.active_connections == 0
