"""
Collaborator container.

Everything the HTTP and realtime surfaces need is constructed once here and
hung off ``app.state.services``. Tests build a Services with fakes.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from agentcore import config
from agentcore.agents.base import AgentType
from agentcore.auth import Authenticator, JwtAuthenticator, RemoteAuthenticator
from agentcore.cache import ResponseCache
from agentcore.db import crud
from agentcore.db.database import close_db, get_db
from agentcore.dispatcher import TaskDispatcher
from agentcore.envelope import RateLimiter
from agentcore.events import EventBus, EventKind
from agentcore.interaction_log import InteractionLog, InteractionSink, SqliteInteractionSink
from agentcore.llm.client import GeminiClient, ModelClient
from agentcore.realtime import RealtimeGateway
from agentcore.registry import AgentRegistry

logger = logging.getLogger(__name__)


async def sqlite_store_probe() -> dict:
    db = await get_db()
    return await crud.store_health(db)


def autostart_types(raw: str) -> list[AgentType]:
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.lower() == "all":
        return list(AgentType)
    types = []
    for name in raw.split(","):
        name = name.strip()
        if not name:
            continue
        try:
            types.append(AgentType(name))
        except ValueError:
            logger.warning(f"Ignoring unknown agent type in AGENT_AUTOSTART: {name!r}")
    return types


@dataclass
class Services:
    model_client: ModelClient
    authenticator: Authenticator
    realtime_auth: JwtAuthenticator
    bus: EventBus
    cache: ResponseCache
    registry: AgentRegistry
    dispatcher: TaskDispatcher
    interaction_log: InteractionLog
    gateway: RealtimeGateway
    rate_limiter: RateLimiter
    store_probe: Callable[[], Awaitable[dict]] = sqlite_store_probe
    autostart: list[AgentType] = field(default_factory=list)
    health_interval: float = 0
    started_at: float = field(default_factory=time.monotonic)
    _heartbeat: Optional[asyncio.Task] = field(default=None, repr=False)

    @classmethod
    def build(
        cls,
        model_client: ModelClient,
        authenticator: Authenticator,
        realtime_auth: JwtAuthenticator,
        interaction_sink: InteractionSink,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        concurrency: Optional[dict] = None,
        task_timeout: float = config.TASK_TIMEOUT_SECONDS,
        store_probe: Callable[[], Awaitable[dict]] = sqlite_store_probe,
        autostart: Optional[list[AgentType]] = None,
        health_interval: float = 0,
    ) -> "Services":
        bus = EventBus()
        cache = cache or ResponseCache()
        registry = AgentRegistry(model_client, cache, bus, concurrency=concurrency)
        interaction_log = InteractionLog(interaction_sink)
        return cls(
            model_client=model_client,
            authenticator=authenticator,
            realtime_auth=realtime_auth,
            bus=bus,
            cache=cache,
            registry=registry,
            dispatcher=TaskDispatcher(registry, cache, bus, interaction_log, timeout=task_timeout),
            interaction_log=interaction_log,
            gateway=RealtimeGateway(bus, realtime_auth),
            rate_limiter=rate_limiter or RateLimiter(),
            store_probe=store_probe,
            autostart=list(autostart or []),
            health_interval=health_interval,
        )

    @classmethod
    def from_config(cls) -> "Services":
        """Production collaborators wired from agentcore.config."""
        concurrency = {}
        for name, limit in config.parse_concurrency(config.AGENT_CONCURRENCY).items():
            try:
                concurrency[AgentType(name)] = limit
            except ValueError:
                logger.warning(f"Ignoring unknown agent type in AGENT_CONCURRENCY: {name!r}")
        return cls.build(
            model_client=GeminiClient(config.MODEL_API_KEY, config.MODEL_ID, config.MODEL_BASE_URL),
            authenticator=RemoteAuthenticator(config.AUTH_PROVIDER_URL, config.AUTH_SERVICE_KEY),
            realtime_auth=JwtAuthenticator(config.JWT_SECRET),
            interaction_sink=SqliteInteractionSink(config.INTERACTION_LOG_RETENTION_DAYS),
            concurrency=concurrency,
            autostart=autostart_types(config.AGENT_AUTOSTART),
            health_interval=config.HEALTH_BROADCAST_SECONDS,
        )

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    # ─────────────────────────────────────────────
    # Lifespan
    # ─────────────────────────────────────────────

    async def startup(self) -> None:
        self.started_at = time.monotonic()
        self.interaction_log.start()
        prune = getattr(self.interaction_log.sink, "prune", None)
        if prune is not None:
            try:
                await prune()
            except Exception as e:
                logger.warning(f"Interaction log prune failed: {e}")
        if self.autostart:
            started = self.registry.start_all(self.autostart)
            logger.info(f"Autostarted agents: {', '.join(started) or 'none'}")
        if self.health_interval > 0:
            self._heartbeat = asyncio.create_task(self._health_loop())
        self.bus.emit(EventKind.SYSTEM_NOTIFICATION, {"message": "Server ready", "level": "info"}, broadcast=True)

    async def shutdown(self) -> None:
        self.bus.emit(EventKind.SYSTEM_NOTIFICATION, {"message": "Server shutting down", "level": "warning"}, broadcast=True)
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None
        self.registry.stop_all()
        await self.gateway.close_all()
        await self.interaction_log.stop()
        for client in (self.model_client, self.authenticator):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        if isinstance(self.interaction_log.sink, SqliteInteractionSink):
            await close_db()

    def health_summary(self) -> dict:
        statuses = self.registry.status_all()
        return {
            "uptime": round(self.uptime, 3),
            "agents": {name: s["status"] for name, s in statuses.items()},
            "activeConnections": self.gateway.active_connections,
            "cache": self.cache.stats(),
            "interactionLog": self.interaction_log.stats(),
        }

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_interval)
            self.bus.emit(EventKind.SYSTEM_HEALTH, self.health_summary())
