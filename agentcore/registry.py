"""
Agent registry and lifecycle manager.

One AgentInstance record exists per AgentType for the life of the process.
State machine:

    stopped/error --start--> starting --> running <--> busy
    running/busy/error --stop--> stopping --> stopped

Only ``running`` and ``busy`` accept tasks. All transitions are synchronous,
so two overlapping lifecycle calls for one type can never interleave.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from agentcore.agents.base import DEFAULT_AGENT_CONFIGS, Agent, AgentConfig, AgentSpec, AgentType
from agentcore.agents.catalog import AGENT_SPECS
from agentcore.cache import ResponseCache
from agentcore.db.models import AgentInstance, AgentState, AgentStats
from agentcore.errors import AgentCoreError, AgentNotRunning, AlreadyRunning, ValidationFailed
from agentcore.events import EventBus, EventKind
from agentcore.llm.client import ModelClient

logger = logging.getLogger(__name__)

LIVE_STATES = (AgentState.RUNNING, AgentState.BUSY)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentRegistry:
    def __init__(
        self,
        model_client: ModelClient,
        cache: ResponseCache,
        bus: EventBus,
        specs: Optional[Mapping[AgentType, AgentSpec]] = None,
        default_configs: Optional[Mapping[AgentType, AgentConfig]] = None,
        concurrency: Optional[Mapping[AgentType, int]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.model_client = model_client
        self.cache = cache
        self.bus = bus
        self.specs = dict(specs or AGENT_SPECS)
        self.default_configs = dict(default_configs or DEFAULT_AGENT_CONFIGS)
        self._clock = clock
        self._instances: dict[AgentType, AgentInstance] = {
            agent_type: AgentInstance(
                agent_type=agent_type.value,
                concurrency=(concurrency or {}).get(agent_type),
            )
            for agent_type in self.specs
        }

    # ─────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────

    @property
    def agent_types(self) -> list[AgentType]:
        return list(self._instances)

    def instance(self, agent_type: Union[str, AgentType]) -> AgentInstance:
        return self._instances[AgentType.parse(agent_type)]

    def require_running(self, agent_type: Union[str, AgentType]) -> AgentInstance:
        inst = self.instance(agent_type)
        if inst.state not in LIVE_STATES or inst.agent is None:
            raise AgentNotRunning(
                f"Agent {inst.agent_type} is not running",
                details={"state": inst.state.value},
            )
        return inst

    def live_count(self) -> int:
        return sum(1 for inst in self._instances.values() if inst.state not in (AgentState.STOPPED, AgentState.ERROR))

    # ─────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────

    def _fail(self, inst: AgentInstance, exc: AgentCoreError) -> AgentCoreError:
        self.bus.emit(
            EventKind.AGENT_ERROR,
            {"error": exc.message, "code": exc.code},
            agent_type=inst.agent_type,
        )
        return exc

    def start(self, agent_type: Union[str, AgentType], config: Optional[Mapping[str, Any]] = None) -> dict:
        at = AgentType.parse(agent_type)
        inst = self._instances[at]
        if inst.state not in (AgentState.STOPPED, AgentState.ERROR):
            raise self._fail(inst, AlreadyRunning(
                f"Agent {at.value} is already running",
                details={"state": inst.state.value},
            ))

        overrides = dict(config or {})
        concurrency = overrides.pop("concurrency", inst.concurrency)
        try:
            agent_config = self.default_configs[at].with_overrides(overrides)
            if concurrency is not None:
                concurrency = int(concurrency)
                if concurrency < 1:
                    raise ValueError("concurrency must be >= 1")
        except ValidationFailed as e:
            raise self._fail(inst, e)
        except (TypeError, ValueError) as e:
            raise self._fail(inst, ValidationFailed(
                f"Invalid agent configuration: {e}",
                details=[{"path": "concurrency", "message": str(e)}],
            ))

        inst.state = AgentState.STARTING
        try:
            agent = Agent(self.specs[at], agent_config, self.model_client)
        except Exception as e:
            inst.state = AgentState.ERROR
            inst.stats.last_error = str(e)
            logger.exception(f"Agent {at.value} failed to start")
            raise

        now = self._clock()
        inst.agent = agent
        inst.config = agent_config
        inst.started_at = now
        inst.stats = AgentStats(started_at=now)
        inst.concurrency = concurrency
        inst.semaphore = asyncio.Semaphore(concurrency) if concurrency else None
        inst.queued = 0
        inst.run_id += 1
        inst.state = AgentState.RUNNING
        logger.info(f"Agent {at.value} started (run {inst.run_id}, concurrency={concurrency or 'unbounded'})")
        self.bus.emit(
            EventKind.AGENT_STARTED,
            {"config": agent_config.to_dict(), "concurrency": concurrency},
            agent_type=at.value,
        )
        return {"agentType": at.value, "state": inst.state.value, "message": f"Agent {at.value} started successfully"}

    def stop(self, agent_type: Union[str, AgentType]) -> dict:
        at = AgentType.parse(agent_type)
        inst = self._instances[at]
        if inst.state in (AgentState.STOPPED, AgentState.STOPPING, AgentState.STARTING):
            raise self._fail(inst, AgentNotRunning(
                f"Agent {at.value} is not running",
                details={"state": inst.state.value},
            ))

        inst.state = AgentState.STOPPING
        purged = self.cache.invalidate_by_prefix(at.value)
        inst.agent = None
        inst.semaphore = None
        inst.state = AgentState.STOPPED
        logger.info(f"Agent {at.value} stopped ({purged} cache entries purged)")
        self.bus.emit(EventKind.AGENT_STOPPED, {"cacheEntriesPurged": purged}, agent_type=at.value)
        return {"agentType": at.value, "state": inst.state.value, "message": f"Agent {at.value} stopped successfully"}

    def clear_cache(self, agent_type: Union[str, AgentType]) -> dict:
        at = AgentType.parse(agent_type)
        inst = self._instances[at]
        if inst.state not in LIVE_STATES:
            raise self._fail(inst, AgentNotRunning(
                f"Agent {at.value} is not running",
                details={"state": inst.state.value},
            ))
        removed = self.cache.invalidate_by_prefix(at.value)
        self.bus.emit(EventKind.AGENT_CACHE_CLEARED, {"entriesRemoved": removed}, agent_type=at.value)
        return {"agentType": at.value, "entriesRemoved": removed, "message": f"Cache cleared for agent {at.value}"}

    def mark_error(self, inst: AgentInstance, message: str) -> None:
        """Move a live agent to ``error`` after an unexpected failure."""
        if inst.state in LIVE_STATES:
            inst.state = AgentState.ERROR
            inst.agent = None
            inst.semaphore = None
            logger.error(f"Agent {inst.agent_type} entered error state: {message}")

    def start_all(self, agent_types: Optional[Iterable[Union[str, AgentType]]] = None) -> list[str]:
        started = []
        for at in agent_types if agent_types is not None else self.agent_types:
            inst = self.instance(at)
            if inst.state in (AgentState.STOPPED, AgentState.ERROR):
                self.start(at)
                started.append(inst.agent_type)
        return started

    def stop_all(self) -> list[str]:
        stopped = []
        for at, inst in self._instances.items():
            if inst.state in LIVE_STATES + (AgentState.ERROR,):
                self.stop(at)
                stopped.append(at.value)
        return stopped

    # ─────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────

    def status(self, agent_type: Union[str, AgentType]) -> dict:
        inst = self.instance(agent_type)
        uptime_ms = 0.0
        if inst.started_at is not None and inst.state in LIVE_STATES:
            uptime_ms = (self._clock() - inst.started_at).total_seconds() * 1000
        return {
            "agentType": inst.agent_type,
            "status": inst.state.value,
            "startedAt": inst.started_at.isoformat() if inst.started_at else None,
            "uptime": round(uptime_ms),
            "queueLength": inst.queued,
            "inFlight": inst.stats.in_flight,
            "concurrency": inst.concurrency,
            "cachedEntries": self.cache.count(inst.agent_type),
            "config": inst.config.to_dict() if inst.config else None,
            "stats": inst.stats.to_dict(),
        }

    def status_all(self) -> dict:
        return {inst.agent_type: self.status(at) for at, inst in self._instances.items()}

    def describe(self, agent_type: Union[str, AgentType]) -> dict:
        """Operation catalogue and effective configuration of one agent type."""
        at = AgentType.parse(agent_type)
        inst = self._instances[at]
        return Agent(self.specs[at], inst.config or self.default_configs[at], self.model_client).describe()
