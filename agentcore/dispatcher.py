"""
Task dispatcher: the single entry point for running an agent operation.

submit() flow
  1. lifecycle gate (AgentNotRunning) and payload validation
  2. task:progress 0, totalTasks += 1
  3. cache lookup / single-flight model call under the task deadline
  4. success: stats, task:progress 100, task:completed
  5. failure: failedTasks, lastError, agent:error, re-raise
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from agentcore.agents.base import Agent, Invocation
from agentcore.cache import CacheResult, ResponseCache
from agentcore.config import TASK_TIMEOUT_SECONDS
from agentcore.db.models import AgentInstance, AgentState, AgentStats, Interaction, TaskRequest, TaskResult
from agentcore.errors import AgentCoreError, AgentNotRunning, InternalError, UpstreamUnavailable
from agentcore.events import EventBus, EventKind
from agentcore.interaction_log import InteractionLog
from agentcore.registry import LIVE_STATES, AgentRegistry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskDispatcher:
    def __init__(
        self,
        registry: AgentRegistry,
        cache: ResponseCache,
        bus: EventBus,
        interaction_log: InteractionLog,
        timeout: float = TASK_TIMEOUT_SECONDS,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.bus = bus
        self.interaction_log = interaction_log
        self.timeout = timeout
        self._timer = timer

    def _progress(self, request: TaskRequest, agent_type: str, progress: int) -> None:
        self.bus.emit(
            EventKind.TASK_PROGRESS,
            {"progress": progress, "requestId": request.request_id, "operation": request.operation},
            agent_type=agent_type,
            user_id=request.user_id,
        )

    async def submit(self, request: TaskRequest) -> TaskResult:
        inst = self.registry.require_running(request.agent_type)
        agent: Agent = inst.agent
        invocation = agent.prepare(request.operation, request.payload)
        request.operation = invocation.operation.name

        run_id = inst.run_id
        stats = inst.stats
        self._progress(request, inst.agent_type, 0)
        stats.total_tasks += 1
        stats.in_flight += 1
        if inst.state == AgentState.RUNNING:
            inst.state = AgentState.BUSY
        started = self._timer()
        try:
            outcome = await self._execute(inst, run_id, agent, request, invocation)
        except AgentCoreError as e:
            self._record_failure(inst, stats, request, e)
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure in {inst.agent_type}.{request.operation}")
            self._record_failure(inst, stats, request, e)
            if inst.run_id == run_id:
                self.registry.mark_error(inst, str(e))
            raise InternalError("Internal error while processing task") from e
        finally:
            stats.in_flight -= 1
            if inst.run_id == run_id and inst.state == AgentState.BUSY and stats.in_flight == 0:
                inst.state = AgentState.RUNNING

        elapsed_ms = (self._timer() - started) * 1000
        stats.record_success(elapsed_ms)
        if outcome.hit:
            stats.cache_hits += 1
        else:
            stats.cache_misses += 1

        result = TaskResult(
            request_id=request.request_id,
            agent_type=inst.agent_type,
            operation=request.operation,
            result=outcome.value,
            cached=outcome.hit,
            response_time=elapsed_ms,
            completed_at=_utcnow().isoformat(),
        )
        self._progress(request, inst.agent_type, 100)
        self.bus.emit(
            EventKind.TASK_COMPLETED,
            {
                "requestId": request.request_id,
                "operation": request.operation,
                "result": outcome.value,
                "cached": outcome.hit,
                "responseTime": round(elapsed_ms, 3),
            },
            agent_type=inst.agent_type,
            user_id=request.user_id,
        )
        return result

    async def _execute(
        self,
        inst: AgentInstance,
        run_id: int,
        agent: Agent,
        request: TaskRequest,
        invocation: Invocation,
    ) -> CacheResult:
        semaphore = inst.semaphore
        if semaphore is None:
            return await self._fetch(agent, request, invocation)

        inst.queued += 1
        try:
            await semaphore.acquire()
        finally:
            inst.queued -= 1
        try:
            # The agent may have been stopped while this task waited for a slot.
            if inst.run_id != run_id or inst.state not in LIVE_STATES:
                raise AgentNotRunning(f"Agent {inst.agent_type} stopped before the task could run")
            return await self._fetch(agent, request, invocation)
        finally:
            semaphore.release()

    async def _fetch(self, agent: Agent, request: TaskRequest, invocation: Invocation) -> CacheResult:
        agent_type = invocation.agent_type.value

        async def load() -> Any:
            value = await agent.call(invocation)
            # Runs inside the shared flight, so an abandoned submission still logs.
            self.interaction_log.append(Interaction(
                agent_type=agent_type,
                operation=invocation.operation.name,
                input=invocation.input,
                output=value,
                created_at=_utcnow(),
                request_id=request.request_id,
                user_id=request.user_id,
            ))
            return value

        self._progress(request, agent_type, 25)
        try:
            return await asyncio.wait_for(
                self.cache.fetch(invocation.fingerprint, load, skip_read=request.skip_cache),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Task {request.request_id} for {agent_type} exceeded {self.timeout}s deadline")
            raise UpstreamUnavailable(
                f"Model call exceeded the {self.timeout}s task deadline",
                details={"timeout": self.timeout},
            ) from None

    def _record_failure(
        self,
        inst: AgentInstance,
        stats: AgentStats,
        request: TaskRequest,
        exc: Exception,
    ) -> None:
        message = exc.message if isinstance(exc, AgentCoreError) else str(exc) or type(exc).__name__
        code = exc.code if isinstance(exc, AgentCoreError) else InternalError.code
        stats.failed_tasks += 1
        stats.last_error = message
        logger.warning(f"Task {request.request_id} on {inst.agent_type}.{request.operation} failed: {code}: {message}")
        self.bus.emit(
            EventKind.AGENT_ERROR,
            {"error": message, "code": code, "requestId": request.request_id, "operation": request.operation},
            agent_type=inst.agent_type,
            user_id=request.user_id,
        )
