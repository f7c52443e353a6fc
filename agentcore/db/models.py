"""
Data models (dataclasses) for the agent orchestration core.
These are plain Python objects shared by the registry, dispatcher, cache,
event bus and API layers.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Any


class AgentState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    BUSY = "busy"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class AgentStats:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    average_response_time: float = 0.0   # milliseconds, incremental mean over successful_tasks
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    cache_hits: int = 0
    cache_misses: int = 0
    in_flight: int = 0

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / max(self.total_tasks, 1)

    def record_success(self, elapsed_ms: float) -> None:
        self.successful_tasks += 1
        self.average_response_time += (elapsed_ms - self.average_response_time) / self.successful_tasks

    def to_dict(self) -> dict:
        return {
            "totalTasks": self.total_tasks,
            "successfulTasks": self.successful_tasks,
            "failedTasks": self.failed_tasks,
            "inFlight": self.in_flight,
            "averageResponseTime": round(self.average_response_time, 3),
            "lastError": self.last_error,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "cacheHitRate": self.cache_hit_rate,
        }


@dataclass
class AgentInstance:
    """
    Registry-owned record for one agent type.

    The record outlives start/stop so the last run's statistics stay visible;
    ``agent`` is only set while the type is started.
    """
    agent_type: str
    state: AgentState = AgentState.STOPPED
    agent: Optional[Any] = None             # agents.base.Agent while live
    config: Optional[Any] = None            # agents.base.AgentConfig of the current run
    started_at: Optional[datetime] = None
    stats: AgentStats = field(default_factory=AgentStats)
    concurrency: Optional[int] = None       # None = unbounded
    queued: int = 0
    run_id: int = 0
    semaphore: Optional[Any] = field(default=None, repr=False)


@dataclass
class CacheEntry:
    fingerprint: str
    value: Any
    inserted_at: float       # monotonic clock seconds
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass
class EventEnvelope:
    kind: str                 # one of events.EventKind
    payload: dict
    timestamp: str            # ISO-8601, set at emission
    agent_type: Optional[str] = None
    user_id: Optional[str] = None
    broadcast: bool = False   # system notifications may go to every session

    def to_message(self) -> dict:
        """Client-facing body: the payload plus the emission timestamp."""
        body = dict(self.payload)
        if self.agent_type and "agentType" not in body:
            body["agentType"] = self.agent_type
        body["timestamp"] = self.timestamp
        return body


@dataclass
class BufferedMessage:
    user_id: str
    event: str
    payload: dict


@dataclass
class Interaction:
    """One (agent, input, output, timestamp) record for the interaction log."""
    agent_type: str
    operation: str
    input: Any
    output: Any
    created_at: datetime
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    id: Optional[int] = None


@dataclass
class TaskRequest:
    agent_type: str
    operation: str = "query"
    payload: dict = field(default_factory=dict)
    user_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    skip_cache: bool = False


@dataclass
class TaskResult:
    request_id: str
    agent_type: str
    operation: str
    result: Any
    cached: bool
    response_time: float      # milliseconds
    completed_at: str

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "agentType": self.agent_type,
            "operation": self.operation,
            "result": self.result,
            "cached": self.cached,
            "responseTime": round(self.response_time, 3),
            "completedAt": self.completed_at,
        }
