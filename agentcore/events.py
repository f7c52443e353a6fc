"""
In-process event bus.

Producers call ``emit()`` synchronously; every subscriber is invoked in
subscription order. A failing subscriber is logged and skipped.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from agentcore.db.models import EventEnvelope

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    AGENT_STARTED = "agent:started"
    AGENT_STOPPED = "agent:stopped"
    AGENT_ERROR = "agent:error"
    AGENT_CACHE_CLEARED = "agent:cache-cleared"
    TASK_PROGRESS = "task:progress"
    TASK_COMPLETED = "task:completed"
    AI_RESPONSE = "ai:response"
    AI_ERROR = "ai:error"
    AI_THINKING = "ai:thinking"
    SYSTEM_ERROR = "system:error"
    SYSTEM_NOTIFICATION = "system:notification"
    SYSTEM_HEALTH = "system:health"

    @property
    def family(self) -> str:
        return self.value.split(":", 1)[0]


Handler = Callable[[EventEnvelope], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventBus:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._handlers: list[Handler] = []
        self._last: Optional[datetime] = None
        self.emitted = 0

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a function that removes it again."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def timestamp(self) -> str:
        """ISO-8601 emission time; monotonic per bus."""
        now = self._clock()
        # Never go backwards, even if the wall clock does.
        if self._last is not None and now < self._last:
            now = self._last
        self._last = now
        return now.isoformat()

    def emit(
        self,
        kind: EventKind,
        payload: Optional[dict] = None,
        agent_type: Optional[str] = None,
        user_id: Optional[str] = None,
        broadcast: bool = False,
    ) -> EventEnvelope:
        envelope = EventEnvelope(
            kind=EventKind(kind).value,
            payload=dict(payload or {}),
            timestamp=self.timestamp(),
            agent_type=agent_type,
            user_id=user_id,
            broadcast=broadcast,
        )
        self.emitted += 1
        for handler in list(self._handlers):
            try:
                handler(envelope)
            except Exception:
                logger.exception(f"Event handler failed for {envelope.kind}")
        return envelope
