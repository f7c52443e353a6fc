"""
Request envelope applied to every externally-triggered HTTP operation.

Order of checks (a request rejected by an earlier step never reaches a later
one, so rejected requests do not consume rate-limit budget):

  1. authentication   bearer token → Principal (RemoteAuthenticator)
  2. authorization    principal.role ∈ allowed roles
  3. validation       pydantic model applied to {body, query, params}
  4. rate limiting    sliding window per (class, principal or client address)
"""
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Type

from fastapi import Request
from pydantic import BaseModel

from agentcore.agents.base import AgentType
from agentcore.auth import ROLES, Principal
from agentcore.config import RATE_LIMITS
from agentcore.errors import Forbidden, RateLimited, Unauthenticated, ValidationFailed
from agentcore.llm.schema import validate_input

logger = logging.getLogger(__name__)

ADMIN = ("admin",)
ANY_ROLE = ROLES


class RateLimiter:
    """Sliding-window counters, one window per (rate class, key)."""

    def __init__(
        self,
        classes: Mapping[str, tuple[int, int]] = RATE_LIMITS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.classes = dict(classes)
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = defaultdict(deque)

    def _window(self, rate_class: str, key: str, now: float) -> deque:
        _, window = self.classes[rate_class]
        hits = self._hits[(rate_class, key)]
        while hits and now - hits[0] >= window:
            hits.popleft()
        return hits

    def check(self, rate_class: str, key: str) -> None:
        """Record one request or raise RateLimited without recording it."""
        limit, window = self.classes[rate_class]
        if limit <= 0:
            return
        now = self._clock()
        hits = self._window(rate_class, key, now)
        if len(hits) >= limit:
            retry_after = max(1, int(window - (now - hits[0])) + 1)
            logger.warning(f"Rate limit exceeded ({rate_class}) for {key}")
            raise RateLimited(limit=limit, window=window, retry_after=retry_after, scope=rate_class)
        hits.append(now)

    def remaining(self, rate_class: str, key: str) -> int:
        limit, _ = self.classes[rate_class]
        return max(0, limit - len(self._window(rate_class, key, self._clock())))


@dataclass
class RequestContext:
    principal: Optional[Principal]
    data: Optional[BaseModel]
    client: str

    @property
    def user_id(self) -> Optional[str]:
        return self.principal.id if self.principal else None


def bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("No valid authorization token provided")
    return token.strip()


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationFailed("Request body is not valid JSON", details=[{"path": "body", "message": str(e)}]) from e


def guard(
    rate_class: Optional[str] = None,
    roles: Optional[Iterable[str]] = ANY_ROLE,
    schema: Optional[Type[BaseModel]] = None,
    authenticated: bool = True,
):
    """
    Build a FastAPI dependency enforcing the envelope for one route.

    Usage::

        @router.post("/{type}/start")
        async def start(ctx: RequestContext = Depends(guard("agents", ADMIN, StartRequest))): ...
    """
    allowed = tuple(roles) if roles else ()

    async def dependency(request: Request) -> RequestContext:
        services = request.app.state.services
        principal = None
        if authenticated:
            principal = await services.authenticator.authenticate(bearer_token(request))
            if allowed and principal.role not in allowed:
                raise Forbidden("Insufficient permissions", details={"required": list(allowed)})

        params = dict(request.path_params)
        if "type" in params:
            AgentType.parse(params["type"])

        data = None
        if schema is not None:
            data = validate_input(schema, {
                "body": await _json_body(request),
                "query": dict(request.query_params),
                "params": params,
            })

        client = client_address(request)
        if rate_class:
            services.rate_limiter.check(rate_class, principal.id if principal else client)
        return RequestContext(principal=principal, data=data, client=client)

    return dependency


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}
