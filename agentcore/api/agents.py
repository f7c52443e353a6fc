"""Agent lifecycle, status and task submission routes."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, model_validator

from agentcore.db.models import TaskRequest
from agentcore.envelope import ADMIN, RequestContext, guard, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])


# ─────────────────────────────────────────────
# Request schemas ({body, query, params})
# ─────────────────────────────────────────────

class TypeParams(BaseModel):
    type: str


class StartBody(BaseModel):
    config: Optional[dict[str, Any]] = None


class StartRequest(BaseModel):
    params: TypeParams
    body: StartBody = Field(default_factory=StartBody)


class TaskParameters(BaseModel):
    operation: Optional[str] = None
    input: Optional[dict[str, Any]] = None
    context: Optional[dict[str, Any]] = None
    skipCache: bool = False


class TaskBody(BaseModel):
    query: Optional[str] = None
    parameters: TaskParameters = Field(default_factory=TaskParameters)

    @model_validator(mode="after")
    def _query_required_for_free_form(self) -> "TaskBody":
        if self.parameters.operation in (None, "query") and not (self.query or "").strip():
            raise ValueError("query is required")
        return self


class TaskSubmission(BaseModel):
    params: TypeParams
    body: TaskBody


def task_payload(body: TaskBody) -> dict:
    """Operation payload for a task body."""
    params = body.parameters
    if params.operation in (None, "query"):
        return {"query": body.query, "context": params.context}
    payload = dict(params.input or {})
    if body.query and "query" not in payload:
        payload["query"] = body.query
    return payload


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.get("")
async def list_agents(request: Request, ctx: RequestContext = Depends(guard("api"))):
    return ok(request.app.state.services.registry.status_all())


@router.post("/{type}/start")
async def start_agent(type: str, request: Request, ctx: RequestContext = Depends(guard("agents", ADMIN, StartRequest))):
    registry = request.app.state.services.registry
    result = registry.start(type, ctx.data.body.config)
    logger.info(f"Agent {type} started by {ctx.user_id}")
    return ok(result)


@router.post("/{type}/stop")
async def stop_agent(type: str, request: Request, ctx: RequestContext = Depends(guard("agents", ADMIN))):
    result = request.app.state.services.registry.stop(type)
    logger.info(f"Agent {type} stopped by {ctx.user_id}")
    return ok(result)


@router.get("/{type}/status")
async def agent_status(type: str, request: Request, ctx: RequestContext = Depends(guard("api"))):
    return ok(request.app.state.services.registry.status(type))


@router.get("/{type}/operations")
async def agent_operations(type: str, request: Request, ctx: RequestContext = Depends(guard("api"))):
    return ok(request.app.state.services.registry.describe(type))


@router.post("/{type}/task")
async def submit_task(type: str, request: Request, ctx: RequestContext = Depends(guard("agents", schema=TaskSubmission))):
    body: TaskBody = ctx.data.body
    task = TaskRequest(
        agent_type=type,
        operation=body.parameters.operation or "query",
        payload=task_payload(body),
        user_id=ctx.user_id,
        skip_cache=body.parameters.skipCache,
    )
    result = await request.app.state.services.dispatcher.submit(task)
    return ok(result.to_dict())


@router.delete("/{type}/cache")
async def clear_cache(type: str, request: Request, ctx: RequestContext = Depends(guard("agents", ADMIN))):
    return ok(request.app.state.services.registry.clear_cache(type))
